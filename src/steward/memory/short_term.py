"""
Steward Short-Term Memory

The ordered dialogue buffer that drives every provider request. Messages
are only ever appended; compression replaces an eligible prefix with a
running summary, and tool-result masking shortens results the model has
already read. Pinned messages are exempt from both.
"""

from __future__ import annotations

from steward.core.models import Message, Role, ToolResultContent

SUMMARY_HEADER = "[Summary of earlier conversation]"


def _preview(text: str, limit: int) -> str:
    return f"{text[:limit]}... [{len(text) - limit} chars masked]"


class ShortTermMemory:
    """Window-bounded message buffer with pinning and a compression cursor.

    Pins are tracked by position and remapped whenever compression
    removes messages ahead of them.
    """

    def __init__(self, window_size: int = 20, keep_recent: int = 4):
        self.window_size = window_size
        self.keep_recent = keep_recent
        self.messages: list[Message] = []
        self.summary: str | None = None
        self.total_messages_seen = 0
        self._pinned: set[int] = set()

    def __len__(self) -> int:
        return len(self.messages)

    def add(self, message: Message) -> int:
        self.messages.append(message)
        self.total_messages_seen += 1
        return len(self.messages) - 1

    def clear(self) -> None:
        self.messages = []
        self.summary = None
        self._pinned = set()

    # ─── Pinning ───────────────────────────────────────────

    def pin(self, index: int) -> bool:
        if not 0 <= index < len(self.messages):
            return False
        self._pinned.add(index)
        return True

    def unpin(self, index: int) -> bool:
        if index not in self._pinned:
            return False
        self._pinned.discard(index)
        return True

    def is_pinned(self, index: int) -> bool:
        return index in self._pinned

    @property
    def pinned_count(self) -> int:
        return len(self._pinned)

    def pinned_messages(self) -> list[Message]:
        return [self.messages[i] for i in sorted(self._pinned)]

    # ─── Rendering ─────────────────────────────────────────

    def to_messages(self) -> list[Message]:
        """The conversation as sent to the provider: summary first, then the buffer."""
        if self.summary:
            return [Message.system(f"{SUMMARY_HEADER}\n{self.summary}"), *self.messages]
        return list(self.messages)

    # ─── Compression ───────────────────────────────────────

    def needs_compression(self) -> bool:
        return len(self.messages) > self.window_size

    def compression_cut(self) -> int:
        """Index separating the summarizable prefix from the kept suffix.

        The suffix keeps the most recent ``keep_recent`` messages and never
        starts with a tool result, so a call and its result are not split.
        """
        cut = max(len(self.messages) - self.keep_recent, 0)
        while 0 < cut < len(self.messages) and self.messages[cut].role == Role.TOOL:
            cut -= 1
        return cut

    def summarizable(self, cut: int) -> list[Message]:
        """Unpinned messages ahead of ``cut``."""
        return [m for i, m in enumerate(self.messages[:cut]) if i not in self._pinned]

    def apply_compression(self, summary: str, cut: int) -> int:
        """Replace the unpinned prefix with ``summary``. Returns messages removed."""
        pinned_prefix = [self.messages[i] for i in sorted(self._pinned) if i < cut]
        removed = cut - len(pinned_prefix)
        if removed <= 0:
            return 0

        remapped = set(range(len(pinned_prefix)))
        remapped.update(i - removed for i in self._pinned if i >= cut)

        self.messages = pinned_prefix + self.messages[cut:]
        self._pinned = remapped
        if summary:
            self.summary = f"{self.summary}\n{summary}" if self.summary else summary
        return removed

    # ─── Tool-result masking ───────────────────────────────

    def mask_tool_results(self, consumed_chars: int = 500, stale_chars: int = 200) -> int:
        """Shorten tool results the model no longer needs in full.

        Results older than twice the window are cut to ``stale_chars``;
        results followed by an assistant message are cut to
        ``consumed_chars``. Returns the number of messages masked.
        """
        masked = 0
        total = len(self.messages)
        last_assistant = max(
            (i for i, m in enumerate(self.messages) if m.role == Role.ASSISTANT), default=-1
        )
        for i, message in enumerate(self.messages):
            if i in self._pinned or message.role != Role.TOOL:
                continue
            if isinstance(message.metadata, dict) and message.metadata.get("masked"):
                continue
            content = message.content
            if not isinstance(content, ToolResultContent):
                continue

            stale = total - 1 - i >= 2 * self.window_size
            if stale:
                limit = stale_chars
            elif i < last_assistant:
                limit = consumed_chars
            else:
                continue
            if len(content.output) <= limit:
                continue

            self.messages[i] = Message(
                role=message.role,
                content=ToolResultContent(
                    call_id=content.call_id,
                    output=_preview(content.output, limit),
                    is_error=content.is_error,
                ),
                metadata={"masked": True},
            )
            masked += 1
        return masked
