"""
Steward Memory System

Combines short-term dialogue, long-term knowledge and the working goal
behind a single object owned by the orchestrator.

Context management after each tool call:
1. Mask tool results that were already consumed or have gone stale.
2. If the buffer still exceeds the window, summarize the unpinned prefix
   (LLM first, deterministic fallback on failure) and replace it with the
   running summary.
"""

from __future__ import annotations

from pydantic import BaseModel

from steward.config import MemoryConfig
from steward.core.models import CompressionEvent, Message
from steward.exceptions import LlmError
from steward.logging import get_logger
from steward.memory.long_term import LongTermMemory
from steward.memory.short_term import ShortTermMemory
from steward.memory.summarizer import ContextSummarizer, smart_fallback_summary

logger = get_logger("steward.memory.system")

FALLBACK_SUMMARY_CHARS = 500


class ContextBreakdown(BaseModel):
    """Where the context window is going, for UIs and health checks."""
    summary_tokens: int = 0
    message_tokens: int = 0
    total_tokens: int = 0
    context_window: int = 0
    remaining_tokens: int = 0
    message_count: int = 0
    total_messages_seen: int = 0
    pinned_count: int = 0
    has_summary: bool = False
    facts_count: int = 0
    rules_count: int = 0

    @property
    def usage_ratio(self) -> float:
        if self.context_window <= 0:
            return 0.0
        return self.total_tokens / self.context_window


class MemorySystem:
    """Short-term buffer, long-term store and current goal."""

    def __init__(self, config: MemoryConfig | None = None, long_term: LongTermMemory | None = None):
        self.config = config or MemoryConfig()
        self.short_term = ShortTermMemory(self.config.window_size, self.config.keep_recent)
        self.long_term = long_term or LongTermMemory(
            max_facts=self.config.max_facts,
            max_corrections=self.config.max_corrections,
        )
        self.current_goal: str | None = None

    def add_message(self, message: Message) -> int:
        return self.short_term.add(message)

    def context_messages(self) -> list[Message]:
        return self.short_term.to_messages()

    def set_goal(self, goal: str | None) -> None:
        self.current_goal = goal

    def pin(self, index: int) -> bool:
        return self.short_term.pin(index)

    def unpin(self, index: int) -> bool:
        return self.short_term.unpin(index)

    def clear_session(self) -> None:
        self.short_term.clear()
        self.current_goal = None

    # ─── Compression ───────────────────────────────────────

    async def check_and_compress(
        self, summarizer: ContextSummarizer | None = None
    ) -> CompressionEvent | None:
        """Mask, then compress if the buffer exceeds the window.

        Returns the compression event, or None when nothing was compressed.
        """
        stm = self.short_term
        masked = stm.mask_tool_results(
            self.config.consumed_preview_chars, self.config.stale_preview_chars
        )
        if masked:
            logger.debug(f"Masked {masked} tool results", extra={"event_type": "mask"})

        if not stm.needs_compression():
            return None

        cut = stm.compression_cut()
        prefix = stm.summarizable(cut)
        if not prefix:
            return None

        text = ""
        was_llm = False
        if summarizer is not None:
            try:
                result = await summarizer.summarize(prefix)
                text = result.text
                was_llm = bool(text)
            except LlmError as e:
                logger.warning(
                    f"LLM summarization failed, using fallback: {e.reason}",
                    extra={"provider": e.provider},
                )
        if not text:
            text = smart_fallback_summary(prefix, FALLBACK_SUMMARY_CHARS)

        removed = stm.apply_compression(text, cut)
        if removed == 0:
            return None

        event = CompressionEvent(
            messages_compressed=removed,
            was_llm_summarized=was_llm,
            pinned_preserved=stm.pinned_count,
        )
        logger.info(
            f"Compressed {removed} messages (llm={was_llm}, pinned={event.pinned_preserved})",
            extra={"event_type": "compression"},
        )
        return event

    def compact(self) -> tuple[int, int]:
        """Compress immediately with the deterministic summary.

        Returns the message count before and after.
        """
        stm = self.short_term
        before = len(stm)
        if before <= 2:
            return before, before
        cut = stm.compression_cut()
        prefix = stm.summarizable(cut)
        if prefix:
            stm.apply_compression(smart_fallback_summary(prefix, FALLBACK_SUMMARY_CHARS), cut)
        return before, len(stm)

    # ─── Introspection ─────────────────────────────────────

    def context_breakdown(self, context_window: int, rules_count: int = 0) -> ContextBreakdown:
        stm = self.short_term
        summary_tokens = len(stm.summary or "") // 4
        message_tokens = sum(m.char_len() for m in stm.messages) // 4
        total = summary_tokens + message_tokens
        return ContextBreakdown(
            summary_tokens=summary_tokens,
            message_tokens=message_tokens,
            total_tokens=total,
            context_window=context_window,
            remaining_tokens=max(context_window - total, 0),
            message_count=len(stm),
            total_messages_seen=stm.total_messages_seen,
            pinned_count=stm.pinned_count,
            has_summary=stm.summary is not None,
            facts_count=len(self.long_term.facts),
            rules_count=rules_count,
        )
