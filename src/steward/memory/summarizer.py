"""
Steward Context Summarizer

Compresses older dialogue turns into a single summary paragraph. The
preferred path asks the LLM for a summary; when that fails the memory
system falls back to ``smart_fallback_summary``, a deterministic digest
that needs no provider round-trip.
"""

from __future__ import annotations

from pydantic import BaseModel

from steward.core.models import Message, summarize_content
from steward.logging import get_logger
from steward.providers.base import CompletionRequest, LlmProvider

logger = get_logger("steward.memory.summarizer")

SUMMARY_TEMPERATURE = 0.3
SUMMARY_MAX_TOKENS = 500

_PROMPT_HEADER = (
    "Summarize the following conversation concisely, preserving:\n"
    "- Key decisions and conclusions\n"
    "- Important facts and data points\n"
    "- Tool results and their outcomes\n"
    "- Current task goals and progress\n\n"
    "Conversation:\n"
)
_PROMPT_FOOTER = "\nProvide a concise summary (3-5 sentences) capturing the essential context:"


class SummaryResult(BaseModel):
    """Outcome of one summarization."""
    text: str
    messages_summarized: int
    tokens_saved: int = 0


def build_summary_prompt(messages: list[Message]) -> str:
    lines = [f"{m.role.value.capitalize()}: {summarize_content(m.content)}" for m in messages]
    return _PROMPT_HEADER + "\n".join(lines) + "\n" + _PROMPT_FOOTER


class ContextSummarizer:
    """LLM-backed summarizer sharing the main provider."""

    def __init__(self, provider: LlmProvider):
        self._provider = provider

    async def summarize(self, messages: list[Message]) -> SummaryResult:
        """Ask the provider for a 3-5 sentence summary of ``messages``.

        Provider errors propagate; the caller decides whether to fall back.
        """
        if not messages:
            return SummaryResult(text="", messages_summarized=0)

        request = CompletionRequest(
            messages=[Message.user(build_summary_prompt(messages))],
            temperature=SUMMARY_TEMPERATURE,
            max_tokens=SUMMARY_MAX_TOKENS,
        )
        response = await self._provider.complete(request)
        text = (response.message.text or "").strip()

        original = sum(m.char_len() for m in messages) // 4
        saved = max(original - len(text) // 4, 0)
        logger.info(
            f"Summarized {len(messages)} messages, ~{saved} tokens saved",
            extra={"provider": self._provider.name},
        )
        return SummaryResult(text=text, messages_summarized=len(messages), tokens_saved=saved)


def _clip(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def smart_fallback_summary(messages: list[Message], max_chars: int = 500) -> str:
    """Deterministic digest used when the LLM summarizer is unavailable.

    Keeps the opening request, every tool invocation and result in brief,
    and the latest text turn.
    """
    if not messages:
        return ""

    quarter = max(max_chars // 4, 1)
    lines: list[str] = []

    texts = [m for m in messages if m.text]
    if texts:
        lines.append(f"[Start] {_clip(texts[0].text or '', quarter)}")

    for message in messages:
        for call in message.tool_calls:
            lines.append(f"[Tool: {call.name}]")
        for result in message.tool_results:
            lines.append(f"[Result: {result.output[:80]}]")

    if len(messages) > 1 and len(texts) > 1:
        lines.append(f"[Latest] {_clip(texts[-1].text or '', quarter)}")

    summary = "\n".join(lines)
    if len(summary) > max_chars:
        summary = summary[:max_chars] + "..."
    return summary
