"""Steward memory: short-term dialogue, long-term knowledge and summarization."""

from steward.memory.knowledge import DistilledRule, KnowledgeDistiller
from steward.memory.long_term import Correction, Fact, LongTermMemory
from steward.memory.short_term import ShortTermMemory
from steward.memory.summarizer import ContextSummarizer, SummaryResult, smart_fallback_summary
from steward.memory.system import ContextBreakdown, MemorySystem

__all__ = [
    "ContextBreakdown",
    "ContextSummarizer",
    "Correction",
    "DistilledRule",
    "Fact",
    "KnowledgeDistiller",
    "LongTermMemory",
    "MemorySystem",
    "ShortTermMemory",
    "SummaryResult",
    "smart_fallback_summary",
]
