"""
Steward Knowledge Distiller

Turns accumulated corrections and preference facts into short behavioral
rules that are appended to the system prompt at the start of each task.

Corrections are grouped by a normalized prefix of their context. A group
with several members yields a generalized rule; a lone correction yields
a direct "instead of X, prefer Y" rule. Only entries not seen by a
previous distillation are processed.
"""

from __future__ import annotations

from collections import OrderedDict

from pydantic import BaseModel, Field

from steward.config import KnowledgeConfig
from steward.logging import get_logger
from steward.memory.long_term import Correction, Fact, LongTermMemory

logger = get_logger("steward.memory.knowledge")

CONTEXT_KEY_CHARS = 50
PREFERENCE_PREFIXES = ("Prefer", "Always", "Never", "Don't", "Use ")


class DistilledRule(BaseModel):
    rule: str
    source_ids: list[str] = Field(default_factory=list)
    support_count: int = 1


def _is_preference(fact: Fact) -> bool:
    return "preference" in fact.tags or fact.content.startswith(PREFERENCE_PREFIXES)


class KnowledgeDistiller:
    """Derives prompt rules from long-term memory."""

    def __init__(self, config: KnowledgeConfig | None = None):
        self.config = config or KnowledgeConfig()
        self.rules: list[DistilledRule] = []
        self._processed: set[str] = set()

    def distill(self, memory: LongTermMemory) -> list[DistilledRule]:
        """Process new corrections and preference facts into rules.

        Returns early when fewer than ``min_corrections_for_rule`` new
        entries have accumulated since the last call.
        """
        if not self.config.enabled:
            return self.rules

        new_corrections = [c for c in memory.corrections if c.id not in self._processed]
        new_prefs = [f for f in memory.facts if f.id not in self._processed and _is_preference(f)]
        if len(new_corrections) + len(new_prefs) < self.config.min_corrections_for_rule:
            return self.rules

        groups: OrderedDict[str, list[Correction]] = OrderedDict()
        for correction in new_corrections:
            key = correction.context[:CONTEXT_KEY_CHARS].lower()
            groups.setdefault(key, []).append(correction)

        for group in groups.values():
            if len(group) >= 2:
                preferred = "; ".join(c.corrected for c in group)
                rule = f"Based on {len(group)} previous corrections: prefer {preferred}"
            else:
                only = group[0]
                rule = f"Instead of '{only.original}', prefer '{only.corrected}'"
            self.rules.append(
                DistilledRule(rule=rule, source_ids=[c.id for c in group], support_count=len(group))
            )

        for fact in new_prefs:
            self.rules.append(DistilledRule(rule=fact.content, source_ids=[fact.id]))

        self._processed.update(c.id for c in new_corrections)
        self._processed.update(f.id for f in new_prefs)

        if len(self.rules) > self.config.max_rules:
            self.rules.sort(key=lambda r: r.support_count, reverse=True)
            del self.rules[self.config.max_rules:]

        logger.info(
            f"Distilled {len(self.rules)} rules",
            extra={"event_type": "knowledge_distill"},
        )
        return self.rules

    def rules_for_prompt(self) -> str:
        """System-prompt addendum listing the current rules, or empty."""
        if not self.rules:
            return ""
        lines = [
            "\n\n## Learned Behavioral Rules",
            "The following rules were distilled from previous sessions. Follow them:",
        ]
        lines.extend(f"{i}. {r.rule}" for i, r in enumerate(self.rules, start=1))
        return "\n".join(lines) + "\n"
