"""
Steward Long-Term Memory

Cross-task knowledge: facts learned from tool results and explicit
statements, corrections recorded when the user rejects a proposal, and
free-form preferences. Facts and corrections are capped; the oldest
entries are evicted first.

Persistence is optional. When a StateStore is attached, every new fact
and correction is appended to it and ``load`` restores prior sessions.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from steward.logging import get_logger

if TYPE_CHECKING:
    from steward.storage.store import StateStore

logger = get_logger("steward.memory.long_term")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Fact(BaseModel):
    """A piece of knowledge worth carrying across tasks."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    content: str
    source: str = ""
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)


class Correction(BaseModel):
    """A proposal the user objected to, and the context it happened in."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    original: str
    corrected: str
    context: str = ""
    created_at: datetime = Field(default_factory=_now)


class LongTermMemory:
    """Capped store of facts, corrections and preferences."""

    def __init__(
        self,
        max_facts: int = 10_000,
        max_corrections: int = 1_000,
        store: StateStore | None = None,
    ):
        self.max_facts = max_facts
        self.max_corrections = max_corrections
        self.facts: list[Fact] = []
        self.corrections: list[Correction] = []
        self.preferences: dict[str, str] = {}
        self._store = store

    def attach_store(self, store: StateStore | None) -> None:
        self._store = store

    def load(self) -> None:
        """Restore facts, corrections and preferences from the attached store."""
        if self._store is None:
            return
        self.facts = self._store.load_facts()[-self.max_facts:]
        self.corrections = self._store.load_corrections()[-self.max_corrections:]
        self.preferences = self._store.load_preferences()
        logger.info(
            f"Loaded {len(self.facts)} facts and {len(self.corrections)} corrections",
            extra={"event_type": "memory_load"},
        )

    # ─── Facts ─────────────────────────────────────────────

    def add_fact(self, fact: Fact) -> None:
        self.facts.append(fact)
        if len(self.facts) > self.max_facts:
            del self.facts[: len(self.facts) - self.max_facts]
        if self._store is not None:
            self._store.append_fact(fact)

    def search_facts(self, query: str) -> list[Fact]:
        """Case-insensitive substring match over content and tags."""
        needle = query.lower()
        return [
            f for f in self.facts
            if needle in f.content.lower() or any(needle in t.lower() for t in f.tags)
        ]

    # ─── Corrections ───────────────────────────────────────

    def add_correction(self, original: str, corrected: str, context: str = "") -> Correction:
        correction = Correction(original=original, corrected=corrected, context=context)
        self.corrections.append(correction)
        if len(self.corrections) > self.max_corrections:
            del self.corrections[: len(self.corrections) - self.max_corrections]
        if self._store is not None:
            self._store.append_correction(correction)
        logger.info("Correction recorded", extra={"event_type": "correction"})
        return correction

    # ─── Preferences ───────────────────────────────────────

    def set_preference(self, key: str, value: str) -> None:
        self.preferences[key] = value
        if self._store is not None:
            self._store.save_preference(key, value)

    def get_preference(self, key: str) -> str | None:
        return self.preferences.get(key)
