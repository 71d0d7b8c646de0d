"""
Steward Decision Log

Two views of what the agent decided:

- a ring buffer of the 50 most recent DecisionExplanations, the basis
  of ``/why``;
- an append-only log of DecisionRecords (action, reasoning, risk,
  outcome, alternatives, persona, confidence), the basis of
  ``/decisions``. The in-memory log keeps the latest 500 records; when
  a StateStore is attached every record is also appended to it.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from steward.explain.explanation import DecisionExplanation
from steward.logging import get_logger

if TYPE_CHECKING:
    from steward.storage.store import StateStore

logger = get_logger("steward.decision_log")

EXPLANATION_CAPACITY = 50
MAX_RECORDS = 500


class OutcomeKind(str, Enum):
    AUTO_APPROVED = "auto-approved"
    USER_APPROVED = "user-approved"
    USER_DENIED = "user-denied"
    SAFETY_DENIED = "safety-denied"
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DecisionOutcome(BaseModel):
    kind: OutcomeKind
    detail: str | None = None

    @classmethod
    def of(cls, kind: OutcomeKind, detail: str | None = None) -> DecisionOutcome:
        return cls(kind=kind, detail=detail)

    def __str__(self) -> str:
        if self.detail and self.kind in (OutcomeKind.SAFETY_DENIED, OutcomeKind.FAILED):
            return f"{self.kind.value}: {self.detail}"
        return self.kind.value


class DecisionRecord(BaseModel):
    id: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    iteration: int = 0
    action: str
    reasoning: str = ""
    risk_level: str = ""
    outcome: DecisionOutcome = Field(default_factory=lambda: DecisionOutcome.of(OutcomeKind.PENDING))
    alternatives: list[str] = Field(default_factory=list)
    persona: str | None = None
    expert: str | None = None
    confidence: float | None = None

    def render(self) -> str:
        lines = [
            f"[#{self.id} iter={self.iteration} {self.timestamp:%H:%M:%S}] "
            f"{self.action} (risk: {self.risk_level})",
            f"  Reasoning: {self.reasoning}",
        ]
        if self.alternatives:
            lines.append(f"  Alternatives: {', '.join(self.alternatives)}")
        lines.append(f"  Outcome: {self.outcome}")
        if self.expert:
            lines.append(f"  Expert: {self.expert}")
        return "\n".join(lines) + "\n"


class DecisionLog:
    def __init__(self, store: StateStore | None = None):
        self.explanations: deque[DecisionExplanation] = deque(maxlen=EXPLANATION_CAPACITY)
        self._records: deque[DecisionRecord] = deque(maxlen=MAX_RECORDS)
        self._next_id = 0
        self._store = store

    def attach_store(self, store: StateStore | None) -> None:
        self._store = store

    # ─── Explanations ──────────────────────────────────────

    def add_explanation(self, explanation: DecisionExplanation) -> None:
        self.explanations.append(explanation)

    def last_explanation(self) -> DecisionExplanation | None:
        return self.explanations[-1] if self.explanations else None

    def explain_last(self) -> str:
        last = self.last_explanation()
        if last is None:
            return "No decisions to explain yet."
        return last.render()

    # ─── Records ───────────────────────────────────────────

    def record(self, record: DecisionRecord) -> int:
        """Append a record, assigning its id."""
        record.id = self._next_id
        self._next_id += 1
        self._records.append(record)
        if self._store is not None:
            self._store.append_decision(record)
        return record.id

    def update_outcome(self, record_id: int, outcome: DecisionOutcome) -> bool:
        """Set the outcome of an in-memory record.

        The persisted log stays append-only; the updated record is
        appended again so the final outcome is recoverable.
        """
        for record in self._records:
            if record.id == record_id:
                record.outcome = outcome
                if self._store is not None:
                    self._store.append_decision(record)
                return True
        return False

    def get(self, record_id: int) -> DecisionRecord | None:
        return next((r for r in self._records if r.id == record_id), None)

    def recent(self, n: int) -> list[DecisionRecord]:
        """Most recent first."""
        return list(reversed(self._records))[:n]

    def for_iteration(self, iteration: int) -> list[DecisionRecord]:
        return [r for r in self._records if r.iteration == iteration]

    def format_recent(self, n: int = 10) -> str:
        recent = self.recent(n)
        if not recent:
            return "No decisions recorded yet."
        return "\n".join(r.render() for r in reversed(recent))

    def __len__(self) -> int:
        return len(self._records)
