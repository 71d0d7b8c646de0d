"""
Steward Audit Trail

Hash-chained, append-only record of safety-relevant events: tool
executions, approval decisions and behavioral outcomes. Every entry is
linked to the previous entry via SHA-256, so any modification breaks
the chain and is caught by verify_integrity().

The trail is bounded. When the cap is reached the oldest entries are
dropped and the hash of the last dropped entry becomes the verification
anchor for the remaining chain.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from steward.core.models import RiskLevel


class AuditEntry(BaseModel):
    """A single audited event."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    event_type: str
    tool_name: str = ""
    risk_level: RiskLevel | None = None
    task_id: str | None = None
    success: bool | None = None
    duration_ms: int | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class HashedEntry(BaseModel):
    """An audit entry with its position in the hash chain."""

    entry: AuditEntry
    hash: str
    previous_hash: str
    sequence: int


def _entry_hash(entry: AuditEntry, previous_hash: str, sequence: int) -> str:
    content = json.dumps(
        {
            "id": entry.id,
            "timestamp": entry.timestamp.isoformat(),
            "event_type": entry.event_type,
            "tool_name": entry.tool_name,
            "risk_level": entry.risk_level.value if entry.risk_level else None,
            "task_id": entry.task_id,
            "success": entry.success,
            "duration_ms": entry.duration_ms,
            "details": entry.details,
            "previous_hash": previous_hash,
            "sequence": sequence,
        },
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(content.encode()).hexdigest()


class AuditTrail:
    """Append-only, tamper-evident audit log."""

    GENESIS_HASH = "0" * 64

    def __init__(self, max_entries: int = 10_000):
        self.max_entries = max_entries
        self._entries: list[HashedEntry] = []
        self._current_hash = self.GENESIS_HASH
        self._anchor_hash = self.GENESIS_HASH
        self._next_sequence = 0

    def append(self, entry: AuditEntry) -> HashedEntry:
        sequence = self._next_sequence
        event_hash = _entry_hash(entry, self._current_hash, sequence)
        hashed = HashedEntry(
            entry=entry,
            hash=event_hash,
            previous_hash=self._current_hash,
            sequence=sequence,
        )
        self._entries.append(hashed)
        self._current_hash = event_hash
        self._next_sequence += 1

        if self.max_entries > 0 and len(self._entries) > self.max_entries:
            overflow = len(self._entries) - self.max_entries
            self._anchor_hash = self._entries[overflow - 1].hash
            del self._entries[:overflow]

        return hashed

    def verify_integrity(self) -> tuple[bool, str]:
        """Recompute every hash. Returns (is_valid, message)."""
        if not self._entries:
            return True, "Empty trail - nothing to verify"

        expected_prev = self._anchor_hash
        for i, hashed in enumerate(self._entries):
            if hashed.previous_hash != expected_prev:
                return False, (
                    f"Chain broken at entry {i}: "
                    f"expected previous_hash={expected_prev[:16]}..., "
                    f"got {hashed.previous_hash[:16]}..."
                )
            recomputed = _entry_hash(hashed.entry, hashed.previous_hash, hashed.sequence)
            if recomputed != hashed.hash:
                return False, (
                    f"Tampered entry at {i}: "
                    f"stored hash={hashed.hash[:16]}..., "
                    f"recomputed={recomputed[:16]}..."
                )
            expected_prev = hashed.hash

        return True, f"All {len(self._entries)} entries verified - chain intact"

    def get_entries(
        self,
        tool_name: str | None = None,
        event_type: str | None = None,
        task_id: str | None = None,
    ) -> list[HashedEntry]:
        results = self._entries
        if tool_name:
            results = [e for e in results if e.entry.tool_name == tool_name]
        if event_type:
            results = [e for e in results if e.entry.event_type == event_type]
        if task_id:
            results = [e for e in results if e.entry.task_id == task_id]
        return results

    def export_json(self, path: str | Path) -> None:
        """Write the trail as JSON for external audit tools."""
        data = {
            "exported_at": datetime.now(UTC).isoformat(),
            "total_entries": len(self._entries),
            "chain_head": self._current_hash,
            "anchor": self._anchor_hash,
            "entries": [e.model_dump(mode="json") for e in self._entries],
        }
        Path(path).write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")

    @property
    def head_hash(self) -> str:
        return self._current_hash

    def __len__(self) -> int:
        return len(self._entries)
