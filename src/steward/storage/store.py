"""
Steward State Store

sqlite-backed persistence for state that outlives a process:

- facts, corrections: long-term memory (append-only)
- preferences: key/value
- decisions: decision-log records (append-only)
- consents: consent records keyed by scope
- kv: opaque JSON blobs such as the scheduler state

Records are stored as pydantic JSON so the schema follows the models.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

from steward.explain.decision_log import DecisionRecord
from steward.logging import get_logger
from steward.memory.long_term import Correction, Fact
from steward.safety.consent import ConsentRecord

logger = get_logger("steward.storage")

SCHEDULER_STATE_KEY = "scheduler_state"


class StateStore:
    """Database-backed storage for long-term memory, decisions and consent."""

    def __init__(self, db_path: str | Path = "steward.db"):
        """Open (or create) the database.

        Args:
            db_path: File path, or ``:memory:`` for an ephemeral store.
        """
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._db_path)
        self._conn.row_factory = sqlite3.Row
        self._create_tables()
        logger.debug(f"Opened state store at {self._db_path}", extra={"event_type": "storage_open"})

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS facts (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL,
                data TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS corrections (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL,
                data TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS preferences (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS decisions (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                record_id INTEGER NOT NULL,
                data TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS consents (
                scope TEXT PRIMARY KEY,
                data TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_decisions_record ON decisions(record_id)
        """)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    # ─── Facts and corrections ─────────────────────────────

    def append_fact(self, fact: Fact) -> None:
        self._conn.execute(
            "INSERT INTO facts (id, data) VALUES (?, ?)", (fact.id, fact.model_dump_json())
        )
        self._conn.commit()

    def load_facts(self) -> list[Fact]:
        rows = self._conn.execute("SELECT data FROM facts ORDER BY seq").fetchall()
        return [Fact.model_validate_json(row["data"]) for row in rows]

    def append_correction(self, correction: Correction) -> None:
        self._conn.execute(
            "INSERT INTO corrections (id, data) VALUES (?, ?)",
            (correction.id, correction.model_dump_json()),
        )
        self._conn.commit()

    def load_corrections(self) -> list[Correction]:
        rows = self._conn.execute("SELECT data FROM corrections ORDER BY seq").fetchall()
        return [Correction.model_validate_json(row["data"]) for row in rows]

    # ─── Preferences ───────────────────────────────────────

    def save_preference(self, key: str, value: str) -> None:
        self._conn.execute(
            "INSERT INTO preferences (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )
        self._conn.commit()

    def load_preferences(self) -> dict[str, str]:
        rows = self._conn.execute("SELECT key, value FROM preferences").fetchall()
        return {row["key"]: row["value"] for row in rows}

    # ─── Decisions ─────────────────────────────────────────

    def append_decision(self, record: DecisionRecord) -> None:
        self._conn.execute(
            "INSERT INTO decisions (record_id, data) VALUES (?, ?)",
            (record.id, record.model_dump_json()),
        )
        self._conn.commit()

    def load_decisions(self, limit: int | None = None) -> list[DecisionRecord]:
        """Persisted decision records, oldest first.

        When a record was appended more than once (outcome updates), only
        its latest version is returned.
        """
        rows = self._conn.execute(
            "SELECT data FROM decisions WHERE seq IN "
            "(SELECT MAX(seq) FROM decisions GROUP BY record_id) ORDER BY seq"
        ).fetchall()
        records = [DecisionRecord.model_validate_json(row["data"]) for row in rows]
        return records[-limit:] if limit else records

    # ─── Consent ───────────────────────────────────────────

    def save_consent(self, record: ConsentRecord) -> None:
        self._conn.execute(
            "INSERT INTO consents (scope, data) VALUES (?, ?) "
            "ON CONFLICT(scope) DO UPDATE SET data = excluded.data",
            (record.scope, record.model_dump_json()),
        )
        self._conn.commit()

    def delete_consent(self, scope: str) -> None:
        self._conn.execute("DELETE FROM consents WHERE scope = ?", (scope,))
        self._conn.commit()

    def load_consents(self) -> list[ConsentRecord]:
        rows = self._conn.execute("SELECT data FROM consents ORDER BY scope").fetchall()
        return [ConsentRecord.model_validate_json(row["data"]) for row in rows]

    # ─── Key/value ─────────────────────────────────────────

    def save_json(self, key: str, value: Any) -> None:
        self._conn.execute(
            "INSERT INTO kv (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, json.dumps(value, default=str)),
        )
        self._conn.commit()

    def load_json(self, key: str) -> Any:
        row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return json.loads(row["value"]) if row else None

    @property
    def fact_count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) AS cnt FROM facts").fetchone()
        return row["cnt"] if row else 0
