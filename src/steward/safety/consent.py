"""
Steward Consent Manager

Tracks what the user has consented to: sending data to a provider, using
a tool, storing data locally or retaining memory. A ``global`` grant
covers every scope. Grants may carry a TTL.

In permissive mode, provider consent is auto-granted for a bounded TTL
the first time a provider is used. In strict mode an ungranted provider
raises ConsentRequiredError.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from pydantic import BaseModel

from steward.config import ConsentConfig
from steward.exceptions import ConsentRequiredError
from steward.logging import get_logger

if TYPE_CHECKING:
    from steward.storage.store import StateStore

logger = get_logger("steward.consent")

GLOBAL_SCOPE = "global"
LOCAL_STORAGE_SCOPE = "local_storage"
MEMORY_RETENTION_SCOPE = "memory_retention"


def provider_scope(name: str) -> str:
    return f"provider:{name}"


def tool_scope(name: str) -> str:
    return f"tool:{name}"


def is_valid_scope(scope: str) -> bool:
    if scope in (GLOBAL_SCOPE, LOCAL_STORAGE_SCOPE, MEMORY_RETENTION_SCOPE):
        return True
    kind, _, name = scope.partition(":")
    return kind in ("provider", "tool") and bool(name)


class ConsentRecord(BaseModel):
    scope: str
    granted_at: datetime
    expires_at: datetime | None = None
    auto_granted: bool = False

    def is_active(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return True
        return (now or datetime.now(UTC)) < self.expires_at


class ConsentManager:
    def __init__(self, config: ConsentConfig | None = None, store: StateStore | None = None):
        self.config = config or ConsentConfig()
        self.store = store
        self._records: dict[str, ConsentRecord] = {}

    def load(self) -> int:
        if self.store is None:
            return 0
        for record in self.store.load_consents():
            self._records[record.scope] = record
        return len(self._records)

    def grant(
        self,
        scope: str,
        ttl_hours: float | None = None,
        auto_granted: bool = False,
    ) -> ConsentRecord:
        if not is_valid_scope(scope):
            raise ValueError(f"Invalid consent scope: {scope}")
        now = datetime.now(UTC)
        record = ConsentRecord(
            scope=scope,
            granted_at=now,
            expires_at=now + timedelta(hours=ttl_hours) if ttl_hours else None,
            auto_granted=auto_granted,
        )
        self._records[scope] = record
        if self.store is not None:
            self.store.save_consent(record)
        logger.info("Consent granted", extra={"action": scope})
        return record

    def revoke(self, scope: str) -> bool:
        removed = self._records.pop(scope, None) is not None
        if removed and self.store is not None:
            self.store.delete_consent(scope)
        if removed:
            logger.info("Consent revoked", extra={"action": scope})
        return removed

    def is_granted(self, scope: str, now: datetime | None = None) -> bool:
        for key in (scope, GLOBAL_SCOPE):
            record = self._records.get(key)
            if record is not None and record.is_active(now):
                return True
        return False

    def records(self) -> list[ConsentRecord]:
        return sorted(self._records.values(), key=lambda r: r.scope)

    def ensure_provider(self, provider_name: str) -> None:
        """Verify a provider may receive data, auto-granting in permissive mode."""
        scope = provider_scope(provider_name)
        if self.is_granted(scope):
            return
        if self.config.require_explicit_provider_consent:
            raise ConsentRequiredError(scope)
        self.grant(scope, ttl_hours=self.config.auto_grant_ttl_hours, auto_granted=True)
