"""Steward audit trail."""

from steward.audit.trace_logger import AuditEntry, AuditTrail, HashedEntry

__all__ = ["AuditEntry", "AuditTrail", "HashedEntry"]
