"""Steward persistence: a sqlite-backed StateStore."""

from steward.storage.store import SCHEDULER_STATE_KEY, StateStore

__all__ = ["SCHEDULER_STATE_KEY", "StateStore"]
