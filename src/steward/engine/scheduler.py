"""
Steward Heartbeat Scheduler

Periodic task triggers. Each job names a task to hand to the agent and
an interval; a job is due once its interval has elapsed since its last
run. Quiet hours suppress every job. The scheduler only decides what is
due; the caller runs the tasks and marks them executed.

State round-trips through ``to_state``/``load_state`` so the agent can
persist it via the StateStore.
"""

from __future__ import annotations

from datetime import datetime, time, timezone

from pydantic import BaseModel, Field

from steward.config import SchedulerConfig
from steward.logging import get_logger

logger = get_logger("steward.scheduler")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class QuietHours(BaseModel):
    """Daily window (UTC, ``HH:MM``) during which no job fires. May wrap midnight."""
    start: str
    end: str

    def is_active(self, now: datetime) -> bool:
        try:
            start = time.fromisoformat(self.start)
            end = time.fromisoformat(self.end)
        except ValueError:
            logger.warning(f"Ignoring malformed quiet hours {self.start}-{self.end}")
            return False
        current = now.time()
        if start <= end:
            return start <= current < end
        return current >= start or current < end


class HeartbeatJob(BaseModel):
    name: str
    task: str
    interval_seconds: int = Field(ge=1)
    enabled: bool = True
    last_run: datetime | None = None
    run_count: int = 0

    def is_due(self, now: datetime) -> bool:
        if not self.enabled:
            return False
        if self.last_run is None:
            return True
        return (now - self.last_run).total_seconds() >= self.interval_seconds


class SchedulerState(BaseModel):
    jobs: list[HeartbeatJob] = Field(default_factory=list)
    quiet_hours: QuietHours | None = None


class HeartbeatScheduler:
    def __init__(self, config: SchedulerConfig | None = None):
        self.config = config or SchedulerConfig()
        self._jobs: dict[str, HeartbeatJob] = {}
        self.quiet_hours: QuietHours | None = None
        if self.config.quiet_hours_start and self.config.quiet_hours_end:
            self.quiet_hours = QuietHours(
                start=self.config.quiet_hours_start, end=self.config.quiet_hours_end
            )

    def add_job(self, job: HeartbeatJob) -> None:
        if job.name in self._jobs:
            raise ValueError(f"Job '{job.name}' already exists")
        self._jobs[job.name] = job
        logger.info(f"Scheduled job '{job.name}' every {job.interval_seconds}s")

    def remove_job(self, name: str) -> bool:
        return self._jobs.pop(name, None) is not None

    def set_enabled(self, name: str, enabled: bool) -> None:
        job = self._jobs.get(name)
        if job is None:
            raise KeyError(name)
        job.enabled = enabled

    def get_job(self, name: str) -> HeartbeatJob | None:
        return self._jobs.get(name)

    def list_jobs(self) -> list[HeartbeatJob]:
        return list(self._jobs.values())

    def is_quiet(self, now: datetime | None = None) -> bool:
        return self.quiet_hours is not None and self.quiet_hours.is_active(now or _now())

    def due_jobs(self, now: datetime | None = None) -> list[HeartbeatJob]:
        now = now or _now()
        if not self.config.enabled or self.is_quiet(now):
            return []
        return [job for job in self._jobs.values() if job.is_due(now)]

    def mark_executed(self, name: str, now: datetime | None = None) -> None:
        job = self._jobs.get(name)
        if job is None:
            raise KeyError(name)
        job.last_run = now or _now()
        job.run_count += 1

    def __len__(self) -> int:
        return len(self._jobs)

    # ─── Persistence ───────────────────────────────────────

    def to_state(self) -> SchedulerState:
        return SchedulerState(jobs=self.list_jobs(), quiet_hours=self.quiet_hours)

    def load_state(self, state: SchedulerState) -> None:
        self._jobs = {job.name: job for job in state.jobs}
        if state.quiet_hours is not None:
            self.quiet_hours = state.quiet_hours
        logger.info(f"Loaded {len(self._jobs)} scheduled jobs")
