"""OpenTelemetry metrics for Steward.

Counters and histograms for tasks, tool calls and LLM token usage.
Instruments come from the OpenTelemetry API and record nothing until an
SDK meter provider is configured.
"""

from __future__ import annotations

import time
from collections.abc import Generator
from contextlib import contextmanager

from opentelemetry import metrics

_meter = metrics.get_meter("steward", "0.1.0")

_tasks_total = _meter.create_counter(
    "steward.tasks.total",
    description="Total processed tasks",
    unit="1",
)
_task_duration = _meter.create_histogram(
    "steward.task.duration_seconds",
    description="Task processing duration in seconds",
    unit="s",
)
_tool_calls_total = _meter.create_counter(
    "steward.tool_calls.total",
    description="Total tool call executions",
    unit="1",
)
_llm_tokens_total = _meter.create_counter(
    "steward.llm.tokens.total",
    description="LLM tokens consumed",
    unit="1",
)


def record_task_complete(*, success: bool, iterations: int) -> None:
    """Record a finished task."""
    _tasks_total.add(1, {"steward.success": str(success), "steward.iterations": iterations})


def record_task_duration(*, duration_seconds: float, success: bool) -> None:
    _task_duration.record(duration_seconds, {"steward.success": str(success)})


def record_tool_call(*, tool_name: str, allowed: bool, risk_level: str = "unknown") -> None:
    """Record a tool call decision (allowed or blocked)."""
    _tool_calls_total.add(
        1,
        {"steward.tool_name": tool_name, "steward.allowed": str(allowed), "steward.risk_level": risk_level},
    )


def record_llm_tokens(*, model: str, input_tokens: int, output_tokens: int) -> None:
    if input_tokens:
        _llm_tokens_total.add(input_tokens, {"steward.model": model, "steward.direction": "input"})
    if output_tokens:
        _llm_tokens_total.add(output_tokens, {"steward.model": model, "steward.direction": "output"})


@contextmanager
def measure_task_duration() -> Generator[dict[str, bool], None, None]:
    """Measure a task; the caller flips ``outcome["success"]`` when it succeeds."""
    outcome = {"success": False}
    start = time.monotonic()
    try:
        yield outcome
    finally:
        record_task_duration(duration_seconds=time.monotonic() - start, success=outcome["success"])
