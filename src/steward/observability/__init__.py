"""Steward Observability: OpenTelemetry tracing and metrics.

Export is opt-in via OTEL_EXPORTER_OTLP_ENDPOINT. Without it, spans and
instruments are API no-ops.
"""

from steward.observability.metrics import (
    measure_task_duration,
    record_llm_tokens,
    record_task_complete,
    record_tool_call,
)
from steward.observability.tracing import get_tracer, init_tracing

__all__ = [
    "init_tracing",
    "get_tracer",
    "measure_task_duration",
    "record_llm_tokens",
    "record_task_complete",
    "record_tool_call",
]
