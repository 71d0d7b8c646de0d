"""Tests for Steward observability (OpenTelemetry tracing and metrics)."""

from unittest.mock import patch

import pytest

import steward.observability.tracing as tracing_mod
from steward.observability import (
    get_tracer,
    init_tracing,
    measure_task_duration,
    record_llm_tokens,
    record_task_complete,
    record_tool_call,
)
from steward.observability import metrics as metrics_mod


@pytest.fixture(autouse=True)
def reset_tracing():
    tracing_mod._tracer = None
    tracing_mod._initialized = False
    yield
    tracing_mod._tracer = None
    tracing_mod._initialized = False


class TestInitTracing:
    def test_no_endpoint_returns_false(self):
        with patch.dict("os.environ", {}, clear=True):
            assert init_tracing(endpoint=None) is False

    def test_initializes_once(self):
        with patch.dict("os.environ", {}, clear=True):
            init_tracing()
            assert tracing_mod._initialized
            assert init_tracing(endpoint="http://localhost:4317") is False

    def test_get_tracer_without_init(self):
        tracer = get_tracer()
        with tracer.start_as_current_span("steward.task") as span:
            span.set_attribute("steward.iterations", 1)


class TestMetrics:
    def test_recorders_accept_calls_without_sdk(self):
        record_task_complete(success=True, iterations=3)
        record_tool_call(tool_name="file_read", allowed=True, risk_level="read_only")
        record_llm_tokens(model="mock-model", input_tokens=10, output_tokens=0)

    def test_measure_task_duration_records_outcome(self, monkeypatch):
        recorded = []
        monkeypatch.setattr(
            metrics_mod, "record_task_duration",
            lambda *, duration_seconds, success: recorded.append((duration_seconds, success)),
        )

        with measure_task_duration() as outcome:
            outcome["success"] = True

        assert len(recorded) == 1
        assert recorded[0][0] >= 0
        assert recorded[0][1] is True

    def test_measure_task_duration_records_failure(self, monkeypatch):
        recorded = []
        monkeypatch.setattr(
            metrics_mod, "record_task_duration",
            lambda *, duration_seconds, success: recorded.append(success),
        )

        with pytest.raises(RuntimeError):
            with measure_task_duration():
                raise RuntimeError("boom")

        assert recorded == [False]
