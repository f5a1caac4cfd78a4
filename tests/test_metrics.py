"""Tests for the CloudWatch metrics client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from src.services.metrics import MetricsClient


def _make_client(*, enabled: bool = False) -> MetricsClient:
    with patch.dict("os.environ", {"METRICS_ENABLED": str(enabled).lower()}):
        return MetricsClient()


def _dims(metric: dict) -> dict[str, str]:
    return {d["Name"]: d["Value"] for d in metric["Dimensions"]}


class TestExternalCallMetrics:
    def test_record_success_appends_count_and_latency(self):
        client = _make_client()
        client.record_success("appointments", "POST /appointments", latency_ms=123.4)
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"ExternalAPI/RequestCount", "ExternalAPI/Latency"}

    def test_record_failure_without_latency(self):
        client = _make_client()
        client.record_failure("anthropic", "engine_invoke", error_type="TimeoutError")
        assert len(client._buffer) == 2
        error_metric = next(
            m for m in client._buffer if m["MetricName"] == "ExternalAPI/ErrorCount"
        )
        assert _dims(error_metric)["ErrorType"] == "TimeoutError"

    def test_record_failure_with_latency(self):
        client = _make_client()
        client.record_failure(
            "appointments", "POST /appointments", error_type="5xx", latency_ms=500.0,
        )
        assert len(client._buffer) == 3


class TestAgentMetrics:
    def test_record_tool_tags_tool_and_status(self):
        client = _make_client()
        client.record_tool("scheduleAppointment", success=False, latency_ms=4.2)
        count = next(m for m in client._buffer if m["MetricName"] == "Tools/ExecutionCount")
        assert _dims(count) == {"Tool": "scheduleAppointment", "Status": "failure"}

    def test_record_interaction_tracks_rounds(self):
        client = _make_client()
        client.record_interaction("turn_limit", tool_rounds=4)
        rounds = next(m for m in client._buffer if m["MetricName"] == "Interaction/ToolRounds")
        assert rounds["Value"] == 4
        assert _dims(rounds)["Outcome"] == "turn_limit"


class TestMetricsFlush:
    def test_flush_when_disabled_sends_nothing_and_clears(self):
        client = _make_client(enabled=False)
        client.record_success("anthropic", "engine_invoke", latency_ms=100.0)
        assert client.flush() == 0
        assert client._buffer == []

    def test_flush_when_enabled_calls_put_metric_data(self):
        client = _make_client(enabled=True)
        mock_cw = MagicMock()
        client._cw_client = mock_cw

        client.record_success("anthropic", "engine_invoke", latency_ms=100.0)
        sent = client.flush()

        assert sent == 2
        call_args = mock_cw.put_metric_data.call_args
        assert call_args[1]["Namespace"] == "SmsSupportAgent"
        assert len(call_args[1]["MetricData"]) == 2

    def test_flush_empty_buffer_returns_zero(self):
        client = _make_client(enabled=True)
        assert client.flush() == 0
