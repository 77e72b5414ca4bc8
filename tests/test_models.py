"""Unit tests for the domain model and probe parsing."""

import dataclasses
from datetime import datetime

import pytest

from orchestration_hub.core.models import (
    ActionType, Decision, Event, EventType, HealthSnapshot, HealthStatus,
    MetricsCollectedPayload, MetricsSnapshot, StatusAlertPayload, to_jsonable,
)


class TestHealthStatusParse:
    def test_known_values(self) -> None:
        assert HealthStatus.parse("healthy") is HealthStatus.HEALTHY
        assert HealthStatus.parse("DOWN") is HealthStatus.DOWN

    def test_missing_or_unknown_is_degraded(self) -> None:
        assert HealthStatus.parse(None) is HealthStatus.DEGRADED
        assert HealthStatus.parse("exploding") is HealthStatus.DEGRADED
        assert HealthStatus.parse(42) is HealthStatus.DEGRADED


class TestHealthSnapshot:
    def test_probe_defaults(self) -> None:
        snapshot = HealthSnapshot.from_probe("svc", {}, elapsed_ms=12.5)
        assert snapshot.status is HealthStatus.DEGRADED
        assert snapshot.uptime == 100.0
        assert snapshot.response_time == 12.5
        assert snapshot.is_running is True

    def test_reported_values_win(self) -> None:
        snapshot = HealthSnapshot.from_probe(
            "svc", {"status": "healthy", "uptime": 0, "responseTime": 40, "isRunning": False},
            elapsed_ms=3.0,
        )
        assert snapshot.uptime == 0.0
        assert snapshot.response_time == 40.0
        assert snapshot.is_running is False

    def test_non_numeric_fields_fall_back(self) -> None:
        snapshot = HealthSnapshot.from_probe(
            "svc", {"status": "healthy", "uptime": "99.9%", "responseTime": "fast"},
            elapsed_ms=7.0,
        )
        assert snapshot.status is HealthStatus.HEALTHY
        assert snapshot.uptime == 100.0
        assert snapshot.response_time == 7.0

    def test_down_forces_zero_uptime(self) -> None:
        snapshot = HealthSnapshot.from_probe("svc", {"status": "down", "uptime": 97}, 1.0)
        assert snapshot.status is HealthStatus.DOWN
        assert snapshot.uptime == 0.0

    def test_unreachable(self) -> None:
        snapshot = HealthSnapshot.unreachable("svc", "Health check timeout", 5000)
        assert snapshot.status is HealthStatus.DOWN
        assert snapshot.uptime == 0.0
        assert snapshot.is_running is False
        assert snapshot.error_message == "Health check timeout"


class TestMetricsSnapshot:
    def test_missing_and_junk_numbers_become_zero(self) -> None:
        metrics = MetricsSnapshot.from_probe("svc", {"cpuUsagePercent": "n/a", "errorRate": None})
        assert metrics.cpu_usage_percent == 0.0
        assert metrics.error_rate == 0.0
        assert metrics.api_usage == {}

    def test_camel_case_fields(self) -> None:
        metrics = MetricsSnapshot.from_probe("svc", {
            "requestsPerSecond": 12, "errorRate": 2.5, "errorCount": 3,
            "apiUsage": {"openai": 4}, "memoryUsagePercent": 61,
            "cpuUsagePercent": 98, "databaseQueryTime": 15,
        })
        assert metrics.requests_per_second == 12.0
        assert metrics.error_count == 3
        assert metrics.api_usage == {"openai": 4}
        assert metrics.cpu_usage_percent == 98.0


class TestEvent:
    def test_immutable(self) -> None:
        event = Event(type=EventType.PROJECT_DOWN, source="test",
                      payload=StatusAlertPayload("svc", "critical", "down"))
        with pytest.raises(dataclasses.FrozenInstanceError):
            event.source = "other"

    def test_project_name_from_payload(self) -> None:
        event = Event(type=EventType.METRICS_COLLECTED, source="test",
                      payload=MetricsCollectedPayload("svc", MetricsSnapshot("svc")))
        assert event.project_name == "svc"

    def test_ids_are_unique(self) -> None:
        payload = StatusAlertPayload("svc", "info", "ok")
        first = Event(type=EventType.PROJECT_RECOVERED, source="t", payload=payload)
        second = Event(type=EventType.PROJECT_RECOVERED, source="t", payload=payload)
        assert first.id != second.id


def test_to_jsonable_flattens_nested_values() -> None:
    decision = Decision(action=ActionType.CLEAR_CACHE, confidence=0.9, reasoning="memory")
    assert to_jsonable(decision) == {
        "action": "clear_cache", "confidence": 0.9, "reasoning": "memory", "alternatives": [],
    }
    assert to_jsonable({"when": datetime(2024, 1, 15, 10, 0)}) == {"when": "2024-01-15T10:00:00"}


def test_fallback_decision() -> None:
    decision = Decision.fallback("no key")
    assert decision.action is None
    assert decision.confidence == 0.0
    assert decision.reasoning == "no key"
