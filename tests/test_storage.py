"""Tests for the status store backends and audit row derivation."""

from datetime import datetime, timedelta

import pytest

from orchestration_hub.core.models import (
    ActionMetadata, ActionRecord, ActionStatus, Event, EventType,
    HealthSnapshot, HealthStatus, MetricsCollectedPayload, MetricsSnapshot,
    StatusAlertPayload, TriggerSource,
)
from orchestration_hub.core.storage import (
    InMemoryStatusStore, JsonlStatusStore, audit_record, create_store,
    event_description, event_severity,
)


def healthy(project: str = "svc-a") -> HealthSnapshot:
    return HealthSnapshot.from_probe(project, {"status": "healthy", "uptime": 99.5}, 10.0)


class TestAuditRecord:
    def test_payload_message_and_severity_win(self) -> None:
        event = Event(type=EventType.PROJECT_DEGRADED, source="agent",
                      payload=StatusAlertPayload("svc", "warning", "Project svc is degraded."))
        assert event_description(event) == "Project svc is degraded."
        assert event_severity(event) == "warning"

    def test_metrics_description(self) -> None:
        event = Event(type=EventType.METRICS_COLLECTED, source="ProjectMonitor",
                      payload=MetricsCollectedPayload("svc", MetricsSnapshot("svc")))
        row = audit_record(event)
        assert row["description"] == "Metrics collected"
        assert row["severity"] == "info"
        assert row["metadata"]["id"] == event.id


class TestInMemoryStore:
    async def test_latest_status(self, store) -> None:
        await store.record_status_history("svc-a", healthy())
        await store.record_status_history(
            "svc-a", HealthSnapshot.unreachable("svc-a", "HTTP error: 500", 3.0))

        latest = await store.get_latest_status("svc-a")
        assert latest.status is HealthStatus.DOWN
        assert latest.uptime_percentage == 0.0
        assert latest.error_message == "HTTP error: 500"
        assert await store.get_latest_status("svc-b") is None

    async def test_history_window(self, store) -> None:
        old = (datetime.utcnow() - timedelta(hours=30)).isoformat()
        await store._append("status_history", {
            "project_name": "svc-a", "status": "down", "last_check": old,
            "uptime_percentage": 0.0, "response_time_ms": 5000.0,
            "error_message": "timeout", "recorded_at": old,
        })
        await store.record_status_history("svc-a", healthy())
        await store.record_status_history("svc-b", healthy("svc-b"))

        recent = await store.get_status_history("svc-a", hours=24)
        assert [r.status for r in recent] == [HealthStatus.HEALTHY]
        assert len(await store.get_status_history("svc-a", hours=48)) == 2

    async def test_latest_metrics_per_project(self, store) -> None:
        await store.record_metrics("svc-a", MetricsSnapshot("svc-a", cpu_usage_percent=10))
        await store.record_metrics("svc-b", MetricsSnapshot("svc-b", cpu_usage_percent=20))
        await store.record_metrics("svc-a", MetricsSnapshot("svc-a", cpu_usage_percent=30))

        latest = await store.get_latest_metrics_for_all()
        assert latest["svc-a"].cpu_usage_percent == 30
        assert latest["svc-b"].cpu_usage_percent == 20
        assert await store.get_latest_metrics("svc-c") is None

    async def test_recent_events_newest_first(self, store) -> None:
        for project in ("svc-a", "svc-b", "svc-a"):
            await store.record_event(Event(
                type=EventType.PROJECT_DOWN, source="agent",
                payload=StatusAlertPayload(project, "critical", f"{project} down")))

        events = await store.get_recent_events(limit=2)
        assert [e["project_name"] for e in events] == ["svc-a", "svc-b"]
        filtered = await store.get_recent_events(project_name="svc-b")
        assert len(filtered) == 1

    async def test_action_records(self, store) -> None:
        metadata = ActionMetadata("svc-a", "svc-a", "manual", TriggerSource.HUMAN)
        await store.record_action(ActionRecord("svc-a", "restart_service",
                                               ActionStatus.COMPLETED, TriggerSource.HUMAN,
                                               metadata))
        actions = await store.get_recent_actions()
        assert actions[0]["status"] == "completed"
        assert actions[0]["triggered_by"] == "human"

    async def test_bounded_tables(self) -> None:
        store = InMemoryStatusStore(max_rows=3)
        for _ in range(5):
            await store.record_status_history("svc-a", healthy())
        assert len(await store.get_status_history("svc-a")) == 3


class TestJsonlStore:
    async def test_round_trip(self, tmp_path) -> None:
        store = JsonlStatusStore(tmp_path / "data")
        await store.initialize()
        assert await store.ping() is True

        await store.record_status_history("svc-a", healthy())
        await store.record_metrics("svc-a", MetricsSnapshot("svc-a", memory_usage_percent=70))

        assert (await store.get_latest_status("svc-a")).uptime_percentage == 99.5
        assert (await store.get_latest_metrics("svc-a")).memory_usage_percent == 70
        assert (tmp_path / "data" / "status_history.jsonl").exists()

    async def test_corrupt_lines_are_skipped(self, tmp_path) -> None:
        store = JsonlStatusStore(tmp_path)
        await store.initialize()
        await store.record_status_history("svc-a", healthy())
        with open(tmp_path / "status_history.jsonl", "a") as f:
            f.write("{not json\n")

        assert len(await store.get_status_history("svc-a")) == 1


class TestCreateStore:
    def test_backends(self, tmp_path) -> None:
        assert isinstance(create_store({}), InMemoryStatusStore)
        jsonl = create_store({"backend": "jsonl", "data_directory": str(tmp_path)})
        assert isinstance(jsonl, JsonlStatusStore)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError):
            create_store({"backend": "postgres"})
