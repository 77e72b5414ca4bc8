"""Tests for the action executor."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from orchestration_hub.core.action_executor import ActionExecutor
from orchestration_hub.core.models import (
    ActionMetadata, ActionType, EventType, Target, TriggerSource,
)

from .fakes import FakeResponse, FakeSession


def metadata(project="svc-a", **kwargs) -> ActionMetadata:
    return ActionMetadata(project_id=project, project_name=project,
                          reason="test", triggered_by=TriggerSource.HUMAN, **kwargs)


class TestSimulatedExecution:
    async def test_success_publishes_one_outcome(self, bus, recorder, store) -> None:
        executor = ActionExecutor(bus, store=store)

        assert await executor.execute_action(ActionType.RESTART_SERVICE, metadata()) is True

        assert recorder.types == [EventType.ACTION_EXECUTED]
        outcome = recorder.events[0].payload
        assert outcome.status == "success"
        assert outcome.action_type is ActionType.RESTART_SERVICE
        assert outcome.message == "Successfully executed restart_service"
        assert recorder.events[0].source == "ActionExecutor"

        actions = await store.get_recent_actions()
        assert actions[0]["status"] == "completed"
        assert actions[0]["triggered_by"] == "human"

    async def test_string_action_type(self, bus, recorder) -> None:
        executor = ActionExecutor(bus)
        assert await executor.execute_action("clear_cache", metadata()) is True
        assert recorder.events[0].payload.action_type is ActionType.CLEAR_CACHE

    @pytest.mark.parametrize("action", [
        "reboot_universe", ActionType.ROLLBACK_DEPLOYMENT, ActionType.ESCALATE_TO_HUMAN,
    ])
    async def test_unsupported_action_fails_quietly(self, bus, recorder, store, action) -> None:
        executor = ActionExecutor(bus, store=store)

        assert await executor.execute_action(action, metadata()) is False

        assert recorder.events == []
        actions = await store.get_recent_actions()
        assert actions[0]["status"] == "failed"

    async def test_execution_delay(self, bus) -> None:
        executor = ActionExecutor(bus, execution_delay=0.01)
        assert await executor.execute_action(ActionType.PAUSE_SERVICE, metadata()) is True

    async def test_publish_failure_is_not_raised(self) -> None:
        bus = MagicMock()
        bus.publish = AsyncMock(side_effect=RuntimeError("bus closed"))
        executor = ActionExecutor(bus)

        assert await executor.execute_action(ActionType.RESTART_SERVICE, metadata()) is True


class TestControlPlane:
    URL = "http://svc-a/orchestration/actions/restart_service"

    def make_executor(self, bus, routes):
        session = FakeSession(routes)
        executor = ActionExecutor(bus, targets=[Target("svc-a", "http://svc-a")],
                                  simulate=False, http_session=session)
        return executor, session

    async def test_post_to_target(self, bus, recorder) -> None:
        executor, session = self.make_executor(bus, {self.URL: FakeResponse(202, {})})

        ok = await executor.execute_action(ActionType.RESTART_SERVICE,
                                           metadata(params={"graceful": True}))

        assert ok is True
        call = session.calls[0]
        assert call["method"] == "POST"
        assert call["url"] == self.URL
        assert call["json"] == {"reason": "test", "triggeredBy": "human",
                                "params": {"graceful": True}}
        assert len(recorder.of_type(EventType.ACTION_EXECUTED)) == 1

    async def test_rejected_action(self, bus, recorder) -> None:
        executor, _ = self.make_executor(bus, {self.URL: FakeResponse(500, {})})

        assert await executor.execute_action(ActionType.RESTART_SERVICE, metadata()) is False
        assert recorder.events == []

    async def test_unknown_target(self, bus, recorder) -> None:
        executor, session = self.make_executor(bus, {})

        assert await executor.execute_action(ActionType.RESTART_SERVICE,
                                             metadata("svc-z")) is False
        assert session.calls == []

    async def test_transport_error(self, bus) -> None:
        executor, _ = self.make_executor(bus, {self.URL: ConnectionResetError("reset")})

        assert await executor.execute_action(ActionType.RESTART_SERVICE, metadata()) is False

    async def test_close_keeps_injected_session(self, bus) -> None:
        executor, session = self.make_executor(bus, {})
        await executor.close()
        assert session.closed is False
