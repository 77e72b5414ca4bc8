#!/usr/bin/env python3
"""
Orchestration Hub - Action Executor
Performs remediation actions and reports the outcome on the event bus.

Contract:
- A recognised action that succeeds publishes exactly one ACTION_EXECUTED event
- A failed or unrecognised action publishes nothing and returns False
- execute_action() never raises
"""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Union

import aiohttp
import structlog

from .event_bus import EventBus
from .models import (
    ActionMetadata, ActionOutcomePayload, ActionRecord, ActionStatus,
    ActionType, EventType, Target, to_jsonable,
)
from .storage import StatusStore

logger = structlog.get_logger()

SOURCE = "ActionExecutor"

SUPPORTED_ACTIONS = (
    ActionType.RESTART_SERVICE,
    ActionType.CLEAR_CACHE,
    ActionType.PAUSE_SERVICE,
)


class ActionExecutor:
    """
    Executes remediation actions against monitored targets.

    In simulated mode (the default) actions are only logged. With simulate
    disabled each action is a POST to the target's control endpoint:
    <target url><control_path>/<action type>.
    """

    def __init__(self, event_bus: EventBus,
                 store: Optional[StatusStore] = None,
                 targets: Optional[List[Target]] = None,
                 simulate: bool = True,
                 execution_delay: float = 0.0,
                 control_path: str = "/orchestration/actions",
                 timeout_seconds: float = 10.0,
                 http_session: Optional[aiohttp.ClientSession] = None):
        self.event_bus = event_bus
        self.store = store
        self.targets: Dict[str, Target] = {t.name: t for t in (targets or [])}
        self.simulate = simulate
        self.execution_delay = execution_delay
        self.control_path = control_path
        self.timeout_seconds = timeout_seconds
        self.http_session = http_session
        self._owns_session = http_session is None
        self.logger = structlog.get_logger().bind(component="action_executor")

    async def execute_action(self, action_type: Union[ActionType, str],
                             metadata: ActionMetadata) -> bool:
        """
        Execute one action.

        Args:
            action_type: ActionType or its string value
            metadata: Target, reason and trigger source

        Returns:
            bool: True if the action succeeded
        """
        self.logger.info("action_requested",
                         action_type=getattr(action_type, "value", action_type),
                         project=metadata.project_name,
                         triggered_by=metadata.triggered_by.value)

        record = ActionRecord(
            project_name=metadata.project_name,
            action_type=str(getattr(action_type, "value", action_type)),
            status=ActionStatus.EXECUTING,
            triggered_by=metadata.triggered_by,
            metadata=metadata,
        )

        try:
            resolved = self._resolve(action_type)
            if resolved is None:
                self.logger.warning("unknown_action_type", action_type=str(action_type))
                await self._record(record, ActionStatus.FAILED, "Unknown action type")
                return False

            if self.execution_delay > 0:
                await asyncio.sleep(self.execution_delay)

            success = await self._perform_action(resolved, metadata)
        except Exception as e:
            self.logger.error("action_execution_error",
                              action_type=record.action_type,
                              project=metadata.project_name,
                              error=str(e))
            await self._record(record, ActionStatus.FAILED, str(e))
            return False

        if not success:
            self.logger.error("action_failed", action_type=resolved.value,
                              project=metadata.project_name)
            await self._record(record, ActionStatus.FAILED, "Action reported failure")
            return False

        message = f"Successfully executed {resolved.value}"
        self.logger.info("action_completed", action_type=resolved.value,
                         project=metadata.project_name)
        await self._record(record, ActionStatus.COMPLETED, message)

        try:
            await self.event_bus.publish(
                EventType.ACTION_EXECUTED, SOURCE,
                ActionOutcomePayload(
                    action_type=resolved,
                    project_name=metadata.project_name,
                    status="success",
                    message=message,
                ),
            )
        except Exception as e:
            self.logger.error("action_outcome_publish_failed", error=str(e))
        return True

    @staticmethod
    def _resolve(action_type: Union[ActionType, str]) -> Optional[ActionType]:
        try:
            resolved = ActionType(getattr(action_type, "value", action_type))
        except ValueError:
            return None
        return resolved if resolved in SUPPORTED_ACTIONS else None

    # -------------------------------------------------------------------------
    # ACTION IMPLEMENTATIONS
    # -------------------------------------------------------------------------

    async def _perform_action(self, action_type: ActionType, metadata: ActionMetadata) -> bool:
        if action_type == ActionType.RESTART_SERVICE:
            self.logger.info("restarting_service", project=metadata.project_name)
        elif action_type == ActionType.CLEAR_CACHE:
            self.logger.info("clearing_cache", project=metadata.project_name)
        elif action_type == ActionType.PAUSE_SERVICE:
            self.logger.info("pausing_service", project=metadata.project_name)

        if self.simulate:
            return True
        return await self._call_control_plane(action_type, metadata)

    async def _call_control_plane(self, action_type: ActionType,
                                  metadata: ActionMetadata) -> bool:
        target = self.targets.get(metadata.project_name)
        if target is None:
            self.logger.error("action_target_unknown", project=metadata.project_name)
            return False

        url = f"{target.url.rstrip('/')}{self.control_path}/{action_type.value}"
        body = {
            "reason": metadata.reason,
            "triggeredBy": metadata.triggered_by.value,
            "params": to_jsonable(metadata.params),
        }
        try:
            async with self._session().post(
                url, json=body, timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            ) as response:
                if 200 <= response.status < 300:
                    return True
                self.logger.warning("control_plane_rejected", url=url, status=response.status)
                return False
        except Exception as e:
            self.logger.error("control_plane_error", url=url, error=str(e))
            return False

    def _session(self) -> aiohttp.ClientSession:
        if self.http_session is None:
            self.http_session = aiohttp.ClientSession()
            self._owns_session = True
        return self.http_session

    async def _record(self, record: ActionRecord, status: ActionStatus, result: str) -> None:
        if self.store is None:
            return
        record.status = status
        record.result = result
        record.executed_at = datetime.utcnow()
        try:
            await self.store.record_action(record)
        except Exception as e:
            self.logger.error("action_record_failed", error=str(e))

    async def close(self) -> None:
        if self._owns_session and self.http_session is not None:
            await self.http_session.close()
            self.http_session = None
