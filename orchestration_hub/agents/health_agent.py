#!/usr/bin/env python3
"""
Orchestration Hub - Health Monitor Agent
Turns health status transitions into alert events.

    new = down                           -> PROJECT_DOWN      (critical)
    new = degraded                       -> PROJECT_DEGRADED  (warning)
    new = healthy, old known and !healthy -> PROJECT_RECOVERED (info)

Recovery is stricter than "old != healthy": it needs a known previous status,
so a healthy first observation (old_status None) raises no PROJECT_RECOVERED.
"""

from typing import Any, Dict

import structlog

from ..core.agent_framework import AgentLifecycle, AgentState
from ..core.event_bus import EventBus
from ..core.models import (
    Event, EventType, HealthChangedPayload, HealthStatus, StatusAlertPayload,
)

logger = structlog.get_logger()


class HealthMonitorAgent:
    """Subscribes to PROJECT_HEALTH_CHANGED and raises status alerts."""

    def __init__(self, event_bus: EventBus, name: str = "HealthMonitorAgent"):
        self.name = name
        self.lifecycle = AgentLifecycle(name, event_bus, self.on_start, self.on_stop)
        self.logger = self.lifecycle.logger

    @property
    def state(self) -> AgentState:
        return self.lifecycle.state

    async def start(self) -> None:
        await self.lifecycle.start()

    async def stop(self) -> None:
        await self.lifecycle.stop()

    async def on_start(self) -> None:
        self.lifecycle.subscribe(EventType.PROJECT_HEALTH_CHANGED, self.handle_health_change)
        self.logger.info("listening_for_health_changes")

    async def on_stop(self) -> None:
        pass

    def get_status(self) -> Dict[str, Any]:
        return self.lifecycle.get_status()

    async def handle_health_change(self, event: Event) -> None:
        payload: HealthChangedPayload = event.payload
        project = payload.project_name
        old_status, new_status = payload.old_status, payload.new_status

        self.logger.info("analyzing_health_change",
                         project=project,
                         old_status=old_status.value if old_status else "unknown",
                         new_status=new_status.value)

        if new_status == HealthStatus.DOWN:
            await self.lifecycle.publish(EventType.PROJECT_DOWN, StatusAlertPayload(
                project_name=project,
                severity="critical",
                message=f"Project {project} is DOWN! Immediate attention required.",
            ))
            self.logger.warning("project_down_alert_triggered", project=project)

        elif new_status == HealthStatus.DEGRADED:
            await self.lifecycle.publish(EventType.PROJECT_DEGRADED, StatusAlertPayload(
                project_name=project,
                severity="warning",
                message=f"Project {project} is degraded.",
            ))

        elif (new_status == HealthStatus.HEALTHY and old_status is not None
              and old_status != HealthStatus.HEALTHY):
            await self.lifecycle.publish(EventType.PROJECT_RECOVERED, StatusAlertPayload(
                project_name=project,
                severity="info",
                message=f"Project {project} has recovered.",
            ))
