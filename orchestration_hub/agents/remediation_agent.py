#!/usr/bin/env python3
"""
Orchestration Hub - Auto-Remediation Agent
Reacts to anomalies and outages with remediation actions.

- ANOMALY_DETECTED: ask the decision oracle, always publish AI_DECISION, and
  execute the recommendation only when it names an action and its confidence
  is strictly above the gate
- PROJECT_DOWN: restart the service immediately, without consulting the oracle
"""

from typing import Any, Dict

import structlog

from ..core.action_executor import ActionExecutor
from ..core.agent_framework import AgentLifecycle, AgentState
from ..core.decision_oracle import DecisionOracle
from ..core.event_bus import EventBus
from ..core.models import (
    ActionMetadata, ActionType, AnomalyPayload, DecisionPayload, Event,
    EventType, StatusAlertPayload, TriggerSource,
)

logger = structlog.get_logger()

CONFIDENCE_THRESHOLD = 0.7


class AutoFixerAgent:
    """Confidence-gated autonomous remediation."""

    def __init__(self, event_bus: EventBus, oracle: DecisionOracle,
                 executor: ActionExecutor, name: str = "AutoFixerAgent"):
        self.name = name
        self.oracle = oracle
        self.executor = executor
        self.lifecycle = AgentLifecycle(name, event_bus, self.on_start, self.on_stop)
        self.logger = self.lifecycle.logger

        self.actions_requested = 0
        self.decisions_below_gate = 0

    @property
    def state(self) -> AgentState:
        return self.lifecycle.state

    async def start(self) -> None:
        await self.lifecycle.start()

    async def stop(self) -> None:
        await self.lifecycle.stop()

    async def on_start(self) -> None:
        self.lifecycle.subscribe(EventType.ANOMALY_DETECTED, self.handle_anomaly)
        self.lifecycle.subscribe(EventType.PROJECT_DOWN, self.handle_project_down)

    async def on_stop(self) -> None:
        pass

    def get_status(self) -> Dict[str, Any]:
        status = self.lifecycle.get_status()
        status.update({
            "actions_requested": self.actions_requested,
            "decisions_below_gate": self.decisions_below_gate,
        })
        return status

    # -------------------------------------------------------------------------
    # EVENT HANDLERS
    # -------------------------------------------------------------------------

    async def handle_anomaly(self, event: Event) -> None:
        payload: AnomalyPayload = event.payload
        project = payload.project_name
        self.logger.info("analyzing_anomalies", project=project, anomalies=payload.anomalies)

        decision = await self.oracle.analyze_situation(project, payload.anomalies, payload.metrics)

        await self.lifecycle.publish(EventType.AI_DECISION, DecisionPayload(
            project_name=project,
            decision=decision,
        ))

        if decision.action is not None and decision.confidence > CONFIDENCE_THRESHOLD:
            self.logger.info("executing_ai_recommendation", project=project,
                             action=decision.action.value, confidence=decision.confidence)
            await self._execute_fix(project, decision.action,
                                    f"AI Recommendation: {decision.reasoning}")
        else:
            self.decisions_below_gate += 1
            self.logger.info("ai_recommendation_not_executed", project=project,
                             action=decision.action.value if decision.action else None,
                             confidence=decision.confidence)

    async def handle_project_down(self, event: Event) -> None:
        payload: StatusAlertPayload = event.payload
        self.logger.warning("initiating_emergency_restart", project=payload.project_name)
        await self._execute_fix(payload.project_name, ActionType.RESTART_SERVICE,
                                "Project is down")

    async def _execute_fix(self, project: str, action: ActionType, reason: str) -> bool:
        self.actions_requested += 1
        return await self.executor.execute_action(action, ActionMetadata(
            project_id=project,
            project_name=project,
            reason=reason,
            triggered_by=TriggerSource.AUTO_FIXER,
        ))
