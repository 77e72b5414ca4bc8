#!/usr/bin/env python3
"""
Orchestration Hub - Agent Framework
Lifecycle management for reactive agents.

Agents are event-driven: on start they subscribe to the bus, on stop they
cancel their subscriptions. Instead of a base class, every agent satisfies the
Agent protocol and composes an AgentLifecycle that drives the state machine:

    stopped -> starting -> running -> stopping -> stopped
"""

import inspect
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

import structlog

from .event_bus import EventBus, EventHandler, Subscription
from .models import EventPayload, EventType

logger = structlog.get_logger()


# =============================================================================
# AGENT CONTRACT
# =============================================================================

class AgentState(Enum):
    """Agent lifecycle states."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class Agent(Protocol):
    """Capability contract every concrete agent implements."""

    name: str

    @property
    def state(self) -> AgentState: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def on_start(self) -> None: ...

    async def on_stop(self) -> None: ...

    def get_status(self) -> Dict[str, Any]: ...


class AgentLifecycle:
    """
    Reusable lifecycle state machine plus bus plumbing for an agent.

    The owning agent passes its on_start/on_stop hooks; subscriptions made
    through subscribe() are cancelled automatically after on_stop runs.
    """

    def __init__(self, name: str, event_bus: EventBus,
                 on_start: Callable[[], Awaitable[None]],
                 on_stop: Callable[[], Awaitable[None]]):
        self.name = name
        self.event_bus = event_bus
        self.state = AgentState.STOPPED
        self.logger = structlog.get_logger().bind(agent=name)

        self._on_start = on_start
        self._on_stop = on_stop
        self._subscriptions: List[Subscription] = []

        self.started_at: Optional[datetime] = None
        self.events_handled = 0
        self.events_published = 0

    @property
    def is_running(self) -> bool:
        return self.state == AgentState.RUNNING

    async def start(self) -> None:
        """Start the agent; no-op unless currently stopped."""
        if self.state != AgentState.STOPPED:
            return

        self.logger.info("agent_starting")
        self.state = AgentState.STARTING
        try:
            await self._on_start()
        except Exception as e:
            self.logger.error("agent_start_failed", error=str(e))
            self._cancel_subscriptions()
            self.state = AgentState.STOPPED
            raise

        self.state = AgentState.RUNNING
        self.started_at = datetime.utcnow()
        self.logger.info("agent_started", subscriptions=len(self._subscriptions))

    async def stop(self) -> None:
        """Stop the agent; no-op unless currently running."""
        if self.state != AgentState.RUNNING:
            return

        self.logger.info("agent_stopping")
        self.state = AgentState.STOPPING
        try:
            await self._on_stop()
        except Exception as e:
            self.logger.error("agent_stop_hook_failed", error=str(e))
        finally:
            self._cancel_subscriptions()
            self.state = AgentState.STOPPED
        self.logger.info("agent_stopped")

    def subscribe(self, event_type: EventType, handler: EventHandler) -> Subscription:
        """Subscribe on behalf of the agent, counting handled events."""
        async def counted(event):
            self.events_handled += 1
            result = handler(event)
            if inspect.isawaitable(result):
                await result

        subscription = self.event_bus.subscribe(event_type, counted)
        self._subscriptions.append(subscription)
        return subscription

    async def publish(self, event_type: EventType, payload: EventPayload,
                      metadata: Optional[Dict[str, Any]] = None) -> None:
        """Publish with the agent's name as the event source."""
        self.events_published += 1
        await self.event_bus.publish(event_type, self.name, payload, metadata)

    def _cancel_subscriptions(self) -> None:
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "subscriptions": len(self._subscriptions),
            "events_handled": self.events_handled,
            "events_published": self.events_published,
        }


# =============================================================================
# AGENT ORCHESTRATOR
# =============================================================================

class AgentOrchestrator:
    """
    Owns the list of agents for the lifetime of the process.

    Agents start in registration order and stop in reverse order, so agents
    that publish are torn down before the agents consuming their output.
    """

    def __init__(self, agents: Optional[List[Agent]] = None):
        self.agents: List[Agent] = list(agents or [])
        self.logger = structlog.get_logger().bind(component="orchestrator")

    def register_agent(self, agent: Agent) -> None:
        if any(existing.name == agent.name for existing in self.agents):
            raise ValueError(f"Agent {agent.name} already registered")
        self.agents.append(agent)
        self.logger.info("agent_registered", agent_name=agent.name)

    def get_agent(self, name: str) -> Optional[Agent]:
        for agent in self.agents:
            if agent.name == name:
                return agent
        return None

    async def start_all(self) -> None:
        for agent in self.agents:
            await agent.start()

    async def stop_all(self) -> None:
        for agent in reversed(self.agents):
            try:
                await agent.stop()
            except Exception as e:
                self.logger.error("agent_stop_error", agent_name=agent.name, error=str(e))

    def get_system_status(self) -> Dict[str, Any]:
        statuses = [agent.get_status() for agent in self.agents]
        return {
            "agents_count": len(self.agents),
            "running": sum(1 for agent in self.agents if agent.state == AgentState.RUNNING),
            "agents": statuses,
            "timestamp": datetime.utcnow().isoformat(),
        }
