#!/usr/bin/env python3
"""
Orchestration Hub - Core Module
"""

from .errors import ConfigurationError, OrchestrationError
from .event_bus import EventBus, Subscription
from .poller import ProjectMonitor
from .action_executor import ActionExecutor
from .decision_oracle import DecisionOracle
from .storage import InMemoryStatusStore, JsonlStatusStore, StatusStore, create_store
from .agent_framework import Agent, AgentLifecycle, AgentOrchestrator, AgentState

__all__ = [
    # Errors
    'ConfigurationError',
    'OrchestrationError',

    # Event plumbing
    'EventBus',
    'Subscription',

    # Monitoring and remediation
    'ProjectMonitor',
    'ActionExecutor',
    'DecisionOracle',

    # Storage
    'StatusStore',
    'InMemoryStatusStore',
    'JsonlStatusStore',
    'create_store',

    # Agent framework
    'Agent',
    'AgentLifecycle',
    'AgentOrchestrator',
    'AgentState',
]
