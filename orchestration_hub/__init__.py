#!/usr/bin/env python3
"""
Orchestration Hub
Event-driven monitoring and auto-remediation for a fleet of HTTP services.

Polls every configured project for health and metrics, turns changes into
typed events, and lets reactive agents alert on outages, detect anomalies and
apply AI-recommended fixes.
"""

__version__ = "1.0.0"
__author__ = "Orchestration Hub Team"

from .core.models import (
    ActionType,
    Event,
    EventType,
    HealthSnapshot,
    HealthStatus,
    MetricsSnapshot,
    Target,
)

from .core.event_bus import EventBus, Subscription
from .core.agent_framework import AgentLifecycle, AgentOrchestrator, AgentState

__all__ = [
    # Domain model
    'ActionType',
    'Event',
    'EventType',
    'HealthSnapshot',
    'HealthStatus',
    'MetricsSnapshot',
    'Target',

    # Runtime
    'EventBus',
    'Subscription',
    'AgentLifecycle',
    'AgentOrchestrator',
    'AgentState',

    # Version info
    '__version__',
    '__author__',
]
