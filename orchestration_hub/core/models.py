#!/usr/bin/env python3
"""
Orchestration Hub - Domain and Event Model
Typed data structures shared by the poller, event bus, agents and executor.

Every event type carries exactly one payload class (see EVENT_PAYLOAD_TYPES),
so subscribers can rely on the shape of event.payload for the type they
registered for.
"""

import uuid
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, Union


# =============================================================================
# ENUMERATIONS
# =============================================================================

class HealthStatus(Enum):
    """Health states reported by (or derived for) a monitored target."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"

    @classmethod
    def parse(cls, value: Any) -> "HealthStatus":
        """Permissive parse: missing or unknown values count as degraded."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.DEGRADED


class EventType(Enum):
    """Closed set of event types flowing over the bus."""
    PROJECT_HEALTH_CHANGED = "project.health.changed"
    PROJECT_DOWN = "project.down"
    PROJECT_DEGRADED = "project.degraded"
    PROJECT_RECOVERED = "project.recovered"
    METRICS_COLLECTED = "metrics.collected"
    ANOMALY_DETECTED = "anomaly_detected"
    ACTION_TRIGGERED = "action.triggered"
    ACTION_COMPLETED = "action.completed"
    ACTION_FAILED = "action.failed"
    ACTION_EXECUTED = "action_executed"
    AI_DECISION = "ai_decision"


class ActionType(Enum):
    """Remediation actions the system knows about."""
    RESTART_SERVICE = "restart_service"
    CLEAR_CACHE = "clear_cache"
    PAUSE_SERVICE = "pause_service"
    ROLLBACK_DEPLOYMENT = "rollback_deployment"
    ESCALATE_TO_HUMAN = "escalate_to_human"


class ActionStatus(Enum):
    """Lifecycle of a recorded action."""
    PENDING = "pending"
    APPROVED = "approved"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class TriggerSource(Enum):
    """Who asked for an action."""
    SYSTEM = "system"
    HUMAN = "human"
    AUTO_FIXER = "auto-fixer"


# =============================================================================
# TARGETS AND SNAPSHOTS
# =============================================================================

@dataclass(frozen=True)
class Target:
    """
    A monitored service. Loaded once from configuration and never mutated.
    Intervals are in seconds.
    """
    name: str                                   # Unique key
    url: str                                    # Base address, no trailing slash
    critical: bool = True
    health_check_interval: float = 10.0
    metrics_check_interval: float = 30.0
    description: Optional[str] = None


def _number(data: Dict[str, Any], key: str, default: float = 0.0) -> float:
    value = data.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass
class HealthSnapshot:
    """Latest health reading for a target."""
    project_name: str
    status: HealthStatus
    last_check: datetime
    uptime: float                               # Percentage 0-100
    response_time: float                        # Milliseconds
    is_running: bool
    error_message: Optional[str] = None

    def __post_init__(self):
        if self.status == HealthStatus.DOWN:
            self.uptime = 0.0

    @classmethod
    def from_probe(cls, project_name: str, data: Dict[str, Any],
                   elapsed_ms: float) -> "HealthSnapshot":
        """
        Build a snapshot from a successful health probe body.

        Missing status is treated as degraded and a missing or non-numeric
        uptime as 100; a numeric responseTime wins over the measured round trip.
        """
        is_running = data.get("isRunning")
        return cls(
            project_name=project_name,
            status=HealthStatus.parse(data.get("status")),
            last_check=datetime.utcnow(),
            uptime=_number(data, "uptime", 100.0),
            response_time=_number(data, "responseTime", elapsed_ms),
            is_running=bool(is_running) if is_running is not None else True,
        )

    @classmethod
    def unreachable(cls, project_name: str, error: str,
                    response_time: float) -> "HealthSnapshot":
        """Snapshot for a target that failed its probe."""
        return cls(
            project_name=project_name,
            status=HealthStatus.DOWN,
            last_check=datetime.utcnow(),
            uptime=0.0,
            response_time=response_time,
            is_running=False,
            error_message=error,
        )


@dataclass
class MetricsSnapshot:
    """Latest performance reading for a target."""
    project_name: str
    requests_per_second: float = 0.0
    error_rate: float = 0.0                     # Percentage 0-100
    error_count: int = 0
    api_usage: Dict[str, float] = field(default_factory=dict)
    memory_usage_percent: float = 0.0
    cpu_usage_percent: float = 0.0
    database_query_time: float = 0.0            # Milliseconds
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def from_probe(cls, project_name: str, data: Dict[str, Any]) -> "MetricsSnapshot":
        """Build a snapshot from a metrics probe body; missing numbers become 0."""
        api_usage = data.get("apiUsage")
        return cls(
            project_name=project_name,
            requests_per_second=_number(data, "requestsPerSecond"),
            error_rate=_number(data, "errorRate"),
            error_count=int(_number(data, "errorCount")),
            api_usage=dict(api_usage) if isinstance(api_usage, dict) else {},
            memory_usage_percent=_number(data, "memoryUsagePercent"),
            cpu_usage_percent=_number(data, "cpuUsagePercent"),
            database_query_time=_number(data, "databaseQueryTime"),
            timestamp=datetime.utcnow(),
        )


@dataclass
class StatusHistoryRecord:
    """One persisted health observation."""
    project_name: str
    status: HealthStatus
    last_check: datetime
    uptime_percentage: float
    response_time_ms: float
    recorded_at: datetime
    error_message: Optional[str] = None


# =============================================================================
# DECISIONS AND ACTIONS
# =============================================================================

@dataclass
class Decision:
    """Recommendation returned by the decision oracle."""
    action: Optional[ActionType]
    confidence: float
    reasoning: str
    alternatives: List[str] = field(default_factory=list)

    @classmethod
    def fallback(cls, reason: str) -> "Decision":
        return cls(action=None, confidence=0.0, reasoning=reason, alternatives=[])


@dataclass
class ActionMetadata:
    """Context handed to the action executor."""
    project_id: str
    project_name: str
    reason: str
    triggered_by: TriggerSource = TriggerSource.SYSTEM
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ActionRequest:
    """An action type paired with its metadata."""
    action_type: ActionType
    metadata: ActionMetadata


@dataclass
class ActionRecord:
    """Persisted trace of one execution attempt."""
    project_name: str
    action_type: str
    status: ActionStatus
    triggered_by: TriggerSource
    metadata: ActionMetadata
    created_at: datetime = field(default_factory=datetime.utcnow)
    executed_at: Optional[datetime] = None
    result: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


# =============================================================================
# EVENT PAYLOADS
# =============================================================================

@dataclass
class HealthChangedPayload:
    project_name: str
    old_status: Optional[HealthStatus]
    new_status: HealthStatus
    health: HealthSnapshot


@dataclass
class StatusAlertPayload:
    """Payload for PROJECT_DOWN, PROJECT_DEGRADED and PROJECT_RECOVERED."""
    project_name: str
    severity: str
    message: str


@dataclass
class MetricsCollectedPayload:
    project_name: str
    metrics: MetricsSnapshot


@dataclass
class AnomalyPayload:
    project_name: str
    metrics: MetricsSnapshot
    anomalies: List[str]
    severity: str = "warning"


@dataclass
class DecisionPayload:
    project_name: str
    decision: Decision


@dataclass
class ActionTriggeredPayload:
    project_name: str
    request: ActionRequest
    message: str


@dataclass
class ActionOutcomePayload:
    """Payload for ACTION_EXECUTED, ACTION_COMPLETED and ACTION_FAILED."""
    action_type: ActionType
    project_name: str
    status: str
    message: str


EventPayload = Union[
    HealthChangedPayload, StatusAlertPayload, MetricsCollectedPayload,
    AnomalyPayload, DecisionPayload, ActionTriggeredPayload, ActionOutcomePayload,
]

EVENT_PAYLOAD_TYPES: Dict[EventType, Type] = {
    EventType.PROJECT_HEALTH_CHANGED: HealthChangedPayload,
    EventType.PROJECT_DOWN: StatusAlertPayload,
    EventType.PROJECT_DEGRADED: StatusAlertPayload,
    EventType.PROJECT_RECOVERED: StatusAlertPayload,
    EventType.METRICS_COLLECTED: MetricsCollectedPayload,
    EventType.ANOMALY_DETECTED: AnomalyPayload,
    EventType.ACTION_TRIGGERED: ActionTriggeredPayload,
    EventType.ACTION_COMPLETED: ActionOutcomePayload,
    EventType.ACTION_FAILED: ActionOutcomePayload,
    EventType.ACTION_EXECUTED: ActionOutcomePayload,
    EventType.AI_DECISION: DecisionPayload,
}


@dataclass(frozen=True)
class Event:
    """Immutable record of something that happened, as published on the bus."""
    type: EventType
    source: str
    payload: EventPayload
    metadata: Optional[Dict[str, Any]] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def project_name(self) -> str:
        return getattr(self.payload, "project_name", None) or "system"


# =============================================================================
# SERIALIZATION
# =============================================================================

def to_jsonable(value: Any) -> Any:
    """Convert dataclasses, enums and datetimes into JSON-compatible values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


__all__ = [
    'HealthStatus', 'EventType', 'ActionType', 'ActionStatus', 'TriggerSource',
    'Target', 'HealthSnapshot', 'MetricsSnapshot', 'StatusHistoryRecord',
    'Decision', 'ActionMetadata', 'ActionRequest', 'ActionRecord',
    'HealthChangedPayload', 'StatusAlertPayload', 'MetricsCollectedPayload',
    'AnomalyPayload', 'DecisionPayload', 'ActionTriggeredPayload',
    'ActionOutcomePayload', 'EventPayload', 'EVENT_PAYLOAD_TYPES', 'Event',
    'to_jsonable',
]
