#!/usr/bin/env python3
"""
Orchestration Hub - Status Storage
Append-only persistence sink for health history, metrics, audit events and
action records, plus the read-only query surface used by the API layer.

Two backends are provided:
1. InMemoryStatusStore - bounded in-process tables, the default
2. JsonlStatusStore    - one JSON-lines file per table, written with aiofiles
"""

import asyncio
import json
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Union

import aiofiles
import structlog

from .models import (
    ActionRecord, Event, EventType, HealthSnapshot, HealthStatus,
    MetricsSnapshot, StatusHistoryRecord, to_jsonable,
)

logger = structlog.get_logger()


# =============================================================================
# AUDIT RECORD DERIVATION
# =============================================================================

def event_description(event: Event) -> str:
    """Human readable description stored alongside an audited event."""
    message = getattr(event.payload, "message", None)
    if message:
        return message
    if event.type == EventType.METRICS_COLLECTED:
        return "Metrics collected"
    return f"Event {event.type.value} from {event.source}"


def event_severity(event: Event) -> str:
    """Explicit payload severity, else derived from the event type name."""
    severity = getattr(event.payload, "severity", None)
    if severity:
        return severity
    type_name = event.type.value
    if "down" in type_name or "failed" in type_name:
        return "critical"
    if "degraded" in type_name or "anomaly" in type_name:
        return "warning"
    return "info"


def audit_record(event: Event) -> Dict[str, Any]:
    """Row written to the audit sink for one published event."""
    return {
        "project_name": event.project_name,
        "event_type": event.type.value,
        "description": event_description(event),
        "severity": event_severity(event),
        "metadata": to_jsonable(event),
        "occurred_at": event.timestamp.isoformat(),
    }


def _status_row(project_name: str, health: HealthSnapshot) -> Dict[str, Any]:
    return {
        "project_name": project_name,
        "status": health.status.value,
        "last_check": health.last_check.isoformat(),
        "uptime_percentage": health.uptime,
        "response_time_ms": health.response_time,
        "error_message": health.error_message,
        "recorded_at": datetime.utcnow().isoformat(),
    }


def _metrics_row(project_name: str, metrics: MetricsSnapshot) -> Dict[str, Any]:
    row = to_jsonable(metrics)
    row["project_name"] = project_name
    row["recorded_at"] = datetime.utcnow().isoformat()
    return row


def _row_to_status(row: Dict[str, Any]) -> StatusHistoryRecord:
    return StatusHistoryRecord(
        project_name=row["project_name"],
        status=HealthStatus(row["status"]),
        last_check=datetime.fromisoformat(row["last_check"]),
        uptime_percentage=row["uptime_percentage"],
        response_time_ms=row["response_time_ms"],
        recorded_at=datetime.fromisoformat(row["recorded_at"]),
        error_message=row.get("error_message"),
    )


def _row_to_metrics(row: Dict[str, Any]) -> MetricsSnapshot:
    return MetricsSnapshot(
        project_name=row["project_name"],
        requests_per_second=row.get("requests_per_second", 0.0),
        error_rate=row.get("error_rate", 0.0),
        error_count=row.get("error_count", 0),
        api_usage=row.get("api_usage") or {},
        memory_usage_percent=row.get("memory_usage_percent", 0.0),
        cpu_usage_percent=row.get("cpu_usage_percent", 0.0),
        database_query_time=row.get("database_query_time", 0.0),
        timestamp=datetime.fromisoformat(row["recorded_at"]),
    )


# =============================================================================
# STORE INTERFACE
# =============================================================================

class StatusStore(ABC):
    """
    Persistence sink and status query interface.

    Writers are the poller (health/metrics), the event bus (audit events) and
    the action executor (action records). Readers are the API layer.
    Callers on the hot path treat every write as fallible and never let a
    failure here stop monitoring.
    """

    async def initialize(self) -> None:
        """Prepare the backend; default is a no-op."""

    async def close(self) -> None:
        """Release backend resources; default is a no-op."""

    async def ping(self) -> bool:
        """Whether the backend is reachable."""
        return True

    # Writes -------------------------------------------------------------

    async def record_status_history(self, project_name: str, health: HealthSnapshot) -> None:
        await self._append("status_history", _status_row(project_name, health))

    async def record_metrics(self, project_name: str, metrics: MetricsSnapshot) -> None:
        await self._append("metrics", _metrics_row(project_name, metrics))

    async def record_event(self, event: Event) -> None:
        await self._append("events", audit_record(event))

    async def record_action(self, record: ActionRecord) -> None:
        await self._append("actions", to_jsonable(record))

    # Reads --------------------------------------------------------------

    async def get_latest_status(self, project_name: str) -> Optional[StatusHistoryRecord]:
        rows = [r for r in await self._rows("status_history") if r["project_name"] == project_name]
        return _row_to_status(rows[-1]) if rows else None

    async def get_status_history(self, project_name: str,
                                 hours: float = 24) -> List[StatusHistoryRecord]:
        """Health observations for a target recorded within the last `hours`, oldest first."""
        threshold = datetime.utcnow() - timedelta(hours=hours)
        records = []
        for row in await self._rows("status_history"):
            if row["project_name"] != project_name:
                continue
            record = _row_to_status(row)
            if record.recorded_at > threshold:
                records.append(record)
        return records

    async def get_latest_metrics_for_all(self) -> Dict[str, MetricsSnapshot]:
        latest: Dict[str, MetricsSnapshot] = {}
        for row in reversed(await self._rows("metrics")):
            if row["project_name"] not in latest:
                latest[row["project_name"]] = _row_to_metrics(row)
        return latest

    async def get_latest_metrics(self, project_name: str) -> Optional[MetricsSnapshot]:
        return (await self.get_latest_metrics_for_all()).get(project_name)

    async def get_recent_events(self, limit: int = 100,
                                project_name: Optional[str] = None) -> List[Dict[str, Any]]:
        """Most recent audit rows, newest first."""
        rows = await self._rows("events")
        if project_name:
            rows = [r for r in rows if r["project_name"] == project_name]
        return list(reversed(rows))[:limit]

    async def get_recent_actions(self, limit: int = 100) -> List[Dict[str, Any]]:
        return list(reversed(await self._rows("actions")))[:limit]

    # Backend primitives -------------------------------------------------

    @abstractmethod
    async def _append(self, table: str, row: Dict[str, Any]) -> None:
        """Append one row to a table."""

    @abstractmethod
    async def _rows(self, table: str) -> List[Dict[str, Any]]:
        """All rows of a table in insertion order."""


class InMemoryStatusStore(StatusStore):
    """Bounded in-process tables. Oldest rows are dropped once max_rows is reached."""

    TABLES = ("status_history", "metrics", "events", "actions")

    def __init__(self, max_rows: int = 10000):
        self.max_rows = max_rows
        self._tables: Dict[str, Deque[Dict[str, Any]]] = {
            table: deque(maxlen=max_rows) for table in self.TABLES
        }

    async def _append(self, table: str, row: Dict[str, Any]) -> None:
        self._tables[table].append(row)

    async def _rows(self, table: str) -> List[Dict[str, Any]]:
        return list(self._tables[table])


class JsonlStatusStore(StatusStore):
    """
    File-backed store: <data_directory>/<table>.jsonl, one JSON object per line.

    Appends for the same table are serialized with a per-table lock so
    concurrent writers never interleave partial lines.
    """

    def __init__(self, data_directory: Union[str, Path]):
        self.data_dir = Path(data_directory)
        self._locks: Dict[str, asyncio.Lock] = {}

    async def initialize(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        logger.info("jsonl_store_initialized", data_directory=str(self.data_dir))

    async def ping(self) -> bool:
        return self.data_dir.is_dir()

    def _path(self, table: str) -> Path:
        return self.data_dir / f"{table}.jsonl"

    async def _append(self, table: str, row: Dict[str, Any]) -> None:
        lock = self._locks.setdefault(table, asyncio.Lock())
        async with lock:
            async with aiofiles.open(self._path(table), 'a') as f:
                await f.write(json.dumps(row, default=str) + "\n")

    async def _rows(self, table: str) -> List[Dict[str, Any]]:
        path = self._path(table)
        if not path.exists():
            return []
        rows = []
        async with aiofiles.open(path, 'r') as f:
            async for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    rows.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("jsonl_store_corrupt_line", table=table)
        return rows


def create_store(config: Dict[str, Any]) -> StatusStore:
    """Build the configured store backend ('memory' or 'jsonl')."""
    backend = config.get('backend', 'memory')
    if backend == 'jsonl':
        return JsonlStatusStore(config.get('data_directory', './data'))
    if backend == 'memory':
        return InMemoryStatusStore(config.get('max_rows', 10000))
    raise ValueError(f"Unknown storage backend: {backend}")
