#!/usr/bin/env python3
"""
Orchestration Hub - Project Monitor
Polls every configured target for health and metrics on independent timers.

For each target the monitor:
1. Calls the health endpoint and keeps the latest HealthSnapshot
2. Calls the metrics endpoint and keeps the latest MetricsSnapshot
3. Writes every reading to the status store
4. Publishes PROJECT_HEALTH_CHANGED when the status differs from the cached one
5. Publishes METRICS_COLLECTED for every successful metrics reading

Checks never raise: unreachable targets are recorded as down, and store
failures are logged and skipped.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import aiohttp
import structlog

from .event_bus import EventBus
from .models import (
    EventType, HealthChangedPayload, HealthSnapshot, MetricsCollectedPayload,
    MetricsSnapshot, Target,
)
from .storage import StatusStore

logger = structlog.get_logger()

SOURCE = "ProjectMonitor"


class ProjectMonitor:
    """
    Per-target poller and sole owner of the latest-status maps.

    Other components read snapshots through get_status() / get_metrics() and
    must not mutate what they get back.
    """

    def __init__(self, targets: List[Target], event_bus: EventBus,
                 store: Optional[StatusStore] = None,
                 http_session: Optional[aiohttp.ClientSession] = None,
                 timeout_seconds: float = 5.0,
                 health_path: str = "/health",
                 metrics_path: str = "/metrics"):
        names = [t.name for t in targets]
        if len(names) != len(set(names)):
            raise ValueError("Target names must be unique")

        self.targets = list(targets)
        self.event_bus = event_bus
        self.store = store
        self.timeout_seconds = timeout_seconds
        self.health_path = health_path
        self.metrics_path = metrics_path
        self.logger = structlog.get_logger().bind(component="project_monitor")

        self.http_session = http_session
        self._owns_session = http_session is None

        self._last_status: Dict[str, HealthSnapshot] = {}
        self._last_metrics: Dict[str, MetricsSnapshot] = {}

        self._timers: Dict[str, asyncio.Task] = {}
        self._in_flight: Set[asyncio.Task] = set()
        self._running = False
        self._stopped = False

    @property
    def is_running(self) -> bool:
        return self._running

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start one health timer and one metrics timer per target."""
        if self._running:
            self.logger.info("monitor_already_running")
            return

        self.logger.info("starting_project_monitor", targets=len(self.targets))
        self._running = True
        self._stopped = False

        if self.http_session is None:
            self.http_session = aiohttp.ClientSession(
                headers={'User-Agent': 'OrchestrationHub/ProjectMonitor'}
            )
            self._owns_session = True

        for target in self.targets:
            self._timers[f"health:{target.name}"] = asyncio.create_task(
                self._run_timer(target, self.check_project_health, target.health_check_interval)
            )
            self._timers[f"metrics:{target.name}"] = asyncio.create_task(
                self._run_timer(target, self.collect_metrics, target.metrics_check_interval)
            )

    async def stop(self) -> None:
        """
        Cancel all timers. Idempotent.

        Checks already in flight are allowed to finish (their snapshots are still
        stored) but publish nothing once stop has begun.
        """
        if not self._running:
            return

        self.logger.info("stopping_project_monitor")
        self._running = False
        self._stopped = True

        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            timer.cancel()
        await asyncio.gather(*timers, return_exceptions=True)

        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

        if self._owns_session and self.http_session is not None:
            await self.http_session.close()
            self.http_session = None

    async def _run_timer(self, target: Target,
                         check: Callable[[Target], Awaitable[Any]],
                         interval: float) -> None:
        # First check fires immediately, then once per interval. Each check runs
        # as its own task so a slow target never delays the cadence.
        while self._running:
            task = asyncio.create_task(check(target))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            await asyncio.sleep(interval)

    # -------------------------------------------------------------------------
    # HEALTH CHECKS
    # -------------------------------------------------------------------------

    async def check_project_health(self, target: Target) -> HealthSnapshot:
        """Probe a target's health endpoint and record the result."""
        start_time = time.monotonic()
        url = f"{target.url.rstrip('/')}{self.health_path}"

        try:
            async with self._session().get(
                url, timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            ) as response:
                elapsed_ms = (time.monotonic() - start_time) * 1000
                if response.status < 200 or response.status >= 300:
                    health = HealthSnapshot.unreachable(
                        target.name, f"HTTP error: {response.status}", elapsed_ms
                    )
                else:
                    data = await response.json(content_type=None)
                    if not isinstance(data, dict):
                        raise ValueError("Health response is not a JSON object")
                    health = HealthSnapshot.from_probe(target.name, data, elapsed_ms)

        except asyncio.TimeoutError:
            health = HealthSnapshot.unreachable(
                target.name, "Health check timeout", self.timeout_seconds * 1000
            )
        except Exception as e:
            health = HealthSnapshot.unreachable(
                target.name, str(e) or type(e).__name__, self.timeout_seconds * 1000
            )

        await self._record_health(target, health)
        return health

    async def _record_health(self, target: Target, health: HealthSnapshot) -> None:
        previous = self._last_status.get(target.name)
        self._last_status[target.name] = health
        old_status = previous.status if previous else None

        if self.store is not None:
            try:
                await self.store.record_status_history(target.name, health)
            except Exception as e:
                self.logger.error("status_persist_failed", project=target.name, error=str(e))

        if old_status == health.status:
            return

        if health.error_message:
            self.logger.error("project_down", project=target.name, error=health.error_message)
        self.logger.info("project_status_changed",
                         project=target.name,
                         old_status=old_status.value if old_status else "unknown",
                         new_status=health.status.value)

        if self._stopped:
            return

        await self.event_bus.publish(
            EventType.PROJECT_HEALTH_CHANGED, SOURCE,
            HealthChangedPayload(
                project_name=target.name,
                old_status=old_status,
                new_status=health.status,
                health=health,
            ),
        )

    # -------------------------------------------------------------------------
    # METRICS COLLECTION
    # -------------------------------------------------------------------------

    async def collect_metrics(self, target: Target) -> Optional[MetricsSnapshot]:
        """Probe a target's metrics endpoint; returns None when the probe fails."""
        url = f"{target.url.rstrip('/')}{self.metrics_path}"

        try:
            async with self._session().get(
                url, timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            ) as response:
                if response.status < 200 or response.status >= 300:
                    self.logger.warning("metrics_http_error", project=target.name,
                                        status=response.status)
                    return None
                data = await response.json(content_type=None)
                if not isinstance(data, dict):
                    raise ValueError("Metrics response is not a JSON object")

        except asyncio.TimeoutError:
            self.logger.warning("metrics_timeout", project=target.name)
            return None
        except Exception as e:
            self.logger.warning("metrics_collection_failed", project=target.name, error=str(e))
            return None

        metrics = MetricsSnapshot.from_probe(target.name, data)
        self._last_metrics[target.name] = metrics

        if self.store is not None:
            try:
                await self.store.record_metrics(target.name, metrics)
            except Exception as e:
                self.logger.error("metrics_persist_failed", project=target.name, error=str(e))

        if not self._stopped:
            await self.event_bus.publish(
                EventType.METRICS_COLLECTED, SOURCE,
                MetricsCollectedPayload(project_name=target.name, metrics=metrics),
            )
        return metrics

    def _session(self) -> aiohttp.ClientSession:
        if self.http_session is None:
            # Direct check calls outside start() get a lazily created session
            self.http_session = aiohttp.ClientSession()
            self._owns_session = True
        return self.http_session

    # -------------------------------------------------------------------------
    # QUERY INTERFACE
    # -------------------------------------------------------------------------

    def get_status(self, project_name: Optional[str] = None
                   ) -> Union[Optional[HealthSnapshot], Dict[str, HealthSnapshot]]:
        """
        Current cached health view. Never touches the network.

        Args:
            project_name: Target name, or None for every target

        Returns:
            The snapshot for one target (None if not yet polled), or a copy of
            the whole map
        """
        if project_name is not None:
            return self._last_status.get(project_name)
        return dict(self._last_status)

    def get_project_status(self, project_name: str) -> Optional[HealthSnapshot]:
        return self._last_status.get(project_name)

    def get_metrics(self, project_name: Optional[str] = None
                    ) -> Union[Optional[MetricsSnapshot], Dict[str, MetricsSnapshot]]:
        if project_name is not None:
            return self._last_metrics.get(project_name)
        return dict(self._last_metrics)

    def get_target(self, project_name: str) -> Optional[Target]:
        for target in self.targets:
            if target.name == project_name:
                return target
        return None
