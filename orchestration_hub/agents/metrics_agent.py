#!/usr/bin/env python3
"""
Orchestration Hub - Metrics Analyzer Agent
Threshold-based anomaly detection over the metrics stream.
"""

from typing import Any, Dict, List, Optional

import structlog

from ..core.agent_framework import AgentLifecycle, AgentState
from ..core.event_bus import EventBus
from ..core.models import (
    AnomalyPayload, Event, EventType, MetricsCollectedPayload, MetricsSnapshot,
)

logger = structlog.get_logger()

DEFAULT_THRESHOLDS = {
    'cpu_percent': 80.0,
    'memory_percent': 85.0,
    'error_rate_percent': 5.0,
}


def detect_anomalies(metrics: MetricsSnapshot,
                     thresholds: Optional[Dict[str, float]] = None) -> List[str]:
    """One message per crossed threshold; a value equal to its threshold is not an anomaly."""
    limits = dict(DEFAULT_THRESHOLDS, **(thresholds or {}))
    anomalies = []

    if metrics.cpu_usage_percent > limits['cpu_percent']:
        anomalies.append(f"High CPU usage: {metrics.cpu_usage_percent:.1f}%")

    if metrics.memory_usage_percent > limits['memory_percent']:
        anomalies.append(f"High Memory usage: {metrics.memory_usage_percent:.1f}%")

    if metrics.error_rate > limits['error_rate_percent']:
        anomalies.append(f"High Error rate: {metrics.error_rate:.1f}%")

    return anomalies


class MetricsAnalyzerAgent:
    """Subscribes to METRICS_COLLECTED and publishes ANOMALY_DETECTED."""

    def __init__(self, event_bus: EventBus, thresholds: Optional[Dict[str, float]] = None,
                 name: str = "MetricsAnalyzerAgent"):
        self.name = name
        self.thresholds = dict(DEFAULT_THRESHOLDS, **(thresholds or {}))
        self.lifecycle = AgentLifecycle(name, event_bus, self.on_start, self.on_stop)
        self.logger = self.lifecycle.logger
        self.anomalies_detected = 0

    @property
    def state(self) -> AgentState:
        return self.lifecycle.state

    async def start(self) -> None:
        await self.lifecycle.start()

    async def stop(self) -> None:
        await self.lifecycle.stop()

    async def on_start(self) -> None:
        self.lifecycle.subscribe(EventType.METRICS_COLLECTED, self.analyze_metrics)
        self.logger.info("analyzing_metrics_stream", thresholds=self.thresholds)

    async def on_stop(self) -> None:
        pass

    def get_status(self) -> Dict[str, Any]:
        status = self.lifecycle.get_status()
        status["anomalies_detected"] = self.anomalies_detected
        return status

    async def analyze_metrics(self, event: Event) -> None:
        payload: MetricsCollectedPayload = event.payload
        anomalies = detect_anomalies(payload.metrics, self.thresholds)
        if not anomalies:
            return

        self.anomalies_detected += 1
        self.logger.warning("anomalies_detected", project=payload.project_name,
                            anomalies=anomalies)
        await self.lifecycle.publish(EventType.ANOMALY_DETECTED, AnomalyPayload(
            project_name=payload.project_name,
            metrics=payload.metrics,
            anomalies=anomalies,
            severity="warning",
        ))
