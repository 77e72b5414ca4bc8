#!/usr/bin/env python3
"""
Orchestration Hub - Agents Module
"""

from .health_agent import HealthMonitorAgent
from .metrics_agent import MetricsAnalyzerAgent
from .remediation_agent import AutoFixerAgent

__all__ = [
    'HealthMonitorAgent',
    'MetricsAnalyzerAgent',
    'AutoFixerAgent'
]
