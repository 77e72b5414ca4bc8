#!/usr/bin/env python3
"""
Orchestration Hub - Decision Oracle
Asks Claude which remediation action fits a set of anomalies.

The oracle is a black box with one guarantee: analyze_situation() always
returns a Decision. Missing credentials, transport errors and malformed
responses all degrade to the safe default (no action, zero confidence).
"""

import json
import re
from typing import Any, List, Optional

import anthropic
import structlog

from .models import ActionType, Decision, MetricsSnapshot

logger = structlog.get_logger()

DEFAULT_MODEL = "claude-3-5-sonnet-latest"

SYSTEM_PROMPT = (
    "You are an expert Site Reliability Engineer (SRE) managing a critical system. "
    "Analyze the provided system metrics and anomalies. "
    "Recommend the single best remediation action from the available tools. "
    "Your response must be valid JSON in the specified format."
)

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


class DecisionOracle:
    """Thin wrapper over the Anthropic messages API."""

    def __init__(self, api_key: Optional[str] = None, model: str = DEFAULT_MODEL,
                 max_tokens: int = 1024, timeout_seconds: float = 30.0,
                 client: Optional[Any] = None):
        """
        Args:
            api_key: Anthropic API key; without it (and without a client) every
                call returns the fallback decision
            model: Model name
            max_tokens: Response token budget
            timeout_seconds: Request timeout
            client: Pre-built async client exposing messages.create()
        """
        self.model = model
        self.max_tokens = max_tokens
        self.logger = structlog.get_logger().bind(component="decision_oracle")

        if client is not None:
            self.client = client
        elif api_key:
            self.client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout_seconds)
        else:
            self.logger.warning("anthropic_api_key_missing",
                                message="AI decisions disabled, falling back to no action")
            self.client = None

    async def analyze_situation(self, project_name: str, anomalies: List[str],
                                metrics: MetricsSnapshot) -> Decision:
        """Return the recommended action for the given anomalies."""
        if self.client is None:
            return Decision.fallback("AI Analysis failed due to error: no API key configured")

        self.logger.info("requesting_decision", project=project_name, anomalies=len(anomalies))
        try:
            message = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user",
                           "content": build_prompt(project_name, anomalies, metrics)}],
            )
            decision = parse_decision(_response_text(message))
        except Exception as e:
            self.logger.error("decision_analysis_failed", project=project_name, error=str(e))
            return Decision.fallback(f"AI Analysis failed due to error: {e}")

        self.logger.info("decision_received",
                         project=project_name,
                         action=decision.action.value if decision.action else None,
                         confidence=decision.confidence)
        return decision


def _response_text(message: Any) -> str:
    for block in getattr(message, "content", None) or []:
        if getattr(block, "type", None) == "text":
            return block.text
    return ""


def parse_decision(text: str) -> Decision:
    """
    Extract a Decision from model output.

    Raises:
        ValueError: No JSON object, unknown action or non-numeric confidence
    """
    match = _JSON_BLOCK.search(text or "")
    if not match:
        raise ValueError("Could not parse JSON from model response")

    data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("Decision must be a JSON object")

    raw_action = data.get("action")
    action = ActionType(raw_action) if raw_action else None

    confidence = float(data.get("confidence", 0))
    confidence = min(1.0, max(0.0, confidence))

    alternatives = data.get("alternatives") or []
    if not isinstance(alternatives, list):
        alternatives = [alternatives]

    return Decision(
        action=action,
        confidence=confidence,
        reasoning=str(data.get("reasoning", "")),
        alternatives=[str(a) for a in alternatives],
    )


def build_prompt(project_name: str, anomalies: List[str], metrics: MetricsSnapshot) -> str:
    anomaly_lines = "\n".join(f"- {a}" for a in anomalies)
    return f"""
Project: {project_name}
Status: ANOMALY DETECTED

Current Anomalies:
{anomaly_lines}

Detailed Metrics:
- CPU Usage: {metrics.cpu_usage_percent:.1f}%
- Memory Usage: {metrics.memory_usage_percent:.1f}%
- Error Rate: {metrics.error_rate:.2f}%
- Requests/Sec: {metrics.requests_per_second:.1f}

Available Actions:
1. "restart_service" (Use for high error rates, unresponsiveness, or fatal crashes)
2. "clear_cache" (Use for high memory usage)
3. "pause_service" (Use for extreme CPU load to prevent cascade failure)
4. "escalate_to_human" (Use if unsure or if multiple metrics are weird/conflicting)
5. null (Do nothing if it looks like a temporary spike)

Respond with this JSON structure ONLY:
{{
  "action": "restart_service" | "clear_cache" | "pause_service" | "escalate_to_human" | null,
  "confidence": number,
  "reasoning": "string explanation of why you chose this action",
  "alternatives": ["string", "string"]
}}
"""
