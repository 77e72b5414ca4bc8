#!/usr/bin/env python3
"""
Orchestration Hub - REST API Server
Read-only status surface over the monitor and store, a manual action trigger,
and the WebSocket live feed.
"""

import asyncio
import json
import time
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from ..core.action_executor import ActionExecutor
from ..core.agent_framework import AgentOrchestrator
from ..core.errors import OrchestrationError
from ..core.event_bus import EventBus
from ..core.models import (
    ActionMetadata, ActionRequest, ActionTriggeredPayload, ActionType,
    EventType, TriggerSource, to_jsonable,
)
from ..core.poller import ProjectMonitor
from ..core.storage import StatusStore
from .live_feed import LiveFeed

import structlog
logger = structlog.get_logger()

SOURCE = "RestAPI"


def envelope(data: Any = None, error: Optional[str] = None) -> Dict[str, Any]:
    """Standard response body: {success, data?, error?, timestamp}."""
    body: Dict[str, Any] = {"success": error is None}
    if error is None:
        body["data"] = to_jsonable(data)
    else:
        body["error"] = error
    body["timestamp"] = datetime.utcnow().isoformat()
    return body


def _log_sender_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.warning("live_feed_send_failed", error=str(task.exception()))


class RestAPIServer:
    """
    REST API server for the Orchestration Hub.

    Provides endpoints for:
    - Hub liveness and readiness
    - Current project health and metrics
    - Status history and the audit event log
    - Agent status
    - Manually triggered remediation actions
    - A WebSocket live status feed
    """

    def __init__(self, monitor: ProjectMonitor,
                 store: StatusStore,
                 event_bus: EventBus,
                 executor: ActionExecutor,
                 orchestrator: AgentOrchestrator,
                 config: Optional[Dict[str, Any]] = None,
                 live_feed: Optional[LiveFeed] = None):
        """
        Initialize REST API server.

        Args:
            monitor: Project monitor owning the latest status maps
            store: Status store for history, metrics and audit queries
            event_bus: Bus used to announce manually triggered actions
            executor: Action executor for manual actions
            orchestrator: Agent orchestrator, for agent status
            config: API configuration (host, port, debug, cors)
            live_feed: WebSocket fan-out; built from bus and monitor if omitted
        """
        self.monitor = monitor
        self.store = store
        self.event_bus = event_bus
        self.executor = executor
        self.orchestrator = orchestrator
        self.config = config or {}
        self.live_feed = live_feed or LiveFeed(event_bus, monitor)

        self.host = self.config.get('host', '0.0.0.0')
        self.port = self.config.get('port', 3001)
        self.debug = self.config.get('debug', False)
        self.start_time = time.time()

        self.app = FastAPI(
            title="Orchestration Hub API",
            description="Status, history and remediation API for the Orchestration Hub",
            version="1.0.0",
            docs_url="/docs" if self.debug else None,
            redoc_url="/redoc" if self.debug else None
        )

        self._setup_middleware()
        self._setup_routes()

        self.server: Optional[uvicorn.Server] = None

        logger.info("rest_api_server_initialized", host=self.host, port=self.port)

    async def start(self) -> None:
        """Serve until stop() is called."""
        logger.info("starting_rest_api_server", host=self.host, port=self.port)

        config = uvicorn.Config(
            app=self.app,
            host=self.host,
            port=self.port,
            log_level="info" if self.debug else "warning",
            access_log=self.debug
        )

        self.server = uvicorn.Server(config)
        try:
            await self.server.serve()
        except Exception as e:
            logger.error("rest_api_server_error", error=str(e))
            raise

    async def stop(self) -> None:
        """Ask uvicorn to exit and disconnect live feed clients."""
        self.live_feed.close_all()
        if self.server:
            logger.info("stopping_rest_api_server")
            self.server.should_exit = True

    def _setup_middleware(self) -> None:
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.get('cors', {}).get('origins', ["*"]),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def log_requests(request: Request, call_next):
            start_time = time.time()
            response = await call_next(request)
            process_time = time.time() - start_time

            logger.info("api_request",
                        method=request.method,
                        path=request.url.path,
                        status_code=response.status_code,
                        process_time=f"{process_time:.3f}s")

            return response

    def _require_target(self, project_name: str) -> None:
        if self.monitor.get_target(project_name) is None:
            raise OrchestrationError("PROJECT_NOT_FOUND",
                                     f"Unknown project: {project_name}", 404)

    def _setup_routes(self) -> None:
        """Setup API routes."""

        # Hub probes
        @self.app.get("/health")
        async def health():
            return {
                "status": "healthy",
                "uptime": time.time() - self.start_time,
                "timestamp": datetime.utcnow().isoformat(),
            }

        @self.app.get("/ready")
        async def ready():
            try:
                reachable = await self.store.ping()
            except Exception as e:
                logger.warning("readiness_check_failed", error=str(e))
                reachable = False
            if not reachable:
                return JSONResponse(status_code=503,
                                    content={"ready": False, "error": "Store not ready"})
            return {"ready": True}

        # Project status
        @self.app.get("/api/projects/status")
        async def get_projects_status():
            return envelope(self.monitor.get_status())

        @self.app.get("/api/projects/{project_name}/status")
        async def get_project_status(project_name: str):
            self._require_target(project_name)
            health = self.monitor.get_project_status(project_name)
            if health is None:
                raise OrchestrationError("STATUS_NOT_AVAILABLE",
                                         f"No status recorded yet for project: {project_name}",
                                         404)
            return envelope(health)

        @self.app.get("/api/metrics/{project_name}")
        async def get_project_metrics(project_name: str):
            metrics = await self.store.get_latest_metrics(project_name)
            if metrics is None:
                metrics = self.monitor.get_metrics(project_name)
            if metrics is None:
                raise OrchestrationError("METRICS_NOT_FOUND",
                                         f"No metrics found for project: {project_name}", 404)
            return envelope(metrics)

        @self.app.get("/api/history/{project_name}")
        async def get_project_history(project_name: str, hours: float = 24):
            if hours <= 0:
                raise OrchestrationError("INVALID_QUERY", "hours must be positive", 400)
            history = await self.store.get_status_history(project_name, hours)
            return envelope(history)

        # Audit log and agents
        @self.app.get("/api/events")
        async def get_events(limit: int = 100, project: Optional[str] = None):
            if limit < 1 or limit > 1000:
                raise OrchestrationError("INVALID_QUERY", "limit must be between 1 and 1000", 400)
            events = await self.store.get_recent_events(limit, project)
            return envelope(events)

        @self.app.get("/api/agents")
        async def get_agents():
            return envelope(self.orchestrator.get_system_status())

        # Manual remediation
        @self.app.post("/api/actions")
        async def trigger_action(request: Request):
            try:
                body = await request.json()
            except json.JSONDecodeError:
                raise OrchestrationError("INVALID_BODY", "Request body must be JSON", 400)
            if not isinstance(body, dict):
                raise OrchestrationError("INVALID_BODY", "Request body must be a JSON object", 400)

            project_name = body.get("project_name")
            if not project_name:
                raise OrchestrationError("INVALID_BODY", "project_name is required", 400)
            self._require_target(project_name)

            try:
                action_type = ActionType(body.get("action"))
            except ValueError:
                raise OrchestrationError("INVALID_ACTION",
                                         f"Unknown action: {body.get('action')}", 400)

            params = body.get("params") or {}
            metadata = ActionMetadata(
                project_id=project_name,
                project_name=project_name,
                reason=body.get("reason") or "Manual action",
                triggered_by=TriggerSource.HUMAN,
                params=params if isinstance(params, dict) else {},
            )
            await self.event_bus.publish(EventType.ACTION_TRIGGERED, SOURCE,
                                         ActionTriggeredPayload(
                                             project_name=project_name,
                                             request=ActionRequest(action_type, metadata),
                                             message=f"Manual {action_type.value} requested "
                                                     f"for {project_name}",
                                         ))

            executed = await self.executor.execute_action(action_type, metadata)
            return envelope({
                "action_type": action_type.value,
                "project_name": project_name,
                "executed": executed,
            })

        # Live feed
        @self.app.websocket("/ws/status")
        async def status_feed(websocket: WebSocket):
            await websocket.accept()
            connection = self.live_feed.connect()

            async def send_loop():
                while True:
                    message = await connection.next_message()
                    await websocket.send_json(message)

            sender = asyncio.create_task(send_loop())
            sender.add_done_callback(_log_sender_failure)
            # Receive in the endpoint task itself; only the sender is a child task
            try:
                while True:
                    await websocket.receive_text()
            except WebSocketDisconnect:
                pass
            finally:
                sender.cancel()
                connection.close()
                logger.info("live_feed_client_disconnected")

        # Error handlers
        @self.app.exception_handler(OrchestrationError)
        async def orchestration_error_handler(request: Request, exc: OrchestrationError):
            return JSONResponse(status_code=exc.status_code, content=envelope(error=exc.message))

        @self.app.exception_handler(404)
        async def not_found_handler(request: Request, exc: Exception):
            return JSONResponse(status_code=404, content=envelope(error="Resource not found"))
