#!/usr/bin/env python3
"""
Orchestration Hub - Main Application Entry Point
Composition root: loads configuration, wires the runtime and manages its lifecycle.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from . import __version__
from .agents import AutoFixerAgent, HealthMonitorAgent, MetricsAnalyzerAgent
from .api.rest_server import RestAPIServer
from .config.config_manager import ConfigManager
from .core.action_executor import ActionExecutor
from .core.agent_framework import AgentOrchestrator
from .core.decision_oracle import DecisionOracle
from .core.errors import ConfigurationError
from .core.event_bus import EventBus
from .core.poller import ProjectMonitor
from .core.storage import StatusStore, create_store

_SHARED_PROCESSORS = [
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]


def configure_logging(log_level: str = "INFO") -> None:
    """JSON lines on stdout; a human-readable console renderer at DEBUG."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger().setLevel(level)

    renderer = (structlog.dev.ConsoleRenderer() if level == logging.DEBUG
                else structlog.processors.JSONRenderer())
    structlog.configure(
        processors=_SHARED_PROCESSORS + [renderer],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


class OrchestrationHub:
    """
    Main application class for the Orchestration Hub.
    Builds every component from configuration and runs them until stopped.
    """

    def __init__(self, config_path: Optional[str] = None, log_level: Optional[str] = None):
        """
        Initialize the Orchestration Hub application.

        Args:
            config_path: Path to configuration file; None uses defaults and
                environment variables only
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR); None takes
                global.log_level from the configuration
        """
        self.config_path = Path(config_path) if config_path else None
        self.log_level = log_level

        self.config_manager: Optional[ConfigManager] = None
        self.store: Optional[StatusStore] = None
        self.event_bus: Optional[EventBus] = None
        self.monitor: Optional[ProjectMonitor] = None
        self.executor: Optional[ActionExecutor] = None
        self.oracle: Optional[DecisionOracle] = None
        self.orchestrator: Optional[AgentOrchestrator] = None
        self.api_server: Optional[RestAPIServer] = None

        self.running = False
        self._shutdown = asyncio.Event()
        self._api_task: Optional[asyncio.Task] = None

        logger.info("orchestration_hub_initializing",
                    config_path=str(self.config_path) if self.config_path else None,
                    log_level=log_level)

    async def initialize(self) -> bool:
        """
        Load configuration and build all components. Nothing is started.

        Returns:
            True if initialization successful, False otherwise
        """
        self.config_manager = ConfigManager(self.config_path)
        if not await self.config_manager.load_config():
            logger.error("configuration_load_failed")
            return False

        config = self.config_manager.get_config()
        if self.log_level is None:
            self.log_level = str(config.get('global', {}).get('log_level', 'INFO')).upper()
            configure_logging(self.log_level)

        try:
            targets = self.config_manager.get_targets()
        except ConfigurationError as e:
            logger.error("configuration_invalid", error=str(e))
            return False

        try:
            self.store = create_store(config.get('storage', {}))
        except ValueError as e:
            logger.error("store_creation_failed", error=str(e))
            return False

        self.event_bus = EventBus(store=self.store, debug=self.log_level.upper() == "DEBUG")

        monitor_config = config.get('monitor', {})
        self.monitor = ProjectMonitor(
            targets, self.event_bus, store=self.store,
            timeout_seconds=monitor_config.get('timeout_seconds', 5),
            health_path=monitor_config.get('health_path', '/health'),
            metrics_path=monitor_config.get('metrics_path', '/metrics'),
        )

        actions_config = config.get('actions', {})
        self.executor = ActionExecutor(
            self.event_bus, store=self.store, targets=targets,
            simulate=actions_config.get('simulate', True),
            execution_delay=actions_config.get('execution_delay_seconds', 2),
            control_path=actions_config.get('control_path', '/orchestration/actions'),
            timeout_seconds=actions_config.get('timeout_seconds', 10),
        )

        ai_config = config.get('ai', {})
        self.oracle = DecisionOracle(
            api_key=ai_config.get('api_key') or None,
            model=ai_config.get('model', 'claude-3-5-sonnet-latest'),
            max_tokens=ai_config.get('max_tokens', 1024),
            timeout_seconds=ai_config.get('timeout_seconds', 30),
        )

        # Consumers register first so they are running before the monitor publishes
        self.orchestrator = AgentOrchestrator()
        self.orchestrator.register_agent(HealthMonitorAgent(self.event_bus))
        self.orchestrator.register_agent(
            MetricsAnalyzerAgent(self.event_bus, thresholds=config.get('thresholds'))
        )
        self.orchestrator.register_agent(
            AutoFixerAgent(self.event_bus, self.oracle, self.executor)
        )

        api_config = config.get('api', {})
        if api_config.get('enabled', True):
            self.api_server = RestAPIServer(
                monitor=self.monitor,
                store=self.store,
                event_bus=self.event_bus,
                executor=self.executor,
                orchestrator=self.orchestrator,
                config=api_config,
            )

        logger.info("orchestration_hub_initialized",
                    targets=[t.name for t in targets],
                    agents=len(self.orchestrator.agents),
                    api_enabled=self.api_server is not None)
        return True

    async def start(self) -> None:
        """Start everything and block until stop() is requested."""
        if self.running:
            logger.warning("application_already_running")
            return

        logger.info("starting_orchestration_hub")
        self.running = True

        await self.store.initialize()
        await self.orchestrator.start_all()
        await self.monitor.start()

        if self.api_server:
            self._api_task = asyncio.create_task(self.api_server.start())

        logger.info("orchestration_hub_started")
        await self._shutdown.wait()

    async def stop(self) -> None:
        """Stop the Orchestration Hub gracefully. Idempotent."""
        if not self.running:
            return

        logger.info("stopping_orchestration_hub")
        self.running = False

        if self.api_server:
            await self.api_server.stop()
        if self._api_task:
            await asyncio.gather(self._api_task, return_exceptions=True)

        await self.monitor.stop()
        await self.orchestrator.stop_all()
        await self.executor.close()
        await self.event_bus.close()
        await self.store.close()

        self._shutdown.set()
        logger.info("orchestration_hub_stopped")

    def request_shutdown(self) -> None:
        logger.info("shutdown_signal_received")
        if self.running:
            asyncio.create_task(self.stop())
        else:
            self._shutdown.set()

    def get_status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {
            'running': self.running,
            'components': {
                'store': self.store is not None,
                'event_bus': self.event_bus is not None,
                'monitor': self.monitor is not None,
                'orchestrator': self.orchestrator is not None,
                'api_server': self.api_server is not None,
            }
        }
        if self.orchestrator:
            status['agents'] = self.orchestrator.get_system_status()
        return status


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="orchestration-hub",
        description="Orchestration Hub - event-driven monitoring and auto-remediation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --config hub.yaml
  %(prog)s --config hub.yaml --log-level DEBUG
  %(prog)s --config hub.yaml --validate-only
  PROJECTS=api:http://localhost:3000 %(prog)s
        """
    )

    parser.add_argument(
        '--config', '-c',
        default=None,
        help='Path to configuration file (default: environment variables only)'
    )

    parser.add_argument(
        '--log-level', '-l',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=None,
        help='Set logging level (default: global.log_level from the configuration)'
    )

    parser.add_argument(
        '--validate-only',
        action='store_true',
        help='Validate configuration and exit'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'Orchestration Hub v{__version__}'
    )
    return parser


async def main(argv=None) -> int:
    """Main entry point for the Orchestration Hub application."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level or "INFO")

    app = OrchestrationHub(config_path=args.config, log_level=args.log_level)

    if args.validate_only:
        if await app.initialize():
            logger.info("configuration_validation_successful")
            return 0
        logger.error("configuration_validation_failed")
        return 1

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, app.request_shutdown)

    if not await app.initialize():
        logger.error("orchestration_hub_initialization_failed")
        return 1

    try:
        await app.start()
    except Exception as e:
        logger.error("unexpected_error", error=str(e), exc_info=True)
        return 1
    finally:
        await app.stop()

    return 0


def cli_main():
    """CLI entry point that handles async main function."""
    return asyncio.run(main())


if __name__ == '__main__':
    sys.exit(cli_main())
