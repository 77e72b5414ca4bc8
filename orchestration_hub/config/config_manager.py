#!/usr/bin/env python3
"""
Orchestration Hub - Configuration Management
YAML configuration loading, environment substitution, validation and target
parsing.
"""

import json
import os
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import structlog
import yaml

from ..core.errors import ConfigurationError
from ..core.models import Target

logger = structlog.get_logger()

DEFAULT_PROJECTS = (
    "email-blast:http://email-blast:3000,"
    "chatbot:http://chatbot:3000,"
    "social-media:http://social-media:3000"
)


@dataclass
class ConfigValidationError:
    """Represents a configuration validation error."""
    path: str                    # Configuration path where error occurred
    message: str                 # Error message
    severity: str = "error"      # error, warning, info
    suggestion: Optional[str] = None  # Suggested fix


def _coerce_scalar(text: str) -> Any:
    """Numbers and booleans from an environment substitution; anything else stays text."""
    try:
        value = yaml.safe_load(text)
    except yaml.YAMLError:
        return text
    if isinstance(value, bool) and text.strip().lower() not in ("true", "false"):
        return text
    if isinstance(value, (bool, int, float)):
        return value
    return text


def parse_projects(spec: str, health_interval: float = 10.0,
                   metrics_interval: float = 30.0) -> List[Dict[str, Any]]:
    """
    Parse the PROJECTS shorthand "name:url,name:url" into target dicts.

    Raises:
        ConfigurationError: If an entry is not of the form name:url
    """
    targets = []
    for project_def in spec.split(','):
        project_def = project_def.strip()
        if not project_def:
            continue
        name, _, url = project_def.partition(':')
        if not name.strip() or not url.strip():
            raise ConfigurationError(
                f"Invalid project definition: {project_def}. Expected format: name:url"
            )
        targets.append({
            'name': name.strip(),
            'url': url.strip(),
            'critical': True,
            'health_check_interval': health_interval,
            'metrics_check_interval': metrics_interval,
        })
    return targets


class ConfigManager:
    """
    Configuration management for the Orchestration Hub.

    Features:
    - YAML configuration loading with ${VAR} / ${VAR:default} substitution
    - Environment-specific override file (<ORCHESTRATION_ENV>.yaml beside the main file)
    - Default value injection and validation with detailed error reporting
    - PROJECTS environment variable fallback when no targets are configured
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to primary configuration file; None runs on
                defaults plus environment variables only
        """
        self.config_path = Path(config_path) if config_path else None
        self.config: Dict[str, Any] = {}
        self.validation_errors: List[ConfigValidationError] = []
        self.last_modified: Optional[datetime] = None
        self.environment = os.getenv('ORCHESTRATION_ENV', 'development')

        logger.info("config_manager_initialized",
                    config_path=str(self.config_path) if self.config_path else None,
                    environment=self.environment)

    async def load_config(self) -> bool:
        """
        Load configuration from file with validation.

        Returns:
            True if loading successful, False otherwise
        """
        try:
            raw_config: Dict[str, Any] = {}
            if self.config_path is not None:
                logger.info("loading_configuration", config_path=str(self.config_path))

                if not self.config_path.exists():
                    logger.error("configuration_file_not_found", path=str(self.config_path))
                    return False

                with open(self.config_path, 'r') as f:
                    raw_config = yaml.safe_load(f)

                if not isinstance(raw_config, dict):
                    logger.error("configuration_file_empty_or_invalid")
                    return False

            self.config = self._substitute_environment_variables(raw_config)

            await self._load_environment_overrides()
            self._apply_defaults()
            self._apply_project_fallback()

            if not await self._validate_config():
                logger.error("configuration_validation_failed",
                             errors=[e.message for e in self.validation_errors
                                     if e.severity == 'error'])
                return False

            for warning in self.validation_errors:
                logger.warning("configuration_warning", path=warning.path,
                               message=warning.message)

            if self.config_path is not None:
                self.last_modified = datetime.fromtimestamp(self.config_path.stat().st_mtime)

            logger.info("configuration_loaded",
                        sections=list(self.config.keys()),
                        targets=len(self.config.get('targets', [])))
            return True

        except yaml.YAMLError as e:
            logger.error("yaml_parsing_error", error=str(e))
            return False
        except ConfigurationError as e:
            logger.error("configuration_error", error=str(e))
            return False

    def get_config(self) -> Dict[str, Any]:
        return self.config.copy()

    def get_section(self, section: str, default: Any = None) -> Any:
        """
        Get a specific configuration section.

        Args:
            section: Section name (supports dot notation like 'global.log_level')
            default: Default value if section not found
        """
        return self._get_nested_value(self.config, section, default)

    def get_targets(self) -> List[Target]:
        """
        Build the immutable target list.

        Raises:
            ConfigurationError: If no targets are defined or one is malformed
        """
        raw_targets = self.config.get('targets') or []
        if not raw_targets:
            raise ConfigurationError("No projects configured. Set targets or PROJECTS.")

        targets = []
        for entry in raw_targets:
            try:
                targets.append(Target(
                    name=str(entry['name']),
                    url=str(entry['url']).rstrip('/'),
                    critical=bool(entry.get('critical', True)),
                    health_check_interval=float(entry.get('health_check_interval', 10)),
                    metrics_check_interval=float(entry.get('metrics_check_interval', 30)),
                    description=entry.get('description'),
                ))
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid target definition {entry!r}: {e}") from e
        return targets

    def export_config(self, output_path: Path, format: str = 'yaml',
                      include_sensitive: bool = False) -> bool:
        """Write the current configuration to disk, masking secrets by default."""
        try:
            config_to_export = self.config.copy()
            if not include_sensitive:
                config_to_export = self._mask_sensitive_values(config_to_export)

            with open(output_path, 'w') as f:
                if format.lower() == 'json':
                    json.dump(config_to_export, f, indent=2, default=str)
                else:
                    yaml.dump(config_to_export, f, default_flow_style=False, indent=2)

            logger.info("configuration_exported", output_path=str(output_path), format=format)
            return True

        except OSError as e:
            logger.error("configuration_export_failed", output_path=str(output_path),
                         error=str(e))
            return False

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    def _substitute_environment_variables(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Substitute ${VAR_NAME} and ${VAR_NAME:default_value} in string values.

        A value that is exactly one placeholder takes the YAML scalar type of
        its substitution, so `port: ${PORT:3001}` yields an int.
        """
        def replace_env_var(match):
            var_expr = match.group(1)
            if ':' in var_expr:
                var_name, default_value = var_expr.split(':', 1)
                return os.getenv(var_name.strip(), default_value.strip())
            env_value = os.getenv(var_expr.strip())
            if env_value is None:
                logger.warning("environment_variable_not_found", variable=var_expr.strip())
                return match.group(0)
            return env_value

        def substitute_value(value):
            if isinstance(value, str):
                substituted = re.sub(r'\$\{([^}]+)\}', replace_env_var, value)
                if substituted != value and re.fullmatch(r'\$\{[^}]+\}', value.strip()):
                    return _coerce_scalar(substituted)
                return substituted
            elif isinstance(value, dict):
                return {k: substitute_value(v) for k, v in value.items()}
            elif isinstance(value, list):
                return [substitute_value(item) for item in value]
            return value

        return substitute_value(config)

    async def _load_environment_overrides(self) -> None:
        if self.config_path is None:
            return
        env_config_file = self.config_path.parent / f"{self.environment}.yaml"
        if not env_config_file.exists() or env_config_file == self.config_path:
            return

        try:
            logger.info("loading_environment_overrides", env_file=str(env_config_file))
            with open(env_config_file, 'r') as f:
                env_config = yaml.safe_load(f)
            if env_config:
                self.config = self._deep_merge(
                    self.config, self._substitute_environment_variables(env_config)
                )
        except (OSError, yaml.YAMLError) as e:
            logger.warning("environment_overrides_failed", env_file=str(env_config_file),
                           error=str(e))

    def _apply_defaults(self) -> None:
        defaults = {
            'global': {
                'log_level': os.getenv('LOG_LEVEL', 'INFO').upper(),
            },
            'monitor': {
                'timeout_seconds': 5,
                'health_path': '/health',
                'metrics_path': '/metrics',
                'default_health_check_interval': 10,
                'default_metrics_check_interval': 30,
            },
            'storage': {
                'backend': 'memory',
                'data_directory': './data',
                'max_rows': 10000,
            },
            'ai': {
                'api_key': os.getenv('ANTHROPIC_API_KEY', ''),
                'model': os.getenv('AI_MODEL', 'claude-3-5-sonnet-latest'),
                'max_tokens': 1024,
                'timeout_seconds': 30,
            },
            'thresholds': {
                'cpu_percent': 80,
                'memory_percent': 85,
                'error_rate_percent': 5,
            },
            'actions': {
                'simulate': True,
                'execution_delay_seconds': 2,
                'control_path': '/orchestration/actions',
                'timeout_seconds': 10,
            },
            'api': {
                'enabled': True,
                'host': '0.0.0.0',
                'port': int(os.getenv('PORT', '3001')),
                'debug': False,
            },
            'targets': [],
        }
        self.config = self._deep_merge(defaults, self.config)

    def _apply_project_fallback(self) -> None:
        if self.config.get('targets'):
            return
        monitor = self.config.get('monitor', {})
        self.config['targets'] = parse_projects(
            os.getenv('PROJECTS', DEFAULT_PROJECTS),
            monitor.get('default_health_check_interval', 10),
            monitor.get('default_metrics_check_interval', 30),
        )

    async def _validate_config(self) -> bool:
        """Validate the loaded configuration; True when there are no errors."""
        self.validation_errors.clear()

        self._validate_global_config()
        self._validate_targets_config()
        self._validate_monitor_config()
        self._validate_storage_config()
        self._validate_ai_config()
        self._validate_api_config()

        return not any(e.severity == 'error' for e in self.validation_errors)

    def _validate_global_config(self) -> None:
        log_level = self.config.get('global', {}).get('log_level', 'INFO')
        if log_level not in ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']:
            self.validation_errors.append(ConfigValidationError(
                path='global.log_level',
                message='log_level must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL'
            ))

    def _validate_targets_config(self) -> None:
        targets = self.config.get('targets') or []
        if not targets:
            self.validation_errors.append(ConfigValidationError(
                path='targets',
                message='No targets configured',
                suggestion='Add at least one entry under targets or set PROJECTS'
            ))
            return

        seen = set()
        for index, target in enumerate(targets):
            path = f'targets[{index}]'
            if not isinstance(target, dict):
                self.validation_errors.append(ConfigValidationError(
                    path=path, message='Target configuration must be a dictionary'
                ))
                continue

            name = target.get('name')
            if not name:
                self.validation_errors.append(ConfigValidationError(
                    path=f'{path}.name', message='Target name is required'
                ))
            elif name in seen:
                self.validation_errors.append(ConfigValidationError(
                    path=f'{path}.name', message=f'Duplicate target name: {name}'
                ))
            seen.add(name)

            url = target.get('url')
            if not isinstance(url, str) or not url.startswith(('http://', 'https://')):
                self.validation_errors.append(ConfigValidationError(
                    path=f'{path}.url',
                    message='Target url must be an http(s) URL'
                ))

            for key in ('health_check_interval', 'metrics_check_interval'):
                value = target.get(key)
                if value is not None and (not isinstance(value, (int, float)) or value <= 0):
                    self.validation_errors.append(ConfigValidationError(
                        path=f'{path}.{key}',
                        message=f'{key} must be a positive number of seconds'
                    ))

    def _validate_monitor_config(self) -> None:
        timeout = self.config.get('monitor', {}).get('timeout_seconds', 5)
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            self.validation_errors.append(ConfigValidationError(
                path='monitor.timeout_seconds',
                message='timeout_seconds must be a positive number'
            ))

    def _validate_storage_config(self) -> None:
        backend = self.config.get('storage', {}).get('backend', 'memory')
        if backend not in ('memory', 'jsonl'):
            self.validation_errors.append(ConfigValidationError(
                path='storage.backend',
                message='storage backend must be one of: memory, jsonl'
            ))

    def _validate_ai_config(self) -> None:
        if not self.config.get('ai', {}).get('api_key'):
            self.validation_errors.append(ConfigValidationError(
                path='ai.api_key',
                message='No Anthropic API key configured, AI decisions disabled',
                severity='warning',
                suggestion='Set ANTHROPIC_API_KEY'
            ))

    def _validate_api_config(self) -> None:
        api_config = self.config.get('api', {})

        port = api_config.get('port', 3001)
        if not isinstance(port, int) or port < 1 or port > 65535:
            self.validation_errors.append(ConfigValidationError(
                path='api.port',
                message='API port must be an integer between 1 and 65535'
            ))

        host = api_config.get('host', '0.0.0.0')
        if not isinstance(host, str) or not host:
            self.validation_errors.append(ConfigValidationError(
                path='api.host',
                message='API host must be a non-empty string'
            ))

    def _get_nested_value(self, data: Dict[str, Any], path: str, default: Any = None) -> Any:
        current = data
        for key in path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def _mask_sensitive_values(self, config: Dict[str, Any]) -> Dict[str, Any]:
        sensitive_keys = {'password', 'token', 'key', 'secret'}

        def mask_dict(data):
            if isinstance(data, dict):
                result = {}
                for k, v in data.items():
                    if any(sensitive in k.lower() for sensitive in sensitive_keys):
                        result[k] = "***MASKED***" if v else v
                    else:
                        result[k] = mask_dict(v)
                return result
            elif isinstance(data, list):
                return [mask_dict(item) for item in data]
            return data

        return mask_dict(config)
