#!/usr/bin/env python3
"""
Orchestration Hub - Configuration Management Module
"""

from .config_manager import ConfigManager, ConfigValidationError, parse_projects

__all__ = ['ConfigManager', 'ConfigValidationError', 'parse_projects']
