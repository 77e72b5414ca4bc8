#!/usr/bin/env python3
"""
Orchestration Hub - Error Types
"""


class OrchestrationError(Exception):
    """
    Error surfaced to API callers.

    Carries a machine-readable code and the HTTP status the API layer should
    answer with.
    """

    def __init__(self, code: str, message: str, status_code: int = 500):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


class ConfigurationError(Exception):
    """Fatal startup configuration problem (e.g. no targets defined)."""
