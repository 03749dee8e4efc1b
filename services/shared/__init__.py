"""
Shared utilities for the expense engine services.

This package contains code shared by the HTTP service and its tooling:
- engine_settings: Environment-driven configuration for the engine
- observability: Telemetry, logging, and privacy utilities
"""

from .engine_settings import (
    OPTIONAL_PROMPT_SLOTS,
    SUPPORTED_QUERY_RANGES,
    EngineSettings,
    EngineSettingsError,
    load_engine_settings,
)

__all__ = [
    "OPTIONAL_PROMPT_SLOTS",
    "SUPPORTED_QUERY_RANGES",
    "EngineSettings",
    "EngineSettingsError",
    "load_engine_settings",
]
