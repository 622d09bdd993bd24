# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 19 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for the taskbridge client.
"""

from core.config.defaults import (
    DEFAULT_ENDPOINT,
    MIN_JOB_POLL_WAIT_TIME_MS,
    MAX_JOB_POLL_WAIT_TIME_MS,
    PollingDefaults,
    ClientConfig,
    default_machine_id,
    env_number,
    secret_partial,
)

__all__ = [
    "DEFAULT_ENDPOINT",
    "MIN_JOB_POLL_WAIT_TIME_MS",
    "MAX_JOB_POLL_WAIT_TIME_MS",
    "PollingDefaults",
    "ClientConfig",
    "default_machine_id",
    "env_number",
    "secret_partial",
]
