# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Core - Default configuration values
# PURPOSE: Centralized client configuration and polling tunables
# CREATED: 19 OCT 2026
# ============================================================================
"""
Configuration Defaults

Client configuration and polling tunables.
Values can be overridden via environment variables or constructor arguments.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Validation at construction time, before any network activity
"""

import logging
import os
import socket
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional

from core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.taskbridge.dev"

MIN_JOB_POLL_WAIT_TIME_MS = 5000
MAX_JOB_POLL_WAIT_TIME_MS = 20000


def default_machine_id() -> str:
    """Stable identity string for this machine."""
    return f"machine-{socket.gethostname()}-{uuid.getnode():012x}"


def env_number(name: str, default: str, cast: Callable[[str], Any] = int) -> Any:
    """
    Read a numeric environment variable.

    Raises:
        ConfigurationError if the value does not parse
    """
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be a number, got {raw!r}", {"variable": name}
        )


def secret_partial(secret: Optional[str]) -> str:
    """First four characters of a secret, for logging."""
    return (secret or "")[:4] + "..."


@dataclass(frozen=True)
class PollingDefaults:
    """
    Defaults for the polling agent and its queue consumer.
    """
    # Queue consumption
    batch_size: int = 10
    visibility_timeout_seconds: Optional[int] = None
    error_backoff_seconds: float = 1.0

    # Credentials are refreshed when within this margin of expiry
    credential_refresh_margin_seconds: float = 60.0

    # Consumer state transitions
    start_timeout_seconds: float = 30.0
    stop_timeout_seconds: float = 30.0

    # Result persistence
    result_persist_retries: int = 3
    result_persist_backoff_seconds: float = 0.5

    # Dispatched jobs are given this long to finish on shutdown
    shutdown_timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "PollingDefaults":
        """Create from environment variables."""
        return cls(
            batch_size=env_number("TASKBRIDGE_BATCH_SIZE", "10"),
            error_backoff_seconds=env_number("TASKBRIDGE_ERROR_BACKOFF", "1.0", float),
            start_timeout_seconds=env_number("TASKBRIDGE_START_TIMEOUT", "30", float),
            stop_timeout_seconds=env_number("TASKBRIDGE_STOP_TIMEOUT", "30", float),
            result_persist_retries=env_number("TASKBRIDGE_RESULT_RETRIES", "3"),
            shutdown_timeout_seconds=env_number("TASKBRIDGE_SHUTDOWN_TIMEOUT", "30", float),
        )


@dataclass(frozen=True)
class ClientConfig:
    """Configuration for a taskbridge client."""

    api_secret: str
    endpoint: str = DEFAULT_ENDPOINT
    machine_id: str = ""

    # Long-poll wait per receive call (milliseconds)
    job_poll_wait_time_ms: int = MAX_JOB_POLL_WAIT_TIME_MS

    heartbeat_interval_seconds: float = 10.0
    include_error_stack: bool = False

    polling: PollingDefaults = field(default_factory=PollingDefaults)

    def __post_init__(self):
        if not self.api_secret:
            raise ConfigurationError("No API secret provided.")

        if self.job_poll_wait_time_ms < MIN_JOB_POLL_WAIT_TIME_MS:
            raise ConfigurationError(
                f"job_poll_wait_time must be at least {MIN_JOB_POLL_WAIT_TIME_MS}ms"
            )
        if self.job_poll_wait_time_ms > MAX_JOB_POLL_WAIT_TIME_MS:
            raise ConfigurationError(
                f"job_poll_wait_time must be at most {MAX_JOB_POLL_WAIT_TIME_MS}ms"
            )

        if self.heartbeat_interval_seconds <= 0:
            raise ConfigurationError("heartbeat_interval_seconds must be positive")

        if not self.machine_id:
            object.__setattr__(self, "machine_id", default_machine_id())

    @property
    def wait_time_seconds(self) -> int:
        """Queue long-poll wait, in whole seconds."""
        return self.job_poll_wait_time_ms // 1000

    @property
    def secret_partial(self) -> str:
        return secret_partial(self.api_secret)

    def with_overrides(self, **kwargs) -> "ClientConfig":
        """Copy with non-None overrides applied (re-validated)."""
        overrides = {k: v for k, v in kwargs.items() if v is not None}
        return replace(self, **overrides)

    @classmethod
    def from_env(
        cls,
        api_secret: Optional[str] = None,
        endpoint: Optional[str] = None,
        job_poll_wait_time_ms: Optional[int] = None,
        machine_id: Optional[str] = None,
    ) -> "ClientConfig":
        """
        Create config from environment variables.

        Explicit arguments take precedence over the environment.

        Environment Variables:
            TASKBRIDGE_API_SECRET: API secret (required)
            TASKBRIDGE_API_ENDPOINT: Control-plane endpoint
            TASKBRIDGE_MACHINE_ID: Machine identity string
            TASKBRIDGE_JOB_POLL_WAIT_TIME: Long-poll wait in ms (5000-20000)
            TASKBRIDGE_HEARTBEAT_INTERVAL: Heartbeat interval in seconds
            TASKBRIDGE_INCLUDE_ERROR_STACK: "true" to report tracebacks
        """
        env_secret = os.getenv("TASKBRIDGE_API_SECRET")
        if api_secret and env_secret:
            logger.debug(
                "API secret was provided as an argument and environment variable. "
                "Argument will be used."
            )

        wait_time = job_poll_wait_time_ms
        if wait_time is None:
            wait_time = env_number(
                "TASKBRIDGE_JOB_POLL_WAIT_TIME", str(MAX_JOB_POLL_WAIT_TIME_MS)
            )

        return cls(
            api_secret=api_secret or env_secret or "",
            endpoint=endpoint or os.getenv("TASKBRIDGE_API_ENDPOINT") or DEFAULT_ENDPOINT,
            machine_id=machine_id or os.getenv("TASKBRIDGE_MACHINE_ID", ""),
            job_poll_wait_time_ms=wait_time,
            heartbeat_interval_seconds=env_number(
                "TASKBRIDGE_HEARTBEAT_INTERVAL", "10", float
            ),
            include_error_stack=(
                os.getenv("TASKBRIDGE_INCLUDE_ERROR_STACK", "").lower() == "true"
            ),
            polling=PollingDefaults.from_env(),
        )


# ============================================================================
# EXPORTS
# ============================================================================

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
