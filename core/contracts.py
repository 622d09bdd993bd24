# ============================================================================
# WIRE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Foundation - Core enums and data contracts
# PURPOSE: Define jobs, results, credentials and function descriptors
# CREATED: 19 OCT 2026
# EXPORTS: AgentState, ResultType, Job, ResultEnvelope, AgentCredentials,
#          FunctionConfig, CacheConfig, FunctionDescriptor
# DEPENDENCIES: enum, pydantic
# ============================================================================
"""
Data contracts shared by the registry, the polling agent and the
control-plane client.

Wire names are camelCase (targetFn, functionExecutionTime, ...);
Python attributes are snake_case and mapped through pydantic aliases.

Job message body (packed):
{
    "id": "01J...",
    "targetFn": "echo",
    "targetArgs": "{\"value\": {\"text\": \"hi\"}}",
    "authContext": "token-abc"
}

Persisted result:
{
    "result": "{\"value\": {\"echo\": \"hi\"}}",
    "resultType": "resolution",
    "functionExecutionTime": 12
}
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# STATUS ENUMS
# ============================================================================

class AgentState(str, Enum):
    """
    Polling agent lifecycle states.

    State transitions:
        IDLE -> REGISTERING -> POLLING -> STOPPING -> STOPPED
                                       -> RESTARTING -> REGISTERING
    """
    IDLE = "idle"
    REGISTERING = "registering"
    POLLING = "polling"
    RESTARTING = "restarting"
    STOPPING = "stopping"
    STOPPED = "stopped"

    def is_terminal(self) -> bool:
        return self is AgentState.STOPPED


class ResultType(str, Enum):
    """Outcome of a job."""
    RESOLUTION = "resolution"
    REJECTION = "rejection"


# ============================================================================
# FUNCTION CONFIGURATION
# ============================================================================

class CacheConfig(BaseModel):
    """Result caching hint, applied by the control plane."""
    key_path: List[str] = Field(..., alias="keyPath", min_length=1)
    ttl_seconds: int = Field(..., alias="ttlSeconds", ge=1)

    model_config = {"populate_by_name": True, "frozen": True}


class FunctionConfig(BaseModel):
    """Per-function configuration sent with the function descriptor."""
    cache: Optional[CacheConfig] = None
    timeout_seconds: Optional[float] = Field(
        default=None,
        alias="timeoutSeconds",
        gt=0,
        description="Local execution timeout",
    )
    retry_count_on_stall: Optional[int] = Field(
        default=None,
        alias="retryCountOnStall",
        ge=0,
        le=10,
    )

    model_config = {"populate_by_name": True, "frozen": True}


class FunctionDescriptor(BaseModel):
    """Function description sent to the control plane on registration."""
    name: str
    description: Optional[str] = None
    schema_: str = Field(..., alias="schema", description="Canonical JSON schema")
    config: Optional[FunctionConfig] = None

    model_config = {"populate_by_name": True}

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ============================================================================
# JOB
# ============================================================================

class Job(BaseModel):
    """
    Unit of work received from the queue.

    target_args is still packed; it is unpacked separately so that a
    malformed argument payload can be reported as the job's rejection.
    """
    id: str = Field(..., min_length=1)
    target_fn: str = Field(..., alias="targetFn")
    target_args: str = Field(..., alias="targetArgs")
    auth_context: Optional[Any] = Field(default=None, alias="authContext")

    model_config = {"populate_by_name": True}


# ============================================================================
# RESULT ENVELOPE
# ============================================================================

class ResultEnvelope(BaseModel):
    """Uniform outcome of a function execution."""
    type: ResultType
    content: Any = None
    function_execution_time: int = Field(
        default=0,
        alias="functionExecutionTime",
        ge=0,
        description="Execution time in milliseconds",
    )

    model_config = {"populate_by_name": True}

    @classmethod
    def resolution(cls, content: Any, function_execution_time: int = 0) -> "ResultEnvelope":
        return cls(
            type=ResultType.RESOLUTION,
            content=content,
            function_execution_time=function_execution_time,
        )

    @classmethod
    def rejection(cls, content: Any, function_execution_time: int = 0) -> "ResultEnvelope":
        return cls(
            type=ResultType.REJECTION,
            content=content,
            function_execution_time=function_execution_time,
        )

    @property
    def is_resolution(self) -> bool:
        return self.type is ResultType.RESOLUTION


# ============================================================================
# AGENT CREDENTIALS
# ============================================================================

class AgentCredentials(BaseModel):
    """
    Temporary queue credentials issued by register-machine.

    Immutable: a re-registration replaces the whole snapshot.
    """
    queue_url: str
    region: str
    access_key_id: str = Field(..., repr=False)
    secret_access_key: str = Field(..., repr=False)
    session_token: str = Field(..., repr=False)
    expiration: datetime
    enabled: bool = True
    cluster_id: str

    model_config = {"frozen": True}

    @field_validator("expiration")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_registration(cls, body: Dict[str, Any]) -> "AgentCredentials":
        """Build from a register-machine response body."""
        credentials = body.get("credentials") or {}
        enabled = body.get("enabled")
        return cls(
            queue_url=body["queueUrl"],
            region=body["region"],
            access_key_id=credentials["accessKeyId"],
            secret_access_key=credentials["secretAccessKey"],
            session_token=credentials["sessionToken"],
            expiration=body["expiration"],
            enabled=True if enabled is None else bool(enabled),
            cluster_id=body["clusterId"],
        )

    def expires_within(
        self,
        margin_seconds: float,
        now: Optional[datetime] = None,
    ) -> bool:
        """True if expired, or expiring within the margin."""
        now = now or datetime.now(timezone.utc)
        return now >= self.expiration - timedelta(seconds=margin_seconds)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "AgentState",
    "ResultType",
    "CacheConfig",
    "FunctionConfig",
    "FunctionDescriptor",
    "Job",
    "ResultEnvelope",
    "AgentCredentials",
]
