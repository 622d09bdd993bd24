# ============================================================================
# ERROR TAXONOMY
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Core - Exception hierarchy and error serialization
# PURPOSE: Distinguishable error kinds for setup, transport and job failures
# CREATED: 19 OCT 2026
# ============================================================================
"""
Error Taxonomy

Configuration errors are raised synchronously during setup.
Transport errors carry the HTTP status and body of the failed call.
Application errors never reach the host process - they are serialized
into rejection results and reported as the job's outcome.
"""

import json
import traceback
from typing import Any, Dict, List, Optional


# ============================================================================
# BASE
# ============================================================================

class TaskbridgeError(Exception):
    """Base exception for all taskbridge errors."""

    UNAUTHORISED = (
        "Invalid API secret. Make sure you are using the correct API secret."
    )
    INVALID_DATA_TYPE = (
        "Serialization encountered a value that can not be safely "
        "represented as JSON."
    )
    JOB_AUTHCONTEXT_INVALID = (
        "Function requires authentication but no auth context was provided."
    )

    def __init__(self, message: str, meta: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.meta = meta or {}


# ============================================================================
# CONFIGURATION ERRORS
# ============================================================================

class ConfigurationError(TaskbridgeError):
    """Invalid client configuration (secret, endpoint, tunables)."""
    pass


class InvalidName(ConfigurationError):
    """Raised when a service or function name violates naming rules."""
    def __init__(self, kind: str, name: str, pattern: str):
        self.kind = kind
        self.name = name
        super().__init__(
            f"Invalid {kind} name '{name}'. Names must match {pattern}",
            {"kind": kind, "name": name},
        )


class DuplicateName(ConfigurationError):
    """Raised when a function name is already registered."""
    def __init__(self, name: str, service_name: str):
        self.function_name = name
        super().__init__(
            f"Function name '{name}' is already registered by service '{service_name}'.",
            {"name": name, "serviceName": service_name},
        )


class InvalidSchema(ConfigurationError):
    """Raised when an input schema fails meta-validation."""
    def __init__(self, service_name: str, name: str, failures: List[str]):
        self.failures = failures
        super().__init__(
            f"JSON schema was not valid for function '{service_name}.{name}'.",
            {"failures": failures},
        )


class NotAFunction(ConfigurationError):
    """Raised when a registered handler is not callable."""
    def __init__(self, name: str):
        super().__init__(f"Handler for '{name}' must be callable.", {"name": name})


class ServiceAlreadyStarted(ConfigurationError):
    """Raised when registering into, or starting, a service that is polling."""
    def __init__(self, service_name: str):
        self.service_name = service_name
        super().__init__(
            "Functions must be registered before starting the service",
            {"serviceName": service_name},
        )


# ============================================================================
# TRANSPORT ERRORS
# ============================================================================

class ControlPlaneError(TaskbridgeError):
    """A control-plane call returned a non-success response."""
    def __init__(self, message: str, status: int, body: Any = None, **meta):
        self.status = status
        self.body = body
        super().__init__(message, {"status": status, "body": body, **meta})


class RegistrationFailed(ControlPlaneError):
    """Register-machine failed. Fatal to agent start."""
    def __init__(self, status: int, body: Any = None):
        super().__init__("Failed to register machine", status, body)


class ResultPersistFailed(ControlPlaneError):
    """Persisting a job result (or one of its blobs) failed."""
    def __init__(self, job_id: str, status: int, body: Any = None):
        self.job_id = job_id
        super().__init__(
            f"Failed to persist job result: {status}", status, body, jobId=job_id
        )


class BlobPersistFailed(ControlPlaneError):
    """Persisting an extracted blob failed."""
    def __init__(self, job_id: str, blob_name: str, status: int, body: Any = None):
        self.job_id = job_id
        self.blob_name = blob_name
        super().__init__(
            f"Failed to persist blob '{blob_name}': {status}",
            status,
            body,
            jobId=job_id,
        )


# ============================================================================
# AGENT LIFECYCLE ERRORS
# ============================================================================

class AgentError(TaskbridgeError):
    """Base class for polling agent lifecycle errors."""
    pass


class NotRunning(AgentError):
    """stop() was called on an agent without a consumer."""
    def __init__(self, service_name: str):
        super().__init__("Consumer is not running", {"serviceName": service_name})


class StartTimeout(AgentError):
    """The consumer did not report polling within the start timeout."""
    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Consumer did not start polling within {timeout_seconds}s",
            {"timeoutSeconds": timeout_seconds},
        )


class StopTimeout(AgentError):
    """The consumer did not stop polling within the stop timeout."""
    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Consumer did not stop polling within {timeout_seconds}s",
            {"timeoutSeconds": timeout_seconds},
        )


# ============================================================================
# CODEC ERRORS
# ============================================================================

class MalformedPayload(TaskbridgeError):
    """A packed payload could not be unpacked."""
    pass


class InvalidDataType(TaskbridgeError):
    """A value can not be packed as JSON."""
    def __init__(self, detail: str = ""):
        message = TaskbridgeError.INVALID_DATA_TYPE
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


# ============================================================================
# APPLICATION ERRORS (reported as rejections)
# ============================================================================

class FunctionNotRegistered(TaskbridgeError):
    def __init__(self, name: str):
        self.function_name = name
        super().__init__(f"Function was not registered. name='{name}'")


class InvalidArgumentShape(TaskbridgeError):
    def __init__(self):
        super().__init__(
            "Function was called with an invalid argument format. Expected an object."
        )


class SchemaValidationFailed(TaskbridgeError):
    def __init__(self, name: str, errors: List[str]):
        self.errors = errors
        super().__init__(
            f"Function input does not match schema for '{name}': {'; '.join(errors)}"
        )


class AuthContextRequired(TaskbridgeError):
    def __init__(self):
        super().__init__(TaskbridgeError.JOB_AUTHCONTEXT_INVALID)


class FunctionTimeout(TaskbridgeError):
    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Function timed out after {timeout_seconds} seconds")


# ============================================================================
# SERIALIZATION
# ============================================================================

_HIDDEN_ATTRIBUTES = {"args", "meta", "message"}


def _json_safe(value: Any) -> bool:
    try:
        json.dumps(value, allow_nan=False)
        return True
    except (TypeError, ValueError):
        return False


def serialize_error(
    error: BaseException,
    include_stack: bool = False,
) -> Dict[str, Any]:
    """
    Convert an exception into a JSON-safe dict.

    Always includes name and message. Public instance attributes of custom
    error types are included when they are JSON-safe, so remote consumers
    can distinguish error kinds. The traceback is only included on request.

    Args:
        error: Exception to serialize
        include_stack: Include the formatted traceback

    Returns:
        Dict with at least "name" and "message"
    """
    message = getattr(error, "message", None)
    if not isinstance(message, str):
        message = str(error)

    result: Dict[str, Any] = {
        "name": type(error).__name__,
        "message": message,
    }

    for key, value in vars(error).items():
        if key.startswith("_") or key in _HIDDEN_ATTRIBUTES or key in result:
            continue
        if _json_safe(value):
            result[key] = value

    meta = getattr(error, "meta", None)
    if isinstance(meta, dict) and meta and _json_safe(meta):
        result["meta"] = meta

    if include_stack:
        result["stack"] = "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        )

    return result


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "TaskbridgeError",
    "ConfigurationError",
    "InvalidName",
    "DuplicateName",
    "InvalidSchema",
    "NotAFunction",
    "ServiceAlreadyStarted",
    "ControlPlaneError",
    "RegistrationFailed",
    "ResultPersistFailed",
    "BlobPersistFailed",
    "AgentError",
    "NotRunning",
    "StartTimeout",
    "StopTimeout",
    "MalformedPayload",
    "InvalidDataType",
    "FunctionNotRegistered",
    "InvalidArgumentShape",
    "SchemaValidationFailed",
    "AuthContextRequired",
    "FunctionTimeout",
    "serialize_error",
]
