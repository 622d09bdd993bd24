# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Core module initialization
# PURPOSE: Export contracts, errors and configuration
# CREATED: 19 OCT 2026
# ============================================================================

from core.contracts import (
    AgentState,
    ResultType,
    CacheConfig,
    FunctionConfig,
    FunctionDescriptor,
    Job,
    ResultEnvelope,
    AgentCredentials,
)
from core.errors import TaskbridgeError, serialize_error
from core.config import ClientConfig, PollingDefaults

__all__ = [
    # Enums
    "AgentState",
    "ResultType",
    # Contracts
    "CacheConfig",
    "FunctionConfig",
    "FunctionDescriptor",
    "Job",
    "ResultEnvelope",
    "AgentCredentials",
    # Errors
    "TaskbridgeError",
    "serialize_error",
    # Config
    "ClientConfig",
    "PollingDefaults",
]
