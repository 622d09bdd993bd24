# ============================================================================
# HANDLER REGISTRY
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Core - Function registration and lookup
# PURPOSE: Register and discover functions and their input schemas
# CREATED: 19 OCT 2026
# ============================================================================
"""
Handler Registry

Usage:
    from handlers import FunctionRegistry

    registry = FunctionRegistry()
    registry.register_function("echo", "examples", echo, EchoInput)

    registration = registry.lookup("echo")
    errors = registration.validate({"text": "hi"})

Function modules (e.g. handlers.examples) are not imported here; the worker
entry point loads them by name and calls their register_functions(client).
"""

from handlers.registry import (
    HandlerFunc,
    AuthenticateFunc,
    FUNCTION_NAME_PATTERN,
    SERVICE_NAME_PATTERN,
    FunctionRegistration,
    FunctionRegistry,
    validate_function_name,
    validate_service_name,
)
from handlers.schema import CompiledSchema, compile_schema

__all__ = [
    "HandlerFunc",
    "AuthenticateFunc",
    "FUNCTION_NAME_PATTERN",
    "SERVICE_NAME_PATTERN",
    "FunctionRegistration",
    "FunctionRegistry",
    "validate_function_name",
    "validate_service_name",
    "CompiledSchema",
    "compile_schema",
]
