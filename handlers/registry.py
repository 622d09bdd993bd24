# ============================================================================
# FUNCTION REGISTRY
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Core - Function registration and lookup
# PURPOSE: Register and discover callable functions by name
# CREATED: 19 OCT 2026
# ============================================================================
"""
Function Registry

Maps function names to their registrations. Polling agents use this to
look up the handler, schema and authenticator for a received job.

Design:
- One registry per client; names are unique across all services
- Fail-fast on duplicate, invalid or late registration
- A service's registrations are frozen once its agent starts polling
- Supports both sync and async handlers
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from core.contracts import FunctionConfig, FunctionDescriptor, ResultEnvelope
from core.errors import (
    ConfigurationError,
    DuplicateName,
    InvalidName,
    NotAFunction,
    ServiceAlreadyStarted,
)
from handlers.schema import CompiledSchema, SchemaInput, compile_schema

logger = logging.getLogger(__name__)


# ============================================================================
# HANDLER TYPES
# ============================================================================

# handler(input) -> result | awaitable result
HandlerFunc = Callable[[Any], Union[Any, Awaitable[Any]]]

# authenticate(auth_context, input) -> None | awaitable None, raises to deny
AuthenticateFunc = Callable[[Any, Any], Union[None, Awaitable[None]]]


# ============================================================================
# NAME RULES
# ============================================================================

FUNCTION_NAME_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]{0,29}$"
SERVICE_NAME_PATTERN = r"^[A-Za-z0-9_-]{1,30}$"
MAX_DESCRIPTION_LENGTH = 1024

_FUNCTION_NAME_RE = re.compile(FUNCTION_NAME_PATTERN)
_SERVICE_NAME_RE = re.compile(SERVICE_NAME_PATTERN)


def validate_function_name(name: str) -> None:
    if not isinstance(name, str) or not _FUNCTION_NAME_RE.fullmatch(name):
        raise InvalidName("function", str(name), FUNCTION_NAME_PATTERN)


def validate_service_name(name: str) -> None:
    if not isinstance(name, str) or not _SERVICE_NAME_RE.fullmatch(name):
        raise InvalidName("service", str(name), SERVICE_NAME_PATTERN)


def validate_description(description: Optional[str]) -> None:
    if description is None:
        return
    if not isinstance(description, str) or not description.strip():
        raise ConfigurationError("Function description must be a non-empty string")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ConfigurationError(
            f"Function description must be at most {MAX_DESCRIPTION_LENGTH} characters"
        )


# ============================================================================
# REGISTRATION
# ============================================================================

@dataclass
class FunctionRegistration:
    """A registered function and everything needed to run it."""
    name: str
    service_name: str
    handler: HandlerFunc
    input_schema: Any
    schema: CompiledSchema
    authenticate: Optional[AuthenticateFunc] = None
    config: Optional[FunctionConfig] = None
    description: Optional[str] = None
    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def input_json_schema(self) -> str:
        """Canonical JSON-Schema string."""
        return self.schema.json_schema_str

    @property
    def is_async(self) -> bool:
        return asyncio.iscoroutinefunction(self.handler)

    def descriptor(self) -> FunctionDescriptor:
        return FunctionDescriptor(
            name=self.name,
            description=self.description,
            schema=self.input_json_schema,
            config=self.config,
        )

    def validate(self, args: Any) -> List[str]:
        """All schema validation failures for args."""
        return self.schema.validate(args)

    async def invoke(
        self,
        args: Any,
        auth_context: Any = None,
        include_stack: bool = False,
    ) -> ResultEnvelope:
        """
        Run the handler with already-validated args.

        Never raises; failures become rejection results.
        """
        from worker.executor import execute_function

        timeout = self.config.timeout_seconds if self.config else None
        return await execute_function(
            self.handler,
            self.schema.coerce(args),
            authenticate=self.authenticate,
            auth_context=auth_context,
            timeout_seconds=timeout,
            include_stack=include_stack,
        )


# ============================================================================
# REGISTRY
# ============================================================================

class FunctionRegistry:
    """
    Registry of functions for one client.

    Mutated only before a service's agent starts; read-only afterwards.
    """

    def __init__(self):
        self._functions: Dict[str, FunctionRegistration] = {}
        self._started: Set[str] = set()

    def register(self, registration: FunctionRegistration) -> FunctionRegistration:
        """
        Add a registration.

        Raises:
            DuplicateName if the name exists
            ServiceAlreadyStarted if the owning service is polling
            NotAFunction if the handler is not callable
        """
        existing = self._functions.get(registration.name)
        if existing is not None:
            raise DuplicateName(registration.name, existing.service_name)

        if registration.service_name in self._started:
            raise ServiceAlreadyStarted(registration.service_name)

        if not callable(registration.handler):
            raise NotAFunction(registration.name)

        if registration.authenticate is not None and not callable(registration.authenticate):
            raise NotAFunction(f"{registration.name}.authenticate")

        self._functions[registration.name] = registration

        logger.info(
            f"Registered function: {registration.service_name}.{registration.name}"
        )
        return registration

    def register_function(
        self,
        name: str,
        service_name: str,
        handler: HandlerFunc,
        schema: SchemaInput,
        *,
        authenticate: Optional[AuthenticateFunc] = None,
        config: Optional[Union[FunctionConfig, Dict[str, Any]]] = None,
        description: Optional[str] = None,
    ) -> FunctionRegistration:
        """
        Validate, compile and register a function.

        Args:
            name: Function name (unique across all services)
            service_name: Owning service
            handler: Callable taking one input argument
            schema: pydantic model class or JSON-Schema document
            authenticate: Optional (auth_context, input) check
            config: Optional FunctionConfig (or its dict form)
            description: Optional human-readable description

        Returns:
            The stored FunctionRegistration
        """
        if name in self._functions:
            raise DuplicateName(name, self._functions[name].service_name)

        validate_function_name(name)
        validate_service_name(service_name)
        validate_description(description)

        compiled = compile_schema(schema, service_name, name)

        if isinstance(config, dict):
            config = FunctionConfig.model_validate(config)

        return self.register(
            FunctionRegistration(
                name=name,
                service_name=service_name,
                handler=handler,
                input_schema=schema,
                schema=compiled,
                authenticate=authenticate,
                config=config,
                description=description,
            )
        )

    def lookup(self, name: str) -> Optional[FunctionRegistration]:
        return self._functions.get(name)

    def list_by_service(self, service_name: str) -> List[FunctionRegistration]:
        """Registrations of one service, in registration order."""
        return [r for r in self._functions.values() if r.service_name == service_name]

    def list_functions(self) -> List[FunctionRegistration]:
        return list(self._functions.values())

    def descriptors(self, service_name: str) -> List[FunctionDescriptor]:
        return [r.descriptor() for r in self.list_by_service(service_name)]

    # ------------------------------------------------------------------
    # Service lock
    # ------------------------------------------------------------------

    def mark_started(self, service_name: str) -> None:
        self._started.add(service_name)

    def mark_stopped(self, service_name: str) -> None:
        self._started.discard(service_name)

    def is_started(self, service_name: str) -> bool:
        return service_name in self._started

    def clear(self) -> None:
        """
        Remove all registrations.

        Primarily for testing.
        """
        self._functions.clear()
        self._started.clear()

    def __contains__(self, name: str) -> bool:
        return name in self._functions

    def __len__(self) -> int:
        return len(self._functions)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "HandlerFunc",
    "AuthenticateFunc",
    "FUNCTION_NAME_PATTERN",
    "SERVICE_NAME_PATTERN",
    "MAX_DESCRIPTION_LENGTH",
    "validate_function_name",
    "validate_service_name",
    "validate_description",
    "FunctionRegistration",
    "FunctionRegistry",
]
