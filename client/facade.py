# ============================================================================
# TASKBRIDGE CLIENT
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Client - User-facing entry point
# PURPOSE: Register services and functions, run one polling agent per service
# CREATED: 19 OCT 2026
# ============================================================================
"""
Taskbridge Client

Owns one FunctionRegistry, one control-plane client, one PollingAgent per
started service, and the heartbeat that announces active services.

Usage:
    client = TaskbridgeClient(api_secret="sk_...")

    service = client.service("billing")

    @service.function(schema=InvoiceInput)
    async def create_invoice(data: InvoiceInput):
        return {"invoice_id": ...}

    await service.start()
    ...
    await client.close()

Configuration errors (missing secret, bad wait time, bad names, invalid
schemas, duplicates) raise synchronously, before any network activity.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from __version__ import __version__
from client.heartbeat import Heartbeat
from core.config import ClientConfig
from core.contracts import FunctionConfig
from core.errors import NotRunning, ServiceAlreadyStarted
from handlers.registry import (
    AuthenticateFunc,
    FunctionRegistration,
    FunctionRegistry,
    HandlerFunc,
    validate_service_name,
)
from infrastructure.control_plane import ControlPlaneClient
from messaging.transport import TransportFactory
from worker.agent import PollingAgent

logger = logging.getLogger(__name__)

DEFAULT_SERVICE = "default"


@dataclass
class FunctionDefinition:
    """A function declared up front and registered when its service starts."""
    name: str
    func: HandlerFunc
    schema: Any
    authenticate: Optional[AuthenticateFunc] = None
    config: Optional[Union[FunctionConfig, Dict[str, Any]]] = None
    description: Optional[str] = None


FunctionInput = Union[FunctionDefinition, Dict[str, Any]]


# ============================================================================
# SERVICE HANDLE
# ============================================================================

class RegisteredService:
    """Handle for one named service of a TaskbridgeClient."""

    def __init__(
        self,
        client: "TaskbridgeClient",
        name: str,
        functions: Optional[Iterable[FunctionInput]] = None,
    ):
        self._client = client
        self.name = name
        self._declared: List[FunctionDefinition] = []
        self.declare(functions or [])

    @property
    def definition(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "functions": [
                r.name for r in self._client.registry.list_by_service(self.name)
            ] + [d.name for d in self._declared],
        }

    @property
    def polling(self) -> bool:
        return self.name in self._client.active_services

    def declare(self, functions: Iterable[FunctionInput]) -> None:
        for item in functions:
            if isinstance(item, dict):
                item = FunctionDefinition(**item)
            self._declared.append(item)

    def register(
        self,
        name: str,
        func: HandlerFunc,
        schema: Any,
        *,
        authenticate: Optional[AuthenticateFunc] = None,
        config: Optional[Union[FunctionConfig, Dict[str, Any]]] = None,
        description: Optional[str] = None,
    ) -> FunctionRegistration:
        """Register a function on this service immediately."""
        return self._client.registry.register_function(
            name,
            self.name,
            func,
            schema,
            authenticate=authenticate,
            config=config,
            description=description,
        )

    def function(
        self,
        name: Optional[str] = None,
        *,
        schema: Any,
        authenticate: Optional[AuthenticateFunc] = None,
        config: Optional[Union[FunctionConfig, Dict[str, Any]]] = None,
        description: Optional[str] = None,
    ) -> Callable[[HandlerFunc], HandlerFunc]:
        """
        Decorator form of register().

        Usage:
            @service.function(schema=EchoInput)
            def echo(data): ...
        """
        def decorator(func: HandlerFunc) -> HandlerFunc:
            self.register(
                name or func.__name__,
                func,
                schema,
                authenticate=authenticate,
                config=config,
                description=description,
            )
            return func

        return decorator

    async def start(self) -> str:
        """Register declared functions and start polling. Returns the cluster id."""
        declared, self._declared = self._declared, []
        for item in declared:
            self.register(
                item.name,
                item.func,
                item.schema,
                authenticate=item.authenticate,
                config=item.config,
                description=item.description,
            )
        return await self._client.start_service(self.name)

    async def stop(self) -> None:
        """Stop this service's agent only."""
        await self._client.stop_service(self.name)

    def __repr__(self) -> str:
        return f"RegisteredService(name={self.name!r})"


# ============================================================================
# CLIENT
# ============================================================================

class TaskbridgeClient:
    """Entry point for registering and serving functions."""

    def __init__(
        self,
        api_secret: Optional[str] = None,
        endpoint: Optional[str] = None,
        job_poll_wait_time: Optional[int] = None,
        machine_id: Optional[str] = None,
        control_plane: Optional[Any] = None,
        transport_factory: Optional[TransportFactory] = None,
        config: Optional[ClientConfig] = None,
    ):
        """
        Initialize client.

        Args:
            api_secret: API secret (falls back to TASKBRIDGE_API_SECRET)
            endpoint: Control-plane endpoint (falls back to TASKBRIDGE_API_ENDPOINT)
            job_poll_wait_time: Long-poll wait in ms, 5000-20000
            machine_id: Machine identity (generated when omitted)
            control_plane: Control-plane client override
            transport_factory: Queue transport factory override
            config: Complete configuration; explicit arguments override it

        Raises:
            ConfigurationError for a missing secret or an out-of-range wait time
        """
        if config is None:
            config = ClientConfig.from_env(
                api_secret=api_secret,
                endpoint=endpoint,
                job_poll_wait_time_ms=job_poll_wait_time,
                machine_id=machine_id,
            )
        else:
            config = config.with_overrides(
                api_secret=api_secret,
                endpoint=endpoint,
                job_poll_wait_time_ms=job_poll_wait_time,
                machine_id=machine_id,
            )
        self.config = config

        logger.debug(
            f"Initializing control plane client: endpoint={config.endpoint}, "
            f"machine_id={config.machine_id}"
        )

        self.control_plane = control_plane or ControlPlaneClient(
            endpoint=config.endpoint,
            api_secret=config.api_secret,
            machine_id=config.machine_id,
        )
        self.transport_factory = transport_factory
        self.registry = FunctionRegistry()

        self._services: Dict[str, RegisteredService] = {}
        self._agents: List[PollingAgent] = []
        self._cluster_id: Optional[str] = None
        self._heartbeat = Heartbeat(config.heartbeat_interval_seconds, self._ping)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def secret_partial(self) -> str:
        return self.config.secret_partial

    @property
    def cluster_id(self) -> Optional[str]:
        return self._cluster_id

    @property
    def agents(self) -> List[PollingAgent]:
        return list(self._agents)

    @property
    def heartbeat(self) -> Heartbeat:
        return self._heartbeat

    @property
    def active_services(self) -> List[str]:
        """Names of services currently polling."""
        names: List[str] = []
        for agent in self._agents:
            if agent.polling and agent.service_name not in names:
                names.append(agent.service_name)
        return names

    @property
    def inactive_services(self) -> List[str]:
        """Names of started services that are not currently polling."""
        active = set(self.active_services)
        names: List[str] = []
        for agent in self._agents:
            name = agent.service_name
            if name not in active and name not in names:
                names.append(name)
        return names

    @property
    def default(self) -> RegisteredService:
        """The service named 'default'."""
        return self.service(DEFAULT_SERVICE)

    def get_function_registry(self) -> FunctionRegistry:
        return self.registry

    def get_machine_id(self) -> str:
        return self.config.machine_id

    @staticmethod
    def get_version() -> str:
        return __version__

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    def service(
        self,
        name: str,
        functions: Optional[Iterable[FunctionInput]] = None,
    ) -> RegisteredService:
        """
        Get or create a service handle.

        Raises:
            InvalidName if the service name is invalid
        """
        validate_service_name(name)

        existing = self._services.get(name)
        if existing is not None:
            if functions:
                existing.declare(functions)
            return existing

        handle = RegisteredService(self, name, functions)
        self._services[name] = handle
        return handle

    def _live_agent(self, name: str) -> Optional[PollingAgent]:
        for agent in self._agents:
            if agent.service_name == name and not agent.state.is_terminal():
                return agent
        return None

    async def start_service(self, name: str) -> str:
        """
        Start one polling agent for a service.

        Raises:
            ServiceAlreadyStarted if an agent for the service is live
            RegistrationFailed / StartTimeout from the agent
        """
        if self._live_agent(name) is not None:
            raise ServiceAlreadyStarted(name)

        agent = PollingAgent(
            service_name=name,
            registry=self.registry,
            control_plane=self.control_plane,
            transport_factory=self.transport_factory,
            polling=self.config.polling,
            wait_time_seconds=self.config.wait_time_seconds,
            include_error_stack=self.config.include_error_stack,
            exit_handler=lambda: logger.debug(f"Polling agent for '{name}' exited"),
        )

        # Freeze registrations before the first await
        self.registry.mark_started(name)
        self._agents.append(agent)

        try:
            cluster_id = await agent.start()
        except Exception:
            self._agents.remove(agent)
            self.registry.mark_stopped(name)
            raise

        self._cluster_id = cluster_id
        self._heartbeat.start()

        logger.info(f"Service '{name}' started (cluster={cluster_id})")
        return cluster_id

    async def stop_service(self, name: str) -> None:
        """
        Stop the live agent of one service.

        Raises:
            NotRunning if the service has no live agent
        """
        agent = self._live_agent(name)
        if agent is None:
            raise NotRunning(name)

        try:
            await agent.stop()
        finally:
            self.registry.mark_stopped(name)

    async def stop(self) -> None:
        """Stop every live agent."""
        live = [a for a in self._agents if not a.state.is_terminal()]
        results = await asyncio.gather(
            *[self.stop_service(a.service_name) for a in live],
            return_exceptions=True,
        )

        for agent, result in zip(live, results):
            if isinstance(result, NotRunning):
                continue
            if isinstance(result, BaseException):
                logger.error(f"Failed to stop service '{agent.service_name}': {result}")

        logger.info(f"All polling agents quit (count={len(live)})")

    async def close(self) -> None:
        """Stop agents, wait for dispatched jobs, stop heartbeat, close HTTP session."""
        await self.stop()
        await self._heartbeat.stop()

        timeout = self.config.polling.shutdown_timeout_seconds
        for agent in self._agents:
            if not await agent.wait_closed(timeout):
                logger.warning(f"Jobs still running for service '{agent.service_name}'")

        await self.control_plane.close()

    async def __aenter__(self) -> "TaskbridgeClient":
        self._heartbeat.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    async def _ping(self) -> None:
        response = await self.control_plane.ping_cluster(self.active_services)
        if not response.ok:
            logger.warning(
                f"Error pinging cluster (status={response.status}). "
                "Will try again next interval."
            )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "DEFAULT_SERVICE",
    "FunctionDefinition",
    "RegisteredService",
    "TaskbridgeClient",
]
