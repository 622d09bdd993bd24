# ============================================================================
# WORKER MAIN ENTRY POINT
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Core - Worker process entry point
# PURPOSE: Run every declared service in a standalone process
# CREATED: 19 OCT 2026
# ============================================================================
"""
Worker Main Entry Point

Starts a taskbridge worker process that:
1. Loads function modules
2. Starts a polling agent per declared service
3. Serves a health endpoint
4. Processes jobs until SIGINT/SIGTERM

Usage:
    TASKBRIDGE_API_SECRET=sk_... python -m worker.main

Environment Variables:
    TASKBRIDGE_API_SECRET: API secret (required)
    TASKBRIDGE_API_ENDPOINT: Control-plane endpoint
    TASKBRIDGE_MACHINE_ID: Machine identity
    TASKBRIDGE_JOB_POLL_WAIT_TIME: Long-poll wait in ms (5000-20000)
    TASKBRIDGE_FUNCTION_MODULES: Comma-separated modules exposing
        register_functions(client) (default: handlers.examples)
    TASKBRIDGE_LOG_LEVEL / TASKBRIDGE_LOG_FORMAT: Logging setup
    PORT: Health server port (default 8000)
"""

import asyncio
import importlib
import os
import signal
import sys
from typing import List, Optional

from aiohttp import web

from __version__ import __version__, BUILD_DATE
from client.facade import TaskbridgeClient
from core.errors import ConfigurationError
from core.logging import configure_logging, get_logger

logger = get_logger(__name__)

DEFAULT_FUNCTION_MODULES = ["handlers.examples"]

# Worker state for health checks
_worker_healthy = True
_worker_status = "starting"
_client: Optional[TaskbridgeClient] = None


# ============================================================================
# HEALTH SERVER
# ============================================================================

async def health_handler(request):
    """
    Health check endpoint.

    Returns version, machine identity and per-service agent state.
    """
    services = {}
    if _client is not None:
        for agent in _client.agents:
            services[agent.service_name] = {
                "state": agent.state.value,
                "polling": agent.polling,
                "stats": agent.stats.to_dict(),
                "last_error": str(agent.last_error) if agent.last_error else None,
            }

    response_data = {
        "status": "healthy" if _worker_healthy else "unhealthy",
        "worker_status": _worker_status,
        "version": __version__,
        "build_date": BUILD_DATE,
        "machine_id": _client.get_machine_id() if _client else "unknown",
        "cluster_id": _client.cluster_id if _client else None,
        "active_services": _client.active_services if _client else [],
        "services": services,
    }

    if _worker_healthy:
        return web.json_response(response_data)
    return web.json_response(response_data, status=503)


async def start_health_server(port: int = 8000) -> web.AppRunner:
    """Start minimal HTTP server for health probes."""
    app = web.Application()
    app.router.add_get("/", health_handler)
    app.router.add_get("/health", health_handler)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()
    logger.info(f"Health server started on port {port}")
    return runner


# ============================================================================
# FUNCTION LOADING
# ============================================================================

def function_modules_from_env() -> List[str]:
    raw = os.getenv("TASKBRIDGE_FUNCTION_MODULES", "")
    modules = [m.strip() for m in raw.split(",") if m.strip()]
    return modules or list(DEFAULT_FUNCTION_MODULES)


def load_functions(client: TaskbridgeClient, modules: Optional[List[str]] = None) -> int:
    """
    Import function modules and let each declare its functions.

    Args:
        client: Client to register on
        modules: Module names; defaults to TASKBRIDGE_FUNCTION_MODULES

    Returns:
        Number of modules loaded

    Raises:
        ConfigurationError if a module has no register_functions(client)
    """
    if modules is None:
        modules = function_modules_from_env()

    loaded = 0
    for module_name in modules:
        module = importlib.import_module(module_name)
        register = getattr(module, "register_functions", None)
        if not callable(register):
            raise ConfigurationError(
                f"Function module '{module_name}' has no register_functions(client)"
            )
        register(client)
        logger.info(f"Loaded function module: {module_name}")
        loaded += 1

    functions = client.get_function_registry().list_functions()
    logger.info(
        f"Registered {len(functions)} functions: "
        f"{[f'{f.service_name}.{f.name}' for f in functions]}"
    )
    return loaded


def declared_services(client: TaskbridgeClient) -> List[str]:
    """Services with at least one registered function, in registration order."""
    names: List[str] = []
    for registration in client.get_function_registry().list_functions():
        if registration.service_name not in names:
            names.append(registration.service_name)
    return names


# ============================================================================
# MAIN
# ============================================================================

async def main() -> None:
    """Main entry point."""
    global _worker_healthy, _worker_status, _client

    logger.info("=" * 60)
    logger.info(f"Taskbridge Worker Starting v{__version__}")
    logger.info("=" * 60)

    health_port = int(os.environ.get("PORT", "8000"))
    health_runner = await start_health_server(health_port)

    try:
        client = TaskbridgeClient()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        _worker_healthy = False
        _worker_status = "invalid_configuration"
        await health_runner.cleanup()
        sys.exit(1)

    _client = client
    logger.info(f"Machine ID: {client.get_machine_id()}")
    logger.info(f"Endpoint: {client.config.endpoint}")
    logger.info(f"API secret: {client.secret_partial}")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def shutdown_handler():
        logger.info("Shutdown signal received")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, shutdown_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        load_functions(client)

        services = declared_services(client)
        if not services:
            raise ConfigurationError("No functions registered")

        for name in services:
            await client.service(name).start()

        _worker_status = "running"
        logger.info(f"Polling services: {client.active_services}")

        await stop_event.wait()
        _worker_status = "stopping"

    except Exception as e:
        logger.exception(f"Worker failed: {e}")
        _worker_healthy = False
        _worker_status = f"error: {str(e)[:100]}"
        raise
    finally:
        await client.close()
        await health_runner.cleanup()

    logger.info("Taskbridge Worker stopped")


def run() -> None:
    """Synchronous entry point."""
    configure_logging(
        level=os.environ.get("TASKBRIDGE_LOG_LEVEL", "INFO"),
        json_output=os.environ.get("TASKBRIDGE_LOG_FORMAT", "").lower() == "json",
    )
    try:
        asyncio.run(main())
    except Exception:
        sys.exit(1)


if __name__ == "__main__":
    run()
