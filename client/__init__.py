# ============================================================================
# CLIENT MODULE
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Client - Public entry point
# PURPOSE: TaskbridgeClient facade and heartbeat
# CREATED: 19 OCT 2026
# ============================================================================
"""
Client Module

Usage:
    from client import TaskbridgeClient

    client = TaskbridgeClient(api_secret="sk_...")
    client.default.register("hello", hello, HelloInput)
    await client.default.start()
"""

from client.facade import (
    DEFAULT_SERVICE,
    FunctionDefinition,
    RegisteredService,
    TaskbridgeClient,
)
from client.heartbeat import Heartbeat

__all__ = [
    "DEFAULT_SERVICE",
    "FunctionDefinition",
    "RegisteredService",
    "TaskbridgeClient",
    "Heartbeat",
]
