# ============================================================================
# WORKER MODULE
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Core - Job execution components
# PURPOSE: Payload codec, execution wrapper, queue consumer, polling agent
# CREATED: 19 OCT 2026
# ============================================================================
"""
Worker Module

Components for job execution:
- codec: Payload envelope and blob extraction
- executor: Function execution wrapper
- consumer: Queue receive loop with lifecycle events
- agent: Per-service polling agent
- main: Worker entry point (python -m worker.main)
"""

from worker.codec import (
    Blob,
    ExtractedContent,
    blob,
    extract_blobs,
    insert_blobs,
    pack,
    unpack,
)
from worker.executor import (
    call_maybe_async,
    execute_function,
)
from worker.consumer import (
    ConsumerEvent,
    ConsumerStatus,
    QueueConsumer,
)
from worker.agent import (
    AgentStats,
    PollingAgent,
)

__all__ = [
    # Codec
    "Blob",
    "ExtractedContent",
    "blob",
    "extract_blobs",
    "insert_blobs",
    "pack",
    "unpack",
    # Executor
    "call_maybe_async",
    "execute_function",
    # Consumer
    "ConsumerEvent",
    "ConsumerStatus",
    "QueueConsumer",
    # Agent
    "AgentStats",
    "PollingAgent",
]
