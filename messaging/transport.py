# ============================================================================
# QUEUE TRANSPORT INTERFACE
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Messaging - Transport abstraction
# PURPOSE: Receive/delete contract the queue consumer is written against
# CREATED: 19 OCT 2026
# ============================================================================
"""
Queue Transport Interface

The consumer only needs three operations from a managed queue:
long-poll receive of a batch, delete after successful processing, and
close. Visibility timeouts and redelivery of undeleted messages are the
queue's responsibility.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from core.contracts import AgentCredentials


@dataclass
class QueueMessage:
    """A message received from the queue."""
    message_id: str
    receipt_handle: str
    body: Optional[str]
    attributes: Dict[str, Any] = field(default_factory=dict)


class QueueTransport(ABC):
    """Abstract managed-queue transport."""

    @abstractmethod
    async def receive(
        self,
        max_messages: int,
        wait_time_seconds: int,
        visibility_timeout: Optional[int] = None,
    ) -> List[QueueMessage]:
        """Long-poll for up to max_messages messages."""
        pass

    @abstractmethod
    async def delete(self, message: QueueMessage) -> None:
        """Remove a processed message from the queue."""
        pass

    async def close(self) -> None:
        """Release connections."""
        pass


# Builds a transport bound to a credential snapshot
TransportFactory = Callable[[AgentCredentials], QueueTransport]


__all__ = [
    "QueueMessage",
    "QueueTransport",
    "TransportFactory",
]
