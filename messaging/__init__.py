# ============================================================================
# MESSAGING MODULE
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Messaging - Queue transports
# PURPOSE: Queue transport interface and the SQS implementation
# CREATED: 19 OCT 2026
# ============================================================================
"""
Messaging Module

Usage:
    from messaging import SQSTransport

    transport = SQSTransport.from_credentials(credentials)
    messages = await transport.receive(max_messages=10, wait_time_seconds=20)
"""

from messaging.transport import QueueMessage, QueueTransport, TransportFactory
from messaging.sqs import SQSTransport

__all__ = [
    "QueueMessage",
    "QueueTransport",
    "TransportFactory",
    "SQSTransport",
]
