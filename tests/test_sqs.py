# ============================================================================
# SQS TRANSPORT TESTS
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Tests - boto3 call shapes and aborted long-polls
# PURPOSE: Verify SQSTransport against a stub boto3 client
# CREATED: 19 OCT 2026
# ============================================================================
"""
SQS Transport Tests

Covers:
1. receive/delete call shapes and batch/wait clamping
2. Messages returned by an aborted receive are released (visibility 0)
3. close() waits for the blocking call before closing the client

Run with:
    pytest tests/test_sqs.py -v
"""

import asyncio
import threading
import time
from typing import Any, Dict, List
from unittest.mock import AsyncMock

from messaging.sqs import SQSTransport
from worker.consumer import QueueConsumer


class StubSQSClient:
    """Blocking stand-in for a boto3 SQS client."""

    def __init__(self, messages: List[Dict[str, Any]], delay: float = 0.0):
        self.messages = messages
        self.delay = delay
        self.receive_calls: List[Dict[str, Any]] = []
        self.deleted: List[str] = []
        self.visibility_changes: List[Dict[str, Any]] = []
        self.receive_finished = threading.Event()
        self.closed_after_receive = None

    def receive_message(self, **kwargs):
        self.receive_calls.append(kwargs)
        time.sleep(self.delay)
        messages, self.messages = self.messages, []
        self.receive_finished.set()
        return {"Messages": messages}

    def delete_message(self, QueueUrl, ReceiptHandle):
        self.deleted.append(ReceiptHandle)

    def change_message_visibility_batch(self, QueueUrl, Entries):
        self.visibility_changes.extend(Entries)
        return {"Successful": [{"Id": e["Id"]} for e in Entries], "Failed": []}

    def close(self):
        self.closed_after_receive = self.receive_finished.is_set()


def sqs_message(n: int) -> Dict[str, Any]:
    return {"MessageId": f"m{n}", "ReceiptHandle": f"rh{n}", "Body": f"body-{n}"}


def make_transport(client: StubSQSClient) -> SQSTransport:
    return SQSTransport(
        queue_url="https://sqs.local/queue-1",
        region="us-east-1",
        access_key_id="AKIA_TEST",
        secret_access_key="secret",
        client=client,
    )


class TestSQSTransport:
    """Tests for SQSTransport."""

    def test_receive_and_delete(self):
        client = StubSQSClient([sqs_message(1)])
        transport = make_transport(client)

        async def run():
            messages = await transport.receive(50, 60, visibility_timeout=30)
            await transport.delete(messages[0])
            await transport.close()
            return messages

        messages = asyncio.run(run())

        assert [m.message_id for m in messages] == ["m1"]
        assert messages[0].body == "body-1"
        call = client.receive_calls[0]
        assert call["MaxNumberOfMessages"] == 10
        assert call["WaitTimeSeconds"] == 20
        assert call["VisibilityTimeout"] == 30
        assert client.deleted == ["rh1"]

    def test_aborted_receive_releases_messages(self):
        client = StubSQSClient([sqs_message(1), sqs_message(2)], delay=0.3)
        transport = make_transport(client)
        handle = AsyncMock()

        async def run():
            consumer = QueueConsumer(transport, handle, wait_time_seconds=20)
            consumer.start()
            await consumer.wait_until_polling(1)
            await asyncio.sleep(0.05)

            consumer.stop(abort=True)
            await consumer.wait_until_stopped(0.2)
            await transport.close()

        asyncio.run(run())

        handle.assert_not_awaited()
        assert [(e["ReceiptHandle"], e["VisibilityTimeout"]) for e in client.visibility_changes] == [
            ("rh1", 0),
            ("rh2", 0),
        ]
        assert client.deleted == []

    def test_close_waits_for_blocking_receive(self):
        client = StubSQSClient([], delay=0.2)
        transport = make_transport(client)

        async def run():
            receive = asyncio.ensure_future(transport.receive(10, 20))
            await asyncio.sleep(0.02)
            receive.cancel()
            await transport.close()

        asyncio.run(run())

        assert client.closed_after_receive is True
        assert client.visibility_changes == []
