# ============================================================================
# SQS TRANSPORT
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Messaging - Amazon SQS queue transport
# PURPOSE: Receive and delete job messages with temporary credentials
# CREATED: 19 OCT 2026
# ============================================================================
"""
SQS Transport

QueueTransport backed by a boto3 SQS client bound to the temporary
credentials returned by register-machine.

Key Design Decisions:
    - Credentials are passed explicitly; AWS_* environment variables and
      shared config files must not leak into the agent's client
    - Transient transport errors (5xx, throttling) are retried by botocore's
      standard retry mode, not by the consumer
    - boto3 is blocking, so calls run in the default thread pool; an
      aborted receive releases whatever its thread still returns
"""

import asyncio
import functools
import logging
import os
from typing import Any, Callable, List, Optional, Set

import boto3
from botocore.config import Config as BotoConfig

from core.contracts import AgentCredentials
from messaging.transport import QueueMessage, QueueTransport

logger = logging.getLogger(__name__)

# SQS hard limits
MAX_BATCH_SIZE = 10
MAX_WAIT_TIME_SECONDS = 20

DEFAULT_RETRY_CONFIG = BotoConfig(
    retries={"max_attempts": 5, "mode": "standard"},
    connect_timeout=10,
    # Must exceed the long-poll wait
    read_timeout=MAX_WAIT_TIME_SECONDS + 10,
)


class SQSTransport(QueueTransport):
    """Amazon SQS transport."""

    def __init__(
        self,
        queue_url: str,
        region: str,
        access_key_id: str,
        secret_access_key: str,
        session_token: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        client: Any = None,
    ):
        self.queue_url = queue_url
        self.region = region
        self._client = client or boto3.client(
            "sqs",
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            aws_session_token=session_token,
            endpoint_url=endpoint_url,
            config=DEFAULT_RETRY_CONFIG,
        )
        self._in_flight: Set["asyncio.Future[Any]"] = set()

    @classmethod
    def from_credentials(
        cls,
        credentials: AgentCredentials,
        endpoint_url: Optional[str] = None,
    ) -> "SQSTransport":
        """
        Build a transport from a credential snapshot.

        TASKBRIDGE_SQS_ENDPOINT_URL overrides the endpoint (local emulators).
        """
        return cls(
            queue_url=credentials.queue_url,
            region=credentials.region,
            access_key_id=credentials.access_key_id,
            secret_access_key=credentials.secret_access_key,
            session_token=credentials.session_token,
            endpoint_url=endpoint_url or os.getenv("TASKBRIDGE_SQS_ENDPOINT_URL"),
        )

    async def _run(self, func: Callable, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, **kwargs))

    async def receive(
        self,
        max_messages: int,
        wait_time_seconds: int,
        visibility_timeout: Optional[int] = None,
    ) -> List[QueueMessage]:
        """
        Long-poll receive of up to ten messages.

        Cancelling the caller does not stop the blocking call in its worker
        thread. Messages that call still returns are released back to the
        queue (visibility 0) instead of staying invisible.
        """
        kwargs = {
            "QueueUrl": self.queue_url,
            "MaxNumberOfMessages": max(1, min(max_messages, MAX_BATCH_SIZE)),
            "WaitTimeSeconds": max(0, min(wait_time_seconds, MAX_WAIT_TIME_SECONDS)),
            "AttributeNames": ["All"],
            "MessageAttributeNames": ["All"],
        }
        if visibility_timeout is not None:
            kwargs["VisibilityTimeout"] = visibility_timeout

        pending = asyncio.ensure_future(self._run(self._client.receive_message, **kwargs))
        self._track(pending)
        try:
            response = await asyncio.shield(pending)
        except asyncio.CancelledError:
            self._track(asyncio.ensure_future(self._release_abandoned(pending)))
            raise

        return [
            QueueMessage(
                message_id=m["MessageId"],
                receipt_handle=m["ReceiptHandle"],
                body=m.get("Body"),
                attributes=m.get("Attributes", {}),
            )
            for m in response.get("Messages", [])
        ]

    def _track(self, future: "asyncio.Future[Any]") -> None:
        self._in_flight.add(future)
        future.add_done_callback(self._in_flight.discard)

    async def _release_abandoned(self, pending: "asyncio.Future[Any]") -> None:
        """Make messages of an abandoned receive visible again."""
        try:
            response = await pending
        except Exception as e:
            logger.warning(f"Aborted receive failed: {e}")
            return

        messages = response.get("Messages", [])
        if not messages:
            return

        entries = [
            {"Id": str(i), "ReceiptHandle": m["ReceiptHandle"], "VisibilityTimeout": 0}
            for i, m in enumerate(messages)
        ]
        try:
            result = await self._run(
                self._client.change_message_visibility_batch,
                QueueUrl=self.queue_url,
                Entries=entries,
            )
        except Exception as e:
            logger.warning(f"Failed to release {len(entries)} abandoned messages: {e}")
            return

        failed = result.get("Failed", [])
        if failed:
            logger.warning(f"Failed to release {len(failed)} abandoned messages: {failed}")
        logger.info(f"Released {len(entries) - len(failed)} messages from an aborted receive")

    async def delete(self, message: QueueMessage) -> None:
        await self._run(
            self._client.delete_message,
            QueueUrl=self.queue_url,
            ReceiptHandle=message.receipt_handle,
        )

    async def close(self) -> None:
        """Wait for in-flight calls (and releases), then close the client."""
        while True:
            pending = [f for f in self._in_flight if not f.done()]
            if not pending:
                break
            await asyncio.wait(pending)
        self._client.close()


__all__ = [
    "MAX_BATCH_SIZE",
    "MAX_WAIT_TIME_SECONDS",
    "SQSTransport",
]
