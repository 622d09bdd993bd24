# ============================================================================
# TEST FAKES
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Tests - In-memory control plane and queue
# PURPOSE: Drive the polling agent end to end without network access
# CREATED: 19 OCT 2026
# ============================================================================
"""
Test Fakes

FakeControlPlane records every call and answers with configurable
statuses. FakeBroker holds one in-memory queue and hands out FakeTransport
instances bound to it, so a restarted agent (new transport) keeps reading
the same queue.
"""

import asyncio
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from core.contracts import AgentCredentials, ResultType
from infrastructure.control_plane import ApiResponse
from messaging.transport import QueueMessage, QueueTransport
from worker.codec import Blob, pack, unpack


def registration_body(
    expires_in: timedelta = timedelta(hours=1),
    enabled: bool = True,
    cluster_id: str = "cluster-1",
    queue_url: str = "https://sqs.local/queue-1",
) -> Dict[str, Any]:
    expiration = datetime.now(timezone.utc) + expires_in
    return {
        "queueUrl": queue_url,
        "region": "us-east-1",
        "credentials": {
            "accessKeyId": "AKIA_TEST",
            "secretAccessKey": "secret",
            "sessionToken": "token",
        },
        "expiration": expiration.isoformat(),
        "enabled": enabled,
        "clusterId": cluster_id,
    }


def job_body(
    job_id: str,
    target_fn: str,
    args: Any,
    auth_context: Any = None,
) -> str:
    job = {"id": job_id, "targetFn": target_fn, "targetArgs": pack(args)}
    if auth_context is not None:
        job["authContext"] = auth_context
    return pack(job)


def job_message(job_id: str, target_fn: str, args: Any, auth_context: Any = None) -> QueueMessage:
    return QueueMessage(
        message_id=f"msg-{job_id}",
        receipt_handle=f"rh-{job_id}",
        body=job_body(job_id, target_fn, args, auth_context),
    )


async def wait_for(predicate, timeout: float = 3.0, interval: float = 0.01) -> None:
    """Wait until predicate() is truthy."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("Condition not met within timeout")
        await asyncio.sleep(interval)


# ============================================================================
# CONTROL PLANE
# ============================================================================

class FakeControlPlane:
    """In-memory stand-in for ControlPlaneClient."""

    def __init__(
        self,
        registrations: Optional[List[ApiResponse]] = None,
        result_statuses: Optional[List[int]] = None,
        ack_status: int = 204,
        blob_status: int = 201,
    ):
        self._registrations = deque(registrations or [])
        self._result_statuses = deque(result_statuses or [])
        self.ack_status = ack_status
        self.blob_status = blob_status

        self.machine_calls: List[Dict[str, Any]] = []
        self.acknowledged: List[str] = []
        self.result_calls: List[Dict[str, Any]] = []
        self.blobs: Dict[str, List[Blob]] = defaultdict(list)
        self.pings: List[List[str]] = []
        self.closed = False

    async def create_machine(self, service: str, functions: List[Any]) -> ApiResponse:
        self.machine_calls.append({"service": service, "functions": functions})
        if self._registrations:
            return self._registrations.popleft()
        return ApiResponse(200, registration_body())

    async def acknowledge_job(self, job_id: str) -> ApiResponse:
        self.acknowledged.append(job_id)
        return ApiResponse(self.ack_status)

    async def create_result(
        self,
        job_id: str,
        result: str,
        result_type: ResultType,
        function_execution_time: int,
    ) -> ApiResponse:
        status = self._result_statuses.popleft() if self._result_statuses else 204
        self.result_calls.append({
            "job_id": job_id,
            "result": result,
            "result_type": ResultType(result_type),
            "function_execution_time": function_execution_time,
            "status": status,
        })
        return ApiResponse(status, None if status == 204 else {"error": "failed"})

    async def create_blob(self, job_id: str, blob: Blob) -> ApiResponse:
        self.blobs[job_id].append(blob)
        return ApiResponse(self.blob_status, {"id": f"blob-{len(self.blobs[job_id])}"})

    async def ping_cluster(self, services: List[str]) -> ApiResponse:
        self.pings.append(list(services))
        return ApiResponse(204)

    async def close(self) -> None:
        self.closed = True

    # ------------------------------------------------------------------
    # Inspection helpers
    # ------------------------------------------------------------------

    @property
    def results(self) -> Dict[str, Dict[str, Any]]:
        """Successfully persisted results by job id, content unpacked."""
        persisted = {}
        for call in self.result_calls:
            if call["status"] == 204:
                persisted[call["job_id"]] = {
                    "type": call["result_type"],
                    "content": unpack(call["result"]),
                    "function_execution_time": call["function_execution_time"],
                }
        return persisted


# ============================================================================
# QUEUE
# ============================================================================

class FakeBroker:
    """One in-memory queue shared by every transport it creates."""

    def __init__(self, poll_interval: float = 0.02):
        self.poll_interval = poll_interval
        self.pending: deque = deque()
        self.deleted: List[str] = []
        self.transports: List["FakeTransport"] = []
        self.receive_failures = 0
        self.receive_calls = 0
        self._available = asyncio.Event()

    def send(self, message: QueueMessage) -> None:
        self.pending.append(message)
        self._available.set()

    def fail_receives(self, count: int) -> None:
        self.receive_failures = count

    def transport_factory(self, credentials: AgentCredentials) -> "FakeTransport":
        transport = FakeTransport(self, credentials)
        self.transports.append(transport)
        return transport


class FakeTransport(QueueTransport):
    def __init__(self, broker: FakeBroker, credentials: AgentCredentials):
        self.broker = broker
        self.credentials = credentials
        self.closed = False

    async def receive(
        self,
        max_messages: int,
        wait_time_seconds: int,
        visibility_timeout: Optional[int] = None,
    ) -> List[QueueMessage]:
        broker = self.broker
        broker.receive_calls += 1

        if broker.receive_failures > 0:
            broker.receive_failures -= 1
            raise ConnectionError("queue unavailable")

        if not broker.pending:
            broker._available.clear()
            try:
                await asyncio.wait_for(broker._available.wait(), timeout=broker.poll_interval)
            except asyncio.TimeoutError:
                return []

        batch = []
        while broker.pending and len(batch) < max_messages:
            batch.append(broker.pending.popleft())
        return batch

    async def delete(self, message: QueueMessage) -> None:
        self.broker.deleted.append(message.message_id)

    async def close(self) -> None:
        self.closed = True


class UncancellableTransport(QueueTransport):
    """Receive swallows cancellation until released, so stop() cannot finish."""

    def __init__(self):
        self.released = asyncio.Event()
        self.cancel_attempts = 0
        self.closed = False

    async def receive(
        self,
        max_messages: int,
        wait_time_seconds: int,
        visibility_timeout: Optional[int] = None,
    ) -> List[QueueMessage]:
        while not self.released.is_set():
            try:
                await self.released.wait()
            except asyncio.CancelledError:
                self.cancel_attempts += 1
        return []

    async def delete(self, message: QueueMessage) -> None:
        pass

    async def close(self) -> None:
        self.closed = True
