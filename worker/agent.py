# ============================================================================
# POLLING AGENT
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Core - Self-healing job polling loop for one service
# PURPOSE: Register, consume jobs, execute functions, persist results
# CREATED: 19 OCT 2026
# ============================================================================
"""
Polling Agent

One agent per started service. The agent:

1. Registers the service's functions with the control plane and receives
   temporary queue credentials, the queue URL and the cluster id
2. Runs a QueueConsumer against that queue
3. For each job: acknowledge -> validate -> execute -> persist result
   and blobs (in parallel)
4. Watches consumer lifecycle events and, when the credentials are expired
   or within the refresh margin, restarts the consumer with a fresh
   registration

States:
    IDLE -> REGISTERING -> POLLING -> STOPPING -> STOPPED
                                   -> RESTARTING -> REGISTERING

Every claimed job gets exactly one persisted result. Application failures
(unknown function, bad arguments, handler errors) become rejections;
result persistence failures are logged and counted, never raised into
the consumer loop.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import ValidationError

from core.config import PollingDefaults
from core.contracts import AgentCredentials, AgentState, Job, ResultEnvelope
from core.errors import (
    AgentError,
    BlobPersistFailed,
    ControlPlaneError,
    FunctionNotRegistered,
    InvalidArgumentShape,
    InvalidDataType,
    MalformedPayload,
    NotRunning,
    RegistrationFailed,
    ResultPersistFailed,
    SchemaValidationFailed,
    serialize_error,
)
from core.logging import log_checkpoint, log_context
from handlers.registry import FunctionRegistration, FunctionRegistry
from messaging.sqs import SQSTransport
from messaging.transport import QueueMessage, TransportFactory
from worker.codec import Blob, extract_blobs, pack, unpack
from worker.consumer import ConsumerEvent, QueueConsumer

logger = logging.getLogger(__name__)


@dataclass
class AgentStats:
    messages_received: int = 0
    jobs_completed: int = 0
    jobs_rejected: int = 0
    acknowledgements_failed: int = 0
    results_failed: int = 0
    restarts: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


# ============================================================================
# AGENT
# ============================================================================

class PollingAgent:
    """
    Polls the job queue of one service.

    Owns its credentials and consumer exclusively; shares the function
    registry (read-only once started) with other agents.
    """

    def __init__(
        self,
        service_name: str,
        registry: FunctionRegistry,
        control_plane: Any,
        transport_factory: Optional[TransportFactory] = None,
        polling: Optional[PollingDefaults] = None,
        wait_time_seconds: int = 20,
        include_error_stack: bool = False,
        exit_handler: Optional[Callable[[], None]] = None,
    ):
        """
        Initialize agent.

        Args:
            service_name: Service whose functions this agent serves
            registry: Shared function registry
            control_plane: Control-plane client (ControlPlaneClient interface)
            transport_factory: Builds a queue transport from credentials
            polling: Polling tunables
            wait_time_seconds: Long-poll wait per receive
            include_error_stack: Include tracebacks in rejection content
            exit_handler: Called once the agent stops
        """
        self._service_name = service_name
        self.registry = registry
        self.control_plane = control_plane
        self.transport_factory = transport_factory or SQSTransport.from_credentials
        self.polling_config = polling or PollingDefaults()
        self.wait_time_seconds = wait_time_seconds
        self.include_error_stack = include_error_stack
        self._exit_handler = exit_handler

        self.state = AgentState.IDLE
        self.stats = AgentStats()
        self.last_error: Optional[BaseException] = None

        self._credentials: Optional[AgentCredentials] = None
        self._consumer: Optional[QueueConsumer] = None
        self._restart_lock = asyncio.Lock()
        self._retiring: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def service_name(self) -> str:
        return self._service_name

    @property
    def credentials(self) -> Optional[AgentCredentials]:
        return self._credentials

    @property
    def cluster_id(self) -> Optional[str]:
        return self._credentials.cluster_id if self._credentials else None

    @property
    def consumer(self) -> Optional[QueueConsumer]:
        return self._consumer

    @property
    def polling(self) -> bool:
        """True while the consumer loop is running."""
        return self._consumer is not None and self._consumer.status.is_running

    def _set_state(self, state: AgentState) -> None:
        previous = self.state
        self.state = state
        log_checkpoint(
            f"agent_{state.value}",
            {"service": self._service_name, "from": previous.value},
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> str:
        """
        Register and start consuming.

        Returns:
            Cluster id

        Raises:
            RegistrationFailed on a non-200 register-machine response
            StartTimeout if the consumer does not start polling in time
        """
        if self.state is AgentState.STOPPED:
            raise AgentError("Agent has been stopped", {"serviceName": self._service_name})
        if self._consumer is not None:
            raise AgentError("Consumer already started", {"serviceName": self._service_name})

        logger.info(f"Starting polling agent for service '{self._service_name}'")
        return await self._register_and_consume()

    async def _register_and_consume(self) -> str:
        self._set_state(AgentState.REGISTERING)

        functions = self.registry.descriptors(self._service_name)
        logger.debug(f"Registering machine with {len(functions)} functions")

        response = await self.control_plane.create_machine(self._service_name, functions)

        if response.status != 200:
            logger.error(
                f"Failed to register machine: status={response.status}, "
                f"body={str(response.body)[:500]}"
            )
            self._set_state(AgentState.STOPPED)
            raise RegistrationFailed(response.status, response.body)

        try:
            credentials = AgentCredentials.from_registration(response.body)
        except (AttributeError, KeyError, TypeError, ValidationError) as e:
            self._set_state(AgentState.STOPPED)
            raise RegistrationFailed(
                response.status,
                {"error": f"Malformed registration response: {e}"},
            )

        if self._consumer is not None:
            raise AgentError("Consumer already started", {"serviceName": self._service_name})

        # Replace the snapshot wholesale; in-flight jobs keep the old one
        self._credentials = credentials

        consumer = QueueConsumer(
            transport=self.transport_factory(credentials),
            handle_message=self.process_message,
            batch_size=self.polling_config.batch_size,
            wait_time_seconds=self.wait_time_seconds,
            visibility_timeout=self.polling_config.visibility_timeout_seconds,
            error_backoff_seconds=self.polling_config.error_backoff_seconds,
        )
        self._wire(consumer)
        self._consumer = consumer

        with log_context(service=self._service_name, cluster_id=credentials.cluster_id):
            if credentials.enabled:
                consumer.start()
                try:
                    await consumer.wait_until_polling(self.polling_config.start_timeout_seconds)
                except Exception:
                    consumer.stop(abort=True)
                    consumer.remove_all_listeners()
                    self._retire(consumer)
                    self._consumer = None
                    self._set_state(AgentState.STOPPED)
                    raise
                self._set_state(AgentState.POLLING)
            else:
                logger.warning("Polling is disabled for this machine by the control plane")
                self._set_state(AgentState.IDLE)

        return credentials.cluster_id

    def _wire(self, consumer: QueueConsumer) -> None:
        consumer.on(ConsumerEvent.ERROR, self._on_consumer_error)
        consumer.on(ConsumerEvent.EMPTY, self.check_and_restart_if_needed)
        consumer.on(ConsumerEvent.RESPONSE_PROCESSED, self.check_and_restart_if_needed)
        consumer.on(ConsumerEvent.PROCESSING_ERROR, self._on_processing_error)
        consumer.on(
            ConsumerEvent.MESSAGE_RECEIVED,
            lambda message: logger.debug(f"Message received: {message.message_id}"),
        )
        consumer.on(
            ConsumerEvent.MESSAGE_PROCESSED,
            lambda message: logger.debug(f"Message processed: {message.message_id}"),
        )
        consumer.on(ConsumerEvent.STOPPED, lambda: logger.info("Queue consumer stopped"))

    async def _on_consumer_error(self, error: BaseException) -> None:
        logger.warning(f"Error in queue consumer: {error}")
        await self.check_and_restart_if_needed()

    def _on_processing_error(self, error: BaseException, message: QueueMessage) -> None:
        logger.error(f"Processing error for message {message.message_id}: {error}")

    async def stop(self) -> None:
        """
        Stop consuming.

        Aborts the in-flight receive; jobs already dispatched run to
        completion and their results are still persisted.

        Raises:
            NotRunning if no consumer exists
            StopTimeout if the consumer loop does not exit in time; the
                agent is still left STOPPED with its listeners removed
        """
        logger.info(f"Quitting polling agent for service '{self._service_name}'")

        async with self._restart_lock:
            consumer = self._consumer
            if consumer is None:
                raise NotRunning(self._service_name)

            self._set_state(AgentState.STOPPING)
            consumer.stop(abort=True)
            try:
                await consumer.wait_until_stopped(self.polling_config.stop_timeout_seconds)
            finally:
                consumer.remove_all_listeners()
                self._retire(consumer)
                self._set_state(AgentState.STOPPED)
                self._call_exit_handler()

    async def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for retired consumers to finish their dispatched jobs.

        Returns:
            True if all finished within the timeout
        """
        if not self._retiring:
            return True
        _, pending = await asyncio.wait(list(self._retiring), timeout=timeout)
        return not pending

    def _retire(self, consumer: QueueConsumer) -> None:
        """Let dispatched jobs finish, then release the old transport."""
        async def retire() -> None:
            finished = await consumer.drain(self.polling_config.shutdown_timeout_seconds)
            if not finished:
                logger.warning(
                    f"{consumer.active_count} jobs still running after "
                    f"{self.polling_config.shutdown_timeout_seconds}s"
                )
            await consumer.transport.close()

        task = asyncio.ensure_future(retire())
        self._retiring.add(task)
        task.add_done_callback(self._retiring.discard)

    def _call_exit_handler(self) -> None:
        if self._exit_handler is None:
            return
        try:
            self._exit_handler()
        except Exception:
            logger.exception("Exit handler failed")

    # ------------------------------------------------------------------
    # Credential supervision
    # ------------------------------------------------------------------

    def credentials_need_refresh(self, now: Optional[datetime] = None) -> bool:
        credentials = self._credentials
        if credentials is None:
            return False
        return credentials.expires_within(
            self.polling_config.credential_refresh_margin_seconds,
            now or datetime.now(timezone.utc),
        )

    async def check_and_restart_if_needed(self, *_: Any) -> bool:
        """
        Restart with fresh credentials if the current ones are (nearly) expired.

        Only one restart runs at a time; events arriving while a restart is
        in flight are ignored.

        Returns:
            True if a restart was performed
        """
        if self.state is not AgentState.POLLING or self._restart_lock.locked():
            return False
        if not self.credentials_need_refresh():
            return False

        async with self._restart_lock:
            if self.state is not AgentState.POLLING or not self.credentials_need_refresh():
                return False

            expiration = self._credentials.expiration if self._credentials else None
            logger.info(
                f"Restarting to get new credentials (expiration={expiration})"
            )
            await self._restart()
            return True

    async def _restart(self) -> None:
        self._set_state(AgentState.RESTARTING)
        self.stats.restarts += 1

        try:
            consumer = self._consumer
            if consumer is not None:
                consumer.stop(abort=True)
                try:
                    await consumer.wait_until_stopped(self.polling_config.stop_timeout_seconds)
                finally:
                    consumer.remove_all_listeners()
                    self._retire(consumer)
                    self._consumer = None

            await self._register_and_consume()

        except Exception as e:
            self.last_error = e
            logger.exception(f"Failed to restart polling agent: {e}")
            if self._consumer is not None:
                self._consumer.stop(abort=True)
                self._consumer.remove_all_listeners()
                self._retire(self._consumer)
            self._set_state(AgentState.STOPPED)
            self._call_exit_handler()

    # ------------------------------------------------------------------
    # Message processing
    # ------------------------------------------------------------------

    def _decode_job(self, body: str) -> Job:
        value = unpack(body)
        try:
            return Job.model_validate(value)
        except ValidationError as e:
            raise MalformedPayload(f"Message body is not a job: {e}")

    async def process_message(self, message: QueueMessage) -> None:
        """
        Process one queue message.

        Raises only for transport-level defects (empty or undecodable body);
        those messages are left for queue redelivery.
        """
        if not message.body:
            raise MalformedPayload("Message body is empty")

        job = self._decode_job(message.body)
        self.stats.messages_received += 1

        with log_context(
            job_id=job.id,
            function=job.target_fn,
            service=self._service_name,
            cluster_id=self.cluster_id,
        ):
            registration = self.registry.lookup(job.target_fn)

            await self._acknowledge(job)

            logger.info(f"Executing job (registered={registration is not None})")
            result = await self._execute(job, registration)

            try:
                await self._persist(job, result)
            except ControlPlaneError as e:
                self.stats.results_failed += 1
                logger.error(f"Failed to persist result for job {job.id}: {e}")

    async def _acknowledge(self, job: Job) -> None:
        response = await self.control_plane.acknowledge_job(job.id)
        if response.status != 204:
            self.stats.acknowledgements_failed += 1
            logger.warning(
                f"Failed to acknowledge job {job.id}: status={response.status}, "
                f"body={str(response.body)[:500]}"
            )

    def _reject(self, error: BaseException) -> ResultEnvelope:
        return ResultEnvelope.rejection(
            serialize_error(error, include_stack=self.include_error_stack),
            function_execution_time=0,
        )

    async def _execute(
        self,
        job: Job,
        registration: Optional[FunctionRegistration],
    ) -> ResultEnvelope:
        if registration is None:
            logger.warning(f"Function was not registered: {job.target_fn}")
            return self._reject(FunctionNotRegistered(job.target_fn))

        try:
            args = unpack(job.target_args)
        except MalformedPayload as e:
            logger.warning(f"Job arguments could not be unpacked: {e}")
            return self._reject(e)

        if not isinstance(args, dict):
            logger.warning(
                "Function was called with an invalid argument format. Expected an object."
            )
            return self._reject(InvalidArgumentShape())

        errors = registration.validate(args)
        if errors:
            for error in errors:
                logger.info(f"Function input does not match schema: {error}")
            return self._reject(SchemaValidationFailed(registration.name, errors))

        return await registration.invoke(
            args,
            auth_context=job.auth_context,
            include_stack=self.include_error_stack,
        )

    async def _persist(self, job: Job, result: ResultEnvelope) -> None:
        """
        Persist the result and its blobs in parallel.

        Raises:
            ResultPersistFailed / BlobPersistFailed after all calls settle
        """
        logger.debug(
            f"Persisting job result: type={result.type.value}, "
            f"time={result.function_execution_time}ms"
        )

        extracted = extract_blobs(result.content)
        blobs: List[Blob] = extracted.blobs

        try:
            packed = pack(extracted.content)
        except InvalidDataType as e:
            logger.warning(f"Result could not be serialized: {e}")
            result = ResultEnvelope.rejection(
                serialize_error(e, include_stack=self.include_error_stack),
                function_execution_time=result.function_execution_time,
            )
            packed = pack(result.content)
            blobs = []

        outcomes = await asyncio.gather(
            self._persist_result(job.id, packed, result),
            *[self._persist_blob(job.id, item) for item in blobs],
            return_exceptions=True,
        )

        failures = [o for o in outcomes if isinstance(o, BaseException)]
        for failure in failures:
            if not isinstance(failure, ControlPlaneError):
                raise failure
        for failure in failures[1:]:
            logger.error(f"Additional persistence failure for job {job.id}: {failure}")
        if failures:
            raise failures[0]

        if result.is_resolution:
            self.stats.jobs_completed += 1
        else:
            self.stats.jobs_rejected += 1
        logger.info(f"Completed job {job.id} ({result.type.value})")

    async def _persist_result(self, job_id: str, packed: str, result: ResultEnvelope) -> None:
        attempts = 1 + max(0, self.polling_config.result_persist_retries)

        for attempt in range(attempts):
            response = await self.control_plane.create_result(
                job_id,
                packed,
                result.type,
                result.function_execution_time,
            )
            if response.status == 204:
                return

            retryable = response.status < 0 or response.status >= 500
            if not retryable or attempt == attempts - 1:
                raise ResultPersistFailed(job_id, response.status, response.body)

            delay = self.polling_config.result_persist_backoff_seconds * (2 ** attempt)
            logger.warning(
                f"Result persist failed with {response.status} "
                f"(attempt {attempt + 1}/{attempts}); retrying in {delay}s"
            )
            await asyncio.sleep(delay)

    async def _persist_blob(self, job_id: str, item: Blob) -> None:
        response = await self.control_plane.create_blob(job_id, item)
        if not 200 <= response.status < 300:
            raise BlobPersistFailed(job_id, item.name or "", response.status, response.body)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "AgentStats",
    "PollingAgent",
]
