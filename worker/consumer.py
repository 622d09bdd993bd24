# ============================================================================
# QUEUE CONSUMER
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Core - Managed queue receive loop
# PURPOSE: Receive job messages and dispatch them with lifecycle events
# CREATED: 19 OCT 2026
# ============================================================================
"""
Queue Consumer

Long-polls a QueueTransport and dispatches each received message to a
handler coroutine.

Features:
- Concurrent message processing, bounded by the batch size
- Delete-on-success; failed messages are left for queue redelivery
- Lifecycle events for supervision (error, empty, response_processed, ...)
- Abortable stop: the in-flight receive is cancelled, dispatched
  messages run to completion
- Event-based readiness/quiescence waits with explicit timeouts

Events:
    started              consumer loop scheduled
    message_received     (message)
    message_processed    (message)         handler returned, message deleted
    empty                                  receive returned no messages
    response_processed   (messages)        batch dispatched
    error                (exception)       receive or delete failed
    processing_error     (exception, message)
    stopped                                loop exited
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from core.errors import StartTimeout, StopTimeout
from messaging.transport import QueueMessage, QueueTransport

logger = logging.getLogger(__name__)


class ConsumerEvent(str, Enum):
    STARTED = "started"
    MESSAGE_RECEIVED = "message_received"
    MESSAGE_PROCESSED = "message_processed"
    EMPTY = "empty"
    RESPONSE_PROCESSED = "response_processed"
    ERROR = "error"
    PROCESSING_ERROR = "processing_error"
    STOPPED = "stopped"


@dataclass
class ConsumerStatus:
    is_running: bool
    is_polling: bool


@dataclass
class ConsumerStats:
    messages_received: int = 0
    messages_processed: int = 0
    processing_errors: int = 0
    receive_errors: int = 0


MessageHandler = Callable[[QueueMessage], Awaitable[Any]]
Listener = Callable[..., Union[None, Awaitable[None]]]


# ============================================================================
# CONSUMER
# ============================================================================

class QueueConsumer:
    """
    Managed consume loop over a queue transport.

    Must be started from within a running event loop.
    """

    def __init__(
        self,
        transport: QueueTransport,
        handle_message: MessageHandler,
        batch_size: int = 10,
        wait_time_seconds: int = 20,
        visibility_timeout: Optional[int] = None,
        error_backoff_seconds: float = 1.0,
    ):
        """
        Initialize consumer.

        Args:
            transport: Queue transport to receive from
            handle_message: Coroutine run for each message
            batch_size: Max messages per receive and max in flight
            wait_time_seconds: Long-poll wait per receive
            visibility_timeout: Optional visibility timeout per receive
            error_backoff_seconds: Pause after a failed receive
        """
        self.transport = transport
        self.handle_message = handle_message
        self.batch_size = max(1, batch_size)
        self.wait_time_seconds = wait_time_seconds
        self.visibility_timeout = visibility_timeout
        self.error_backoff_seconds = error_backoff_seconds

        self._listeners: Dict[ConsumerEvent, List[Listener]] = defaultdict(list)
        self._listener_tasks: Set[asyncio.Task] = set()

        # State
        self._running = False
        self._poll_task: Optional[asyncio.Task] = None
        self._receive_task: Optional[asyncio.Future] = None
        self._active_tasks: Dict[int, asyncio.Task] = {}
        self._polling = asyncio.Event()
        self._stopped = asyncio.Event()
        self._stopped.set()
        self._stop_requested = asyncio.Event()

        self.stats = ConsumerStats()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: Union[ConsumerEvent, str], listener: Listener) -> "QueueConsumer":
        """Subscribe to a lifecycle event. Async listeners run as tasks."""
        self._listeners[ConsumerEvent(event)].append(listener)
        return self

    def remove_all_listeners(self, event: Optional[Union[ConsumerEvent, str]] = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(ConsumerEvent(event), None)

    def _emit(self, event: ConsumerEvent, *args: Any) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                result = listener(*args)
            except Exception:
                logger.exception(f"Listener for '{event.value}' failed")
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._listener_tasks.add(task)
                task.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Async consumer listener failed",
                exc_info=task.exception(),
            )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def status(self) -> ConsumerStatus:
        return ConsumerStatus(
            is_running=self._running,
            is_polling=self._polling.is_set(),
        )

    @property
    def active_count(self) -> int:
        """Messages dispatched and not yet finished."""
        return len(self._active_tasks)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the receive loop."""
        if self._running:
            logger.warning("Consumer already running")
            return

        self._running = True
        self._stop_requested.clear()
        self._stopped.clear()
        self._poll_task = asyncio.ensure_future(self._poll_loop())
        self._emit(ConsumerEvent.STARTED)

    def stop(self, abort: bool = True) -> None:
        """
        Request the loop to stop.

        Args:
            abort: Cancel the in-flight receive instead of waiting for the
                long-poll to return
        """
        if not self._running:
            return

        logger.info("Stopping consumer...")
        self._running = False
        self._stop_requested.set()

        if abort and self._receive_task is not None and not self._receive_task.done():
            self._receive_task.cancel()

    async def wait_until_polling(self, timeout: float) -> None:
        """Wait for the loop to enter its polling state."""
        try:
            await asyncio.wait_for(self._polling.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise StartTimeout(timeout)

    async def wait_until_stopped(self, timeout: float) -> None:
        """Wait for the loop to exit."""
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise StopTimeout(timeout)

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for dispatched messages to finish.

        Returns:
            True if every dispatched message finished within the timeout
        """
        if not self._active_tasks:
            return True

        logger.info(f"Waiting for {len(self._active_tasks)} active messages...")
        _, pending = await asyncio.wait(
            list(self._active_tasks.values()), timeout=timeout
        )
        return not pending

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _poll_loop(self) -> None:
        self._polling.set()
        logger.debug(f"Consumer polling (batch_size={self.batch_size})")

        try:
            while self._running:
                await self._wait_for_capacity()
                if not self._running:
                    break

                available_slots = max(1, self.batch_size - len(self._active_tasks))
                self._receive_task = asyncio.ensure_future(
                    self.transport.receive(
                        available_slots,
                        self.wait_time_seconds,
                        self.visibility_timeout,
                    )
                )

                try:
                    messages = await self._receive_task
                except asyncio.CancelledError:
                    if self._running:
                        raise
                    break
                except Exception as e:
                    self.stats.receive_errors += 1
                    logger.warning(f"Error receiving messages: {e}")
                    self._emit(ConsumerEvent.ERROR, e)
                    await self._pause(self.error_backoff_seconds)
                    continue
                finally:
                    self._receive_task = None

                if not messages:
                    self._emit(ConsumerEvent.EMPTY)
                    continue

                for message in messages:
                    self.stats.messages_received += 1
                    self._emit(ConsumerEvent.MESSAGE_RECEIVED, message)
                    self._dispatch(message)

                self._emit(ConsumerEvent.RESPONSE_PROCESSED, messages)

        finally:
            self._running = False
            self._polling.clear()
            self._stopped.set()
            logger.debug(
                f"Consumer stopped. Stats: received={self.stats.messages_received}, "
                f"processed={self.stats.messages_processed}, "
                f"errors={self.stats.processing_errors}"
            )
            self._emit(ConsumerEvent.STOPPED)

    async def _pause(self, seconds: float) -> None:
        """Sleep, waking early if a stop is requested."""
        if seconds <= 0 or not self._running:
            return
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _wait_for_capacity(self) -> None:
        while self._running and len(self._active_tasks) >= self.batch_size:
            stop_waiter = asyncio.ensure_future(self._stop_requested.wait())
            try:
                await asyncio.wait(
                    [stop_waiter, *self._active_tasks.values()],
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                stop_waiter.cancel()

    def _dispatch(self, message: QueueMessage) -> None:
        task = asyncio.ensure_future(self._process(message))
        key = id(task)
        self._active_tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._active_tasks.pop(k, None))

    async def _process(self, message: QueueMessage) -> None:
        try:
            await self.handle_message(message)
        except Exception as e:
            self.stats.processing_errors += 1
            logger.warning(f"Error processing message {message.message_id}: {e}")
            self._emit(ConsumerEvent.PROCESSING_ERROR, e, message)
            return

        try:
            await self.transport.delete(message)
        except Exception as e:
            logger.warning(f"Error deleting message {message.message_id}: {e}")
            self._emit(ConsumerEvent.ERROR, e)
            return

        self.stats.messages_processed += 1
        self._emit(ConsumerEvent.MESSAGE_PROCESSED, message)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ConsumerEvent",
    "ConsumerStatus",
    "ConsumerStats",
    "MessageHandler",
    "QueueConsumer",
]
