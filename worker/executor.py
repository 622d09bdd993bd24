# ============================================================================
# FUNCTION EXECUTOR
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Core - Handler execution wrapper
# PURPOSE: Authenticate, run and time a handler; classify the outcome
# CREATED: 19 OCT 2026
# ============================================================================
"""
Function Executor

Executes a registered handler with:
- Optional pre-execution authentication
- Optional timeout enforcement
- Timing (milliseconds, handler only; authentication is not counted)
- Error capture into a serializable rejection

execute_function() never raises: every failure path resolves to a
rejection ResultEnvelope so the agent always has an outcome to persist.
"""

import asyncio
import contextvars
import functools
import inspect
import logging
import time
from typing import Any, Callable, Optional

from core.contracts import ResultEnvelope
from core.errors import AuthContextRequired, FunctionTimeout, serialize_error

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


async def call_maybe_async(func: Callable, *args: Any) -> Any:
    """
    Call a sync or async callable.

    Coroutine functions are awaited on the loop. Plain callables run in the
    default thread pool (with the caller's context, so log fields carry
    over); an awaitable they return is awaited.
    """
    if asyncio.iscoroutinefunction(func):
        result = await func(*args)
    else:
        loop = asyncio.get_running_loop()
        ctx = contextvars.copy_context()
        result = await loop.run_in_executor(
            None, functools.partial(ctx.run, func, *args)
        )

    if inspect.isawaitable(result):
        result = await result
    return result


async def _run_with_timeout(
    handler: Callable,
    args: Any,
    timeout_seconds: Optional[float],
) -> Any:
    if not timeout_seconds:
        return await call_maybe_async(handler, args)

    task = asyncio.ensure_future(call_maybe_async(handler, args))
    done, _ = await asyncio.wait({task}, timeout=timeout_seconds)
    if not done:
        task.cancel()
        raise FunctionTimeout(timeout_seconds)
    return task.result()


async def execute_function(
    handler: Callable,
    args: Any,
    authenticate: Optional[Callable] = None,
    auth_context: Any = None,
    timeout_seconds: Optional[float] = None,
    include_stack: bool = False,
) -> ResultEnvelope:
    """
    Execute a handler and classify the outcome.

    Args:
        handler: Function to run with a single argument
        args: The (already validated) argument
        authenticate: Optional check called as authenticate(auth_context, args)
        auth_context: Job's auth context
        timeout_seconds: Optional execution timeout
        include_stack: Include tracebacks in serialized errors

    Returns:
        ResultEnvelope (resolution or rejection)
    """
    if authenticate is not None and auth_context in (None, ""):
        logger.info("Rejecting job: function requires an auth context")
        return ResultEnvelope.rejection(
            serialize_error(AuthContextRequired(), include_stack=include_stack),
            function_execution_time=0,
        )

    if authenticate is not None:
        try:
            await call_maybe_async(authenticate, auth_context, args)
        except Exception as e:
            logger.info(f"Authentication rejected with {type(e).__name__}: {e}")
            return ResultEnvelope.rejection(
                serialize_error(e, include_stack=include_stack),
                function_execution_time=0,
            )

    # Execution time covers the handler only
    start = time.monotonic()

    try:
        content = await _run_with_timeout(handler, args, timeout_seconds)

    except Exception as e:
        duration_ms = _elapsed_ms(start)
        logger.info(
            f"Function rejected with {type(e).__name__} after {duration_ms}ms: {e}"
        )
        return ResultEnvelope.rejection(
            serialize_error(e, include_stack=include_stack),
            function_execution_time=duration_ms,
        )

    duration_ms = _elapsed_ms(start)
    logger.debug(f"Function resolved in {duration_ms}ms")
    return ResultEnvelope.resolution(content, function_execution_time=duration_ms)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "call_maybe_async",
    "execute_function",
]
