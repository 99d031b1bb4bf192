"""
Timeout and cancellation for blocking calls.

Wraps calls into the credential validator and the billing store so a
caller-supplied deadline or cancel signal ends them promptly.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Optional, TypeVar

from .errors import BadRequestError, QueryCancelledError

T = TypeVar("T")


async def run_cancellable(
    awaitable: Awaitable[T],
    description: str,
    timeout: Optional[float] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> T:
    """Await a call, giving up when the timeout elapses or the event is set.

    The pending call is cancelled before QueryCancelledError is raised,
    so nothing is left running in the background. Cancellation of the
    calling task propagates unchanged after cancelling the call.

    Args:
        awaitable: The call to run
        description: Name of the call for error messages
        timeout: Maximum number of seconds to wait (None for no limit)
        cancel_event: Event that aborts the call when set

    Returns:
        The value returned by the call

    Raises:
        QueryCancelledError: If the timeout or cancel signal fires first
    """
    if timeout is not None and timeout <= 0:
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        raise ValueError("timeout must be > 0")

    task = asyncio.ensure_future(awaitable)
    if cancel_event is None:
        try:
            return await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            raise QueryCancelledError(f"{description} timed out after {timeout}s") from None

    if cancel_event.is_set():
        await _discard(task)
        raise QueryCancelledError(f"{description} cancelled by caller")

    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait(
            {task, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()

    await _discard(task)
    if waiter in done:
        raise QueryCancelledError(f"{description} cancelled by caller")
    raise QueryCancelledError(f"{description} timed out after {timeout}s")


def validate_timeout(timeout: Optional[float]) -> None:
    """Reject a caller time limit that can never be met.

    Raises:
        BadRequestError: If timeout is zero or negative
    """
    if timeout is not None and timeout <= 0:
        raise BadRequestError("timeout", "must be > 0")


async def _discard(task: "asyncio.Future[Any]") -> None:
    """Cancel a task and wait for it to finish."""
    task.cancel()
    # The outcome of an abandoned call is irrelevant
    await asyncio.gather(task, return_exceptions=True)
