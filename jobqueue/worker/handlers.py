"""
Job handler registry and built-in handlers.

Job handlers must be idempotent - they may be executed multiple times
for the same job in case of worker crashes or lease expiry.

A handler is an async callable taking the job payload (``bytes``). It may
return a ``JobResult``, an ``(ok, error)`` tuple, or ``None`` for success.
Raising an exception counts as a failed attempt; raise ``HandlerError`` with
``retryable=False`` to dead-letter the job immediately.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from jobqueue.errors import AlreadyRegistered, HandlerError, InvalidArgument
from jobqueue.types.job import JobResult

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[bytes], Awaitable[Any]]


def _is_async_callable(handler: Any) -> bool:
    if inspect.iscoroutinefunction(handler):
        return True
    call = getattr(handler, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


def normalize_result(outcome: Any) -> JobResult:
    """
    Convert a handler's return value into a ``JobResult``.

    Args:
        outcome: ``JobResult``, ``(ok, error)`` tuple, bool, or None.

    Returns:
        JobResult describing the attempt.
    """
    if isinstance(outcome, JobResult):
        return outcome
    if outcome is None:
        return JobResult.ok()
    if isinstance(outcome, bool):
        return JobResult.ok() if outcome else JobResult.fail("handler reported failure")
    if isinstance(outcome, tuple) and len(outcome) == 2:
        ok, error = outcome
        if ok:
            return JobResult.ok()
        return JobResult.fail(str(error) if error else "handler reported failure")
    return JobResult.fail(f"invalid handler result: {type(outcome).__name__}")


class HandlerRegistry:
    """
    Function table mapping job type to handler.

    Exactly one handler per type.

    Example:
        registry = HandlerRegistry()

        @registry.handler("send_email")
        async def send_email(payload: bytes) -> JobResult:
            ...
    """

    def __init__(self) -> None:
        self._handlers: dict[str, JobHandler] = {}

    def register(self, job_type: str, handler: JobHandler) -> JobHandler:
        """
        Register a handler for a job type.

        Args:
            job_type: The job type this handler processes.
            handler: Async callable taking the payload bytes.

        Returns:
            The handler, unchanged.

        Raises:
            InvalidArgument: If the type is empty or the handler is not async.
            AlreadyRegistered: If the type already has a handler.
        """
        if not isinstance(job_type, str) or not job_type.strip():
            raise InvalidArgument("job type must be a non-empty string")
        if not _is_async_callable(handler):
            raise InvalidArgument(f"handler for {job_type} must be an async callable")
        if job_type in self._handlers:
            raise AlreadyRegistered(job_type)

        self._handlers[job_type] = handler
        logger.info(f"Registered handler for job type: {job_type}")
        return handler

    def handler(self, job_type: str) -> Callable[[JobHandler], JobHandler]:
        """Decorator form of ``register``."""
        def decorator(handler: JobHandler) -> JobHandler:
            return self.register(job_type, handler)
        return decorator

    def get(self, job_type: str) -> JobHandler | None:
        """Get the handler for a job type, or None."""
        return self._handlers.get(job_type)

    def list_handlers(self) -> list[str]:
        """List all registered job types."""
        return list(self._handlers.keys())

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._handlers

    async def execute(self, job_type: str, payload: bytes, job_id: str | None = None) -> JobResult:
        """
        Run the handler registered for ``job_type``.

        Handler exceptions are converted into failed results; cancellation
        (deadline exceeded) propagates to the caller.

        Args:
            job_type: The job type.
            payload: The job payload.
            job_id: Used for log context only.

        Returns:
            JobResult from the handler.
        """
        handler = self.get(job_type)

        if handler is None:
            logger.error(
                f"No handler for job type: {job_type}",
                extra={"job_id": job_id}
            )
            return JobResult.fail(f"No handler registered for job type: {job_type}")

        try:
            outcome = await handler(payload)
        except HandlerError as e:
            logger.warning(
                "Handler reported error",
                extra={"job_id": job_id, "error": str(e), "retryable": e.retryable}
            )
            return JobResult.fail(str(e), retryable=e.retryable)
        except Exception as e:
            logger.exception(
                "Handler raised exception",
                extra={"job_id": job_id, "error": str(e)}
            )
            return JobResult.fail(f"Handler exception: {e}")

        return normalize_result(outcome)


# ============================================================================
# Built-in job handlers
# ============================================================================


async def handle_echo(payload: bytes) -> JobResult:
    """
    Echo handler for testing.

    Simply returns the input payload as output.
    """
    return JobResult.ok({"echo": payload.decode("utf-8", errors="replace")})


async def handle_sleep(payload: bytes) -> JobResult:
    """
    Sleep handler for testing delays and lease deadlines.

    Payload is the number of seconds to sleep, as ASCII (``b"2.5"``).
    """
    try:
        duration = float(payload.decode("ascii") or 1)
    except ValueError:
        return JobResult.fail(f"invalid sleep duration: {payload!r}", retryable=False)

    await asyncio.sleep(duration)
    return JobResult.ok({"slept_for": duration})


async def handle_noop_fail(payload: bytes) -> tuple[bool, str]:
    """
    Handler that always fails - for testing retry logic.
    """
    return False, "noop-fail: intentional failure"


BUILTIN_HANDLERS: dict[str, JobHandler] = {
    "echo": handle_echo,
    "sleep": handle_sleep,
    "noop-fail": handle_noop_fail,
}


def register_builtin_handlers(registry: HandlerRegistry) -> HandlerRegistry:
    """Register the built-in test handlers that are not registered yet."""
    for job_type, handler in BUILTIN_HANDLERS.items():
        if job_type not in registry:
            registry.register(job_type, handler)
    return registry
