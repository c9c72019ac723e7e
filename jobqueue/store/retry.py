"""Transient-failure retries for store calls.

``StoreUnavailable`` is never a job failure: components retry the store
operation with full-jitter exponential backoff and only give up (re-raising
``StoreUnavailable``) after ``store_retry_attempts`` tries. The caller's loop
then logs and tries again on its next tick, so a job is never silently
dropped.

Example:
    >>> job = await retry_store_call(store.load_job, job_id, operation="load_job")
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from jobqueue.config import get_settings
from jobqueue.errors import StoreUnavailable
from jobqueue.observability.metrics import get_metrics

T = TypeVar("T")

logger = logging.getLogger(__name__)


def _log_retry(operation: str) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"Store call {operation} failed; retrying",
            extra={
                "operation": operation,
                "attempt": retry_state.attempt_number,
                "sleep_seconds": round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
                "error": str(error),
            }
        )

    return _before_sleep


def _record_store_error(operation: str) -> Callable[[RetryCallState], None]:
    def _after(retry_state: RetryCallState) -> None:
        if retry_state.outcome is not None and retry_state.outcome.failed:
            get_metrics().record_store_error(operation)

    return _after


async def retry_store_call(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    operation: str | None = None,
    attempts: int | None = None,
    max_delay: float | None = None,
    **kwargs: Any,
) -> T:
    """
    Call a store coroutine, retrying while it raises ``StoreUnavailable``.

    Args:
        func: The store coroutine function.
        *args: Positional arguments for ``func``.
        operation: Name used in logs and metrics. Defaults to ``func.__name__``.
        attempts: Maximum tries. Defaults to ``store_retry_attempts``.
        max_delay: Upper bound for a single backoff sleep.
        **kwargs: Keyword arguments for ``func``.

    Returns:
        Whatever ``func`` returns.

    Raises:
        StoreUnavailable: If every attempt failed.
    """
    settings = get_settings()
    name = operation or getattr(func, "__name__", "store_call")

    retrying = AsyncRetrying(
        retry=retry_if_exception_type(StoreUnavailable),
        stop=stop_after_attempt(attempts if attempts is not None else settings.store_retry_attempts),
        wait=wait_random_exponential(
            multiplier=0.05,
            max=max_delay if max_delay is not None else settings.store_retry_max_delay_seconds,
        ),
        after=_record_store_error(name),
        before_sleep=_log_retry(name),
        reraise=True,
    )

    async for attempt in retrying:
        with attempt:
            return await func(*args, **kwargs)

    raise StoreUnavailable(f"{name}: retries exhausted")  # pragma: no cover
