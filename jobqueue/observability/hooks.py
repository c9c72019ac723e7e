"""
Observability hooks.

Queue components report lifecycle changes through a ``QueueHooks`` instance
injected at construction. The base class is a no-op; ``MetricsHooks``
forwards to Prometheus, ``EventHooks`` turns each call into a ``JobEvent``
for subscribers, and ``CompositeHooks`` fans out to several hooks.
"""

import logging
from collections.abc import Callable, Iterable, Mapping

from jobqueue.constants import Collection
from jobqueue.observability.metrics import MetricsCollector, get_metrics
from jobqueue.types.events import JobEvent
from jobqueue.types.job import Job

logger = logging.getLogger(__name__)

EventListener = Callable[[JobEvent], None]


class QueueHooks:
    """Callbacks invoked by the queue components. All methods are no-ops."""

    def on_enqueued(self, job: Job) -> None:
        pass

    def on_claimed(self, job: Job, worker_id: str) -> None:
        pass

    def on_completed(self, job: Job, duration_seconds: float) -> None:
        pass

    def on_failed(
        self,
        job: Job,
        error: str,
        will_retry: bool,
        duration_seconds: float | None = None,
    ) -> None:
        pass

    def on_dead_lettered(self, job: Job) -> None:
        pass

    def on_lease_expired(self, job: Job) -> None:
        pass

    def on_depth(self, counts: Mapping[Collection, int]) -> None:
        pass

    def on_in_flight(self, worker_id: str, count: int) -> None:
        pass


class MetricsHooks(QueueHooks):
    """Publishes hook calls as Prometheus metrics."""

    def __init__(self, metrics: MetricsCollector | None = None):
        self._metrics = metrics or get_metrics()

    def on_enqueued(self, job: Job) -> None:
        self._metrics.record_job_enqueued(job.type, job.state.value)

    def on_claimed(self, job: Job, worker_id: str) -> None:
        self._metrics.record_lease_acquired(worker_id)

    def on_completed(self, job: Job, duration_seconds: float) -> None:
        self._metrics.record_job_completed(job.type, duration_seconds)

    def on_failed(
        self,
        job: Job,
        error: str,
        will_retry: bool,
        duration_seconds: float | None = None,
    ) -> None:
        self._metrics.record_job_failed(job.type, will_retry, duration_seconds)

    def on_dead_lettered(self, job: Job) -> None:
        self._metrics.record_job_dead_lettered(job.type)

    def on_lease_expired(self, job: Job) -> None:
        self._metrics.record_lease_expired(job.type)

    def on_depth(self, counts: Mapping[Collection, int]) -> None:
        for collection, depth in counts.items():
            self._metrics.update_queue_depth(collection.value, depth)

    def on_in_flight(self, worker_id: str, count: int) -> None:
        self._metrics.update_in_flight(worker_id, count)


class EventHooks(QueueHooks):
    """
    Converts hook calls into ``JobEvent`` objects for subscribers.

    A listener that raises is logged and skipped; it never interrupts job
    processing.
    """

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []
        self.depths: dict[Collection, int] = {}

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            A function that removes the listener again.
        """
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _emit(self, event: JobEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Job event listener failed",
                    extra={"event_type": event.event_type, "job_id": event.job_id},
                )

    def on_enqueued(self, job: Job) -> None:
        self._emit(JobEvent.job_enqueued(job))

    def on_claimed(self, job: Job, worker_id: str) -> None:
        self._emit(JobEvent.job_started(job, worker_id))

    def on_completed(self, job: Job, duration_seconds: float) -> None:
        self._emit(JobEvent.job_completed(job, duration_seconds))

    def on_failed(
        self,
        job: Job,
        error: str,
        will_retry: bool,
        duration_seconds: float | None = None,
    ) -> None:
        self._emit(JobEvent.job_failed(job, error, will_retry))

    def on_dead_lettered(self, job: Job) -> None:
        self._emit(JobEvent.job_dead_lettered(job))

    def on_lease_expired(self, job: Job) -> None:
        self._emit(JobEvent.lease_expired(job))

    def on_depth(self, counts: Mapping[Collection, int]) -> None:
        self.depths = dict(counts)


class CompositeHooks(QueueHooks):
    """Fans every hook call out to several hooks, in order."""

    def __init__(self, hooks: Iterable[QueueHooks]):
        self._hooks = list(hooks)

    def on_enqueued(self, job: Job) -> None:
        for hook in self._hooks:
            hook.on_enqueued(job)

    def on_claimed(self, job: Job, worker_id: str) -> None:
        for hook in self._hooks:
            hook.on_claimed(job, worker_id)

    def on_completed(self, job: Job, duration_seconds: float) -> None:
        for hook in self._hooks:
            hook.on_completed(job, duration_seconds)

    def on_failed(
        self,
        job: Job,
        error: str,
        will_retry: bool,
        duration_seconds: float | None = None,
    ) -> None:
        for hook in self._hooks:
            hook.on_failed(job, error, will_retry, duration_seconds)

    def on_dead_lettered(self, job: Job) -> None:
        for hook in self._hooks:
            hook.on_dead_lettered(job)

    def on_lease_expired(self, job: Job) -> None:
        for hook in self._hooks:
            hook.on_lease_expired(job)

    def on_depth(self, counts: Mapping[Collection, int]) -> None:
        for hook in self._hooks:
            hook.on_depth(counts)

    def on_in_flight(self, worker_id: str, count: int) -> None:
        for hook in self._hooks:
            hook.on_in_flight(worker_id, count)


def default_hooks() -> QueueHooks:
    """Hooks used when a component is built without explicit hooks."""
    return MetricsHooks()
