"""
Request dependencies for the admin API.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from jobqueue.queue import JobQueue
from jobqueue.worker.main import Dispatcher


def get_queue(request: Request) -> JobQueue:
    """Return the queue attached to the application."""
    queue = getattr(request.app.state, "queue", None)
    if queue is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Queue not initialized",
        )
    return queue


def get_dispatcher(request: Request) -> Dispatcher | None:
    """Return the in-process dispatcher, if the app runs next to one."""
    return getattr(request.app.state, "dispatcher", None)


Queue = Annotated[JobQueue, Depends(get_queue)]
OptionalDispatcher = Annotated[Dispatcher | None, Depends(get_dispatcher)]
