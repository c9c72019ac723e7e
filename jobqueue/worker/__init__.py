"""
Worker module.
Contains the dispatcher, the handler registry and the retry policy.
"""

from jobqueue.worker.handlers import HandlerRegistry, register_builtin_handlers
from jobqueue.worker.main import Dispatcher, run
from jobqueue.worker.retry import RetryPolicy

__all__ = ["Dispatcher", "HandlerRegistry", "RetryPolicy", "register_builtin_handlers", "run"]
