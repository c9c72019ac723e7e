"""
Scheduler module.
Contains the sweeper that promotes due scheduled jobs.
"""

from jobqueue.scheduler.main import Sweeper, run

__all__ = ["Sweeper", "run"]
