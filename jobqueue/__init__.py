"""
Reliable Background Job Queue

A lease-based job queue with at-least-once delivery, delayed execution,
exponential-backoff retries, dead-lettering, and crash recovery through
an expired-lease reaper.
"""

__version__ = "1.0.0"
