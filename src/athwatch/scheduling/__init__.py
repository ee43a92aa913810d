"""Background job scheduling."""

from .scheduler import JobScheduler, SchedulerStatus

__all__ = ["JobScheduler", "SchedulerStatus"]
