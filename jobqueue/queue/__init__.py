"""
Job queue service module.
"""

from jobqueue.queue.service import JobQueueService

__all__ = ["JobQueueService"]
