"""
Worker runtime module.
Contains the handler registry, default handlers and the worker pool.
"""

from jobqueue.worker.handlers import register_default_handlers
from jobqueue.worker.pool import WorkerPool
from jobqueue.worker.registry import HandlerRegistry, JobHandler

__all__ = [
    "WorkerPool",
    "HandlerRegistry",
    "JobHandler",
    "register_default_handlers",
]
