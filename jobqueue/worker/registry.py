"""
Handler registry mapping job types to async handler functions.

Job handlers must be idempotent - they may be executed more than once for
the same job after a worker crash or an expired visibility timeout.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from jobqueue.types.job import JobRecord

logger = logging.getLogger(__name__)

# Type alias for job handler functions. Returning means success, raising
# means failure.
JobHandler = Callable[[JobRecord], Awaitable[Any]]


class HandlerRegistry:
    """
    Mapping from job type to the handler that processes it.

    Registering a type again replaces the previous handler, so a job is
    always dispatched to exactly one handler.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, JobHandler] = {}

    def register(self, job_type: str, handler: JobHandler) -> JobHandler:
        """
        Register (or replace) the handler for a job type.

        Args:
            job_type: The job type this handler processes.
            handler: Async callable receiving the JobRecord.

        Returns:
            The handler, unchanged.
        """
        if not job_type:
            raise ValueError("job_type must be a non-empty string")
        self._handlers[job_type] = handler
        logger.info(f"Registered handler for job type: {job_type}")
        return handler

    def handler(self, job_type: str) -> Callable[[JobHandler], JobHandler]:
        """
        Decorator form of register().

        Example:
            @registry.handler("send-email")
            async def send_email(job: JobRecord) -> None:
                ...
        """
        def decorator(handler: JobHandler) -> JobHandler:
            return self.register(job_type, handler)
        return decorator

    def get(self, job_type: str) -> JobHandler | None:
        """Get the handler for a job type, or None if there is none."""
        return self._handlers.get(job_type)

    def job_types(self) -> list[str]:
        """List all registered job types."""
        return list(self._handlers.keys())

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
