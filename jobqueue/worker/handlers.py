"""
Default job handlers.

register_default_handlers() is called by WorkerPool.start() every time, so
these types are always available and re-registering them is harmless.
"""

import logging

import httpx

from jobqueue.types.job import JobRecord
from jobqueue.worker.registry import HandlerRegistry

logger = logging.getLogger(__name__)

HTTP_REQUEST_TIMEOUT_SECONDS = 30.0


async def handle_echo(job: JobRecord) -> None:
    """
    Echo handler for smoke testing a deployment.

    Logs the payload and succeeds.
    """
    logger.info(
        "Echo job executing",
        extra={"job_id": str(job.id), "user_id": job.user_id, "payload": job.payload},
    )


async def handle_http_request(job: JobRecord) -> None:
    """
    Make an HTTP request.

    Payload should contain:
    - url: The URL to request
    - method: HTTP method (GET, POST, etc.)
    - headers: Optional headers
    - body: Optional JSON request body

    A transport error or a non-2xx response raises, so the job is retried
    until its budget runs out.
    """
    data = job.payload if isinstance(job.payload, dict) else {}
    url = data.get("url")
    if not url:
        raise ValueError("Missing 'url' in payload")

    method = data.get("method", "GET").upper()

    logger.info(
        "HTTP request job",
        extra={"job_id": str(job.id), "method": method, "url": url},
    )

    async with httpx.AsyncClient(timeout=HTTP_REQUEST_TIMEOUT_SECONDS) as client:
        response = await client.request(
            method=method,
            url=url,
            headers=data.get("headers") or {},
            json=data.get("body") if method in ("POST", "PUT", "PATCH") else None,
        )
    response.raise_for_status()


def register_default_handlers(registry: HandlerRegistry) -> None:
    """Register the built-in job types."""
    registry.register("echo", handle_echo)
    registry.register("http-request", handle_http_request)
