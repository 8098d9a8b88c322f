from __future__ import annotations

import logging

from redis import Redis
from rq import Queue, Retry

from relgraph.core.config import get_settings

logger = logging.getLogger(__name__)

QUEUE_NAME = "relgraph"


def _get_queue() -> Queue:
    settings = get_settings()
    return Queue(QUEUE_NAME, connection=Redis.from_url(settings.redis_url))


def _run_inline(job_name: str, *args, **kwargs):
    from relgraph.workers import jobs

    handler = getattr(jobs, job_name)
    return handler(*args, **kwargs)


def enqueue_job(job_name: str, *args, **kwargs) -> str:
    """Queue ``relgraph.workers.jobs.<job_name>``; inline mode and an unreachable redis run it here."""
    settings = get_settings()
    if settings.queue_mode == "inline":
        _run_inline(job_name, *args, **kwargs)
        return f"inline-{job_name}"

    try:
        retry = None
        if settings.queue_retry_max > 0:
            retry = Retry(max=settings.queue_retry_max, interval=settings.queue_retry_interval_seconds)
        job = _get_queue().enqueue(f"relgraph.workers.jobs.{job_name}", *args, retry=retry, **kwargs)
    except Exception:  # pragma: no cover - network failure fallback
        logger.exception("redis_enqueue_failed_falling_back_inline", extra={"job_name": job_name})
        _run_inline(job_name, *args, **kwargs)
        return f"fallback-inline-{job_name}"
    logger.info("enqueued_job", extra={"job_name": job_name, "job_id": job.id})
    return job.id
