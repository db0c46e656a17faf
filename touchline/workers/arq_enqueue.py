"""ARQ job enqueueing utilities.

WHAT:
    Async helpers that hand work to the arq worker:
    - enqueue_event_processing: one validated event (async ingestion mode)
    - enqueue_attribution_calculation: one durably created conversion

WHY:
    - FastAPI routes are async and can await the enqueue without blocking
    - The Redis pool is created on demand and reused

USAGE:
    from touchline.workers.arq_enqueue import enqueue_attribution_calculation

    await enqueue_attribution_calculation(conversion.id)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional
from uuid import UUID

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from touchline.utils.env import env_or_dotenv

logger = logging.getLogger(__name__)

QUEUE_NAME = "arq:queue"
DEFAULT_REDIS_URL = "redis://localhost:6379/0"

# Global pool reference
_arq_pool: Optional[ArqRedis] = None


def get_redis_settings() -> RedisSettings:
    """Build arq connection settings from REDIS_URL.

    `rediss://` URLs enable TLS without certificate verification (managed
    Redis providers terminate TLS with their own certificates).
    """
    settings = RedisSettings.from_dsn(env_or_dotenv("REDIS_URL") or DEFAULT_REDIS_URL)
    if settings.ssl:
        settings.ssl_cert_reqs = "none"
    settings.conn_timeout = 30
    settings.conn_retries = 5
    settings.conn_retry_delay = 1

    logger.info(
        "[ARQ-ENQUEUE] Redis: host=%s, port=%s, ssl=%s, db=%s",
        settings.host, settings.port, settings.ssl, settings.database,
    )
    return settings


async def get_arq_pool() -> ArqRedis:
    """Get or create the ARQ Redis pool."""
    global _arq_pool
    if _arq_pool is None:
        logger.info("[ARQ-ENQUEUE] Creating new Redis pool...")
        _arq_pool = await create_pool(get_redis_settings())
    return _arq_pool


async def enqueue_event_processing(
    account_id: str | UUID,
    event_data: Mapping[str, Any],
    is_test: bool = False,
    request_metadata: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Enqueue one validated event record for background processing.

    Returns:
        Dict with job_id and status
    """
    pool = await get_arq_pool()
    job = await pool.enqueue_job(
        "process_event_job",
        str(account_id),
        dict(event_data),
        is_test,
        dict(request_metadata) if request_metadata is not None else None,
        _queue_name=QUEUE_NAME,
    )

    if job:
        logger.debug("[ARQ] Enqueued event job %s for account %s", job.job_id, account_id)
        return {"job_id": job.job_id, "status": "enqueued"}

    logger.warning("[ARQ] Event job was not enqueued for account %s", account_id)
    return {"job_id": None, "status": "skipped_or_duplicate"}


async def enqueue_attribution_calculation(conversion_id: str | UUID) -> Dict[str, Any]:
    """Enqueue attribution for a committed conversion.

    The job id is derived from the conversion id, so a double enqueue of the
    same conversion collapses into one job while it is pending.
    """
    pool = await get_arq_pool()
    job = await pool.enqueue_job(
        "calculate_attribution_job",
        str(conversion_id),
        _job_id=f"attribution:{conversion_id}",
        _queue_name=QUEUE_NAME,
    )

    if job:
        logger.info("[ARQ] Enqueued attribution job %s for conversion %s", job.job_id, conversion_id)
        return {"job_id": job.job_id, "status": "enqueued"}

    logger.warning("[ARQ] Attribution job already pending for conversion %s", conversion_id)
    return {"job_id": None, "status": "skipped_or_duplicate"}
