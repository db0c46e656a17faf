"""ARQ async worker - background ingestion and attribution.

WHAT:
    Two jobs:
    - process_event_job: persist one validated event (async ingestion mode)
    - calculate_attribution_job: compute credits for one conversion across
      every active attribution model

WHY:
    - Async ingestion keeps request latency flat for large batches
    - Attribution may run up to seven algorithms per conversion and must never
      block the conversion request
    - Failures here are invisible to the original caller: they are logged and
      reported to Sentry

ARCHITECTURE:
    ┌─────────────────┐      delegates to      ┌──────────────────────────┐
    │  arq_worker.py  │───────────────────────▶│ event_processing         │
    │  (orchestrator) │                        │ attribution.calculation_ │
    └─────────────────┘                        │   service                │
                                               └──────────────────────────┘

USAGE:
    arq touchline.workers.arq_worker.WorkerSettings

    # Or use the start script
    python -m touchline.workers.start_arq_worker

REFERENCES:
    - https://arq-docs.helpmanual.io/
    - touchline/workers/arq_enqueue.py
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from touchline.database import get_sync_session
from touchline.deps import get_settings
from touchline.models import Conversion
from touchline.services.attribution.calculation_service import calculate_attribution
from touchline.services.event_processing import process_event
from touchline.telemetry import capture_exception, init_sentry
from touchline.workers.arq_enqueue import QUEUE_NAME, get_redis_settings

logger = logging.getLogger(__name__)


# =============================================================================
# SYNC BODIES (run in a worker thread)
# =============================================================================

def _process_event(account_id: str, event_data: Dict[str, Any], is_test: bool,
                   request_metadata: Optional[Dict[str, Any]]) -> Dict:
    with get_sync_session() as db:
        result = process_event(db, UUID(account_id), event_data, is_test=is_test, request_metadata=request_metadata)
        if not result.success:
            logger.warning("[ARQ] Event rejected for account %s: %s", account_id, result.errors)
            return {"success": False, "errors": result.errors}
        return {"success": True, "event_id": str(result.data["event"].id)}


def _calculate_attribution(conversion_id: str, half_life_days: float) -> Dict:
    with get_sync_session() as db:
        conversion = db.get(Conversion, UUID(conversion_id))
        if conversion is None:
            return {"success": False, "error": "Conversion not found"}
        return calculate_attribution(db, conversion, half_life_days=half_life_days).to_dict()


# =============================================================================
# JOBS
# =============================================================================

async def process_event_job(
    ctx: Dict,
    account_id: str,
    event_data: Dict[str, Any],
    is_test: bool = False,
    request_metadata: Optional[Dict[str, Any]] = None,
) -> Dict:
    """Persist one event queued by async ingestion.

    Args:
        ctx: ARQ context
        account_id: Account UUID string
        event_data: Validated, normalized event record
        is_test: Test-mode flag of the originating API key
        request_metadata: Anonymized request metadata captured at ingestion

    Returns:
        Dict with success status and the event id
    """
    try:
        return await asyncio.to_thread(_process_event, account_id, event_data, is_test, request_metadata)
    except Exception as e:
        logger.exception("[ARQ] Event job failed for account %s: %s", account_id, e)
        capture_exception(e, extra={"operation": "process_event_job", "account_id": account_id})
        return {"success": False, "error": str(e)}


async def calculate_attribution_job(ctx: Dict, conversion_id: str) -> Dict:
    """Compute and persist attribution credits for one conversion.

    Recomputation is safe: each model's prior credit set is replaced.
    """
    logger.info("[ARQ] Starting attribution job for conversion %s", conversion_id)
    half_life_days = get_settings().TIME_DECAY_HALF_LIFE_DAYS

    try:
        result = await asyncio.to_thread(_calculate_attribution, conversion_id, half_life_days)
    except Exception as e:
        logger.exception("[ARQ] Attribution job failed for conversion %s: %s", conversion_id, e)
        capture_exception(e, extra={"operation": "calculate_attribution_job", "conversion_id": conversion_id})
        return {"success": False, "error": str(e)}

    if result.get("success"):
        logger.info("[ARQ] Attribution complete for conversion %s", conversion_id)
    else:
        logger.error("[ARQ] Attribution incomplete for conversion %s: %s", conversion_id, result.get("errors") or result.get("error"))
    return result


# =============================================================================
# LIFECYCLE
# =============================================================================

async def startup(ctx: Dict) -> None:
    """Worker startup - initialize Sentry and log config."""
    import platform

    init_sentry()

    logger.info("=" * 60)
    logger.info("[ARQ] Worker starting up")
    logger.info("=" * 60)
    logger.info("[ARQ] Python: %s", platform.python_version())
    logger.info("[ARQ] Host: %s", platform.node())
    logger.info("[ARQ] Queue: %s", QUEUE_NAME)
    logger.info("[ARQ] Max concurrent jobs: %d", WorkerSettings.max_jobs)
    logger.info("=" * 60)

    ctx["startup_time"] = datetime.now(timezone.utc)
    ctx["jobs_processed"] = 0


async def shutdown(ctx: Dict) -> None:
    """Worker shutdown - log stats."""
    uptime = datetime.now(timezone.utc) - ctx.get("startup_time", datetime.now(timezone.utc))

    logger.info("=" * 60)
    logger.info("[ARQ] Worker shutting down")
    logger.info("[ARQ] Jobs processed: %d", ctx.get("jobs_processed", 0))
    logger.info("[ARQ] Uptime: %s", uptime)
    logger.info("=" * 60)


async def on_job_end(ctx: Dict) -> None:
    """Called after each job completes."""
    ctx["jobs_processed"] = ctx.get("jobs_processed", 0) + 1


# =============================================================================
# WORKER SETTINGS
# =============================================================================

class WorkerSettings:
    """ARQ worker configuration.

    - max_jobs=20: events are small; attribution jobs are short
    - job_timeout=300: 5 minutes per job
    - max_tries=3: transient database/Redis failures are retried
    """

    functions = [
        process_event_job,
        calculate_attribution_job,
    ]

    on_startup = startup
    on_shutdown = shutdown
    after_job_end = on_job_end

    redis_settings = get_redis_settings()

    max_jobs = 20
    job_timeout = 300
    keep_result = 3600
    retry_jobs = True
    max_tries = 3
    health_check_interval = 30

    queue_name = QUEUE_NAME
