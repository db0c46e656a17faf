#!/usr/bin/env python3
"""Run the touchline arq worker.

Consumes `process_event_job` (async ingestion) and `calculate_attribution_job`
from the arq queue.

USAGE:
    python -m touchline.workers.start_arq_worker

    # equivalent
    arq touchline.workers.arq_worker.WorkerSettings
"""

import logging
import sys

from arq import run_worker

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[logging.StreamHandler(sys.stdout)])


def main() -> None:
    configure_logging()

    # Importing WorkerSettings connects the engine (DATABASE_URL) and reads REDIS_URL
    from touchline.workers.arq_worker import WorkerSettings

    logger.info("[ARQ] Starting touchline worker on queue %s", WorkerSettings.queue_name)
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
