"""Batch event ingestion.

WHAT:
    Runs every record of a batch independently through validation and then
    either inline processing (`ingest_events`) or the arq queue
    (`queue_events`), and reports partial success.

WHY:
    One bad record never blocks the others. Each accepted record is committed
    on its own, so a failure at index i cannot roll back index j.

OUTPUT SHAPE:
    {
        "accepted": 2,
        "accepted_count": 2,
        "rejected": [{"index": 1, "errors": ["event_type is required"]}],
        "events": [{"id", "type", "visitor_id", "session_id", "status"}, ...]
    }

REFERENCES:
    - touchline/services/event_validation.py
    - touchline/services/event_processing.py
    - touchline/workers/arq_enqueue.py: enqueue_event_processing
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from touchline.errors import INTERNAL_ERROR_MESSAGE
from touchline.services.event_processing import process_event
from touchline.services.event_validation import validate_event
from touchline.telemetry import capture_exception
from touchline.workers import arq_enqueue

logger = logging.getLogger(__name__)

STATUS_ACCEPTED = "accepted"
STATUS_QUEUED = "queued"


@dataclass
class IngestionResult:
    rejected: List[Dict[str, Any]] = field(default_factory=list)
    events: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def accepted_count(self) -> int:
        return len(self.events)

    def reject(self, index: int, errors: Sequence[str]) -> None:
        self.rejected.append({"index": index, "errors": list(errors)})

    def accept(self, record: Mapping[str, Any], status: str, event_id: Optional[UUID] = None) -> None:
        self.events.append({
            "id": str(event_id) if event_id else None,
            "type": record.get("event_type"),
            "visitor_id": record.get("visitor_id"),
            "session_id": record.get("session_id"),
            "status": status,
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accepted": self.accepted_count,
            "accepted_count": self.accepted_count,
            "rejected": self.rejected,
            "events": self.events,
        }


def ingest_events(
    db: Session,
    account_id: UUID,
    records: Sequence[Any],
    is_test: bool = False,
    request_metadata: Optional[Mapping[str, Any]] = None,
) -> IngestionResult:
    """Validate and persist a batch inline.

    Returns:
        IngestionResult; rejected indexes refer to positions in `records`
    """
    result = IngestionResult()

    for index, record in enumerate(records):
        validation = validate_event(record)
        if not validation.valid:
            result.reject(index, validation.errors)
            continue

        processed = process_event(db, account_id, record, is_test=is_test, request_metadata=request_metadata)
        if not processed.success:
            result.reject(index, processed.errors)
            continue

        result.accept(record, STATUS_ACCEPTED, event_id=processed.data["event"].id)

    logger.info(
        "[INGEST] Batch complete: %d accepted, %d rejected",
        result.accepted_count, len(result.rejected),
        extra={"account_id": str(account_id), "is_test": is_test},
    )
    return result


async def queue_events(
    account_id: UUID,
    records: Sequence[Any],
    is_test: bool = False,
    request_metadata: Optional[Mapping[str, Any]] = None,
) -> IngestionResult:
    """Validate a batch and hand valid records to the arq worker.

    Queued records are reported optimistically; their persistence outcome is
    only visible in worker logs and Sentry.
    """
    result = IngestionResult()

    for index, record in enumerate(records):
        validation = validate_event(record)
        if not validation.valid:
            result.reject(index, validation.errors)
            continue

        try:
            await arq_enqueue.enqueue_event_processing(account_id, record, is_test, request_metadata)
        except Exception as e:
            logger.exception("[INGEST] Failed to enqueue event %d: %s", index, e)
            capture_exception(e, extra={"operation": "queue_events", "account_id": str(account_id)})
            result.reject(index, [INTERNAL_ERROR_MESSAGE])
            continue

        result.accept(record, STATUS_QUEUED)

    logger.info(
        "[INGEST] Batch queued: %d queued, %d rejected",
        result.accepted_count, len(result.rejected),
        extra={"account_id": str(account_id), "is_test": is_test},
    )
    return result
