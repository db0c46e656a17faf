"""Single-event processing.

WHAT:
    Turns one validated event record into persisted rows:
    visitor (find-or-create) -> session (track) -> write-once attribution
    capture -> property enrichment -> Event insert -> commit.

WHY:
    Shared by the inline ingestion path and the arq `process_event_job`, so both
    modes produce identical rows.

REFERENCES:
    - touchline/services/event_ingestion.py (inline batches)
    - touchline/workers/arq_worker.py: process_event_job (async batches)
"""

import logging
from typing import Any, Mapping, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from touchline.errors import PersistenceConflict, ServiceResult, TrackingError
from touchline.models import Event
from touchline.services.base import internal_error_result
from touchline.services.event_enrichment import PROPERTY_REFERRER, PROPERTY_URL, enrich_properties
from touchline.services.event_validation import require_valid_event
from touchline.services.session_service import capture_attribution, track_session
from touchline.services.utm_capture import extract_utm
from touchline.services.visitor_service import find_or_create_visitor
from touchline.utils.timestamps import parse_iso8601

logger = logging.getLogger(__name__)


def _record_value(record: Mapping[str, Any], properties: Mapping[str, Any], key: str) -> Optional[str]:
    return record.get(key) or properties.get(key)


def process_event(
    db: Session,
    account_id: UUID,
    record: Mapping[str, Any],
    is_test: bool = False,
    request_metadata: Optional[Mapping[str, Any]] = None,
) -> ServiceResult:
    """Persist one event record, rejecting it when structurally invalid.

    Args:
        db: Database session; committed on success, rolled back on failure
        account_id: Tenant
        record: {event_type, visitor_id, session_id, timestamp, properties,
                 url?, referrer?}
        is_test: Test-mode flag stamped on every row written
        request_metadata: Output of event_enrichment.build_request_metadata

    Returns:
        ServiceResult with data {event, visitor, session, session_created}
    """
    try:
        require_valid_event(record)
        occurred_at = parse_iso8601(record.get("timestamp"))
    except TrackingError as e:
        return ServiceResult.fail(e.errors)

    properties = record.get("properties") or {}
    url = _record_value(record, properties, PROPERTY_URL)
    referrer = _record_value(record, properties, PROPERTY_REFERRER)

    try:
        visitor, _ = find_or_create_visitor(db, account_id, record["visitor_id"], is_test=is_test)
        session, session_created = track_session(
            db, account_id, record["session_id"], visitor,
            occurred_at=occurred_at, is_test=is_test,
        )

        utm = extract_utm(url=url, properties=properties)
        if capture_attribution(db, session, utm, referrer):
            logger.debug("[INGEST] Session %s classified as %s", session.session_id, session.channel)

        event = Event(
            account_id=account_id,
            visitor_id=visitor.id,
            session_id=session.id,
            event_type=record["event_type"],
            occurred_at=occurred_at,
            properties=enrich_properties(properties, url=url, referrer=referrer, request_metadata=request_metadata),
            is_test=is_test,
        )
        db.add(event)
        db.commit()
    except (SQLAlchemyError, PersistenceConflict) as e:
        return internal_error_result(db, e, "process_event", account_id=str(account_id))

    return ServiceResult.ok(event=event, visitor=visitor, session=session, session_created=session_created)
