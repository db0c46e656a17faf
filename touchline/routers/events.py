"""Event ingestion endpoint.

WHAT:
    POST /api/v1/events accepts a batch of tracking events, identifies the
    visitor and session from first-party cookies, and ingests every record
    independently (inline, or via the arq queue when `async` is true).

WHY:
    Browser SDKs batch page views and custom events. Partial success is the
    normal case: the response always reports per-index rejections with 202.

REFERENCES:
    - touchline/services/event_ingestion.py
    - touchline/services/visitor_service.py: identify_visitor
    - touchline/services/session_service.py: identify_session
"""

import logging
from typing import Any, Dict, Mapping, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from touchline.database import get_db
from touchline.deps import AuthContext, Settings, get_api_key_context, get_settings
from touchline.services.event_enrichment import build_request_metadata
from touchline.services.event_ingestion import ingest_events, queue_events
from touchline.services.session_service import SESSION_COOKIE_NAME, identify_session
from touchline.services.visitor_service import VISITOR_COOKIE_NAME, identify_visitor
from touchline.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Events"])


# =============================================================================
# REQUEST SCHEMA
# =============================================================================

class EventBatchRequest(BaseModel):
    """Request body for event batches.

    Example:
        {
            "events": [
                {
                    "type": "page_view",
                    "properties": {"url": "https://x.com/p?utm_source=google&utm_medium=cpc"},
                    "timestamp": "2025-11-30T12:00:00Z"
                }
            ]
        }
    """
    model_config = ConfigDict(populate_by_name=True)

    # Records stay untyped here; each one is validated individually
    events: Optional[Any] = None
    async_mode: bool = Field(False, alias="async")


# =============================================================================
# HELPERS
# =============================================================================

def normalize_record(
    record: Any,
    visitor_id: str,
    session_id: str,
    received_at: str,
) -> Any:
    """Fill identity and timestamp defaults without masking structural errors.

    Non-object records pass through untouched so validation can reject them.
    """
    if not isinstance(record, Mapping):
        return record

    normalized: Dict[str, Any] = dict(record)
    event_type = record.get("event_type", record.get("type"))
    normalized["event_type"] = event_type
    normalized.pop("type", None)
    normalized["visitor_id"] = record.get("visitor_id") or visitor_id
    normalized["session_id"] = record.get("session_id") or session_id
    if record.get("timestamp") is None:
        normalized["timestamp"] = received_at
    return normalized


def request_metadata_for(request: Request) -> Dict[str, Optional[str]]:
    return build_request_metadata(
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        language=request.headers.get("accept-language"),
        dnt=request.headers.get("dnt"),
    )


def set_tracking_cookies(response: JSONResponse, visitor_id: str, session_id: str, settings: Settings) -> None:
    common = {"path": "/", "httponly": True, "samesite": "lax", "secure": settings.SECURE_COOKIES}
    response.set_cookie(
        key=VISITOR_COOKIE_NAME,
        value=visitor_id,
        max_age=settings.VISITOR_COOKIE_MAX_AGE_DAYS * 24 * 60 * 60,
        **common,
    )
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=session_id,
        max_age=settings.SESSION_TIMEOUT_MINUTES * 60,
        **common,
    )


# =============================================================================
# ENDPOINT
# =============================================================================

@router.post("/events", status_code=status.HTTP_202_ACCEPTED)
async def create_events(
    payload: EventBatchRequest,
    request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_api_key_context),
    settings: Settings = Depends(get_settings),
):
    """Ingest a batch of events.

    Returns:
        202 {accepted, accepted_count, rejected: [{index, errors}], events: [...]}
        400 {error} when `events` is missing or not an array
    """
    if payload.events is None:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Missing 'events' parameter"})
    if not isinstance(payload.events, list):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Events must be an array"})

    account_id = auth.account.id
    visitor = identify_visitor(request.cookies.get(VISITOR_COOKIE_NAME))
    session = identify_session(
        db,
        account_id,
        visitor.visitor_id,
        request.cookies.get(SESSION_COOKIE_NAME),
        timeout_minutes=settings.SESSION_TIMEOUT_MINUTES,
    )

    received_at = utcnow().isoformat() + "Z"
    records = [
        normalize_record(record, visitor.visitor_id, session.session_id, received_at)
        for record in payload.events
    ]
    metadata = request_metadata_for(request)

    if payload.async_mode:
        result = await queue_events(account_id, records, is_test=auth.is_test, request_metadata=metadata)
    else:
        result = ingest_events(db, account_id, records, is_test=auth.is_test, request_metadata=metadata)

    response = JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=result.to_dict())
    set_tracking_cookies(response, visitor.visitor_id, session.session_id, settings)
    return response
