"""Conversion tracking.

WHAT:
    Validates and persists a conversion tied to an event or a visitor of the
    calling tenant. Attribution is NOT computed here: the router enqueues
    `calculate_attribution_job` after this service has committed.

WHY:
    A conversion may fan out into one algorithm run per active attribution
    model; that work must never block the request that created it.

REFERENCES:
    - touchline/routers/conversions.py
    - touchline/services/attribution/calculation_service.py
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from touchline.errors import IdentifierResolutionError, ServiceResult
from touchline.models import Account, Conversion, Event
from touchline.services.base import internal_error_result
from touchline.services.visitor_service import find_visitor
from touchline.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

# Largest value Conversion.revenue (Numeric(10, 2)) can hold
MAX_REVENUE = Decimal("99999999.99")


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def parse_revenue(value: Any) -> Tuple[Optional[Decimal], Optional[str]]:
    """Returns (revenue, error). Absent revenue is valid and yields None."""
    if value is None or value == "":
        return None, None
    if isinstance(value, bool):
        return None, "revenue must be a number"
    try:
        revenue = Decimal(str(value))
    except InvalidOperation:
        return None, "revenue must be a number"
    if not revenue.is_finite():
        return None, "revenue must be a number"
    if revenue <= 0:
        return None, "revenue must be greater than 0"
    if revenue > MAX_REVENUE:
        return None, "revenue is too large"
    return revenue, None


def _resolve_event(db: Session, account: Account, event_id: Any) -> Event:
    try:
        event_uuid = UUID(str(event_id))
    except ValueError as e:
        raise IdentifierResolutionError("Event not found") from e

    event = db.get(Event, event_uuid)
    if event is None:
        raise IdentifierResolutionError("Event not found")
    if event.account_id != account.id:
        raise IdentifierResolutionError("Event belongs to different account")
    return event


def conversion_to_dict(conversion: Conversion) -> Dict[str, Any]:
    return {
        "id": str(conversion.id),
        "conversion_type": conversion.conversion_type,
        "revenue": str(conversion.revenue) if conversion.revenue is not None else None,
        "converted_at": conversion.converted_at.isoformat() + "Z",
        "visitor_id": conversion.visitor.visitor_id,
        "event_id": str(conversion.event_id) if conversion.event_id else None,
        "session_id": str(conversion.session_id) if conversion.session_id else None,
        "is_test": conversion.is_test,
    }


def track_conversion(db: Session, account: Account, params: Mapping[str, Any], is_test: bool = False) -> ServiceResult:
    """Create a conversion from an event id or a visitor id.

    Args:
        params: {event_id | visitor_id, conversion_type, revenue?, properties?}

    Returns:
        ServiceResult with data {conversion}. Structural and resolution errors
        are returned as a flat error list.
    """
    event_id = params.get("event_id")
    visitor_id = params.get("visitor_id")
    conversion_type = params.get("conversion_type")
    properties = params.get("properties") or {}

    errors: List[str] = []
    if not _present(event_id) and not _present(visitor_id):
        errors.append("event_id or visitor_id is required")
    if not _present(conversion_type):
        errors.append("conversion_type is required")
    revenue, revenue_error = parse_revenue(params.get("revenue"))
    if revenue_error:
        errors.append(revenue_error)
    if not isinstance(properties, Mapping):
        errors.append("properties must be a hash")
    if errors:
        return ServiceResult.fail(errors)

    try:
        if _present(event_id):
            event = _resolve_event(db, account, event_id)
            visitor_pk, session_pk, event_pk = event.visitor_id, event.session_id, event.id
            converted_at = event.occurred_at
        else:
            visitor = find_visitor(db, account.id, visitor_id)
            if visitor is None:
                raise IdentifierResolutionError("Visitor not found")
            visitor_pk, session_pk, event_pk = visitor.id, None, None
            converted_at = utcnow()
    except IdentifierResolutionError as e:
        return ServiceResult.fail(e.errors)

    try:
        conversion = Conversion(
            account_id=account.id,
            visitor_id=visitor_pk,
            session_id=session_pk,
            event_id=event_pk,
            conversion_type=conversion_type,
            revenue=revenue,
            properties=dict(properties),
            converted_at=converted_at,
            is_test=is_test,
        )
        db.add(conversion)
        db.commit()
        db.refresh(conversion)
    except SQLAlchemyError as e:
        return internal_error_result(db, e, "track_conversion", account_id=str(account.id))

    logger.info(
        "[CONVERSION] Tracked %s conversion %s",
        conversion_type, conversion.id,
        extra={"account_id": str(account.id), "is_test": is_test},
    )
    return ServiceResult.ok(conversion=conversion)
