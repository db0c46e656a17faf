"""Conversion tracking endpoint.

WHAT:
    POST /api/v1/conversions records a conversion and schedules attribution.

WHY:
    Attribution fans out over every active model of the account, so it always
    runs in the arq worker. The response reports `attribution.status`
    ("pending") instead of credits.

REFERENCES:
    - touchline/services/conversion_service.py
    - touchline/workers/arq_enqueue.py: enqueue_attribution_calculation
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from touchline.database import get_db
from touchline.deps import AuthContext, get_api_key_context
from touchline.services.conversion_service import conversion_to_dict, track_conversion
from touchline.telemetry import capture_exception
from touchline.workers import arq_enqueue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Conversions"])

ATTRIBUTION_PENDING = "pending"
ATTRIBUTION_NOT_SCHEDULED = "not_scheduled"


class ConversionParams(BaseModel):
    event_id: Optional[str] = None
    visitor_id: Optional[str] = None
    conversion_type: Optional[str] = None
    # Validated by the service (number > 0, map)
    revenue: Optional[Any] = None
    properties: Optional[Any] = None


class ConversionRequest(BaseModel):
    conversion: Optional[ConversionParams] = None


@router.post("/conversions", status_code=status.HTTP_201_CREATED)
async def create_conversion(
    payload: ConversionRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_api_key_context),
):
    """Track a conversion.

    Returns:
        201 {conversion: {...}, attribution: {status: "pending"}}
        422 {errors} on missing identifier/type, bad revenue, or an event or
            visitor outside the calling account
    """
    if payload.conversion is None:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Missing 'conversion' parameter"})

    result = track_conversion(db, auth.account, payload.conversion.model_dump(), is_test=auth.is_test)
    if not result.success:
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"errors": result.errors})

    conversion = result.data["conversion"]
    attribution_status = ATTRIBUTION_PENDING
    try:
        await arq_enqueue.enqueue_attribution_calculation(conversion.id)
    except Exception as e:
        # The conversion is committed; attribution can be recomputed later
        logger.exception("[CONVERSION] Failed to enqueue attribution for %s: %s", conversion.id, e)
        capture_exception(e, extra={"operation": "enqueue_attribution_calculation", "conversion_id": str(conversion.id)})
        attribution_status = ATTRIBUTION_NOT_SCHEDULED

    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={
            "conversion": conversion_to_dict(conversion),
            "attribution": {"status": attribution_status},
        },
    )
