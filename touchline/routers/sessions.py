"""Session registration endpoint (SDK session start)."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from touchline.database import get_db
from touchline.deps import AuthContext, get_api_key_context
from touchline.services.session_service import create_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Sessions"])


class SessionParams(BaseModel):
    visitor_id: Optional[str] = None
    session_id: Optional[str] = None
    url: Optional[str] = None
    referrer: Optional[str] = None
    started_at: Optional[str] = None


class SessionRequest(BaseModel):
    session: Optional[SessionParams] = None


@router.post("/sessions", status_code=status.HTTP_202_ACCEPTED)
async def register_session(
    payload: SessionRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_api_key_context),
):
    """Register a session and capture its attribution fields.

    Returns:
        202 {status, visitor_id, session_id, channel}
        422 {errors} on missing fields
    """
    if payload.session is None:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Missing 'session' parameter"})

    result = create_session(db, auth.account, payload.session.model_dump(), is_test=auth.is_test)
    if not result.success:
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"errors": result.errors})

    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={"status": "accepted", **result.data},
    )
