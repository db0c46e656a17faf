"""Identify and alias endpoints."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from touchline.database import get_db
from touchline.deps import AuthContext, get_api_key_context
from touchline.services.identity_service import alias, identify

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Identity"])


class IdentifyRequest(BaseModel):
    user_id: Optional[str] = None
    visitor_id: Optional[str] = None
    traits: Optional[Any] = None


class AliasRequest(BaseModel):
    visitor_id: Optional[str] = None
    user_id: Optional[str] = None


def _render(result) -> JSONResponse:
    if not result.success:
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"errors": result.errors})
    return JSONResponse(status_code=status.HTTP_200_OK, content={"success": True})


@router.post("/identify")
async def identify_user(
    payload: IdentifyRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_api_key_context),
):
    """Upsert a known user and link the current visitor when given."""
    return _render(identify(db, auth.account, payload.model_dump(), is_test=auth.is_test))


@router.post("/alias")
async def alias_visitor(
    payload: AliasRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_api_key_context),
):
    """Link an existing visitor to an existing identity."""
    return _render(alias(db, auth.account, payload.model_dump(), is_test=auth.is_test))
