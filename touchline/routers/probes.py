"""Liveness and credential probes."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from touchline.database import check_database, get_db
from touchline.deps import AuthContext, get_api_key_context
from touchline.utils.timestamps import utcnow

router = APIRouter(prefix="/api/v1", tags=["Health"])


@router.get("/health")
def health(db: Session = Depends(get_db)):
    """Unauthenticated health check for load balancers."""
    return {
        "status": "ok",
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {"database": check_database(db)},
    }


@router.get("/validate")
def validate(auth: AuthContext = Depends(get_api_key_context)):
    """Confirm an API key works and report its account and environment."""
    return {
        "valid": True,
        "account_id": str(auth.account.id),
        "environment": auth.api_key.environment.value,
    }
