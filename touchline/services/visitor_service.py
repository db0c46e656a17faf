"""Visitor resolution and cookie identification.

WHAT:
    - find_or_create_visitor: idempotent (account, external visitor id) upsert
    - identify_visitor: reuse or mint the `_touchline_vid` cookie value

WHY:
    No locks are taken. The unique constraint on (account_id, visitor_id) is the
    arbiter: a concurrent duplicate insert fails inside a savepoint, the savepoint
    is rolled back and the row written by the winner is read back.

REFERENCES:
    - touchline/models.py: Visitor (uq_visitor_account_external)
    - touchline/services/event_processing.py
    - touchline/services/session_service.py
"""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from touchline.errors import PersistenceConflict
from touchline.models import Visitor
from touchline.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

VISITOR_COOKIE_NAME = "_touchline_vid"
VISITOR_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,}$")


@dataclass
class VisitorIdentification:
    visitor_id: str
    created: bool


def valid_visitor_id(value) -> bool:
    return isinstance(value, str) and bool(VISITOR_ID_PATTERN.match(value))


def generate_visitor_id() -> str:
    return secrets.token_hex(32)


def identify_visitor(cookie_value: Optional[str]) -> VisitorIdentification:
    """Reuse a well-formed visitor cookie, else mint a fresh id."""
    if valid_visitor_id(cookie_value):
        return VisitorIdentification(visitor_id=cookie_value, created=False)
    return VisitorIdentification(visitor_id=generate_visitor_id(), created=True)


def find_visitor(db: Session, account_id: UUID, visitor_id: str, include_test_data: bool = True) -> Optional[Visitor]:
    query = db.query(Visitor).filter(
        Visitor.account_id == account_id,
        Visitor.visitor_id == visitor_id,
    )
    if not include_test_data:
        query = query.filter(Visitor.is_test.is_(False))
    return query.first()


def _insert_visitor(db: Session, visitor: Visitor) -> None:
    """Insert inside a savepoint so a lost race leaves the outer transaction usable."""
    try:
        with db.begin_nested():
            db.add(visitor)
    except IntegrityError as e:
        raise PersistenceConflict(f"Visitor {visitor.visitor_id} was created concurrently") from e


def find_or_create_visitor(
    db: Session,
    account_id: UUID,
    visitor_id: str,
    is_test: bool = False,
    seen_at: Optional[datetime] = None,
) -> Tuple[Visitor, bool]:
    """Resolve a visitor for an account, creating it on first sight.

    Exactly one row write per call: an insert when created, a last-seen update
    otherwise. The lookup spans test and live rows because the uniqueness
    constraint does.

    Args:
        db: Database session (not committed here)
        account_id: Tenant
        visitor_id: Client-supplied external id
        is_test: Test-mode flag for a newly created visitor
        seen_at: Observation time (default: now)

    Returns:
        (visitor, created)
    """
    seen_at = seen_at or utcnow()

    visitor = find_visitor(db, account_id, visitor_id)
    if visitor is not None:
        visitor.touch_last_seen(seen_at)
        return visitor, False

    visitor = Visitor(
        account_id=account_id,
        visitor_id=visitor_id,
        first_seen_at=seen_at,
        last_seen_at=seen_at,
        traits={},
        is_test=is_test,
    )
    try:
        _insert_visitor(db, visitor)
    except PersistenceConflict as e:
        logger.info("[VISITOR] %s, falling back to lookup", e.message)
        existing = find_visitor(db, account_id, visitor_id)
        if existing is None:
            raise
        existing.touch_last_seen(seen_at)
        return existing, False

    logger.debug("[VISITOR] Created visitor %s for account %s", visitor_id, account_id)
    return visitor, True
