"""Session tracking, creation and cookie identification.

WHAT:
    - track_session: find the active session for (account, session id, visitor)
      or start one; bump the page-view counter on reuse
    - capture_attribution: write-once assignment of initial UTM/referrer/channel
    - create_session: backing service for POST /sessions
    - identify_session: reuse or rotate the `_touchline_sid` cookie value

WHY:
    The first event of a session defines its attribution. Later events in the
    same session never overwrite `initial_utm`, `initial_referrer` or `channel`.

REFERENCES:
    - touchline/models.py: VisitorSession
    - touchline/services/channel_attribution.py
    - touchline/services/utm_capture.py
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional, Tuple
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from touchline.errors import PersistenceConflict, ServiceResult
from touchline.models import Account, Visitor, VisitorSession
from touchline.services.base import internal_error_result
from touchline.services.channel_attribution import classify_channel
from touchline.services.utm_capture import extract_utm
from touchline.services.visitor_service import find_or_create_visitor
from touchline.utils.timestamps import parse_iso8601_or_none, utcnow

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "_touchline_sid"
DEFAULT_SESSION_TIMEOUT_MINUTES = 30

CREATE_SESSION_REQUIRED = ("visitor_id", "session_id", "url")


# =============================================================================
# TRACKING
# =============================================================================

def find_active_session(db: Session, account_id: UUID, session_id: str, visitor: Visitor) -> Optional[VisitorSession]:
    return (
        db.query(VisitorSession)
        .filter(
            VisitorSession.account_id == account_id,
            VisitorSession.session_id == session_id,
            VisitorSession.visitor_id == visitor.id,
            VisitorSession.ended_at.is_(None),
        )
        .order_by(VisitorSession.started_at.desc())
        .first()
    )


def _insert_session(db: Session, session: VisitorSession) -> None:
    try:
        with db.begin_nested():
            db.add(session)
    except IntegrityError as e:
        raise PersistenceConflict(f"Session {session.session_id} was created concurrently") from e


def track_session(
    db: Session,
    account_id: UUID,
    session_id: str,
    visitor: Visitor,
    occurred_at: Optional[datetime] = None,
    is_test: bool = False,
) -> Tuple[VisitorSession, bool]:
    """Resolve the active session for an event.

    Returns:
        (session, created). A new session starts at `occurred_at` (fallback:
        now) with one page view; a reused session gets its counter incremented.
    """
    session = find_active_session(db, account_id, session_id, visitor)
    if session is not None:
        session.increment_page_views()
        return session, False

    session = VisitorSession(
        account_id=account_id,
        visitor_id=visitor.id,
        session_id=session_id,
        started_at=occurred_at or utcnow(),
        page_view_count=1,
        is_test=is_test,
    )
    try:
        _insert_session(db, session)
    except PersistenceConflict as e:
        logger.info("[SESSION] %s, falling back to lookup", e.message)
        existing = find_active_session(db, account_id, session_id, visitor)
        if existing is None:
            raise
        existing.increment_page_views()
        return existing, False

    logger.debug("[SESSION] Started session %s for visitor %s", session_id, visitor.visitor_id)
    return session, True


def capture_attribution(
    db: Session,
    session: VisitorSession,
    utm: Mapping[str, str],
    referrer: Optional[str],
) -> bool:
    """Assign the session's attribution fields unless already captured.

    The write is a conditional UPDATE on `channel IS NULL`, so when two
    transactions race on the same session exactly one of them wins. The loser
    gets the winner's values reloaded onto `session`.

    Returns:
        True when this call wrote the fields, False when they were already set
    """
    if session.attribution_captured:
        return False

    # Pending changes (page view counter) must reach the row before the reload
    db.flush()
    result = db.execute(
        update(VisitorSession)
        .where(VisitorSession.id == session.id, VisitorSession.channel.is_(None))
        .values(
            initial_utm=dict(utm),
            initial_referrer=referrer or None,
            channel=classify_channel(utm, referrer),
        )
        .execution_options(synchronize_session=False)
    )
    db.refresh(session, ["initial_utm", "initial_referrer", "channel"])

    if result.rowcount != 1:
        logger.info("[SESSION] Attribution for session %s already captured concurrently", session.session_id)
        return False
    return True


# =============================================================================
# POST /sessions
# =============================================================================

def _find_session(db: Session, account_id: UUID, session_id: str, visitor: Visitor) -> Optional[VisitorSession]:
    return (
        db.query(VisitorSession)
        .filter(
            VisitorSession.account_id == account_id,
            VisitorSession.session_id == session_id,
            VisitorSession.visitor_id == visitor.id,
        )
        .order_by(VisitorSession.started_at.desc())
        .first()
    )


def create_session(db: Session, account: Account, params: Mapping[str, Any], is_test: bool = False) -> ServiceResult:
    """Register a session explicitly (SDK session start).

    Args:
        db: Database session
        account: Authenticated tenant
        params: {visitor_id, session_id, url, referrer?, started_at?}
        is_test: Request authenticated with a test key

    Returns:
        ServiceResult with data {visitor_id, session_id, channel}
    """
    for name in CREATE_SESSION_REQUIRED:
        value = params.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            return ServiceResult.fail(f"{name} is required")

    visitor_id = params["visitor_id"]
    session_id = params["session_id"]
    url = params["url"]
    referrer = params.get("referrer")
    # Unparseable started_at falls back to now
    started_at = parse_iso8601_or_none(params.get("started_at")) or utcnow()

    try:
        visitor, _ = find_or_create_visitor(db, account.id, visitor_id, is_test=is_test, seen_at=started_at)

        session = _find_session(db, account.id, session_id, visitor)
        if session is None:
            session = VisitorSession(
                account_id=account.id,
                visitor_id=visitor.id,
                session_id=session_id,
                started_at=started_at,
                page_view_count=0,
                is_test=is_test,
            )
            try:
                _insert_session(db, session)
            except PersistenceConflict as e:
                logger.info("[SESSION] %s, falling back to lookup", e.message)
                session = _find_session(db, account.id, session_id, visitor)
                if session is None:
                    raise

        utm = extract_utm(url=url)
        if capture_attribution(db, session, utm, referrer):
            logger.info(
                "[SESSION] Captured channel %s for session %s",
                session.channel, session_id,
                extra={"account_id": str(account.id), "channel": session.channel},
            )

        db.commit()
    except (SQLAlchemyError, PersistenceConflict) as e:
        return internal_error_result(db, e, "create_session", account_id=str(account.id))

    return ServiceResult.ok(visitor_id=visitor_id, session_id=session_id, channel=session.channel)


# =============================================================================
# COOKIE IDENTIFICATION
# =============================================================================

@dataclass
class SessionIdentification:
    session_id: str
    created: bool


def generate_session_id() -> str:
    return secrets.token_hex(32)


def identify_session(
    db: Session,
    account_id: UUID,
    visitor_id: str,
    cookie_value: Optional[str],
    timeout_minutes: int = DEFAULT_SESSION_TIMEOUT_MINUTES,
    now: Optional[datetime] = None,
) -> SessionIdentification:
    """Reuse the session cookie while the stored session is fresh.

    A stored session that started more than `timeout_minutes` ago is ended
    (and committed) and a new session id is issued. A cookie with no stored
    session yet is reused as-is.
    """
    if not cookie_value:
        return SessionIdentification(session_id=generate_session_id(), created=True)

    now = now or utcnow()
    existing = (
        db.query(VisitorSession)
        .join(Visitor, VisitorSession.visitor_id == Visitor.id)
        .filter(
            VisitorSession.account_id == account_id,
            VisitorSession.session_id == cookie_value,
            Visitor.visitor_id == visitor_id,
        )
        .order_by(VisitorSession.started_at.desc())
        .first()
    )

    if existing is None or existing.started_at >= now - timedelta(minutes=timeout_minutes):
        return SessionIdentification(session_id=cookie_value, created=False)

    if existing.active:
        existing.end_session(now)
        db.commit()
        logger.info("[SESSION] Ended expired session %s", cookie_value)

    return SessionIdentification(session_id=generate_session_id(), created=True)
