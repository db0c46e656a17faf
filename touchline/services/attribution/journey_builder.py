"""Journey construction for attribution.

WHAT:
    Returns the ordered touchpoints of a visitor inside the lookback window
    `[converted_at - lookback_days, converted_at)`.

WHY:
    The journey is the only input of the attribution algorithms. Sessions
    without a classified channel carry no attribution signal and are skipped.
"""

import logging
from datetime import datetime, timedelta
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from touchline.models import Visitor, VisitorSession
from touchline.services.attribution.algorithms import Touchpoint

logger = logging.getLogger(__name__)


def lookback_window_start(converted_at: datetime, lookback_days: int) -> datetime:
    return converted_at - timedelta(days=lookback_days)


def build_journey(
    db: Session,
    visitor: Visitor,
    converted_at: datetime,
    lookback_days: int,
    include_test_data: bool = False,
) -> List[Touchpoint]:
    """Build the visitor's touchpoint sequence ending at a conversion.

    Args:
        db: Database session
        visitor: Converting visitor
        converted_at: Conversion time (exclusive upper bound)
        lookback_days: Window length in days (inclusive lower bound)
        include_test_data: Also consider sessions recorded with a test key

    Returns:
        Touchpoints ordered by session start time ascending (empty when the
        visitor has no eligible history)
    """
    query = (
        select(VisitorSession)
        .where(
            VisitorSession.account_id == visitor.account_id,
            VisitorSession.visitor_id == visitor.id,
            VisitorSession.channel.isnot(None),
            VisitorSession.started_at >= lookback_window_start(converted_at, lookback_days),
            VisitorSession.started_at < converted_at,
        )
        .order_by(VisitorSession.started_at.asc(), VisitorSession.created_at.asc())
    )
    if not include_test_data:
        query = query.where(VisitorSession.is_test.is_(False))

    sessions = db.execute(query).scalars().all()

    logger.debug(
        "[JOURNEY] Visitor %s: %d touchpoints in %d-day window",
        visitor.id, len(sessions), lookback_days,
    )

    return [
        Touchpoint(session_id=s.id, channel=s.channel, occurred_at=s.started_at)
        for s in sessions
    ]
