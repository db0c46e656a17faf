"""Attribution calculator for one (conversion, attribution model) pair.

WHAT:
    Builds the journey with the model's lookback window, runs the model's
    algorithm, enriches every credit with the originating session's captured
    UTM source/medium/campaign, and splits conversion revenue.

WHY:
    Keeps persistence out of the algorithm layer: this module only reads.
    touchline/services/attribution/calculation_service.py writes the rows.

REFERENCES:
    - touchline/services/attribution/journey_builder.py
    - touchline/services/attribution/algorithms.py
"""

import logging
from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from touchline.models import AttributionModel, Conversion, VisitorSession
from touchline.services.attribution.algorithms import DEFAULT_HALF_LIFE_DAYS, get_algorithm
from touchline.services.attribution.journey_builder import build_journey
from touchline.services.utm_capture import UTM_CAMPAIGN, UTM_MEDIUM, UTM_SOURCE

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass
class CalculatedCredit:
    """One algorithm credit, enriched for persistence."""
    session_id: UUID
    channel: str
    credit: float
    revenue_credit: Optional[Decimal] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["session_id"] = str(self.session_id)
        if self.revenue_credit is not None:
            data["revenue_credit"] = str(self.revenue_credit)
        return data


def revenue_share(credit: float, revenue) -> Decimal:
    """round(credit * revenue, 2), half-up, computed in Decimal."""
    return (Decimal(str(credit)) * Decimal(str(revenue))).quantize(CENTS, rounding=ROUND_HALF_UP)


def _sessions_by_id(db: Session, session_ids: List[UUID]) -> Dict[UUID, VisitorSession]:
    if not session_ids:
        return {}
    rows = db.execute(select(VisitorSession).where(VisitorSession.id.in_(session_ids))).scalars().all()
    return {row.id: row for row in rows}


def _utm_value(session: Optional[VisitorSession], key: str) -> Optional[str]:
    if session is None or not session.initial_utm:
        return None
    return session.initial_utm.get(key)


def calculate_credits(
    db: Session,
    conversion: Conversion,
    attribution_model: AttributionModel,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> List[CalculatedCredit]:
    """Compute credits for one conversion under one attribution model.

    Returns:
        Enriched credits in algorithm order; empty when the journey is empty
        (nothing to attribute, not an error)
    """
    touchpoints = build_journey(
        db,
        visitor=conversion.visitor,
        converted_at=conversion.converted_at,
        lookback_days=attribution_model.lookback_days,
        include_test_data=conversion.is_test,
    )
    if not touchpoints:
        logger.info(
            "[ATTRIBUTION] Empty journey for conversion %s (model=%s), skipping",
            conversion.id, attribution_model.name,
        )
        return []

    algorithm = get_algorithm(
        attribution_model.algorithm,
        half_life_days=half_life_days,
        converted_at=conversion.converted_at,
    )
    raw_credits = algorithm.calculate(touchpoints)

    # Bulk lookup of the originating sessions (one query per calculation)
    sessions = _sessions_by_id(db, [c.session_id for c in raw_credits])

    credits: List[CalculatedCredit] = []
    for raw in raw_credits:
        session = sessions.get(raw.session_id)
        credits.append(CalculatedCredit(
            session_id=raw.session_id,
            channel=raw.channel,
            credit=raw.credit,
            revenue_credit=revenue_share(raw.credit, conversion.revenue) if conversion.revenue is not None else None,
            utm_source=_utm_value(session, UTM_SOURCE),
            utm_medium=_utm_value(session, UTM_MEDIUM),
            utm_campaign=_utm_value(session, UTM_CAMPAIGN),
        ))

    return credits
