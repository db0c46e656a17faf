"""Attribution calculation service.

WHAT:
    Runs the calculator for every active attribution model of a conversion's
    account and persists one AttributionCredit row per (model, touchpoint).

WHY:
    Recomputation must supersede, never append: the prior credit set of each
    (conversion, model) pair is deleted in the same transaction that inserts
    the new set. The unique constraint on (conversion, model, session) backs
    this at the storage layer.

ERROR HANDLING:
    Models are committed independently. A failure in one model is logged,
    reported to Sentry and recorded in the result; the other models still run.

REFERENCES:
    - touchline/services/attribution/calculator.py
    - touchline/workers/arq_worker.py: calculate_attribution_job
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from touchline.models import AttributionCredit, AttributionModel, Conversion
from touchline.services.attribution.algorithms import DEFAULT_HALF_LIFE_DAYS
from touchline.services.attribution.calculator import CalculatedCredit, calculate_credits
from touchline.services.attribution_model_service import active_models
from touchline.telemetry import capture_exception

logger = logging.getLogger(__name__)


@dataclass
class AttributionRunResult:
    """Outcome of one calculation run over all active models."""
    credits_by_model: Dict[str, List[CalculatedCredit]] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict:
        return {
            "success": self.success,
            "models": {
                name: [c.to_dict() for c in credits]
                for name, credits in self.credits_by_model.items()
            },
            "errors": self.errors,
        }


def replace_credits(
    db: Session,
    conversion: Conversion,
    attribution_model: AttributionModel,
    credits: List[CalculatedCredit],
) -> None:
    """Swap the stored credit set of one (conversion, model) pair. Not committed."""
    db.query(AttributionCredit).filter(
        AttributionCredit.conversion_id == conversion.id,
        AttributionCredit.attribution_model_id == attribution_model.id,
    ).delete(synchronize_session=False)

    for credit in credits:
        db.add(AttributionCredit(
            account_id=conversion.account_id,
            conversion_id=conversion.id,
            attribution_model_id=attribution_model.id,
            session_id=credit.session_id,
            channel=credit.channel,
            credit=credit.credit,
            revenue_credit=credit.revenue_credit,
            utm_source=credit.utm_source,
            utm_medium=credit.utm_medium,
            utm_campaign=credit.utm_campaign,
            is_test=conversion.is_test,
        ))


def calculate_attribution(
    db: Session,
    conversion: Conversion,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
    models: Optional[List[AttributionModel]] = None,
) -> AttributionRunResult:
    """Compute and persist credits for every active model of the account.

    Args:
        db: Database session
        conversion: Durably created conversion
        half_life_days: Time-decay half-life
        models: Override the model set (default: the account's active models)

    Returns:
        AttributionRunResult keyed by model name
    """
    result = AttributionRunResult()
    models = models if models is not None else active_models(db, conversion.account_id)

    if not models:
        logger.info("[ATTRIBUTION] No active models for account %s", conversion.account_id)
        return result

    for model in models:
        try:
            credits = calculate_credits(db, conversion, model, half_life_days=half_life_days)
            replace_credits(db, conversion, model, credits)
            db.commit()
            result.credits_by_model[model.name] = credits
        except (SQLAlchemyError, ValueError) as e:
            db.rollback()
            logger.exception(
                "[ATTRIBUTION] Model %s failed for conversion %s: %s",
                model.name, conversion.id, e,
                extra={"conversion_id": str(conversion.id), "attribution_model_id": str(model.id)},
            )
            capture_exception(e, extra={
                "operation": "calculate_attribution",
                "conversion_id": str(conversion.id),
                "attribution_model": model.name,
            })
            result.errors[model.name] = str(e)

    logger.info(
        "[ATTRIBUTION] Conversion %s: %d models calculated, %d failed",
        conversion.id, len(result.credits_by_model), len(result.errors),
    )
    return result
