"""Attribution model configuration.

WHAT:
    - save_attribution_model: validate and persist a model, keeping exactly one
      default per account
    - create_default_models: seed one active preset per algorithm
    - active_models: the models the calculation service runs

WHY:
    The "one default" invariant is enforced by an explicit check-then-write in
    the same transaction as the save, not by an ORM event hook.
"""

import logging
import uuid
from typing import Dict, List
from uuid import UUID

from sqlalchemy.orm import Session

from touchline.models import (
    DEFAULT_LOOKBACK_DAYS,
    MAX_LOOKBACK_DAYS,
    Account,
    AttributionAlgorithmEnum,
    AttributionModel,
    AttributionModelTypeEnum,
)

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = AttributionAlgorithmEnum.linear

PRESET_NAMES: Dict[AttributionAlgorithmEnum, str] = {
    AttributionAlgorithmEnum.first_touch: "First Touch",
    AttributionAlgorithmEnum.last_touch: "Last Touch",
    AttributionAlgorithmEnum.linear: "Linear",
    AttributionAlgorithmEnum.time_decay: "Time Decay",
    AttributionAlgorithmEnum.u_shaped: "U-Shaped",
    AttributionAlgorithmEnum.w_shaped: "W-Shaped",
    AttributionAlgorithmEnum.participation: "Participation",
}


class AttributionModelError(ValueError):
    """Invalid attribution model configuration."""


def validate_attribution_model(model: AttributionModel) -> List[str]:
    errors: List[str] = []
    if not model.name or not model.name.strip():
        errors.append("name is required")
    if model.algorithm is None:
        errors.append("algorithm is required")
    else:
        try:
            AttributionAlgorithmEnum(model.algorithm)
        except ValueError:
            errors.append(f"algorithm must be one of: {', '.join(a.value for a in AttributionAlgorithmEnum)}")
    lookback = model.lookback_days if model.lookback_days is not None else DEFAULT_LOOKBACK_DAYS
    if not isinstance(lookback, int) or not 1 <= lookback <= MAX_LOOKBACK_DAYS:
        errors.append(f"lookback_days must be between 1 and {MAX_LOOKBACK_DAYS}")
    return errors


def save_attribution_model(db: Session, model: AttributionModel) -> AttributionModel:
    """Persist a model; when it is the default, demote every other default first.

    Raises:
        AttributionModelError: configuration is invalid
    """
    errors = validate_attribution_model(model)
    if errors:
        raise AttributionModelError("; ".join(errors))

    if model.lookback_days is None:
        model.lookback_days = DEFAULT_LOOKBACK_DAYS
    if model.id is None:
        model.id = uuid.uuid4()

    # Demote before the flush so two defaults never coexist, even transiently
    if model.is_default:
        demoted = (
            db.query(AttributionModel)
            .filter(
                AttributionModel.account_id == model.account_id,
                AttributionModel.id != model.id,
                AttributionModel.is_default.is_(True),
            )
            .update({AttributionModel.is_default: False}, synchronize_session="fetch")
        )
        if demoted:
            logger.info("[ATTRIBUTION] %s is now default for account %s (demoted %d)", model.name, model.account_id, demoted)

    db.add(model)
    db.commit()
    db.refresh(model)
    return model


def create_default_models(db: Session, account: Account) -> List[AttributionModel]:
    """Seed one active preset model per algorithm; linear is the default."""
    models = []
    for algorithm, name in PRESET_NAMES.items():
        model = AttributionModel(
            account_id=account.id,
            name=name,
            model_type=AttributionModelTypeEnum.preset,
            algorithm=algorithm,
            lookback_days=DEFAULT_LOOKBACK_DAYS,
            is_active=True,
            is_default=algorithm == DEFAULT_ALGORITHM,
        )
        db.add(model)
        models.append(model)

    db.commit()
    logger.info("[ATTRIBUTION] Seeded %d preset models for account %s", len(models), account.id)
    return models


def active_models(db: Session, account_id: UUID) -> List[AttributionModel]:
    return (
        db.query(AttributionModel)
        .filter(
            AttributionModel.account_id == account_id,
            AttributionModel.is_active.is_(True),
        )
        .order_by(AttributionModel.created_at.asc(), AttributionModel.name.asc())
        .all()
    )


def default_model(db: Session, account_id: UUID):
    return (
        db.query(AttributionModel)
        .filter(AttributionModel.account_id == account_id, AttributionModel.is_default.is_(True))
        .first()
    )
