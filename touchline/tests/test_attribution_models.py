"""Integration tests for attribution model configuration

WHAT: Default model seeding, the single-default rule and lookback validation
WHY: The calculation service runs every active model; exactly one of them is
     the account's default
REFERENCES:
    - touchline/services/attribution_model_service.py
"""

import pytest

from touchline.models import AttributionAlgorithmEnum, AttributionModel, AttributionModelTypeEnum
from touchline.services.attribution_model_service import (
    AttributionModelError,
    active_models,
    create_default_models,
    default_model,
    save_attribution_model,
)


def defaults_of(db, account):
    return db.query(AttributionModel).filter(
        AttributionModel.account_id == account.id,
        AttributionModel.is_default.is_(True),
    ).all()


def test_seeds_one_preset_per_algorithm(test_db_session, test_account):
    models = create_default_models(test_db_session, test_account)

    assert {m.algorithm for m in models} == set(AttributionAlgorithmEnum)
    assert all(m.model_type == AttributionModelTypeEnum.preset for m in models)
    assert len(active_models(test_db_session, test_account.id)) == 7
    assert default_model(test_db_session, test_account.id).algorithm == AttributionAlgorithmEnum.linear


def test_new_default_demotes_previous(test_db_session, test_account):
    create_default_models(test_db_session, test_account)

    custom = AttributionModel(
        account_id=test_account.id,
        name="Short Decay",
        model_type=AttributionModelTypeEnum.custom,
        algorithm=AttributionAlgorithmEnum.time_decay,
        lookback_days=7,
        is_default=True,
    )
    save_attribution_model(test_db_session, custom)

    defaults = defaults_of(test_db_session, test_account)
    assert [m.name for m in defaults] == ["Short Decay"]


def test_promoting_existing_model(test_db_session, test_account):
    models = create_default_models(test_db_session, test_account)
    first_touch = next(m for m in models if m.algorithm == AttributionAlgorithmEnum.first_touch)

    first_touch.is_default = True
    save_attribution_model(test_db_session, first_touch)

    assert [m.id for m in defaults_of(test_db_session, test_account)] == [first_touch.id]


def test_default_is_per_account(test_db_session, test_account, test_account_b):
    create_default_models(test_db_session, test_account)
    create_default_models(test_db_session, test_account_b)

    assert len(defaults_of(test_db_session, test_account)) == 1
    assert len(defaults_of(test_db_session, test_account_b)) == 1


def test_missing_lookback_gets_default(test_db_session, test_account):
    model = save_attribution_model(test_db_session, AttributionModel(
        account_id=test_account.id, name="Plain", algorithm=AttributionAlgorithmEnum.linear,
    ))

    assert model.lookback_days == 30


@pytest.mark.parametrize("lookback_days", [0, 366, -1])
def test_lookback_out_of_range(test_db_session, test_account, lookback_days):
    model = AttributionModel(
        account_id=test_account.id,
        name="Broken",
        algorithm=AttributionAlgorithmEnum.linear,
        lookback_days=lookback_days,
    )

    with pytest.raises(AttributionModelError, match="lookback_days must be between 1 and 365"):
        save_attribution_model(test_db_session, model)


def test_name_and_algorithm_required(test_db_session, test_account):
    with pytest.raises(AttributionModelError) as exc_info:
        save_attribution_model(test_db_session, AttributionModel(account_id=test_account.id, name=" "))

    assert "name is required" in str(exc_info.value)
    assert "algorithm is required" in str(exc_info.value)
