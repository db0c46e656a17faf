"""Integration tests for POST /api/v1/conversions

WHAT: Conversion validation, tenant scoping and attribution scheduling
WHY: A conversion must never reference another tenant's event, and attribution
     must be scheduled only after the conversion is committed
REFERENCES:
    - touchline/routers/conversions.py
    - touchline/services/conversion_service.py
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from touchline.models import Conversion
from touchline.services.conversion_service import parse_revenue
from touchline.services.event_processing import process_event


@pytest.fixture
def tracked_event(test_db_session):
    """Factory: persist one page_view for an account through the real pipeline."""
    def _track(account, visitor_id="visitor_abc", session_id="sess_1"):
        occurred_at = (datetime.utcnow() - timedelta(hours=1)).replace(microsecond=0)
        result = process_event(test_db_session, account.id, {
            "event_type": "page_view",
            "visitor_id": visitor_id,
            "session_id": session_id,
            "timestamp": occurred_at.isoformat() + "Z",
            "properties": {"url": "https://x.com/checkout"},
        })
        assert result.success, result.errors
        return result.data["event"]

    return _track


class TestCreateConversion:
    def test_from_event_inherits_visitor_session_and_time(self, client, auth_headers, enqueued,
                                                          tracked_event, test_account, test_db_session):
        event = tracked_event(test_account)

        response = client.post("/api/v1/conversions", headers=auth_headers, json={"conversion": {
            "event_id": str(event.id),
            "conversion_type": "purchase",
            "revenue": 100,
            "properties": {"order_id": "A-1"},
        }})

        assert response.status_code == 201
        body = response.json()
        assert body["attribution"] == {"status": "pending"}
        assert body["conversion"]["conversion_type"] == "purchase"
        assert Decimal(body["conversion"]["revenue"]) == Decimal("100")
        assert body["conversion"]["visitor_id"] == "visitor_abc"
        assert body["conversion"]["event_id"] == str(event.id)

        conversion = test_db_session.query(Conversion).one()
        assert conversion.session_id == event.session_id
        assert conversion.converted_at == event.occurred_at
        assert conversion.properties == {"order_id": "A-1"}
        assert enqueued["attribution"] == [str(conversion.id)]

    def test_from_visitor_uses_current_time(self, client, auth_headers, enqueued, make_visitor, test_db_session):
        make_visitor("visitor_abc")

        response = client.post("/api/v1/conversions", headers=auth_headers, json={"conversion": {
            "visitor_id": "visitor_abc",
            "conversion_type": "signup",
        }})

        assert response.status_code == 201
        assert response.json()["conversion"]["revenue"] is None
        conversion = test_db_session.query(Conversion).one()
        assert conversion.session_id is None
        assert abs(datetime.utcnow() - conversion.converted_at) < timedelta(minutes=1)

    def test_test_key_creates_test_conversion(self, client, test_mode_headers, enqueued, make_visitor):
        make_visitor("visitor_abc")

        response = client.post("/api/v1/conversions", headers=test_mode_headers, json={"conversion": {
            "visitor_id": "visitor_abc",
            "conversion_type": "signup",
        }})

        assert response.json()["conversion"]["is_test"] is True

    def test_enqueue_failure_keeps_conversion(self, client, auth_headers, make_visitor, monkeypatch,
                                              test_db_session):
        from touchline.workers import arq_enqueue

        async def broken_enqueue(conversion_id):
            raise ConnectionError("redis unavailable")

        monkeypatch.setattr(arq_enqueue, "enqueue_attribution_calculation", broken_enqueue)
        make_visitor("visitor_abc")

        response = client.post("/api/v1/conversions", headers=auth_headers, json={"conversion": {
            "visitor_id": "visitor_abc",
            "conversion_type": "signup",
        }})

        assert response.status_code == 201
        assert response.json()["attribution"] == {"status": "not_scheduled"}
        assert test_db_session.query(Conversion).count() == 1


class TestConversionValidation:
    def test_missing_identifier_and_type(self, client, auth_headers, enqueued):
        response = client.post("/api/v1/conversions", headers=auth_headers, json={"conversion": {}})

        assert response.status_code == 422
        assert response.json() == {"errors": [
            "event_id or visitor_id is required",
            "conversion_type is required",
        ]}
        assert enqueued["attribution"] == []

    @pytest.mark.parametrize("revenue,error", [
        (-5, "revenue must be greater than 0"),
        (0, "revenue must be greater than 0"),
        ("abc", "revenue must be a number"),
        ("100000000", "revenue is too large"),
    ])
    def test_invalid_revenue(self, client, auth_headers, enqueued, make_visitor, revenue, error):
        make_visitor("visitor_abc")

        response = client.post("/api/v1/conversions", headers=auth_headers, json={"conversion": {
            "visitor_id": "visitor_abc",
            "conversion_type": "purchase",
            "revenue": revenue,
        }})

        assert response.status_code == 422
        assert response.json()["errors"] == [error]

    def test_properties_must_be_a_map(self, client, auth_headers, enqueued, make_visitor):
        make_visitor("visitor_abc")

        response = client.post("/api/v1/conversions", headers=auth_headers, json={"conversion": {
            "visitor_id": "visitor_abc",
            "conversion_type": "purchase",
            "properties": ["x"],
        }})

        assert response.json()["errors"] == ["properties must be a hash"]

    def test_unknown_visitor(self, client, auth_headers, enqueued):
        response = client.post("/api/v1/conversions", headers=auth_headers, json={"conversion": {
            "visitor_id": "nobody_here",
            "conversion_type": "signup",
        }})

        assert response.status_code == 422
        assert response.json() == {"errors": ["Visitor not found"]}

    def test_unknown_event(self, client, auth_headers, enqueued):
        response = client.post("/api/v1/conversions", headers=auth_headers, json={"conversion": {
            "event_id": "00000000-0000-0000-0000-000000000000",
            "conversion_type": "signup",
        }})

        assert response.json() == {"errors": ["Event not found"]}

    def test_event_of_another_account_is_rejected(self, client, auth_headers, enqueued, tracked_event,
                                                  test_account_b, test_db_session):
        foreign_event = tracked_event(test_account_b, visitor_id="their_visitor")

        response = client.post("/api/v1/conversions", headers=auth_headers, json={"conversion": {
            "event_id": str(foreign_event.id),
            "conversion_type": "purchase",
        }})

        assert response.status_code == 422
        assert response.json() == {"errors": ["Event belongs to different account"]}
        assert test_db_session.query(Conversion).count() == 0

    def test_visitor_of_another_account_is_not_found(self, client, auth_headers, enqueued, make_visitor,
                                                     test_account_b):
        make_visitor("shared_looking_id", account=test_account_b)

        response = client.post("/api/v1/conversions", headers=auth_headers, json={"conversion": {
            "visitor_id": "shared_looking_id",
            "conversion_type": "signup",
        }})

        assert response.json() == {"errors": ["Visitor not found"]}

    def test_missing_conversion_key(self, client, auth_headers):
        response = client.post("/api/v1/conversions", headers=auth_headers, json={})
        assert response.status_code == 400
        assert response.json() == {"error": "Missing 'conversion' parameter"}


def test_parse_revenue():
    assert parse_revenue(None) == (None, None)
    assert parse_revenue("19.90") == (Decimal("19.90"), None)
    assert parse_revenue(True) == (None, "revenue must be a number")
    assert parse_revenue("NaN") == (None, "revenue must be a number")
    assert parse_revenue("99999999.99") == (Decimal("99999999.99"), None)
    assert parse_revenue(1e8) == (None, "revenue is too large")
