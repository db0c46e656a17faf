"""Integration tests for session registration and session cookie rotation

WHAT: POST /api/v1/sessions, identify_session timeout handling
WHY: The session is the attribution unit; its channel is captured once and the
     session cookie must rotate after inactivity
REFERENCES:
    - touchline/routers/sessions.py
    - touchline/services/session_service.py
"""

from datetime import datetime, timedelta

from touchline.models import Visitor, VisitorSession
from touchline.services.session_service import identify_session


class TestRegisterSession:
    def test_captures_channel_from_url(self, client, auth_headers, test_db_session):
        response = client.post("/api/v1/sessions", headers=auth_headers, json={"session": {
            "visitor_id": "visitor_abc",
            "session_id": "sess_1",
            "url": "https://x.com/?utm_source=newsletter&utm_medium=email&utm_campaign=dec",
        }})

        assert response.status_code == 202
        assert response.json() == {
            "status": "accepted",
            "visitor_id": "visitor_abc",
            "session_id": "sess_1",
            "channel": "email",
        }

        session = test_db_session.query(VisitorSession).one()
        assert session.page_view_count == 0
        assert session.initial_utm["utm_campaign"] == "dec"

    def test_referrer_only_session(self, client, auth_headers):
        response = client.post("/api/v1/sessions", headers=auth_headers, json={"session": {
            "visitor_id": "visitor_abc",
            "session_id": "sess_1",
            "url": "https://x.com/",
            "referrer": "https://www.google.com/",
        }})

        assert response.json()["channel"] == "organic_search"

    def test_channel_is_not_overwritten(self, client, auth_headers, test_db_session):
        started_at = "2025-11-30T10:00:00Z"
        client.post("/api/v1/sessions", headers=auth_headers, json={"session": {
            "visitor_id": "visitor_abc", "session_id": "sess_1", "started_at": started_at,
            "url": "https://x.com/?utm_source=google&utm_medium=cpc",
        }})
        response = client.post("/api/v1/sessions", headers=auth_headers, json={"session": {
            "visitor_id": "visitor_abc", "session_id": "sess_1", "started_at": started_at,
            "url": "https://x.com/?utm_source=news&utm_medium=email",
        }})

        assert response.json()["channel"] == "paid_search"
        assert test_db_session.query(VisitorSession).count() == 1

    def test_invalid_started_at_falls_back_to_now(self, client, auth_headers, test_db_session):
        client.post("/api/v1/sessions", headers=auth_headers, json={"session": {
            "visitor_id": "visitor_abc", "session_id": "sess_1", "url": "https://x.com/",
            "started_at": "sometime",
        }})

        started_at = test_db_session.query(VisitorSession).one().started_at
        assert abs(datetime.utcnow() - started_at) < timedelta(minutes=1)

    def test_existing_visitor_last_seen_is_updated(self, client, auth_headers, make_visitor, test_db_session):
        visitor = make_visitor("visitor_abc")
        visitor.last_seen_at = datetime(2025, 1, 1)
        test_db_session.commit()

        client.post("/api/v1/sessions", headers=auth_headers, json={"session": {
            "visitor_id": "visitor_abc", "session_id": "sess_1", "url": "https://x.com/",
            "started_at": "2025-11-30T10:00:00Z",
        }})

        test_db_session.refresh(visitor)
        assert visitor.last_seen_at == datetime(2025, 11, 30, 10, 0, 0)
        assert test_db_session.query(Visitor).count() == 1

    def test_missing_field(self, client, auth_headers):
        response = client.post("/api/v1/sessions", headers=auth_headers, json={"session": {
            "visitor_id": "visitor_abc", "session_id": "sess_1",
        }})

        assert response.status_code == 422
        assert response.json() == {"errors": ["url is required"]}

    def test_missing_session_key(self, client, auth_headers):
        response = client.post("/api/v1/sessions", headers=auth_headers, json={})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing 'session' parameter"}


class TestIdentifySession:
    def test_no_cookie_issues_new_id(self, test_db_session, test_account):
        identification = identify_session(test_db_session, test_account.id, "visitor_abc", None)

        assert identification.created is True
        assert len(identification.session_id) == 64

    def test_unknown_cookie_is_reused(self, test_db_session, test_account):
        identification = identify_session(test_db_session, test_account.id, "visitor_abc", "sess_new")

        assert identification.session_id == "sess_new"
        assert identification.created is False

    def test_fresh_session_is_reused(self, test_db_session, test_account, make_visitor, make_session):
        visitor = make_visitor("visitor_abc")
        now = datetime(2025, 12, 1, 12, 0, 0)
        make_session(visitor, now - timedelta(minutes=10), session_id="sess_1")

        identification = identify_session(test_db_session, test_account.id, "visitor_abc", "sess_1", now=now)

        assert identification.session_id == "sess_1"
        assert identification.created is False

    def test_expired_session_is_ended_and_rotated(self, test_db_session, test_account, make_visitor,
                                                  make_session):
        visitor = make_visitor("visitor_abc")
        now = datetime(2025, 12, 1, 12, 0, 0)
        stale = make_session(visitor, now - timedelta(minutes=45), session_id="sess_1")

        identification = identify_session(
            test_db_session, test_account.id, "visitor_abc", "sess_1", timeout_minutes=30, now=now,
        )

        assert identification.created is True
        assert identification.session_id != "sess_1"
        test_db_session.refresh(stale)
        assert stale.ended_at == now
        assert stale.active is False
