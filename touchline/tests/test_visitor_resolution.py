"""Integration tests for optimistic visitor/session find-or-create

WHAT: Idempotent visitor resolution and recovery from a lost insert race
WHY: No locks are taken; the unique constraint plus a fallback lookup is what
     keeps one row per (account, visitor id)
REFERENCES:
    - touchline/services/visitor_service.py
    - touchline/services/session_service.py: track_session
"""

from datetime import datetime

from touchline.models import Visitor, VisitorSession
from touchline.services import session_service, visitor_service
from touchline.services.session_service import capture_attribution, track_session
from touchline.services.visitor_service import find_or_create_visitor, identify_visitor


class TestFindOrCreateVisitor:
    def test_creates_once(self, test_db_session, test_account):
        first, created_first = find_or_create_visitor(test_db_session, test_account.id, "visitor_abc")
        test_db_session.commit()
        second, created_second = find_or_create_visitor(test_db_session, test_account.id, "visitor_abc")

        assert created_first is True
        assert created_second is False
        assert first.id == second.id
        assert test_db_session.query(Visitor).count() == 1

    def test_same_id_in_two_accounts_is_two_visitors(self, test_db_session, test_account, test_account_b):
        a, _ = find_or_create_visitor(test_db_session, test_account.id, "visitor_abc")
        b, _ = find_or_create_visitor(test_db_session, test_account_b.id, "visitor_abc")
        test_db_session.commit()

        assert a.id != b.id

    def test_existing_visitor_last_seen_moves(self, test_db_session, test_account, make_visitor):
        make_visitor("visitor_abc")
        seen_at = datetime(2030, 1, 1)

        visitor, _ = find_or_create_visitor(test_db_session, test_account.id, "visitor_abc", seen_at=seen_at)

        assert visitor.last_seen_at == seen_at

    def test_lost_race_falls_back_to_existing_row(self, test_db_session, test_account, make_visitor,
                                                  monkeypatch):
        """The first lookup misses, the insert collides, the retry finds the winner."""
        winner = make_visitor("visitor_abc")
        real_find_visitor = visitor_service.find_visitor
        lookups = []

        def racing_find_visitor(db, account_id, visitor_id, include_test_data=True):
            lookups.append(visitor_id)
            if len(lookups) == 1:
                return None
            return real_find_visitor(db, account_id, visitor_id, include_test_data)

        monkeypatch.setattr(visitor_service, "find_visitor", racing_find_visitor)

        visitor, created = find_or_create_visitor(test_db_session, test_account.id, "visitor_abc")

        assert created is False
        assert visitor.id == winner.id
        assert len(lookups) == 2
        # The outer transaction is still usable after the failed savepoint
        test_db_session.commit()
        assert test_db_session.query(Visitor).count() == 1


class TestTrackSession:
    def test_new_then_reused(self, test_db_session, test_account, make_visitor):
        visitor = make_visitor("visitor_abc")
        at = datetime(2025, 12, 1, 9, 0, 0)

        session, created = track_session(test_db_session, test_account.id, "sess_1", visitor, occurred_at=at)
        test_db_session.commit()
        again, created_again = track_session(test_db_session, test_account.id, "sess_1", visitor, occurred_at=at)

        assert created is True
        assert created_again is False
        assert again.id == session.id
        assert again.started_at == at
        assert again.page_view_count == 2

    def test_ended_session_is_not_reused(self, test_db_session, test_account, make_visitor, make_session):
        visitor = make_visitor("visitor_abc")
        old = make_session(visitor, datetime(2025, 12, 1, 8, 0, 0), session_id="sess_1")
        old.end_session(datetime(2025, 12, 1, 8, 45, 0))
        test_db_session.commit()

        session, created = track_session(
            test_db_session, test_account.id, "sess_1", visitor, occurred_at=datetime(2025, 12, 1, 9, 0, 0),
        )

        assert created is True
        assert session.id != old.id

    def test_lost_race_falls_back_to_existing_session(self, test_db_session, test_account, make_visitor,
                                                      make_session, monkeypatch):
        visitor = make_visitor("visitor_abc")
        at = datetime(2025, 12, 1, 9, 0, 0)
        winner = make_session(visitor, at, session_id="sess_1")
        real_find = session_service.find_active_session
        lookups = []

        def racing_find(db, account_id, session_id, visitor):
            lookups.append(session_id)
            if len(lookups) == 1:
                return None
            return real_find(db, account_id, session_id, visitor)

        monkeypatch.setattr(session_service, "find_active_session", racing_find)

        session, created = track_session(test_db_session, test_account.id, "sess_1", visitor, occurred_at=at)

        assert created is False
        assert session.id == winner.id
        assert test_db_session.query(VisitorSession).count() == 1


def test_capture_attribution_is_write_once(test_db_session, test_account, make_visitor, make_session):
    session = make_session(make_visitor("visitor_abc"), datetime(2025, 12, 1), channel=None)
    session.initial_utm = None

    assert capture_attribution(test_db_session, session, {"utm_source": "google", "utm_medium": "cpc"}, None) is True
    assert capture_attribution(test_db_session, session, {"utm_source": "bing", "utm_medium": "email"}, None) is False
    assert session.channel == "paid_search"
    assert session.initial_utm == {"utm_source": "google", "utm_medium": "cpc"}


def test_identify_visitor_cookie_handling():
    assert identify_visitor("returning_visitor").visitor_id == "returning_visitor"
    assert identify_visitor("returning_visitor").created is False

    fresh = identify_visitor("bad cookie!")
    assert fresh.created is True
    assert len(fresh.visitor_id) == 64
