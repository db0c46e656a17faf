"""Integration tests for API key authentication and probe endpoints

WHAT: Bearer-key checks in order (missing, malformed, unknown, revoked,
      inactive account), usage tracking, /health and /validate
WHY: Every tracking endpoint depends on get_api_key_context; a wrong answer here
     writes data into the wrong tenant or mode
REFERENCES:
    - touchline/services/api_key_service.py
    - touchline/deps.py: get_api_key_context
    - touchline/routers/probes.py
"""

from datetime import datetime

import pytest

from touchline.models import ApiKey, ApiKeyEnvironmentEnum
from touchline.services.api_key_service import (
    INACTIVE_ACCOUNT,
    INVALID_KEY,
    MALFORMED_HEADER,
    MISSING_HEADER,
    REVOKED_KEY,
    authenticate,
    generate_api_key,
    hash_key,
)


class TestGenerateApiKey:
    def test_only_digest_is_stored(self, test_db_session, test_account):
        api_key, plaintext = generate_api_key(test_db_session, test_account, ApiKeyEnvironmentEnum.live)

        assert plaintext.startswith("sk_live_")
        assert api_key.key_digest == hash_key(plaintext)
        assert api_key.key_prefix == plaintext[:12]
        assert test_db_session.query(ApiKey).filter(ApiKey.key_digest == plaintext).count() == 0

    def test_default_environment_is_test(self, test_db_session, test_account):
        api_key, plaintext = generate_api_key(test_db_session, test_account)

        assert plaintext.startswith("sk_test_")
        assert api_key.is_test is True


class TestAuthenticate:
    @pytest.mark.parametrize("header,error", [
        (None, MISSING_HEADER),
        ("   ", MISSING_HEADER),
        ("Token sk_live_abc", MALFORMED_HEADER),
        ("Bearer pk_live_abc", MALFORMED_HEADER),
        ("Bearer sk_prod_abc", MALFORMED_HEADER),
        ("Bearer sk_live_doesnotexist", INVALID_KEY),
    ])
    def test_rejections(self, test_db_session, header, error):
        result = authenticate(test_db_session, header)

        assert result.success is False
        assert result.error == error

    def test_valid_key_records_usage(self, test_db_session, live_api_key, test_account):
        api_key, plaintext = live_api_key
        assert api_key.last_used_at is None

        result = authenticate(test_db_session, f"Bearer {plaintext}")

        assert result.success is True
        assert result.account.id == test_account.id
        assert api_key.last_used_at is not None

    def test_scheme_is_case_insensitive(self, test_db_session, live_api_key):
        _, plaintext = live_api_key
        assert authenticate(test_db_session, f"bearer {plaintext}").success is True

    def test_revoked_key(self, test_db_session, live_api_key):
        api_key, plaintext = live_api_key
        api_key.revoked_at = datetime.utcnow()
        test_db_session.commit()

        assert authenticate(test_db_session, f"Bearer {plaintext}").error == REVOKED_KEY

    def test_inactive_account(self, test_db_session, live_api_key, test_account):
        _, plaintext = live_api_key
        test_account.status = "suspended"
        test_db_session.commit()

        assert authenticate(test_db_session, f"Bearer {plaintext}").error == INACTIVE_ACCOUNT


class TestAuthenticatedEndpoints:
    def test_validate_reports_account_and_environment(self, client, test_mode_headers, test_account):
        response = client.get("/api/v1/validate", headers=test_mode_headers)

        assert response.status_code == 200
        assert response.json() == {
            "valid": True,
            "account_id": str(test_account.id),
            "environment": "test",
        }

    def test_malformed_header_is_401(self, client):
        response = client.get("/api/v1/validate", headers={"Authorization": "Basic dXNlcjpwYXNz"})

        assert response.status_code == 401
        assert response.json() == {"error": MALFORMED_HEADER}

    def test_unknown_key_is_401(self, client):
        response = client.get("/api/v1/validate", headers={"Authorization": "Bearer sk_live_nope"})

        assert response.status_code == 401
        assert response.json() == {"error": INVALID_KEY}


def test_health_needs_no_key(client):
    response = client.get("/api/v1/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["checks"] == {"database": True}
    assert body["timestamp"].endswith("Z")
