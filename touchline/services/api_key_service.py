"""API key issuance and authentication.

WHAT:
    - generate_api_key: issue an `sk_{test|live}_{random}` key, store its digest
    - authenticate: resolve an `Authorization: Bearer ...` header to a key + account

WHY:
    Only the SHA-256 digest is persisted, so a leaked database never exposes
    usable keys. The plaintext is returned exactly once, at generation time.

REFERENCES:
    - touchline/deps.py: get_api_key_context (FastAPI dependency)
    - touchline/models.py: ApiKey, Account
"""

import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from touchline.models import Account, ApiKey, ApiKeyEnvironmentEnum
from touchline.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

KEY_PREFIX_LENGTH = 12
AUTHORIZATION_PATTERN = re.compile(r"^bearer\s+sk_(test|live)_\w+$", re.IGNORECASE)

MISSING_HEADER = "Missing Authorization header"
MALFORMED_HEADER = "Authorization header must be in format: Bearer sk_{env}_{key}"
INVALID_KEY = "Invalid or expired API key"
REVOKED_KEY = "API key has been revoked"
INACTIVE_ACCOUNT = "Account is not active"


@dataclass
class AuthenticationResult:
    success: bool
    api_key: Optional[ApiKey] = None
    account: Optional[Account] = None
    error: Optional[str] = None


def hash_key(plaintext_key: str) -> str:
    return hashlib.sha256(plaintext_key.encode("utf-8")).hexdigest()


def generate_api_key(
    db: Session,
    account: Account,
    environment: ApiKeyEnvironmentEnum = ApiKeyEnvironmentEnum.test,
    description: Optional[str] = None,
) -> Tuple[ApiKey, str]:
    """Issue a new API key for an account.

    Returns:
        (persisted ApiKey, plaintext key). The plaintext is not recoverable later.
    """
    environment = ApiKeyEnvironmentEnum(environment)
    plaintext_key = f"sk_{environment.value}_{secrets.token_hex(16)}"

    api_key = ApiKey(
        account_id=account.id,
        key_digest=hash_key(plaintext_key),
        key_prefix=plaintext_key[:KEY_PREFIX_LENGTH],
        environment=environment,
        description=description,
    )
    db.add(api_key)
    db.commit()
    db.refresh(api_key)

    logger.info("[API_KEY] Issued %s key %s for account %s", environment.value, api_key.key_prefix, account.id)
    return api_key, plaintext_key


def authenticate(db: Session, authorization_header: Optional[str]) -> AuthenticationResult:
    """Authenticate a request from its Authorization header.

    Checks, in order: header present, header shape, key known, key not revoked,
    account active. Records `last_used_at` on success.
    """
    if authorization_header is None or not authorization_header.strip():
        return AuthenticationResult(success=False, error=MISSING_HEADER)

    header = authorization_header.strip()
    if not AUTHORIZATION_PATTERN.match(header):
        return AuthenticationResult(success=False, error=MALFORMED_HEADER)

    plaintext_key = header.split(None, 1)[1]
    api_key = db.query(ApiKey).filter(ApiKey.key_digest == hash_key(plaintext_key)).first()

    if api_key is None:
        logger.info("[API_KEY] Unknown key presented (prefix=%s)", plaintext_key[:KEY_PREFIX_LENGTH])
        return AuthenticationResult(success=False, error=INVALID_KEY)
    if api_key.revoked:
        return AuthenticationResult(success=False, error=REVOKED_KEY)
    if api_key.account.status != "active":
        return AuthenticationResult(success=False, error=INACTIVE_ACCOUNT)

    api_key.last_used_at = utcnow()
    db.commit()

    return AuthenticationResult(success=True, api_key=api_key, account=api_key.account)
