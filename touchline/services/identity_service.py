"""Identity services: identify and alias.

WHAT:
    - identify: upsert a known user (external user id + traits) and optionally
      link a visitor to it
    - alias: link an existing visitor to an existing identity

WHY:
    Identities let one person's visitors (devices, browsers) be grouped without
    changing the visitor-level attribution model.
"""

import logging
from typing import Any, List, Mapping, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from touchline.errors import ServiceResult
from touchline.models import Account, Identity
from touchline.services.base import internal_error_result
from touchline.services.visitor_service import find_visitor
from touchline.utils.timestamps import utcnow

logger = logging.getLogger(__name__)


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def find_identity(db: Session, account_id: UUID, external_id: str, include_test_data: bool = True) -> Optional[Identity]:
    query = db.query(Identity).filter(
        Identity.account_id == account_id,
        Identity.external_id == str(external_id),
    )
    if not include_test_data:
        query = query.filter(Identity.is_test.is_(False))
    return query.first()


def identify(db: Session, account: Account, params: Mapping[str, Any], is_test: bool = False) -> ServiceResult:
    """Create or update an identity; link the visitor when it resolves.

    Args:
        params: {user_id, visitor_id?, traits?}
    """
    user_id = params.get("user_id")
    if not _present(user_id):
        return ServiceResult.fail("user_id is required")

    traits = params.get("traits") or {}
    if not isinstance(traits, Mapping):
        return ServiceResult.fail("traits must be a hash")

    visitor_id = params.get("visitor_id")
    now = utcnow()

    try:
        identity = find_identity(db, account.id, user_id)
        if identity is None:
            identity = Identity(
                account_id=account.id,
                external_id=str(user_id),
                first_identified_at=now,
                is_test=is_test,
            )
            db.add(identity)
        identity.traits = dict(traits)
        identity.last_identified_at = now
        db.flush()

        linked = False
        if _present(visitor_id):
            visitor = find_visitor(db, account.id, visitor_id)
            if visitor is not None:
                visitor.identity_id = identity.id
                linked = True

        db.commit()
    except SQLAlchemyError as e:
        return internal_error_result(db, e, "identify", account_id=str(account.id))

    logger.info("[IDENTITY] Identified %s (visitor linked=%s)", user_id, linked)
    return ServiceResult.ok(identity=identity, visitor_linked=linked)


def alias(db: Session, account: Account, params: Mapping[str, Any], is_test: bool = False) -> ServiceResult:
    """Link a visitor to an identity. Every problem is reported at once.

    Args:
        params: {visitor_id, user_id}
    """
    visitor_id = params.get("visitor_id")
    user_id = params.get("user_id")

    visitor = find_visitor(db, account.id, visitor_id) if _present(visitor_id) else None
    identity = find_identity(db, account.id, user_id) if _present(user_id) else None

    errors: List[str] = []
    if not _present(visitor_id):
        errors.append("visitor_id is required")
    if not _present(user_id):
        errors.append("user_id is required")
    if _present(visitor_id) and visitor is None:
        errors.append("Visitor not found")
    if _present(user_id) and identity is None:
        errors.append("Identity not found")
    if errors:
        return ServiceResult.fail(errors)

    try:
        visitor.identity_id = identity.id
        db.commit()
    except SQLAlchemyError as e:
        return internal_error_result(db, e, "alias", account_id=str(account.id))

    logger.info("[IDENTITY] Aliased visitor %s to %s", visitor_id, user_id)
    return ServiceResult.ok(visitor=visitor, identity=identity)
