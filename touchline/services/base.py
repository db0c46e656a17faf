"""Shared failure handling for single-resource services."""

import logging

from sqlalchemy.orm import Session

from touchline.errors import INTERNAL_ERROR_MESSAGE, ServiceResult
from touchline.telemetry import capture_exception

logger = logging.getLogger(__name__)


def internal_error_result(db: Session, exc: Exception, operation: str, **extra) -> ServiceResult:
    """Roll back, log with traceback, report, and return a generic failure.

    Internals (SQL, stack frames) never reach the caller.
    """
    db.rollback()
    logger.exception("[SERVICE] %s failed: %s", operation, exc, extra={"operation": operation, **extra})
    capture_exception(exc, extra={"operation": operation, **extra})
    return ServiceResult.fail(INTERNAL_ERROR_MESSAGE)
