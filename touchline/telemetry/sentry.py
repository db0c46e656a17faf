"""
Sentry Error Tracking
=====================

Centralized error tracking for the API process and the arq worker.

Related files:
- touchline/main.py: Initializes Sentry on app creation
- touchline/workers/arq_worker.py: Initializes Sentry on worker startup
- touchline/services/*.py: Caught-and-handled errors are reported here

Environment Variables:
- SENTRY_DSN: Sentry project DSN (Sentry stays disabled when unset)
- ENVIRONMENT: Environment name (production, staging, development)
- RELEASE_VERSION: Release identifier (optional)
"""

from __future__ import annotations

import os
import logging
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)


def get_sentry_dsn() -> Optional[str]:
    """Get Sentry DSN from environment variable."""
    return os.environ.get("SENTRY_DSN")


# Tracking cookies and client addresses identify visitors; they never leave the process
TRACKING_COOKIES = ("_touchline_vid", "_touchline_sid")
FILTERED_HEADERS = ("authorization", "cookie", "x-forwarded-for", "x-real-ip")
FILTERED = "[Filtered]"


def scrub_tracking_data(event: dict, hint: Optional[dict] = None) -> dict:
    """`before_send` hook: strip visitor identifiers, API keys and client IPs."""
    request = event.get("request")
    if not isinstance(request, dict):
        return event

    cookies = request.get("cookies")
    if isinstance(cookies, dict):
        for name in TRACKING_COOKIES:
            if name in cookies:
                cookies[name] = FILTERED

    headers = request.get("headers")
    if isinstance(headers, dict):
        for key in headers:
            if key.lower() in FILTERED_HEADERS:
                headers[key] = FILTERED

    env = request.get("env")
    if isinstance(env, dict):
        env.pop("REMOTE_ADDR", None)

    return event


def init_sentry() -> bool:
    """
    Initialize the Sentry SDK.

    Safe to call more than once; a second call is ignored.

    Returns:
        True if Sentry is active after the call, False otherwise.
    """
    if sentry_sdk.is_initialized():
        return True

    dsn = get_sentry_dsn()
    if not dsn:
        logger.info("[SENTRY] SENTRY_DSN not set - error tracking disabled")
        return False

    environment = os.environ.get("ENVIRONMENT", "development")

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                RedisIntegration(),
                LoggingIntegration(
                    level=logging.INFO,         # INFO+ as breadcrumbs
                    event_level=logging.ERROR,  # ERROR+ as events
                ),
            ],
            traces_sample_rate=0.1,
            # Visitor ids and IPs stay out of Sentry
            send_default_pii=False,
            before_send=scrub_tracking_data,
            release=os.environ.get("RELEASE_VERSION"),
        )
        logger.debug("[SENTRY] Initialized for %s environment", environment)
        return True
    except Exception as e:
        logger.error("[SENTRY] Failed to initialize: %s", e)
        return False


def set_account_context(account_id: str, environment: Optional[str] = None) -> None:
    """Attach the authenticated tenant to subsequent Sentry events."""
    if not sentry_sdk.is_initialized():
        return

    sentry_sdk.set_tag("account_id", account_id)
    if environment:
        sentry_sdk.set_tag("api_key_environment", environment)


def capture_exception(exception: Exception, extra: Optional[dict] = None) -> None:
    """
    Report an exception that was caught and handled.

    Args:
        exception: The exception to capture
        extra: Additional context to attach to the event

    Example:
        try:
            persist_credits(...)
        except SQLAlchemyError as e:
            capture_exception(e, extra={"operation": "persist_credits"})
    """
    if not sentry_sdk.is_initialized():
        logger.debug("[SENTRY] Disabled, not reporting: %r", exception)
        return

    try:
        with sentry_sdk.new_scope() as scope:
            for key, value in (extra or {}).items():
                scope.set_extra(key, value)
            sentry_sdk.capture_exception(exception)
    except Exception as e:
        logger.error("[SENTRY] Failed to capture exception: %s", e)
