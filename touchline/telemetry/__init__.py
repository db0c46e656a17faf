"""
Telemetry Module
================

Observability for the touchline ingestion and attribution service.

Components:
- sentry.py: Error tracking for the API and the arq worker

Environment Variables:
- SENTRY_DSN: Sentry project DSN

Usage:
    from touchline.telemetry import init_sentry, capture_exception

    init_sentry()
    capture_exception(exc, extra={"operation": "calculate_attribution_job"})
"""

from touchline.telemetry.sentry import (
    init_sentry,
    set_account_context,
    capture_exception,
)

__all__ = ["init_sentry", "set_account_context", "capture_exception"]
