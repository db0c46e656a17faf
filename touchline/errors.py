"""
Tracking Exceptions and Service Results
=======================================

Exception types for the ingestion pipeline and the attribution engine, plus
the `ServiceResult` envelope returned by single-resource services.

WHY THIS FILE EXISTS
--------------------
Ingestion has several distinct failure modes:
- Structural problems with one inbound record (collected, never short-circuited)
- Identifiers that do not resolve inside the calling tenant
- Unique-constraint races on visitor/session find-or-create

Batch ingestion turns these into per-item rejections; single-resource
endpoints turn them into a 422 with a flat error list. An empty journey is not
an error at all: the calculator simply returns zero credits.

RELATED FILES
-------------
- touchline/services/event_validation.py: Raises StructuralValidationError (require_valid_event)
- touchline/services/visitor_service.py: Recovers from PersistenceConflict
- touchline/services/conversion_service.py: Raises IdentifierResolutionError
- touchline/routers/: Map ServiceResult failures to HTTP responses
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


INTERNAL_ERROR_MESSAGE = "Internal error"


class TrackingError(Exception):
    """
    Base exception for all ingestion/attribution errors.

    USAGE:
        try:
            process_event(db, account, record)
        except TrackingError as e:
            rejected.append({"index": index, "errors": e.errors})
    """

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = list(errors) if errors else [message]


class StructuralValidationError(TrackingError):
    """One or more required fields are missing or malformed.

    ATTRIBUTES:
        errors: Every problem found in the record, in field order
    """

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors), errors)


class TimestampParseError(TrackingError):
    """A timestamp value is not valid ISO-8601."""

    def __init__(self, value: Any = None):
        self.value = value
        super().__init__("timestamp must be a valid ISO8601 datetime")


class PropertiesTypeError(TrackingError):
    """The `properties` value is present but not a map."""

    def __init__(self):
        super().__init__("properties must be a hash")


class IdentifierResolutionError(TrackingError):
    """An event/visitor id is unknown or belongs to another tenant.

    Fatal to the single request that carried it, never to a batch.
    """


class PersistenceConflict(TrackingError):
    """A unique-constraint race lost against a concurrent writer.

    RECOVERY:
        Retry the write as a lookup; the concurrent row is the answer.
    """


@dataclass
class ServiceResult:
    """Outcome of a single-resource service call.

    WHAT: success flag, flat error list and a data payload
    WHY: Routers render failures as 422 `{errors: [...]}` without having to know
         which exception produced them
    """
    success: bool
    errors: List[str] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **data: Any) -> "ServiceResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, errors) -> "ServiceResult":
        if isinstance(errors, str):
            errors = [errors]
        return cls(success=False, errors=list(errors))
