"""Structural validation for one inbound event record.

Every problem is collected; `validate_event` never raises and never stops at the
first error.
"""

from dataclasses import dataclass, field
from typing import Any, List, Mapping

from touchline.errors import PropertiesTypeError, StructuralValidationError, TimestampParseError
from touchline.utils.timestamps import parse_iso8601

REQUIRED_FIELDS = ("event_type", "visitor_id", "session_id", "timestamp", "properties")


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


def _blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def validate_event(record: Any) -> ValidationResult:
    """Validate a raw event record.

    Required: event_type, visitor_id, session_id, timestamp (ISO-8601) and
    properties (a map).
    """
    if not isinstance(record, Mapping):
        return ValidationResult(valid=False, errors=["event must be an object"])

    errors: List[str] = [
        f"{name} is required" for name in REQUIRED_FIELDS if _blank(record.get(name))
    ]

    timestamp = record.get("timestamp")
    if not _blank(timestamp):
        try:
            parse_iso8601(timestamp)
        except TimestampParseError as e:
            errors.append(e.message)

    properties = record.get("properties")
    if properties is not None and not isinstance(properties, Mapping):
        errors.append(PropertiesTypeError().message)

    return ValidationResult(valid=not errors, errors=errors)


def require_valid_event(record: Any) -> None:
    """Raise StructuralValidationError carrying every problem in `record`.

    For callers that receive a record without going through a batch, such as
    the arq worker reading a queued payload back from Redis.
    """
    result = validate_event(record)
    if not result.valid:
        raise StructuralValidationError(result.errors)
