"""Content rules for user-submitted event drafts."""
import enum
import re
from datetime import date
from typing import Callable, Dict, FrozenSet, Optional

from bs4 import BeautifulSoup

from processor.event_processor import parse_record_date
from processor.models import EventDraft, FormValidation, ValidationResult

MIN_TEXT_LENGTH = 3
MAX_TEXT_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
MAX_YEARS_AHEAD = 2

_JAVASCRIPT_URL = re.compile(r'javascript:', re.IGNORECASE)
_EVAL_CALL = re.compile(r'eval\(', re.IGNORECASE)
# Handler attribute inside a tag the parser never closes
_UNTERMINATED_HANDLER = re.compile(r'<\s*\w+[^>]*\bon\w+\s*=', re.IGNORECASE)


class EventField(enum.Enum):
    """Fields of an event draft that carry validation rules."""
    TITLE = 'title'
    DATE = 'date'
    LOCATION = 'location'
    DESCRIPTION = 'description'


def contains_markup(
    value: str,
    tags: FrozenSet[str],
    handlers: bool = False,
    scripts: bool = False
) -> bool:
    """
    Check a text value for embedded active content.

    Args:
        value: Text to inspect
        tags: Tag names that are never allowed
        handlers: Reject ``on*`` event handler attributes on any tag
        scripts: Reject ``eval(`` calls

    Returns:
        True if the value contains disallowed content
    """
    if _JAVASCRIPT_URL.search(value):
        return True
    if scripts and _EVAL_CALL.search(value):
        return True

    # Unterminated tags never reach the parser as elements
    for tag in tags:
        if re.search(rf'<\s*{tag}', value, re.IGNORECASE):
            return True

    if handlers and _UNTERMINATED_HANDLER.search(value):
        return True

    if handlers and '<' in value:
        soup = BeautifulSoup(value, 'html.parser')
        for element in soup.find_all(True):
            if any(attr.lower().startswith('on') for attr in element.attrs):
                return True

    return False


def _validate_text(
    value: Optional[str],
    label: str,
    tags: FrozenSet[str],
    handlers: bool,
    scripts: bool
) -> ValidationResult:
    errors = []

    if not value or not value.strip():
        return ValidationResult(is_valid=False, errors=[f"{label} is required"])

    if len(value) < MIN_TEXT_LENGTH:
        errors.append(f"{label} must be at least {MIN_TEXT_LENGTH} characters")
    if len(value) > MAX_TEXT_LENGTH:
        errors.append(f"{label} must not exceed {MAX_TEXT_LENGTH} characters")
    if contains_markup(value, tags, handlers=handlers, scripts=scripts):
        errors.append(f"{label} contains invalid characters")

    return ValidationResult(is_valid=not errors, errors=errors)


def validate_title(value: Optional[str], today: Optional[date] = None) -> ValidationResult:
    """Validate the event name."""
    return _validate_text(
        value, 'Event name', frozenset({'script', 'iframe'}),
        handlers=True, scripts=True
    )


def validate_date(value: Optional[str], today: Optional[date] = None) -> ValidationResult:
    """
    Validate the event date.

    The date must parse as ISO 8601, must not be in the past, and must not be
    more than two years ahead of today.
    """
    if not value:
        return ValidationResult(is_valid=False, errors=["Event date is required"])

    today = today or date.today()
    parsed = parse_record_date(value)
    if parsed is None:
        return ValidationResult(is_valid=False, errors=["Invalid date format"])

    errors = []
    if parsed < today:
        errors.append("Event date must be in the future")

    try:
        max_date = today.replace(year=today.year + MAX_YEARS_AHEAD)
    except ValueError:
        # Feb 29 rolls to Feb 28
        max_date = today.replace(year=today.year + MAX_YEARS_AHEAD, day=28)
    if parsed > max_date:
        errors.append(
            f"Event date cannot be more than {MAX_YEARS_AHEAD} years in the future"
        )

    return ValidationResult(is_valid=not errors, errors=errors)


def validate_location(value: Optional[str], today: Optional[date] = None) -> ValidationResult:
    """Validate the event location."""
    return _validate_text(
        value, 'Location', frozenset({'script', 'iframe'}),
        handlers=False, scripts=False
    )


def validate_description(value: Optional[str], today: Optional[date] = None) -> ValidationResult:
    """Validate the optional event description."""
    if not value:
        return ValidationResult(is_valid=True)

    errors = []
    if len(value) > MAX_DESCRIPTION_LENGTH:
        errors.append(
            f"Description must not exceed {MAX_DESCRIPTION_LENGTH} characters"
        )
    if contains_markup(
        value,
        frozenset({'script', 'iframe', 'embed', 'object'}),
        handlers=True,
        scripts=True
    ):
        errors.append("Description contains invalid characters")

    return ValidationResult(is_valid=not errors, errors=errors)


FIELD_VALIDATORS: Dict[EventField, Callable[..., ValidationResult]] = {
    EventField.TITLE: validate_title,
    EventField.DATE: validate_date,
    EventField.LOCATION: validate_location,
    EventField.DESCRIPTION: validate_description,
}


def validate_field(
    field: EventField,
    value: Optional[str],
    today: Optional[date] = None
) -> ValidationResult:
    """
    Validate a single draft field.

    Args:
        field: Field identifier
        value: Raw field value
        today: Reference date for date rules (default: today)

    Returns:
        ValidationResult for the field
    """
    return FIELD_VALIDATORS[field](value, today=today)


def validate_draft(draft: EventDraft, today: Optional[date] = None) -> FormValidation:
    """
    Validate every field of a draft.

    Args:
        draft: EventDraft to validate
        today: Reference date for date rules (default: today)

    Returns:
        FormValidation with all errors in field order and per-field results
    """
    results = {
        event_field.value: validate_field(
            event_field, getattr(draft, event_field.value), today=today
        )
        for event_field in EventField
    }
    errors = [error for result in results.values() for error in result.errors]

    return FormValidation(is_valid=not errors, errors=errors, fields=results)
