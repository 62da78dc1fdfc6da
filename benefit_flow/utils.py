"""
Utility functions for dates, identifiers and step paths.
"""

import re
import uuid
import secrets
from datetime import date, datetime, timezone
from typing import Dict, Optional, Any


ISO_DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
CONFIRMATION_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'


def parse_iso_date(value: Any) -> date:
    """
    Parse an ISO date string into a date.

    Accepts YYYY-MM-DD and full ISO datetime strings (the date part is used).

    Args:
        value: Date string

    Returns:
        Parsed date

    Raises:
        ValueError: If the value is not a valid ISO date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f'Invalid date value [{value!r}]')

    str_value = value.strip()
    if ISO_DATE_PATTERN.match(str_value):
        return datetime.strptime(str_value, '%Y-%m-%d').date()

    try:
        return datetime.fromisoformat(str_value.replace('Z', '+00:00')).date()
    except ValueError:
        raise ValueError(f'Invalid date string [{value}]')


def calculate_age(birth_date: date, reference_date: date) -> int:
    """
    Calculate age in whole years at a reference date.

    A birthday falling on the reference date counts as reached.

    Args:
        birth_date: Date of birth
        reference_date: Date to compute the age at

    Returns:
        Age in completed years

    Raises:
        ValueError: If the birth date is after the reference date
    """
    if birth_date > reference_date:
        raise ValueError(f'Date of birth [{birth_date.isoformat()}] is after [{reference_date.isoformat()}]')

    age = reference_date.year - birth_date.year
    if (reference_date.month, reference_date.day) < (birth_date.month, birth_date.day):
        age -= 1

    return age


def get_age_from_date_string(date_string: str, reference_date: Optional[Any] = None) -> int:
    """
    Get the age for a date of birth string.

    Args:
        date_string: Date of birth (YYYY-MM-DD)
        reference_date: Date to compute the age at (defaults to today, UTC)

    Returns:
        Age in completed years
    """
    birth_date = parse_iso_date(date_string)
    reference = today_utc() if reference_date is None else parse_iso_date(reference_date)
    return calculate_age(birth_date, reference)


def today_utc() -> date:
    """Current calendar day in UTC."""
    return datetime.now(timezone.utc).date()


def utcnow() -> datetime:
    """Naive UTC datetime, as stored in database columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utcnow_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def minutes_since(timestamp: str, now: Optional[datetime] = None) -> float:
    """
    Minutes elapsed since an ISO 8601 timestamp.

    Args:
        timestamp: ISO 8601 string (naive values are read as UTC)
        now: Reference time (defaults to now, UTC)

    Returns:
        Elapsed minutes
    """
    then = datetime.fromisoformat(timestamp.replace('Z', '+00:00'))
    if then.tzinfo is None:
        then = then.replace(tzinfo=timezone.utc)

    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    return (now - then).total_seconds() / 60


def new_application_id() -> str:
    """Generate a new application identifier."""
    return str(uuid.uuid4())


def is_valid_id(value: Any) -> bool:
    """
    Check that a value is a canonical UUID string.

    Args:
        value: Candidate identifier

    Returns:
        True if the value is a UUID in canonical form
    """
    if not isinstance(value, str):
        return False
    try:
        return str(uuid.UUID(value)) == value.lower()
    except ValueError:
        return False


def generate_confirmation_code(length: int = 12) -> str:
    """
    Generate a human-readable submission confirmation code.

    Args:
        length: Number of characters

    Returns:
        Confirmation code without ambiguous characters
    """
    return ''.join(secrets.choice(CONFIRMATION_CODE_ALPHABET) for _ in range(length))


def path_for(step_id: str, params: Dict[str, str], lang: str = 'en') -> str:
    """
    Materialize a step id into a concrete path.

    Step ids are path templates such as 'apply/{id}/adult/contact-information'.

    Args:
        step_id: Step id (path template)
        params: Route parameters (id, child_id)
        lang: Language segment

    Returns:
        Concrete path

    Raises:
        KeyError: If the template needs a parameter that was not supplied
    """
    return f'/{lang}/' + step_id.format(**params)
