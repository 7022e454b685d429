"""Shared input parsing helpers.

parse_date_input:    ISO / DD.MM.YYYY dates, raises ValueError on bad input
parse_decimal_input: numbers and numeric strings to Decimal, raises ValueError
parse_time_input:    strict HH:MM:SS times of day, raises ValueError
"""
import re
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation

_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9]):([0-5][0-9])$")


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Supports: YYYY-MM-DD, DD.MM.YYYY, date objects. Empty input returns None.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        try:
            return datetime.strptime(str(value), "%d.%m.%Y").date()
        except ValueError as exc:
            raise ValueError(
                "Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY."
            ) from exc


def parse_decimal_input(value):
    """Convert ``value`` to Decimal. Booleans and non-finite numbers are rejected.

    Floats go through ``str()`` so 0.1 stays 0.1 instead of its binary expansion.
    """
    if value is None or isinstance(value, bool):
        raise ValueError("A number is required.")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as exc:
            raise ValueError(f"Invalid number: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Invalid number: {value!r}")
    return result


def parse_time_input(value):
    """Parse a time of day in HH:MM:SS format, raising ValueError on bad input."""
    if isinstance(value, time):
        return value
    match = _TIME_RE.match(str(value or "").strip())
    if not match:
        raise ValueError("Invalid time format. Use HH:MM:SS.")
    hour, minute, second = (int(part) for part in match.groups())
    return time(hour, minute, second)
