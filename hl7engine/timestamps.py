"""
Timestamp utilities for HL7 date/time handling.

HL7 DTM/TS values carry as much precision as the sender had:
``YYYY[MM[DD[HH[MM[SS[.S[S[S[S]]]]]]]]][+/-ZZZZ]``. Many real-world
messages stop at the date or at minutes, so every level after the year
is optional.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from .exceptions import InvalidTimestampError

HL7_DATETIME_PATTERN = re.compile(
    r"^(?P<year>\d{4})"
    r"(?:(?P<month>\d{2})"
    r"(?:(?P<day>\d{2})"
    r"(?:(?P<hour>\d{2})"
    r"(?:(?P<minute>\d{2})"
    r"(?:(?P<second>\d{2})(?:\.(?P<fraction>\d{1,4}))?)?)?)?)?)?"
    r"(?P<offset>[+-]\d{4})?$"
)

# Date only (DT data type)
HL7_DATE_PATTERN = re.compile(r"^\d{4}(?:\d{2}(?:\d{2})?)?$")


# Parse HL7 Timestamp
def parse_hl7_datetime(value: str) -> datetime:
    """
    Convert an HL7 timestamp literal to a ``datetime``.

    Missing precision defaults to the start of the period (month 1,
    day 1, midnight). A ``+/-ZZZZ`` suffix produces an aware datetime;
    otherwise the result is naive.

    Raises:
        InvalidTimestampError: If the value is empty, non-numeric or
            names an impossible date or time
    """
    if not value or not value.strip():
        raise InvalidTimestampError(value or "", "value is empty")

    match = HL7_DATETIME_PATTERN.match(value.strip())
    if not match:
        raise InvalidTimestampError(value, "does not match any known HL7 timestamp format")

    parts = match.groupdict()
    fraction = parts["fraction"] or ""
    microsecond = int(fraction.ljust(6, "0")) if fraction else 0

    try:
        result = datetime(
            int(parts["year"]),
            int(parts["month"] or 1),
            int(parts["day"] or 1),
            int(parts["hour"] or 0),
            int(parts["minute"] or 0),
            int(parts["second"] or 0),
            microsecond,
        )
    except ValueError as e:
        raise InvalidTimestampError(value, str(e))

    if parts["offset"]:
        result = result.replace(tzinfo=_convert_tz_offset(value, parts["offset"]))
    return result


# Lenient Timestamp Parsing
def try_parse_hl7_datetime(value: Optional[str]) -> Optional[datetime]:
    """Like ``parse_hl7_datetime`` but returns None instead of raising."""
    try:
        return parse_hl7_datetime(value)
    except InvalidTimestampError:
        return None


def is_hl7_datetime(value: str) -> bool:
    """Shape and calendar check for DTM/TS values."""
    return try_parse_hl7_datetime(value) is not None


def is_hl7_date(value: str) -> bool:
    """Shape and calendar check for DT values (no time part)."""
    if not HL7_DATE_PATTERN.match(value or ""):
        return False
    return is_hl7_datetime(value)


# Convert HL7 timezone offset
def _convert_tz_offset(value: str, hl7_offset: str) -> timezone:
    """
    Convert an HL7 timezone offset (+/-HHMM) to a ``timezone``.

    Raises:
        InvalidTimestampError: If hours or minutes are out of range
    """
    sign = -1 if hl7_offset[0] == "-" else 1
    hours = int(hl7_offset[1:3])
    minutes = int(hl7_offset[3:5])

    if hours > 14 or minutes > 59:
        raise InvalidTimestampError(value, f"timezone offset out of range: {hl7_offset}")

    if hours == 0 and minutes == 0:
        return timezone.utc
    return timezone(sign * timedelta(hours=hours, minutes=minutes))
