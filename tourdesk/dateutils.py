"""
Date helpers shared by the write path and the grouping projector.

Remote rows carry dates in several shapes: plain days, ISO timestamps with a
trailing Z or an offset, padded strings, empty strings. Everything is reduced
to a canonical YYYY-MM-DD day or to "nothing".
"""
from __future__ import annotations

import datetime
import logging
from typing import Any, Mapping

from .const import DATE_FIELDS, NO_DATE, NO_DATE_DISPLAY

_LOGGER = logging.getLogger(__name__)


def _parse(value: str) -> datetime.date | None:
    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.datetime.fromisoformat(text)
    except ValueError:
        try:
            return datetime.date.fromisoformat(text[:10])
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(datetime.timezone.utc)
    return parsed.date()


def clean_date_for_db(value: Any) -> str | None:
    """
    Return value as YYYY-MM-DD, or None when it is empty or not a date.

    Offset-aware timestamps are converted to UTC before taking the day.
    """
    if value is None or value is False or value == 0:
        return None
    if isinstance(value, datetime.datetime):
        if value.tzinfo is not None:
            value = value.astimezone(datetime.timezone.utc)
        return value.date().isoformat()
    if isinstance(value, datetime.date):
        return value.isoformat()
    day = _parse(str(value))
    if day is None:
        _LOGGER.debug("Discarding unparseable date value %r", value)
        return None
    return day.isoformat()


def normalize_day(value: Any) -> str:
    """Canonical day string used for grouping; NO_DATE when absent or invalid."""
    return clean_date_for_db(value) or NO_DATE


def clean_dates_in_payload(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of payload with every known date field cleaned, recursively."""
    cleaned: dict[str, Any] = {}
    for key, value in payload.items():
        if key in DATE_FIELDS:
            cleaned[key] = clean_date_for_db(value)
        elif isinstance(value, Mapping):
            cleaned[key] = clean_dates_in_payload(value)
        elif isinstance(value, list):
            cleaned[key] = [
                clean_dates_in_payload(item) if isinstance(item, Mapping) else item
                for item in value
            ]
        else:
            cleaned[key] = value
    return cleaned


def format_display_date(day: str) -> str:
    """Long display form, e.g. 'May 1, 2024'; NO_DATE becomes 'No Date'."""
    if day == NO_DATE:
        return NO_DATE_DISPLAY
    parsed = _parse(day)
    if parsed is None:
        return day
    return f"{parsed.strftime('%B')} {parsed.day}, {parsed.year}"


def format_us_date(value: Any) -> str | None:
    """Short US form M/D/YYYY used in exports; None when value is not a date."""
    day = clean_date_for_db(value)
    if day is None:
        return None
    parsed = datetime.date.fromisoformat(day)
    return f"{parsed.month}/{parsed.day}/{parsed.year}"
