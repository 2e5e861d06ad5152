"""
Lenient date handling for provider payload values.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from dateutil import parser as dateparser

from .path_resolver import resolve

logger = logging.getLogger(__name__)


def parse_date_value(value: Any) -> Optional[datetime]:
    """Parse a provider date (ISO string, free-form string or epoch seconds)"""
    if value is None or value == '' or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        try:
            parsed = dateparser.parse(str(value).strip())
        except (ValueError, OverflowError):
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_iso(value: Any) -> Optional[str]:
    """ISO-8601 form of a date value, None when unparsable"""
    parsed = parse_date_value(value)
    return parsed.isoformat() if parsed else None


def extract_api_date(data: Any, paths: Iterable[str]) -> Optional[str]:
    """
    Pull the first parsable date out of a raw record.

    Args:
        data: Provider raw record
        paths: Candidate field paths, tried in order

    Returns:
        ISO-8601 string or None
    """
    for path in paths:
        value = resolve(data, path)
        if not value:
            continue
        iso = to_iso(value)
        if iso:
            return iso
        logger.debug(f"Unparsable date at {path}: {value!r}")
    return None
