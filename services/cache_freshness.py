"""
Cache Freshness Gate

A cached raw provider record is fresh iff now - last_fetched < expiry_hours.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

logger = logging.getLogger(__name__)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse a stored timestamp into an aware UTC datetime"""
    if value is None or value == '':
        return None

    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            logger.debug(f"Unparsable cache timestamp: {value!r}")
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_fresh(
    last_fetched: Union[str, datetime, None],
    expiry_hours: float,
    now: Optional[datetime] = None
) -> bool:
    """
    Check whether a cached record can be reused.

    Args:
        last_fetched: When the record was last fetched (ISO string or datetime)
        expiry_hours: Staleness window in hours
        now: Reference time (defaults to current UTC time)

    Returns:
        True if the record is younger than the expiry window
    """
    fetched_at = parse_timestamp(last_fetched)
    if fetched_at is None:
        return False

    reference = parse_timestamp(now) if now is not None else utc_now()
    return reference - fetched_at < timedelta(hours=expiry_hours)


def should_fetch(
    last_fetched: Union[str, datetime, None],
    expiry_hours: float,
    force_refresh: bool = False,
    now: Optional[datetime] = None
) -> bool:
    """True when the record must be (re-)fetched from the provider"""
    if force_refresh:
        return True
    return not is_fresh(last_fetched, expiry_hours, now)


__all__ = ['is_fresh', 'should_fetch', 'parse_timestamp', 'utc_now']
