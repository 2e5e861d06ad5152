from datetime import datetime, timedelta, timezone

from services.cache_freshness import is_fresh, parse_timestamp, should_fetch

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_freshness_boundary():
    assert is_fresh(NOW - timedelta(hours=23), 24, now=NOW) is True
    assert is_fresh(NOW - timedelta(hours=25), 24, now=NOW) is False
    assert is_fresh(NOW - timedelta(hours=24), 24, now=NOW) is False


def test_iso_strings_are_accepted():
    assert is_fresh("2024-05-01T01:00:00+00:00", 24, now=NOW) is True
    assert is_fresh("2024-04-30T01:00:00Z", 24, now=NOW) is False
    # naive timestamps are treated as UTC
    assert is_fresh("2024-05-01T11:00:00", 2, now=NOW) is True


def test_missing_or_unparsable_timestamp_is_stale():
    assert is_fresh(None, 24, now=NOW) is False
    assert is_fresh("", 24, now=NOW) is False
    assert is_fresh("yesterday-ish", 24, now=NOW) is False
    assert parse_timestamp("not a date") is None


def test_force_refresh_always_fetches():
    recent = NOW - timedelta(minutes=5)
    assert should_fetch(recent, 24, now=NOW) is False
    assert should_fetch(recent, 24, force_refresh=True, now=NOW) is True
    assert should_fetch(NOW - timedelta(hours=30), 24, now=NOW) is True
