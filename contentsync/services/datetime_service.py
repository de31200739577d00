"""Datetime parsing: frontmatter dates in, timezone-aware datetimes out."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pendulum


def parse_date(value: str | date, default_tz: str = "UTC") -> datetime:
    """Parse a ``YYYY-MM-DD`` frontmatter date into midnight of that day.

    Accepts the string form as written in frontmatter or a ``date`` already
    produced by the YAML loader. Raises ``ValueError`` for anything that is
    not a calendar date.
    """
    if isinstance(value, date):
        return pendulum.datetime(value.year, value.month, value.day, tz=default_tz)

    parsed = pendulum.parse(value.strip(), tz=default_tz, strict=True, exact=True)
    # DateTime subclasses Date, so reject it explicitly
    if isinstance(parsed, pendulum.DateTime) or not isinstance(parsed, pendulum.Date):
        raise ValueError(f"Not a calendar date: {value!r}")
    return pendulum.datetime(parsed.year, parsed.month, parsed.day, tz=default_tz)


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)
