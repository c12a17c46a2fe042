from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO8601 timestamp into an aware UTC datetime.

    Naive values are taken to be UTC, matching the OCPI convention that the
    absence of a timezone designator implies UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(value: Union[str, datetime, None]) -> Optional[str]:
    """Render ``value`` as ISO8601 with a ``Z`` suffix (e.g. 2015-06-29T20:39:09Z)."""
    dt = parse_timestamp(value)
    if dt is None:
        return None
    return dt.isoformat().replace("+00:00", "Z")
