from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Process-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def backup_stamp(dt: Optional[datetime] = None) -> str:
    """
    Filesystem-safe UTC stamp used to name export artifacts.

    Microseconds are kept so two exports in the same second get distinct names.
    """
    dt = dt or utcnow()
    return dt.strftime("%Y-%m-%dT%H-%M-%S-%fZ")
