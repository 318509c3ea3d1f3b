"""Utility helpers for string normalization, time and path handling."""

from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from typing import Optional

SLUG_PATTERN = re.compile(r"[^a-z0-9]+")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def slugify(value: str, fallback: str = "item") -> str:
    """Generate a filesystem-friendly slug using ASCII characters only."""
    normalized = value.encode("ascii", "ignore").decode("ascii")
    normalized = normalized.lower()
    normalized = SLUG_PATTERN.sub("-", normalized).strip("-")
    return normalized or fallback


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def epoch_millis(moment: Optional[datetime] = None) -> int:
    if moment is None:
        return int(time.time() * 1000)
    return int(moment.timestamp() * 1000)


def format_iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_iso(value: Optional[str]) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC.

    Missing or unparseable values map to the Unix epoch so that records with a
    damaged date sort as the oldest.
    """
    if not value:
        return _EPOCH
    raw = str(value).strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def email_domain(address: str) -> Optional[str]:
    if not address or "@" not in address:
        return None
    domain = address.split("@", 1)[1].strip().lower()
    return domain or None
