# achievement_cache/utils/date_utils.py

"""UTC timestamp helpers for the cache store.

Every timestamp column is ISO-8601 UTC text so rows sort lexically and stay
portable across drivers. Format: ``YYYY-MM-DDTHH:MM:SS.ffffffZ``.

Unlock times follow one sentinel rule: a missing value, ``datetime.min`` or
the Unix epoch means the achievement is locked.
"""

from __future__ import annotations

from datetime import datetime, timezone

__all__ = [
    "EPOCH_UTC",
    "as_utc",
    "normalize_unlock_time",
    "normalize_stored_iso",
    "parse_utc",
    "to_iso",
    "utc_now",
]

EPOCH_UTC = datetime(1970, 1, 1, tzinfo=timezone.utc)

_ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """Format a datetime as fixed-width ISO-8601 UTC text.

    Args:
        value: Naive (assumed UTC) or aware datetime.

    Returns:
        Text like ``2024-05-01T12:30:00.000000Z``.
    """
    return as_utc(value).strftime(_ISO_FORMAT)


def parse_utc(value: str | None) -> datetime | None:
    """Parse stored or legacy timestamp text into an aware UTC datetime.

    Accepts the canonical format, ``fromisoformat`` variants (offsets, no
    fraction) and a trailing ``Z``. Returns None for blank or unparsable
    input instead of raising.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    try:
        return datetime.strptime(text, _ISO_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        pass

    candidate = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    # .NET round-trip output carries 7 fractional digits
    if "." in candidate:
        head, _, tail = candidate.partition(".")
        digits = ""
        rest = tail
        while rest and rest[0].isdigit():
            digits += rest[0]
            rest = rest[1:]
        candidate = f"{head}.{digits[:6].ljust(6, '0')}{rest}"

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    return as_utc(parsed)


def normalize_unlock_time(value: datetime | None) -> datetime | None:
    """Apply the zero-date rule to an unlock time.

    Args:
        value: Unlock time as reported by a provider.

    Returns:
        The time as aware UTC, or None when it means "locked" (absent,
        ``datetime.min`` or the Unix epoch).
    """
    if value is None:
        return None
    if value.replace(tzinfo=None) == datetime.min:
        return None
    value = as_utc(value)
    if value <= EPOCH_UTC:
        return None
    return value


def normalize_stored_iso(value: str | None) -> str | None:
    """Re-format stored timestamp text canonically for comparisons."""
    if value is None or not str(value).strip():
        return None
    parsed = parse_utc(value)
    return to_iso(parsed) if parsed is not None else str(value).strip()
