from __future__ import annotations

import re
from datetime import date, datetime, timezone


_TZ_WITHOUT_COLON_RE = re.compile(r"([+-]\d{2})(\d{2})$")
_EXCESS_MICROS_RE = re.compile(r"(\.\d{6})\d+")
_US_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def _normalize_datetime_string(value: str) -> str:
    normalized = value.strip()
    if normalized.endswith(("Z", "z")):
        normalized = f"{normalized[:-1]}+00:00"
    normalized = normalized.replace(" UTC", "+00:00")
    normalized = normalized.replace(" GMT", "+00:00")

    if _TZ_WITHOUT_COLON_RE.search(normalized):
        normalized = _TZ_WITHOUT_COLON_RE.sub(r"\1:\2", normalized)

    # Python supports microseconds up to 6 digits. Some MLS feeds send
    # 7-digit (.NET style) fractions, so trim instead of rejecting the timestamp.
    normalized = _EXCESS_MICROS_RE.sub(r"\1", normalized)

    us_date = _US_DATE_RE.match(normalized)
    if us_date:
        month, day, year = us_date.groups()
        normalized = f"{year}-{int(month):02d}-{int(day):02d}"
    return normalized


def parse_datetime(value: str) -> datetime | None:
    if not isinstance(value, str):
        return None

    normalized = _normalize_datetime_string(value)
    candidates = [normalized]
    if " " in normalized:
        candidates.append(normalized.replace(" ", "T", 1))

    for candidate in candidates:
        try:
            return datetime.fromisoformat(candidate)
        except ValueError:
            continue
    return None


def coerce_datetime(value: object) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    if isinstance(value, str):
        return parse_datetime(value)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        timestamp = float(value)
        if timestamp > 10_000_000_000:
            timestamp /= 1000.0
        try:
            return datetime.fromtimestamp(timestamp, tz=timezone.utc)
        except (OSError, OverflowError, ValueError):
            return None
    return None


def ensure_aware(value: datetime | None) -> datetime | None:
    """Naive provider timestamps are taken to be UTC."""

    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def format_utc(value: datetime, *, with_offset: bool = True) -> str:
    """Render a query timestamp in UTC with the fraction dropped; RETS wants no offset."""

    utc_value = ensure_aware(value).astimezone(timezone.utc)
    if with_offset:
        return utc_value.isoformat(timespec="seconds")
    return utc_value.replace(tzinfo=None).isoformat(timespec="seconds")
