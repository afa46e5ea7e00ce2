from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso(dt_str: str) -> datetime:
    # Expect ISO format like "2026-01-20T18:00:00" or with an offset/"Z"
    if dt_str.endswith("Z"):
        dt_str = dt_str[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(dt_str))
