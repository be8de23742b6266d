from datetime import datetime, timezone


def utc_now() -> datetime:
    """Naive UTC timestamp, matching how the DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_epoch(value: float | int | None) -> datetime:
    """Convert a provider's epoch-seconds timestamp, defaulting to now."""
    if not value:
        return utc_now()
    # Some vendors report milliseconds.
    if value > 10_000_000_000:
        value = value / 1000
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
