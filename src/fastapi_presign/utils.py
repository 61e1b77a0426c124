import uuid
from datetime import datetime, timezone


def uuid_factory() -> str:
    """Helper function to create a UUID string."""
    return uuid.uuid4().hex


def datetime_factory() -> datetime:
    """Helper function to create a timezone-aware datetime object."""
    return datetime.now(timezone.utc)


def today_factory() -> str:
    """Current UTC calendar day as ``YYYY-MM-DD``."""
    return datetime_factory().strftime("%Y-%m-%d")


def clamp(value: int, minimum: int, maximum: int) -> int:
    """Clamp ``value`` into ``[minimum, maximum]``."""
    return max(minimum, min(maximum, value))
