"""Datetime helpers shared by serializers.

All datetimes handled by ctxinject are timezone-aware UTC; naive values are
assumed to already be UTC.
"""

from datetime import UTC, datetime

__all__ = ["serialize_datetime", "utc_now"]


def serialize_datetime(dt: datetime) -> str:
    """Serialize datetime to ISO 8601 string with UTC timezone.

    Examples:
        >>> serialize_datetime(datetime(2024, 12, 14, 10, 30, 0))
        '2024-12-14T10:30:00+00:00'
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.isoformat()


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)
