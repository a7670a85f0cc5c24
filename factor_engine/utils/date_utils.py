"""Date manipulation utilities"""

from datetime import date, datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC timestamp"""
    return datetime.now(timezone.utc)


def date_or_today(value: Optional[date]) -> date:
    """Default an optional business date to today"""
    return value if value is not None else date.today()


def to_iso(value: Any) -> Optional[str]:
    """ISO-8601 string for dates/datetimes, None passthrough (JSON snapshots)"""
    if value is None:
        return None
    return value.isoformat()
