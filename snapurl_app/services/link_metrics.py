"""
Derived link values, computed on read from stored fields.

Nothing here is persisted or cached, so the values cannot drift from the
counters they are derived from.
"""

from datetime import datetime
from typing import Optional

from snapurl_app.config import settings
from snapurl_app.timeutils import utcnow


def click_through_rate(unique_clicks: int, click_count: int) -> float:
    """Unique clicks as a percentage of all clicks, 0 when there are no clicks."""
    if not click_count or click_count <= 0:
        return 0
    rate = (unique_clicks or 0) / click_count * 100
    return round(min(max(rate, 0.0), 100.0), 2)


def short_url(link) -> str:
    return f"{settings.base_url}/{link.custom_alias or link.short_code}"


def age_in_days(created_at: datetime, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    return max((now - created_at).days, 0)


def average_clicks_per_day(click_count: int, created_at: datetime, now: Optional[datetime] = None) -> float:
    days = age_in_days(created_at, now) or 1
    return round((click_count or 0) / days, 2)


def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    return expires_at is not None and expires_at <= (now or utcnow())


def is_accessible(link, now: Optional[datetime] = None) -> bool:
    return bool(link.is_active) and not is_expired(link.expires_at, now)
