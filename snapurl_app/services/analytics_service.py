"""
Click analytics aggregation.

Everything here is read-only over the links and clicks tables, except
cleanup(). Conventions shared by all queries:

- Date ranges are half-open: start_date <= clicked_at < end_date.
- Rates are percentages rounded to 2 places, 0 when there are no clicks.
- Group-by results are capped at settings.analytics_max_group_size rows,
  time series at settings.analytics_max_buckets buckets. Empty buckets are
  omitted.
- report() dispatches to the same methods as the direct calls, so both
  always agree.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from sqlalchemy import case, distinct, extract, func
from sqlalchemy.orm import Session

from snapurl_app.config import settings
from snapurl_app.exceptions import InvalidInputError, NotFoundOrForbiddenError, SnapURLError
from snapurl_app.models.click import Click
from snapurl_app.models.link import Link
from snapurl_app.models.user import User
from snapurl_app.services import link_metrics
from snapurl_app.timeutils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

# Approximate bucket widths, used only to decide whether a granularity fits
GRANULARITY_WIDTHS = {
    "minute": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=31),
}
AUTO_GRANULARITIES = ["hour", "day", "week", "month"]

SQLITE_BUCKET_FORMATS = {
    "minute": "%Y-%m-%dT%H:%M",
    "hour": "%Y-%m-%dT%H:00",
    "day": "%Y-%m-%d",
    "week": "%Y-W%W",
    "month": "%Y-%m",
}
POSTGRES_BUCKET_FORMATS = {
    "minute": 'YYYY-MM-DD"T"HH24:MI',
    "hour": 'YYYY-MM-DD"T"HH24:00',
    "day": "YYYY-MM-DD",
    "week": 'IYYY-"W"IW',
    "month": "YYYY-MM",
}

SUMMARY_SECTIONS = {"overview", "geographic", "technology", "traffic", "performance", "real_time"}
TOP_CONTENT_METRICS = {"clicks", "unique_clicks", "ctr"}
REPORT_TYPES = {"url", "user", "platform"}
REPORT_FORMATS = {"json", "csv"}
TREND_THRESHOLD = 10.0  # percent change needed before a trend is "up" or "down"

unique_sum = func.coalesce(func.sum(case((Click.is_unique == True, 1), else_=0)), 0)
click_total = func.count(Click.id)


def percentage(part: int, whole: int) -> float:
    if not whole or whole <= 0:
        return 0
    return round(min(max(part / whole * 100, 0.0), 100.0), 2)


def trend_direction(first: int, second: int) -> Dict:
    """Compare click counts of the first and second half of a range."""
    if first > 0:
        change = (second - first) / first * 100
    else:
        change = 100.0 if second > 0 else 0.0

    if change > TREND_THRESHOLD:
        direction = "up"
    elif change < -TREND_THRESHOLD:
        direction = "down"
    else:
        direction = "stable"

    return {
        "direction": direction,
        "change_percent": round(change, 2),
        "first_half_clicks": first,
        "second_half_clicks": second,
    }


class AnalyticsService:

    def __init__(self, db: Session):
        self.db = db
        self.max_group_size = settings.analytics_max_group_size
        self.max_buckets = settings.analytics_max_buckets

    # ---------------------------------------------------------------- helpers

    @staticmethod
    def _normalize_range(start_date: Optional[datetime], end_date: Optional[datetime]):
        start_date = to_naive_utc(start_date)
        end_date = to_naive_utc(end_date)
        if start_date and end_date and start_date >= end_date:
            raise InvalidInputError("start_date must be before end_date")
        return start_date, end_date

    @staticmethod
    def _click_filters(start_date, end_date, exclude_bots: bool, *criteria) -> List:
        filters = list(criteria)
        if start_date is not None:
            filters.append(Click.clicked_at >= start_date)
        if end_date is not None:
            filters.append(Click.clicked_at < end_date)
        if exclude_bots:
            filters.append(Click.is_bot == False)
        return filters

    def _totals(self, filters: Sequence) -> Dict:
        total, unique, visitors = self.db.query(
            click_total,
            unique_sum,
            func.count(distinct(Click.ip_address)),
        ).filter(*filters).one()
        total = total or 0
        unique = int(unique or 0)
        return {
            "total_clicks": total,
            "unique_clicks": unique,
            "unique_visitors": visitors or 0,
            "click_through_rate": percentage(unique, total),
        }

    def _count(self, filters: Sequence) -> int:
        return self.db.query(click_total).filter(*filters).scalar() or 0

    def _breakdown(self, expression, filters: Sequence, total: int, limit: Optional[int] = None) -> List[Dict]:
        """Counts grouped by one expression, largest groups first."""
        limit = min(limit or self.max_group_size, self.max_group_size)
        value = expression.label("group_value")
        rows = self.db.query(value, click_total, unique_sum).filter(
            *filters
        ).group_by(value).order_by(click_total.desc(), value.asc()).limit(limit).all()

        return [
            {
                "value": row[0],
                "clicks": row[1],
                "unique_clicks": int(row[2] or 0),
                "percentage": percentage(row[1], total),
            }
            for row in rows
        ]

    def _dialect(self) -> str:
        return self.db.get_bind().dialect.name

    def _bucket_expression(self, column, granularity: str):
        if self._dialect() == "postgresql":
            return func.to_char(column, POSTGRES_BUCKET_FORMATS[granularity])
        return func.strftime(SQLITE_BUCKET_FORMATS[granularity], column)

    def _fits(self, granularity: str, start: datetime, end: datetime) -> bool:
        buckets = (end - start) / GRANULARITY_WIDTHS[granularity]
        return buckets + 1 <= self.max_buckets

    def choose_granularity(self, start: datetime, end: datetime, requested: Optional[str] = None) -> str:
        """
        Finest granularity whose bucket count fits the configured bound.

        An explicit granularity is honoured if it fits, otherwise rejected.
        """
        if requested is not None:
            if requested not in GRANULARITY_WIDTHS:
                raise InvalidInputError(
                    f"granularity must be one of: {', '.join(GRANULARITY_WIDTHS)}"
                )
            if not self._fits(requested, start, end):
                raise InvalidInputError(
                    f"Range too large for {requested} buckets (max {self.max_buckets} buckets)"
                )
            return requested

        for granularity in AUTO_GRANULARITIES:
            if self._fits(granularity, start, end):
                return granularity
        return AUTO_GRANULARITIES[-1]

    def _timeline(self, column, filters: Sequence, granularity: str, count_column=None) -> Dict:
        bucket = self._bucket_expression(column, granularity)
        period = bucket.label("period")
        if count_column is None:
            rows = self.db.query(period, click_total, unique_sum).filter(
                *filters
            ).group_by(period).order_by(period.asc()).limit(self.max_buckets).all()
            buckets = [
                {"period": row[0], "clicks": row[1], "unique_clicks": int(row[2] or 0)}
                for row in rows
            ]
        else:
            rows = self.db.query(period, func.count(count_column)).filter(
                *filters
            ).group_by(period).order_by(period.asc()).limit(self.max_buckets).all()
            buckets = [{"period": row[0], "count": row[1]} for row in rows]

        return {"granularity": granularity, "buckets": buckets}

    def _hourly_distribution(self, filters: Sequence) -> List[Dict]:
        hour = extract("hour", Click.clicked_at)
        rows = self.db.query(hour, click_total).filter(*filters).group_by(hour).all()
        counts = {int(row[0]): row[1] for row in rows if row[0] is not None}
        return [{"hour": h, "clicks": counts.get(h, 0)} for h in range(24)]

    def _trend(self, filters: Sequence, start: datetime, end: datetime) -> Dict:
        midpoint = start + (end - start) / 2
        first = self._count([*filters, Click.clicked_at >= start, Click.clicked_at < midpoint])
        second = self._count([*filters, Click.clicked_at >= midpoint, Click.clicked_at < end])
        return trend_direction(first, second)

    def _real_time_counts(self, filters: Sequence, now: datetime) -> Dict:
        return {
            "last_5_minutes": self._count([*filters, Click.clicked_at >= now - timedelta(minutes=5)]),
            "last_hour": self._count([*filters, Click.clicked_at >= now - timedelta(hours=1)]),
        }

    def _load_link(self, link_id: int, owner_id: Optional[str]) -> Link:
        link = self.db.get(Link, link_id)
        if link is None or (owner_id is not None and link.owner_id != owner_id):
            raise NotFoundOrForbiddenError()
        return link

    @staticmethod
    def _link_summary(link: Link) -> Dict:
        return {
            "id": link.id,
            "short_code": link.short_code,
            "short_url": link_metrics.short_url(link),
            "original_url": link.original_url,
            "title": link.title,
            "click_count": link.click_count,
            "unique_clicks": link.unique_clicks,
            "click_through_rate": link_metrics.click_through_rate(link.unique_clicks, link.click_count),
        }

    # ------------------------------------------------------------------ links

    async def url_analytics(
        self,
        link_id: int,
        owner_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        exclude_bots: bool = True,
        include_cities: bool = False,
        granularity: Optional[str] = None,
    ) -> Dict:
        """
        Full analytics for one link.

        owner_id=None is the unscoped (privileged) mode; otherwise the link
        must belong to owner_id. real_time ignores the requested range.
        """
        start_date, end_date = self._normalize_range(start_date, end_date)
        link = self._load_link(link_id, owner_id)
        now = utcnow()

        filters = self._click_filters(start_date, end_date, exclude_bots, Click.link_id == link.id)
        overview = self._totals(filters)
        total = overview["total_clicks"]

        range_start = start_date or link.created_at
        range_end = end_date or now
        if range_start >= range_end:
            range_start = range_end - timedelta(hours=1)
        days = max((range_end - range_start) / timedelta(days=1), 1)
        chosen = self.choose_granularity(range_start, range_end, granularity)

        geographic = {"countries": self._breakdown(func.coalesce(Click.country, "Unknown"), filters, total)}
        if include_cities:
            geographic["cities"] = self._breakdown(func.coalesce(Click.city, "Unknown"), filters, total)

        hourly = self._hourly_distribution(filters)
        peak = max(hourly, key=lambda h: h["clicks"])

        return {
            "url": {
                **self._link_summary(link),
                "is_active": link.is_active,
                "is_expired": link_metrics.is_expired(link.expires_at, now),
                "created_at": link.created_at,
                "last_clicked_at": link.last_clicked_at,
            },
            "overview": {
                **overview,
                "bot_clicks": self._count(self._click_filters(
                    start_date, end_date, False, Click.link_id == link.id, Click.is_bot == True
                )),
            },
            "geographic": geographic,
            "technology": {
                "devices": self._breakdown(func.coalesce(Click.device_type, "unknown"), filters, total),
                "browsers": self._breakdown(func.coalesce(Click.browser, "Unknown"), filters, total),
                "operating_systems": self._breakdown(func.coalesce(Click.os, "Unknown"), filters, total),
            },
            "traffic": {
                "referrers": self._breakdown(func.coalesce(Click.referrer_domain, "direct"), filters, total),
                "sources": self._breakdown(Click.source, filters, total),
                "campaigns": self._breakdown(
                    Click.utm_campaign, [*filters, Click.utm_campaign.isnot(None)], total
                ),
                "timeline": self._timeline(Click.clicked_at, filters, chosen),
                "hourly_distribution": hourly,
            },
            "performance": {
                "clicks_per_day": round(total / days, 2),
                "conversion_rate": overview["click_through_rate"],
                "peak_hour": peak["hour"] if peak["clicks"] else None,
                "trend": self._trend(filters, range_start, range_end),
            },
            "real_time": self._real_time_counts(
                self._click_filters(None, None, exclude_bots, Click.link_id == link.id), now
            ),
        }

    # ------------------------------------------------------------------ users

    async def user_dashboard(
        self,
        owner_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 10,
    ) -> Dict:
        """Aggregates across every link the owner has (had) clicks on."""
        if not owner_id:
            raise NotFoundOrForbiddenError()
        if not 1 <= limit <= self.max_group_size:
            raise InvalidInputError(f"limit must be between 1 and {self.max_group_size}")
        start_date, end_date = self._normalize_range(start_date, end_date)
        now = utcnow()

        filters = self._click_filters(start_date, end_date, True, Click.owner_id == owner_id)
        overview = self._totals(filters)
        total = overview["total_clicks"]

        link_counts = self.db.query(
            func.count(Link.id),
            func.coalesce(func.sum(case((Link.is_active == True, 1), else_=0)), 0),
        ).filter(Link.owner_id == owner_id).one()
        user = self.db.get(User, owner_id)

        top_links = self.db.query(Link).filter(
            Link.owner_id == owner_id
        ).order_by(Link.click_count.desc(), Link.id.desc()).limit(limit).all()

        recent = self.db.query(Click).filter(*filters).order_by(
            Click.clicked_at.desc(), Click.id.desc()
        ).limit(limit).all()

        first_click = self.db.query(func.min(Click.clicked_at)).filter(*filters).scalar()
        range_end = end_date or now
        range_start = start_date or first_click or (range_end - timedelta(days=1))
        if range_start >= range_end:
            range_start = range_end - timedelta(hours=1)

        return {
            "user_id": owner_id,
            "overview": {
                **overview,
                "total_links": link_counts[0] or 0,
                "active_links": int(link_counts[1] or 0),
                "url_count": user.url_count if user else 0,
                "lifetime_clicks": user.total_clicks if user else 0,
            },
            "top_urls": [self._link_summary(link) for link in top_links],
            "geographic": {"countries": self._breakdown(func.coalesce(Click.country, "Unknown"), filters, total)},
            "recent_activity": [
                {
                    "link_id": click.link_id,
                    "short_code": click.short_code,
                    "clicked_at": click.clicked_at,
                    "country": click.country,
                    "browser": click.browser,
                    "device_type": click.device_type,
                    "referrer_domain": click.referrer_domain,
                }
                for click in recent
            ],
            "timeline": self._timeline(
                Click.clicked_at, filters, self.choose_granularity(range_start, range_end)
            ),
        }

    # --------------------------------------------------------------- platform

    async def platform_analytics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict:
        """Unscoped aggregation over all data. Callers must be privileged."""
        start_date, end_date = self._normalize_range(start_date, end_date)
        now = utcnow()

        filters = self._click_filters(start_date, end_date, True)
        overview = self._totals(filters)
        total = overview["total_clicks"]

        total_links, active_links = self.db.query(
            func.count(Link.id),
            func.coalesce(func.sum(case((Link.is_active == True, 1), else_=0)), 0),
        ).one()
        total_users = self.db.query(func.count(User.id)).scalar() or 0

        link_filters = []
        user_filters = []
        if start_date is not None:
            link_filters.append(Link.created_at >= start_date)
            user_filters.append(User.created_at >= start_date)
        if end_date is not None:
            link_filters.append(Link.created_at < end_date)
            user_filters.append(User.created_at < end_date)

        first_click = self.db.query(func.min(Click.clicked_at)).filter(*filters).scalar()
        range_end = end_date or now
        range_start = start_date or first_click or (range_end - timedelta(days=1))
        if range_start >= range_end:
            range_start = range_end - timedelta(hours=1)
        granularity = self.choose_granularity(range_start, range_end)

        return {
            "overview": {
                **overview,
                "total_links": total_links or 0,
                "active_links": int(active_links or 0),
                "total_users": total_users,
                "bot_clicks": self._count(self._click_filters(start_date, end_date, False, Click.is_bot == True)),
            },
            "growth": {
                "new_links": self.db.query(func.count(Link.id)).filter(*link_filters).scalar() or 0,
                "new_users": self.db.query(func.count(User.id)).filter(*user_filters).scalar() or 0,
                "links_timeline": self._timeline(Link.created_at, link_filters, granularity, count_column=Link.id),
            },
            "performance": {
                "average_clicks_per_link": round(total / total_links, 2) if total_links else 0,
                "click_through_rate": overview["click_through_rate"],
                "top_countries": self._breakdown(func.coalesce(Click.country, "Unknown"), filters, total, limit=10),
                "top_browsers": self._breakdown(func.coalesce(Click.browser, "Unknown"), filters, total, limit=10),
                "top_devices": self._breakdown(func.coalesce(Click.device_type, "unknown"), filters, total, limit=10),
            },
            "trends": {
                "timeline": self._timeline(Click.clicked_at, filters, granularity),
                "trend": self._trend(filters, range_start, range_end),
            },
        }

    # -------------------------------------------------------------- real time

    async def real_time_analytics(self, minutes: int = 60, owner_id: Optional[str] = None) -> Dict:
        """Sliding window over the last `minutes`; live visitors are distinct IPs."""
        if not 1 <= minutes <= settings.realtime_max_minutes:
            raise InvalidInputError(f"minutes must be between 1 and {settings.realtime_max_minutes}")

        now = utcnow()
        since = now - timedelta(minutes=minutes)
        scope = [Click.owner_id == owner_id] if owner_id else []
        filters = self._click_filters(since, None, True, *scope)
        statistics = self._totals(filters)

        active = self.db.query(Click.link_id, Click.short_code, click_total).filter(
            *filters
        ).group_by(Click.link_id, Click.short_code).order_by(
            click_total.desc(), Click.link_id.asc()
        ).limit(10).all()

        return {
            "time_window": f"{minutes} minutes",
            "statistics": {
                **statistics,
                "bot_clicks": self._count(self._click_filters(since, None, False, Click.is_bot == True, *scope)),
                "clicks_per_minute": round(statistics["total_clicks"] / minutes, 2),
            },
            "active_urls": [
                {"link_id": row[0], "short_code": row[1], "clicks": row[2]}
                for row in active
            ],
            "live_visitors": self.db.query(func.count(distinct(Click.ip_address))).filter(
                *filters, Click.ip_address.isnot(None)
            ).scalar() or 0,
            "timeline": self._timeline(
                Click.clicked_at, filters, "minute" if minutes <= 120 else "hour"
            ),
        }

    # ------------------------------------------------------------ top content

    async def top_content(
        self,
        owner_id: Optional[str] = None,
        metric: str = "clicks",
        limit: int = 10,
        days: Optional[int] = None,
    ) -> Dict:
        """
        Rank links by clicks, unique clicks or CTR.

        Without `days` the stored link counters are ranked; with `days` the
        ranking is over clicks recorded in that many trailing days.
        """
        if metric not in TOP_CONTENT_METRICS:
            raise InvalidInputError(f"metric must be one of: {', '.join(sorted(TOP_CONTENT_METRICS))}")
        if not 1 <= limit <= self.max_group_size:
            raise InvalidInputError(f"limit must be between 1 and {self.max_group_size}")
        if days is not None and days < 1:
            raise InvalidInputError("days must be >= 1")

        if days is None:
            total = Link.click_count
            unique = Link.unique_clicks
            query = self.db.query(Link, total, unique)
            if owner_id:
                query = query.filter(Link.owner_id == owner_id)
        else:
            window = self.db.query(
                Click.link_id.label("link_id"),
                click_total.label("clicks"),
                unique_sum.label("unique_clicks"),
            ).filter(
                Click.clicked_at >= utcnow() - timedelta(days=days),
                Click.is_bot == False
            ).group_by(Click.link_id).subquery()
            total = window.c.clicks
            unique = window.c.unique_clicks
            query = self.db.query(Link, total, unique).join(window, window.c.link_id == Link.id)
            if owner_id:
                query = query.filter(Link.owner_id == owner_id)

        ctr = case((total > 0, unique * 100.0 / total), else_=0)
        order = {"clicks": total, "unique_clicks": unique, "ctr": ctr}[metric]
        rows = query.order_by(order.desc(), total.desc(), Link.id.desc()).limit(limit).all()

        return {
            "metric": metric,
            "days": days,
            "items": [
                {
                    "rank": rank,
                    "link_id": link.id,
                    "short_code": link.short_code,
                    "short_url": link_metrics.short_url(link),
                    "original_url": link.original_url,
                    "title": link.title,
                    "is_active": link.is_active,
                    "clicks": clicks or 0,
                    "unique_clicks": int(unique_clicks or 0),
                    "click_through_rate": percentage(int(unique_clicks or 0), clicks or 0),
                }
                for rank, (link, clicks, unique_clicks) in enumerate(rows, start=1)
            ],
        }

    async def analytics_summary(
        self,
        link_ids: Sequence[int],
        owner_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        metrics: Optional[Sequence[str]] = None,
    ) -> Dict:
        """Per-link analytics for many links; one bad id never fails the batch."""
        if not link_ids:
            raise InvalidInputError("At least one link id is required")
        if len(link_ids) > self.max_group_size:
            raise InvalidInputError(f"Maximum {self.max_group_size} links per summary request")
        sections = list(metrics or ["overview"])
        unknown = set(sections) - SUMMARY_SECTIONS
        if unknown:
            raise InvalidInputError(f"Unknown metrics: {', '.join(sorted(unknown))}")

        results = []
        for link_id in link_ids:
            try:
                analytics = await self.url_analytics(
                    link_id, owner_id=owner_id, start_date=start_date, end_date=end_date
                )
            except SnapURLError as e:
                results.append({"link_id": link_id, "success": False, "error": e.message})
                continue
            results.append({
                "link_id": link_id,
                "success": True,
                "data": {"url": analytics["url"], **{s: analytics[s] for s in sections}},
            })

        success_count = sum(1 for r in results if r["success"])
        return {
            "results": results,
            "success_count": success_count,
            "error_count": len(results) - success_count,
        }

    # ---------------------------------------------------------------- reports

    async def report(
        self,
        report_type: str,
        target_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        report_format: str = "json",
        owner_id: Optional[str] = None,
    ) -> Dict:
        """
        Single entry point over url/user/platform analytics.

        owner_id scopes url and user reports to the caller; None is the
        privileged mode. Platform reports are unscoped, so the web layer only
        lets admins request them.
        """
        if report_type not in REPORT_TYPES:
            raise InvalidInputError(f"type must be one of: {', '.join(sorted(REPORT_TYPES))}")
        if report_format not in REPORT_FORMATS:
            raise InvalidInputError(f"format must be one of: {', '.join(sorted(REPORT_FORMATS))}")

        if report_type == "url":
            try:
                link_id = int(target_id)
            except (TypeError, ValueError):
                raise InvalidInputError("target_id must be a link id for url reports")
            data = await self.url_analytics(link_id, owner_id=owner_id, start_date=start_date, end_date=end_date)
        elif report_type == "user":
            target_id = target_id or owner_id
            if not target_id or (owner_id is not None and target_id != owner_id):
                raise NotFoundOrForbiddenError("User not found or you don't have permission to access it")
            data = await self.user_dashboard(target_id, start_date=start_date, end_date=end_date)
        else:
            target_id = None
            data = await self.platform_analytics(start_date=start_date, end_date=end_date)

        return {
            "metadata": {
                "type": report_type,
                "target_id": target_id,
                "generated_at": utcnow(),
                "date_range": {"start": to_naive_utc(start_date), "end": to_naive_utc(end_date)},
                "format": report_format,
            },
            "data": data,
        }

    # -------------------------------------------------------------- retention

    async def cleanup(self, retention_days: Optional[int] = None, dry_run: bool = True) -> Dict:
        """
        Delete clicks older than now - retention_days.

        A dry run only counts; it never deletes.
        """
        if retention_days is None:
            retention_days = settings.default_retention_days
        if retention_days < 1:
            raise InvalidInputError("retention_days must be >= 1")

        cutoff = utcnow() - timedelta(days=retention_days)
        old_clicks = self.db.query(Click).filter(Click.clicked_at < cutoff)

        if dry_run:
            return {"dry_run": True, "cutoff_date": cutoff, "records_to_delete": old_clicks.count()}

        deleted = old_clicks.delete(synchronize_session=False)
        self.db.commit()
        logger.info(f"Deleted {deleted} clicks older than {cutoff.isoformat()}")
        return {"dry_run": False, "cutoff_date": cutoff, "deleted_count": deleted}
