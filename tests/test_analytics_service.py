"""
Tests for click analytics aggregation.
"""
import asyncio
from datetime import timedelta

import pytest

from snapurl_app.config import settings
from snapurl_app.exceptions import InvalidInputError, NotFoundOrForbiddenError
from snapurl_app.geo.strategies import GeoLocation, GeoLookupStrategy
from snapurl_app.models.click import Click
from snapurl_app.services.analytics_service import AnalyticsService, percentage, trend_direction
from snapurl_app.services.click_recorder import ClickRecorder
from snapurl_app.services.link_service import LinkService
from snapurl_app.timeutils import utcnow

FIREFOX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"
BOT = "Mozilla/5.0 (compatible; bingbot/2.0; +http://www.bing.com/bingbot.htm)"


class CityGeo(GeoLookupStrategy):
    async def lookup(self, ip_address):
        return GeoLocation(country="FR", city="Paris")


def run(coro):
    return asyncio.run(coro)


def make_link(db_session, url="https://example.com", owner_id="alice", **kwargs):
    return run(LinkService(db_session).create_link(url, owner_id=owner_id, **kwargs)).link


def click(db_session, link, ip="10.0.0.1", ago=None, geo=None, **kwargs):
    kwargs.setdefault("user_agent", FIREFOX)
    clicked_at = utcnow() - ago if ago is not None else None
    return run(ClickRecorder(db_session, geo=geo).record(
        link.id, ip_address=ip, clicked_at=clicked_at, **kwargs
    ))


@pytest.fixture
def analytics(db_session):
    return AnalyticsService(db_session)


class TestUrlAnalytics:

    def test_overview_counts(self, db_session, analytics):
        link = make_link(db_session)
        for ip in ["1.1.1.1", "2.2.2.2", "1.1.1.1", "3.3.3.3", "1.1.1.1"]:
            click(db_session, link, ip=ip)

        result = run(analytics.url_analytics(link.id, owner_id="alice"))

        assert result["overview"]["total_clicks"] == 5
        assert result["overview"]["unique_clicks"] == 3
        assert result["overview"]["unique_visitors"] == 3
        assert result["overview"]["click_through_rate"] == 60.0
        assert result["url"]["short_code"] == link.short_code
        assert set(result) == {"url", "overview", "geographic", "technology", "traffic", "performance", "real_time"}

    def test_range_before_creation_is_empty(self, db_session, analytics):
        link = make_link(db_session)
        click(db_session, link)
        created = link.created_at

        result = run(analytics.url_analytics(
            link.id,
            owner_id="alice",
            start_date=created - timedelta(days=10),
            end_date=created - timedelta(days=5),
        ))

        assert result["overview"]["total_clicks"] == 0
        assert result["overview"]["click_through_rate"] == 0
        assert result["performance"]["trend"]["direction"] == "stable"

    def test_range_is_half_open(self, db_session, analytics):
        link = make_link(db_session)
        start = utcnow() - timedelta(hours=3)
        end = start + timedelta(hours=1)
        run(ClickRecorder(db_session).record(link.id, ip_address="1.1.1.1", clicked_at=start))
        run(ClickRecorder(db_session).record(link.id, ip_address="2.2.2.2", clicked_at=end))

        result = run(analytics.url_analytics(link.id, owner_id="alice", start_date=start, end_date=end))

        assert result["overview"]["total_clicks"] == 1

    def test_start_after_end_rejected(self, db_session, analytics):
        link = make_link(db_session)
        now = utcnow()

        with pytest.raises(InvalidInputError):
            run(analytics.url_analytics(link.id, start_date=now, end_date=now - timedelta(days=1)))

    def test_bots_excluded_by_default(self, db_session, analytics):
        link = make_link(db_session)
        click(db_session, link, ip="1.1.1.1")
        click(db_session, link, ip="9.9.9.9", user_agent=BOT)

        default = run(analytics.url_analytics(link.id, owner_id="alice"))
        with_bots = run(analytics.url_analytics(link.id, owner_id="alice", exclude_bots=False))

        assert default["overview"]["total_clicks"] == 1
        assert default["overview"]["bot_clicks"] == 1
        assert with_bots["overview"]["total_clicks"] == 2

    def test_breakdowns(self, db_session, analytics):
        link = make_link(db_session)
        click(db_session, link, ip="1.1.1.1", geo=CityGeo(), referrer="https://www.reddit.com/r/x")
        click(db_session, link, ip="2.2.2.2", geo=CityGeo())
        click(db_session, link, ip="3.3.3.3")

        result = run(analytics.url_analytics(link.id, owner_id="alice", include_cities=True))

        countries = {row["value"]: row["clicks"] for row in result["geographic"]["countries"]}
        assert countries == {"FR": 2, "Unknown": 1}
        assert result["geographic"]["cities"][0]["value"] == "Paris"
        assert result["geographic"]["countries"][0]["percentage"] == 66.67
        browsers = result["technology"]["browsers"]
        assert browsers == [{"value": "Firefox", "clicks": 3, "unique_clicks": 3, "percentage": 100.0}]
        referrers = {row["value"]: row["clicks"] for row in result["traffic"]["referrers"]}
        assert referrers == {"direct": 2, "reddit.com": 1}

    def test_cities_only_on_request(self, db_session, analytics):
        link = make_link(db_session)

        result = run(analytics.url_analytics(link.id, owner_id="alice"))

        assert "cities" not in result["geographic"]

    def test_group_size_is_bounded(self, db_session, analytics, monkeypatch):
        monkeypatch.setattr(settings, "analytics_max_group_size", 2)
        analytics = AnalyticsService(db_session)
        link = make_link(db_session)
        for i in range(4):
            click(db_session, link, ip=f"10.0.0.{i}", referrer=f"https://site{i}.example/")

        result = run(analytics.url_analytics(link.id, owner_id="alice"))

        assert len(result["traffic"]["referrers"]) == 2

    def test_timeline_sums_to_total(self, db_session, analytics):
        link = make_link(db_session)
        for hours in (1, 2, 2, 30):
            click(db_session, link, ip=f"10.0.0.{hours}", ago=timedelta(hours=hours))

        result = run(analytics.url_analytics(
            link.id, owner_id="alice", start_date=utcnow() - timedelta(days=2)
        ))

        timeline = result["traffic"]["timeline"]
        assert timeline["granularity"] == "hour"
        assert sum(b["clicks"] for b in timeline["buckets"]) == 4
        assert len(result["traffic"]["hourly_distribution"]) == 24

    def test_trend_up_when_second_half_busier(self, db_session, analytics):
        link = make_link(db_session)
        start = utcnow() - timedelta(days=10)
        click(db_session, link, ip="1.1.1.1", ago=timedelta(days=8))
        for i in range(4):
            click(db_session, link, ip=f"2.2.2.{i}", ago=timedelta(days=1))

        result = run(analytics.url_analytics(link.id, owner_id="alice", start_date=start))

        trend = result["performance"]["trend"]
        assert trend["direction"] == "up"
        assert trend["first_half_clicks"] == 1
        assert trend["second_half_clicks"] == 4

    def test_real_time_ignores_range(self, db_session, analytics):
        link = make_link(db_session)
        click(db_session, link, ip="1.1.1.1")
        click(db_session, link, ip="2.2.2.2", ago=timedelta(minutes=30))
        click(db_session, link, ip="3.3.3.3", ago=timedelta(hours=3))

        result = run(analytics.url_analytics(
            link.id,
            owner_id="alice",
            start_date=utcnow() - timedelta(days=30),
            end_date=utcnow() - timedelta(days=20),
        ))

        assert result["real_time"] == {"last_5_minutes": 1, "last_hour": 2}

    def test_other_owner_rejected(self, db_session, analytics):
        link = make_link(db_session)

        with pytest.raises(NotFoundOrForbiddenError):
            run(analytics.url_analytics(link.id, owner_id="bob"))

    def test_missing_link_rejected(self, analytics):
        with pytest.raises(NotFoundOrForbiddenError):
            run(analytics.url_analytics(12345))


class TestGranularity:

    def test_picks_finest_that_fits(self, analytics):
        now = utcnow()

        assert analytics.choose_granularity(now - timedelta(days=2), now) == "hour"
        assert analytics.choose_granularity(now - timedelta(days=100), now) == "day"
        assert analytics.choose_granularity(now - timedelta(days=365 * 5), now) == "week"
        assert analytics.choose_granularity(now - timedelta(days=365 * 30), now) == "month"

    def test_explicit_granularity_too_fine(self, analytics):
        now = utcnow()

        with pytest.raises(InvalidInputError):
            analytics.choose_granularity(now - timedelta(days=100), now, "hour")

    def test_explicit_granularity_honoured(self, analytics):
        now = utcnow()

        assert analytics.choose_granularity(now - timedelta(days=2), now, "day") == "day"


class TestDashboardAndPlatform:

    def test_user_dashboard(self, db_session, analytics):
        popular = make_link(db_session, "https://example.com/popular")
        quiet = make_link(db_session, "https://example.com/quiet")
        other = make_link(db_session, "https://example.com/bob", owner_id="bob")
        for i in range(3):
            click(db_session, popular, ip=f"1.1.1.{i}")
        click(db_session, quiet)
        click(db_session, other)

        result = run(analytics.user_dashboard("alice", limit=5))

        assert result["user_id"] == "alice"
        assert result["overview"]["total_clicks"] == 4
        assert result["overview"]["total_links"] == 2
        assert [u["id"] for u in result["top_urls"]] == [popular.id, quiet.id]
        assert len(result["recent_activity"]) == 4
        assert "timeline" in result

    def test_dashboard_limit_bounds(self, analytics):
        with pytest.raises(InvalidInputError):
            run(analytics.user_dashboard("alice", limit=0))
        with pytest.raises(InvalidInputError):
            run(analytics.user_dashboard("alice", limit=settings.analytics_max_group_size + 1))

    def test_platform_analytics(self, db_session, analytics):
        a = make_link(db_session, owner_id="alice")
        b = make_link(db_session, owner_id="bob")
        click(db_session, a, ip="1.1.1.1")
        click(db_session, b, ip="2.2.2.2")
        click(db_session, b, ip="9.9.9.9", user_agent=BOT)

        result = run(analytics.platform_analytics())

        assert result["overview"]["total_clicks"] == 2
        assert result["overview"]["bot_clicks"] == 1
        assert result["overview"]["total_links"] == 2
        assert result["overview"]["total_users"] == 2
        assert result["growth"]["new_links"] == 2
        assert result["performance"]["average_clicks_per_link"] == 1.0
        assert set(result) == {"overview", "growth", "performance", "trends"}


class TestRealTime:

    def test_window_and_live_visitors(self, db_session, analytics):
        link = make_link(db_session)
        click(db_session, link, ip="1.1.1.1")
        click(db_session, link, ip="1.1.1.1", ago=timedelta(minutes=10))
        click(db_session, link, ip="2.2.2.2", ago=timedelta(minutes=20))
        click(db_session, link, ip="3.3.3.3", ago=timedelta(hours=2))

        result = run(analytics.real_time_analytics(minutes=60))

        assert result["time_window"] == "60 minutes"
        assert result["statistics"]["total_clicks"] == 3
        assert result["live_visitors"] == 2
        assert result["active_urls"] == [{"link_id": link.id, "short_code": link.short_code, "clicks": 3}]

    def test_scoped_to_owner(self, db_session, analytics):
        click(db_session, make_link(db_session, owner_id="bob"))

        result = run(analytics.real_time_analytics(minutes=60, owner_id="alice"))

        assert result["statistics"]["total_clicks"] == 0

    @pytest.mark.parametrize("minutes", [0, -5, 10 ** 6])
    def test_minutes_bounds(self, analytics, minutes):
        with pytest.raises(InvalidInputError):
            run(analytics.real_time_analytics(minutes=minutes))


class TestTopContentAndSummary:

    def test_top_content_by_clicks_and_ctr(self, db_session, analytics):
        busy = make_link(db_session, "https://example.com/busy")
        loyal = make_link(db_session, "https://example.com/loyal")
        for _ in range(4):
            click(db_session, busy, ip="1.1.1.1")
        click(db_session, loyal, ip="2.2.2.2")

        by_clicks = run(analytics.top_content(owner_id="alice", metric="clicks"))
        by_ctr = run(analytics.top_content(owner_id="alice", metric="ctr"))

        assert [i["link_id"] for i in by_clicks["items"]] == [busy.id, loyal.id]
        assert [i["link_id"] for i in by_ctr["items"]] == [loyal.id, busy.id]
        assert by_ctr["items"][0]["click_through_rate"] == 100.0

    def test_top_content_over_recent_days(self, db_session, analytics):
        old = make_link(db_session, "https://example.com/old")
        new = make_link(db_session, "https://example.com/new")
        for i in range(3):
            click(db_session, old, ip=f"1.1.1.{i}", ago=timedelta(days=20))
        click(db_session, new)

        result = run(analytics.top_content(owner_id="alice", days=7))

        assert [i["link_id"] for i in result["items"]] == [new.id]

    def test_top_content_rejects_unknown_metric(self, analytics):
        with pytest.raises(InvalidInputError):
            run(analytics.top_content(metric="revenue"))

    def test_summary_isolates_bad_ids(self, db_session, analytics):
        link = make_link(db_session)
        click(db_session, link)

        result = run(analytics.analytics_summary([link.id, 9999], owner_id="alice"))

        assert result["success_count"] == 1
        assert result["error_count"] == 1
        ok, bad = result["results"]
        assert ok["data"]["overview"]["total_clicks"] == 1
        assert bad == {"link_id": 9999, "success": False, "error": bad["error"]}

    def test_summary_size_bound(self, analytics):
        with pytest.raises(InvalidInputError):
            run(analytics.analytics_summary(list(range(settings.analytics_max_group_size + 1))))


class TestReport:

    def test_url_report_matches_direct_call(self, db_session, analytics):
        link = make_link(db_session)
        for ip in ["1.1.1.1", "2.2.2.2", "1.1.1.1"]:
            click(db_session, link, ip=ip)

        direct = run(analytics.url_analytics(link.id, owner_id="alice"))
        report = run(analytics.report("url", target_id=str(link.id), owner_id="alice"))

        assert report["metadata"]["type"] == "url"
        assert report["metadata"]["format"] == "json"
        for section in ("overview", "geographic", "technology"):
            assert report["data"][section] == direct[section]

    def test_user_report_for_other_user_rejected(self, analytics):
        with pytest.raises(NotFoundOrForbiddenError):
            run(analytics.report("user", target_id="bob", owner_id="alice"))

    def test_user_report_defaults_to_caller(self, db_session, analytics):
        make_link(db_session)

        report = run(analytics.report("user", owner_id="alice", report_format="csv"))

        assert report["metadata"]["target_id"] == "alice"
        assert report["metadata"]["format"] == "csv"
        assert report["data"]["user_id"] == "alice"

    def test_platform_report(self, analytics):
        report = run(analytics.report("platform"))

        assert report["metadata"]["target_id"] is None
        assert "growth" in report["data"]

    def test_invalid_url_target(self, analytics):
        with pytest.raises(InvalidInputError):
            run(analytics.report("url", target_id="abc"))


class TestCleanup:

    def _seed(self, db_session):
        link = make_link(db_session)
        click(db_session, link, ip="1.1.1.1", ago=timedelta(days=400))
        click(db_session, link, ip="2.2.2.2", ago=timedelta(days=10))
        return link

    @pytest.mark.parametrize("retention_days", [1, 5, 30, 365, 10000])
    def test_dry_run_never_deletes(self, db_session, analytics, retention_days):
        self._seed(db_session)
        before = db_session.query(Click).count()

        result = run(analytics.cleanup(retention_days=retention_days, dry_run=True))

        assert result["dry_run"] is True
        assert "records_to_delete" in result
        assert db_session.query(Click).count() == before

    def test_deletes_old_clicks_only(self, db_session, analytics):
        link = self._seed(db_session)

        dry = run(analytics.cleanup(retention_days=365, dry_run=True))
        real = run(analytics.cleanup(retention_days=365, dry_run=False))

        assert dry["records_to_delete"] == 1
        assert real["deleted_count"] == 1
        assert db_session.query(Click).count() == 1
        db_session.refresh(link)
        assert link.click_count == 2

    def test_retention_must_be_positive(self, analytics):
        with pytest.raises(InvalidInputError):
            run(analytics.cleanup(retention_days=0))


@pytest.mark.parametrize("unique, total, expected", [
    (0, 0, 0),
    (5, 0, 0),
    (3, 5, 60.0),
    (1, 3, 33.33),
    (5, 5, 100.0),
])
def test_percentage_bounds(unique, total, expected):
    rate = percentage(unique, total)

    assert rate == expected
    assert 0 <= rate <= 100


@pytest.mark.parametrize("first, second, direction", [
    (10, 20, "up"),
    (20, 10, "down"),
    (10, 10, "stable"),
    (0, 0, "stable"),
    (0, 3, "up"),
])
def test_trend_direction(first, second, direction):
    assert trend_direction(first, second)["direction"] == direction
