import asyncio

import pytest

from snapurl_app.exceptions import NotFoundOrForbiddenError
from snapurl_app.models.user import User
from snapurl_app.services.click_recorder import ClickRecorder
from snapurl_app.services.link_service import LinkService
from snapurl_app.services.user_stats import UserStatsService


def test_reconcile_repairs_drift(db_session):
    service = LinkService(db_session)
    link = asyncio.run(service.create_link("https://example.com", owner_id="alice")).link
    asyncio.run(ClickRecorder(db_session).record(link.id, ip_address="10.0.0.1"))

    # Simulate lost increments
    user = db_session.get(User, "alice")
    user.url_count = 7
    user.total_clicks = 0
    db_session.commit()

    result = UserStatsService(db_session).reconcile("alice")

    assert result["url_count"] == 1
    assert result["total_clicks"] == 1
    assert result["drift"] == {"url_count": -6, "total_clicks": 1}
    assert db_session.get(User, "alice").url_count == 1


def test_reconcile_without_drift(db_session):
    asyncio.run(LinkService(db_session).create_link("https://example.com", owner_id="alice"))

    result = UserStatsService(db_session).reconcile("alice")

    assert result["drift"] == {"url_count": 0, "total_clicks": 0}


def test_clicks_after_hard_delete_still_counted(db_session):
    service = LinkService(db_session)
    link = asyncio.run(service.create_link("https://example.com", owner_id="alice")).link
    asyncio.run(ClickRecorder(db_session).record(link.id, ip_address="10.0.0.1"))
    asyncio.run(service.delete_link(link.id, "alice", hard=True))

    result = UserStatsService(db_session).reconcile("alice")

    assert result["url_count"] == 0
    assert result["total_clicks"] == 1


def test_reconcile_unknown_user(db_session):
    with pytest.raises(NotFoundOrForbiddenError):
        UserStatsService(db_session).reconcile("nobody")


def test_ensure_user_is_idempotent(db_session):
    stats = UserStatsService(db_session)

    stats.ensure_user("alice")
    stats.ensure_user("alice")

    assert db_session.query(User).count() == 1
    assert stats.get_counters("alice") == {"user_id": "alice", "url_count": 0, "total_clicks": 0}


def test_reconcile_all(db_session):
    service = LinkService(db_session)
    asyncio.run(service.create_link("https://example.com/a", owner_id="alice"))
    asyncio.run(service.create_link("https://example.com/b", owner_id="bob"))

    results = UserStatsService(db_session).reconcile_all()

    assert [r["user_id"] for r in results] == ["alice", "bob"]
