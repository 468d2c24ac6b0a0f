from fastapi.testclient import TestClient

from snapurl_app.config import settings

ALICE = {"X-Owner-Id": "alice"}
BOB = {"X-Owner-Id": "bob"}
ADMIN_HEADERS = {"X-Owner-Id": "admin", "X-Admin-Token": settings.admin_token}
CHROME = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36"


def create_link(client, url="https://www.example.com/", headers=ALICE, **extra):
    return client.post("/api/v1/links/", json={"original_url": url, **extra}, headers=headers)


class TestLinksApi:
    """Link management endpoints"""

    def test_create_link(self, client: TestClient):
        response = create_link(client, title="Example")
        assert response.status_code == 201

        data = response.json()
        assert data["is_new"] is True
        link = data["link"]
        assert link["original_url"] == "https://www.example.com/"
        assert link["click_count"] == 0
        assert link["click_through_rate"] == 0
        assert link["short_url"].endswith("/" + link["short_code"])
        assert link["is_active"] is True

    def test_duplicate_returns_200(self, client: TestClient):
        first = create_link(client)
        second = create_link(client)

        assert second.status_code == 200
        assert second.json()["is_new"] is False
        assert second.json()["link"]["id"] == first.json()["link"]["id"]

    def test_anonymous_create(self, client: TestClient):
        response = create_link(client, headers={})

        assert response.status_code == 201
        assert response.json()["link"]["owner_id"] is None

    def test_alias_conflict(self, client: TestClient):
        create_link(client, "https://a.example.com/", custom_alias="launch")

        response = create_link(client, "https://b.example.com/", custom_alias="launch")

        assert response.status_code == 409
        assert response.json()["error"] == "alias_taken"

    def test_invalid_url(self, client: TestClient):
        response = create_link(client, "not-a-valid-url")
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_input"

    def test_url_is_stored_as_given(self, client: TestClient):
        link = create_link(client, "https://example.com").json()["link"]

        assert link["original_url"] == "https://example.com"
        response = client.get(f"/{link['short_code']}", follow_redirects=False)
        assert response.headers["location"] == "https://example.com"

    def test_reserved_alias(self, client: TestClient):
        response = create_link(client, custom_alias="health")

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_alias"

    def test_alias_availability(self, client: TestClient):
        create_link(client, custom_alias="taken")

        assert client.get("/api/v1/links/alias/taken/availability").json()["available"] is False
        assert client.get("/api/v1/links/alias/free-one/availability").json()["available"] is True

    def test_listing_requires_owner(self, client: TestClient):
        assert client.get("/api/v1/links/").status_code == 401

    def test_list_only_own_links(self, client: TestClient):
        create_link(client, "https://a.example.com/")
        create_link(client, "https://b.example.com/", headers=BOB)

        data = client.get("/api/v1/links/", headers=ALICE).json()

        assert data["pagination"]["total_links"] == 1
        assert data["links"][0]["original_url"] == "https://a.example.com/"

    def test_other_owner_gets_404(self, client: TestClient):
        link_id = create_link(client).json()["link"]["id"]

        response = client.get(f"/api/v1/links/{link_id}", headers=BOB)

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_update_and_toggle(self, client: TestClient):
        link_id = create_link(client).json()["link"]["id"]

        updated = client.patch(f"/api/v1/links/{link_id}", json={"title": "New title"}, headers=ALICE)
        toggled = client.post(f"/api/v1/links/{link_id}/toggle", headers=ALICE)

        assert updated.json()["title"] == "New title"
        assert toggled.json()["is_active"] is False

    def test_delete_link(self, client: TestClient):
        created = create_link(client).json()["link"]

        response = client.delete(f"/api/v1/links/{created['id']}", headers=ALICE)
        assert response.status_code == 204

        response = client.get(f"/{created['short_code']}", follow_redirects=False)
        assert response.status_code == 404

    def test_quota(self, client: TestClient, monkeypatch):
        monkeypatch.setattr(settings, "max_links_per_owner", 1)
        create_link(client, "https://a.example.com/")

        response = create_link(client, "https://b.example.com/")

        assert response.status_code == 403
        assert response.json()["error"] == "quota_exceeded"

    def test_bulk_create(self, client: TestClient):
        payload = {"links": [
            {"original_url": "https://a.example.com/"},
            {"original_url": "https://b.example.com/", "custom_alias": "docs"},
        ]}

        data = client.post("/api/v1/links/bulk", json=payload, headers=ALICE).json()

        assert data["success_count"] == 1
        assert data["error_count"] == 1
        assert data["results"][1]["status"] == "failed"

    def test_stats(self, client: TestClient, drain_clicks):
        created = create_link(client).json()["link"]
        client.get(f"/{created['short_code']}", follow_redirects=False, headers={"user-agent": CHROME})
        drain_clicks()

        data = client.get(f"/api/v1/links/{created['id']}/stats", headers=ALICE).json()

        assert data["click_count"] == 1
        assert data["unique_clicks"] == 1
        assert data["click_through_rate"] == 100.0


class TestRedirectApi:

    def test_redirect(self, client: TestClient, queue):
        created = create_link(client, "https://www.github.com/").json()["link"]

        response = client.get(f"/{created['short_code']}", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "https://www.github.com/"

    def test_redirect_nonexistent(self, client: TestClient):
        response = client.get("/nonexistent", follow_redirects=False)
        assert response.status_code == 404

    def test_redirect_records_click_via_worker(self, client: TestClient, drain_clicks):
        created = create_link(client).json()["link"]
        for ip in ["203.0.113.1", "203.0.113.2", "203.0.113.1"]:
            client.get(
                f"/{created['short_code']}",
                follow_redirects=False,
                headers={"x-forwarded-for": ip, "user-agent": CHROME, "referer": "https://news.example.org/"},
            )

        assert drain_clicks() == 3

        link = client.get(f"/api/v1/links/{created['id']}", headers=ALICE).json()
        assert link["click_count"] == 3
        assert link["unique_clicks"] == 2

    def test_alias_redirect(self, client: TestClient):
        create_link(client, "https://www.python.org/", custom_alias="py-home")

        response = client.get("/py-home", follow_redirects=False)

        assert response.headers["location"] == "https://www.python.org/"

    def test_tracked_redirect_appends_utm(self, client: TestClient, drain_clicks, db_session):
        from snapurl_app.models.click import Click
        created = create_link(client, "https://shop.example.com/item?id=7").json()["link"]

        response = client.get(
            f"/t/{created['short_code']}",
            params={"utm_source": "newsletter", "utm_campaign": "spring"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert response.headers["location"] == (
            "https://shop.example.com/item?id=7&utm_source=newsletter&utm_campaign=spring"
        )
        drain_clicks()
        click = db_session.query(Click).one()
        assert click.source == "tracked"
        assert click.utm_campaign == "spring"

    def test_preview_does_not_record(self, client: TestClient, queue):
        import asyncio
        created = create_link(client).json()["link"]

        response = client.get(f"/{created['short_code']}/preview")

        assert response.status_code == 200
        assert response.json()["original_url"] == "https://www.example.com/"
        assert asyncio.run(queue.get_queue_length("link_clicks")) == 0

    def test_publish_failure_still_redirects(self, client: TestClient, queue, monkeypatch):
        async def broken_publish(queue_name, message):
            raise ConnectionError("queue down")
        monkeypatch.setattr(queue, "publish", broken_publish)
        created = create_link(client).json()["link"]

        response = client.get(f"/{created['short_code']}", follow_redirects=False)

        assert response.status_code == 302

    def test_click_on_deactivated_link_is_dropped(self, client: TestClient, drain_clicks):
        created = create_link(client).json()["link"]
        client.get(f"/{created['short_code']}", follow_redirects=False)
        client.post(f"/api/v1/links/{created['id']}/toggle", headers=ALICE)

        assert drain_clicks() == 0


class TestAnalyticsApi:

    def _link_with_clicks(self, client, drain_clicks):
        created = create_link(client).json()["link"]
        for ip in ["198.51.100.1", "198.51.100.2"]:
            client.get(f"/{created['short_code']}", follow_redirects=False,
                       headers={"x-forwarded-for": ip, "user-agent": CHROME})
        drain_clicks()
        return created

    def test_link_analytics(self, client: TestClient, drain_clicks):
        created = self._link_with_clicks(client, drain_clicks)

        response = client.get(f"/api/v1/analytics/links/{created['id']}", headers=ALICE)

        assert response.status_code == 200
        assert response.json()["overview"]["total_clicks"] == 2

    def test_link_analytics_other_owner(self, client: TestClient, drain_clicks):
        created = self._link_with_clicks(client, drain_clicks)

        response = client.get(f"/api/v1/analytics/links/{created['id']}", headers=BOB)

        assert response.status_code == 404

    def test_dashboard(self, client: TestClient, drain_clicks):
        self._link_with_clicks(client, drain_clicks)

        data = client.get("/api/v1/analytics/dashboard", headers=ALICE).json()

        assert data["overview"]["total_clicks"] == 2
        assert len(data["top_urls"]) == 1

    def test_platform_requires_admin(self, client: TestClient):
        assert client.get("/api/v1/analytics/platform", headers=ALICE).status_code == 403
        assert client.get("/api/v1/analytics/platform", headers=ADMIN_HEADERS).status_code == 200

    def test_non_ascii_admin_token_is_forbidden(self, client: TestClient):
        headers = {"X-Owner-Id": "mallory", "X-Admin-Token": "caf\xe9".encode("latin-1")}

        response = client.get("/api/v1/analytics/platform", headers=headers)

        assert response.status_code == 403

    def test_platform_report_requires_admin(self, client: TestClient):
        response = client.post("/api/v1/analytics/reports", json={"type": "platform"}, headers=ALICE)
        assert response.status_code == 403

    def test_url_report(self, client: TestClient, drain_clicks):
        created = self._link_with_clicks(client, drain_clicks)

        data = client.post(
            "/api/v1/analytics/reports",
            json={"type": "url", "target_id": str(created["id"]), "format": "csv"},
            headers=ALICE,
        ).json()

        assert data["metadata"]["format"] == "csv"
        assert data["data"]["overview"]["total_clicks"] == 2

    def test_realtime(self, client: TestClient, drain_clicks):
        self._link_with_clicks(client, drain_clicks)

        data = client.get("/api/v1/analytics/realtime", params={"minutes": 30}, headers=ALICE).json()

        assert data["time_window"] == "30 minutes"
        assert data["live_visitors"] == 2

    def test_realtime_minutes_too_large(self, client: TestClient):
        response = client.get("/api/v1/analytics/realtime", params={"minutes": 100000}, headers=ALICE)

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_input"

    def test_summary(self, client: TestClient, drain_clicks):
        created = self._link_with_clicks(client, drain_clicks)

        data = client.post(
            "/api/v1/analytics/summary", json={"link_ids": [created["id"], 424242]}, headers=ALICE
        ).json()

        assert data["success_count"] == 1
        assert data["error_count"] == 1

    def test_cleanup_dry_run(self, client: TestClient, drain_clicks):
        self._link_with_clicks(client, drain_clicks)

        assert client.post("/api/v1/analytics/cleanup", json={}, headers=ALICE).status_code == 403
        data = client.post(
            "/api/v1/analytics/cleanup", json={"retention_days": 1}, headers=ADMIN_HEADERS
        ).json()

        assert data["dry_run"] is True
        assert data["records_to_delete"] == 0

    def test_reconcile(self, client: TestClient):
        create_link(client)

        data = client.post("/api/v1/links/reconcile", headers=ALICE).json()

        assert data["url_count"] == 1
        assert data["drift"] == {"url_count": 0, "total_clicks": 0}


def test_health(client: TestClient):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
