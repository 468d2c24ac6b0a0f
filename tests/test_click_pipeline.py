"""
Tests for the queue, worker and geo lookup pieces of click recording.
"""
import asyncio

import requests

from snapurl_app.click_processor.click_worker import ClickWorker
from snapurl_app.geo.strategies import IpApiGeoLookup, is_public_ip
from snapurl_app.models.click import Click
from snapurl_app.queue.models import ClickEvent
from snapurl_app.queue.strategies import InMemoryQueue
from snapurl_app.services.link_service import LinkService


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"status {self.status}")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append(url)
        if self.error:
            raise self.error
        return self.response


class RecordingQueue(InMemoryQueue):
    def __init__(self):
        super().__init__()
        self.acked = []

    async def ack(self, queue_name, message_ids):
        self.acked.extend(message_ids)
        return True


class TestGeoLookup:

    def test_public_ip_detection(self):
        assert is_public_ip("8.8.8.8") is True
        assert is_public_ip("10.1.2.3") is False
        assert is_public_ip("127.0.0.1") is False
        assert is_public_ip("not-an-ip") is False
        assert is_public_ip(None) is False

    def test_successful_lookup(self):
        session = FakeSession(FakeResponse({"status": "success", "countryCode": "JP", "city": "Tokyo"}))
        geo = IpApiGeoLookup(base_url="http://geo.test/json/", session=session)

        location = asyncio.run(geo.lookup("8.8.8.8"))

        assert location.country == "JP"
        assert location.city == "Tokyo"
        assert session.calls == ["http://geo.test/json/8.8.8.8"]

    def test_private_ip_not_looked_up(self):
        session = FakeSession(FakeResponse({"status": "success"}))

        assert asyncio.run(IpApiGeoLookup(session=session).lookup("192.168.0.1")) is None
        assert session.calls == []

    def test_failures_return_none(self):
        failed = FakeSession(FakeResponse({"status": "fail", "message": "reserved range"}))
        broken = FakeSession(error=requests.ConnectionError("unreachable"))

        assert asyncio.run(IpApiGeoLookup(session=failed).lookup("8.8.8.8")) is None
        assert asyncio.run(IpApiGeoLookup(session=broken).lookup("8.8.8.8")) is None


class TestClickWorker:

    def test_batch_is_acked_even_with_bad_events(self, db_session, session_factory):
        link = asyncio.run(LinkService(db_session).create_link("https://example.com")).link
        queue = RecordingQueue()
        good = ClickEvent(link_id=link.id, short_code=link.short_code, ip_address="10.0.0.1", message_id="1-0")
        missing = ClickEvent(link_id=999, short_code="nope", message_id="2-0")

        worker = ClickWorker(queue=queue, db_session_factory=session_factory)
        recorded = asyncio.run(worker.process_batch([good, missing]))

        assert recorded == 1
        assert queue.acked == ["1-0", "2-0"]
        assert worker.failed_count == 1
        assert db_session.query(Click).count() == 1

    def test_drain_consumes_everything(self, db_session, session_factory):
        link = asyncio.run(LinkService(db_session).create_link("https://example.com")).link
        queue = InMemoryQueue()
        for i in range(5):
            asyncio.run(queue.publish("clicks", ClickEvent(
                link_id=link.id, short_code=link.short_code, ip_address=f"10.0.0.{i}"
            )))

        worker = ClickWorker(queue=queue, db_session_factory=session_factory, queue_name="clicks", batch_size=2)

        assert asyncio.run(worker.drain()) == 5
        assert asyncio.run(queue.get_queue_length("clicks")) == 0

    def test_event_serialization_skips_message_id(self):
        event = ClickEvent(link_id=1, short_code="abc", message_id="5-0")

        restored = ClickEvent.model_validate_json(event.model_dump_json())

        assert restored.message_id is None
        assert restored.link_id == 1
