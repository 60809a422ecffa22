"""Worker jobs: relay delivery and the dead-letter collection."""

import httpx
import orjson
import pytest

from storefront.core.config import get_settings
from storefront.models.failed_job import FailedJob
from storefront.worker import tasks

pytestmark = pytest.mark.asyncio

PAYLOAD = {"kind": "payment_approved", "order_number": "ORD-1-ABCDEF", "total_cents": 5000}


@pytest.fixture
def relay_settings(monkeypatch):
    settings = get_settings().model_copy(update={"notification_relay_url": "http://relay.test/notify"})
    monkeypatch.setattr(tasks, "get_settings", lambda: settings)
    return settings


async def test_delivers_to_relay(db, relay_settings):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(orjson.loads(request.content))
        return httpx.Response(202)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        await tasks.deliver_notification({"http": http, "job_id": "job-1"}, PAYLOAD)
    assert seen == [PAYLOAD]
    assert await FailedJob.find_all().count() == 0


async def test_failed_delivery_goes_to_dead_letter(db, relay_settings):
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500))) as http:
        with pytest.raises(httpx.HTTPStatusError):
            await tasks.deliver_notification({"http": http, "job_id": "job-2"}, PAYLOAD)
    failed = await FailedJob.find_one(FailedJob.job_id == "job-2")
    assert failed.job_name == "deliver_notification"
    assert failed.payload["order_number"] == "ORD-1-ABCDEF"


async def test_no_relay_configured_is_noop(db):
    await tasks.deliver_notification({"job_id": "job-3"}, PAYLOAD)
    assert await FailedJob.find_all().count() == 0


async def test_scan_job_uses_container_poller(container):
    called = []

    async def scan():
        called.append(True)
        return 0

    container.poller.scan = scan
    await tasks.scan_pending_transactions({"container": container, "job_id": "job-4"})
    assert called == [True]
