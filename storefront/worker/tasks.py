"""ARQ job definitions: notification delivery and the reconciliation poller's host."""

import uuid
from typing import Any

import httpx
import sentry_sdk

from storefront.container import Container
from storefront.core.config import get_settings
from storefront.core.logging import configure_logging, get_logger
from storefront.models.failed_job import FailedJob
from storefront.services.notifications import QueueNotificationDispatcher

log = get_logger(__name__)


async def _run_with_dlq(
    job_name: str,
    job_id: str | None,
    payload: dict[str, Any],
    coro,
) -> None:
    """Run coroutine; on exception persist to FailedJob then re-raise."""
    try:
        await coro
    except Exception as e:
        fid = job_id or str(uuid.uuid4())
        await FailedJob(
            job_name=job_name,
            job_id=fid,
            payload=payload,
            reason=str(e)[:2000],
        ).insert()
        log.exception("job_failed", job=job_name, job_id=fid, reason=str(e))
        raise


def _job_id(ctx: dict[str, Any]) -> str | None:
    return ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None


async def deliver_notification(ctx: dict[str, Any], payload: dict[str, Any]) -> None:
    """POST one notification to the relay that renders and sends it."""
    relay_url = get_settings().notification_relay_url

    async def _run() -> None:
        if not relay_url:
            log.info("notification_not_delivered", reason="relay not configured", kind=payload.get("kind"))
            return
        response = await ctx["http"].post(relay_url, json=payload)
        response.raise_for_status()
        log.info("notification_delivered", kind=payload.get("kind"), order_number=payload.get("order_number"))

    await _run_with_dlq("deliver_notification", _job_id(ctx), payload, _run())


async def scan_pending_transactions(ctx: dict[str, Any]) -> None:
    """Cron: start polling transactions created since the last scan."""
    container: Container = ctx["container"]
    await _run_with_dlq("scan_pending_transactions", _job_id(ctx), {}, container.poller.scan())


async def startup(ctx: dict) -> None:
    settings = get_settings()
    configure_logging(debug=settings.debug)
    if settings.sentry_dsn:
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env)
    container = await Container.build(settings, notifier=QueueNotificationDispatcher(ctx["redis"]))
    ctx["container"] = container
    ctx["http"] = httpx.AsyncClient(timeout=10.0)
    await container.poller.start()


async def shutdown(ctx: dict) -> None:
    if "http" in ctx:
        await ctx["http"].aclose()
    if "container" in ctx:
        await ctx["container"].close()
