"""Process-wide wiring: one gateway client, one store, one applier shared by every entry point."""

from dataclasses import dataclass
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger
from storefront.core.queue import create_queue_pool
from storefront.db.init import init_db
from storefront.services.catalog import Catalog, CartStore, MongoCatalog, RedisCartStore
from storefront.services.checkout import CheckoutService
from storefront.services.gateway import GatewayClient
from storefront.services.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    QueueNotificationDispatcher,
)
from storefront.services.order_store import OrderStore
from storefront.services.poller import ReconciliationPoller
from storefront.services.transitions import PaymentStatusApplier
from storefront.services.webhooks import WebhookReceiver

log = get_logger(__name__)


@dataclass
class Container:
    settings: Settings
    store: OrderStore
    gateway: GatewayClient
    notifier: NotificationDispatcher
    catalog: Catalog
    cart: CartStore
    applier: PaymentStatusApplier
    checkout: CheckoutService
    webhooks: WebhookReceiver
    poller: ReconciliationPoller
    mongo: Any = None
    redis: Any = None
    queue: Any = None

    @classmethod
    async def build(
        cls,
        settings: Settings | None = None,
        *,
        mongo_client=None,
        gateway: GatewayClient | None = None,
        notifier: NotificationDispatcher | None = None,
        catalog: Catalog | None = None,
        cart: CartStore | None = None,
    ) -> "Container":
        """Connect what is not supplied. Tests pass fakes for the external collaborators."""
        settings = settings or get_settings()
        mongo = await init_db(mongo_client)
        if mongo_client is not None:
            # caller owns it
            mongo = None

        redis = None
        if cart is None:
            redis = aioredis.from_url(settings.redis_url, decode_responses=True)
            cart = RedisCartStore(redis)

        queue = None
        if notifier is None:
            try:
                queue = await create_queue_pool()
                notifier = QueueNotificationDispatcher(queue)
            except (OSError, RedisError) as e:
                log.warning("notification_queue_unavailable", error=str(e))
                notifier = LoggingNotificationDispatcher()

        gateway = gateway or GatewayClient.from_settings(settings)
        catalog = catalog or MongoCatalog()
        store = OrderStore()
        applier = PaymentStatusApplier(store, notifier, cart)
        return cls(
            settings=settings,
            store=store,
            gateway=gateway,
            notifier=notifier,
            catalog=catalog,
            cart=cart,
            applier=applier,
            checkout=CheckoutService(
                store,
                gateway,
                applier,
                catalog,
                currency=settings.currency,
                max_installments=settings.max_installments,
                pix_expires_in_days=settings.pix_expires_in_days,
                boleto_expires_in_days=settings.boleto_expires_in_days,
                postback_url=settings.postback_url,
                card_token_key=settings.card_token_key,
            ),
            webhooks=WebhookReceiver(store, applier, settings.webhook_secret),
            poller=ReconciliationPoller(
                store,
                gateway,
                applier,
                interval=settings.poll_interval_seconds,
                max_attempts=settings.poll_max_attempts,
            ),
            mongo=mongo,
            redis=redis,
            queue=queue,
        )

    async def close(self) -> None:
        await self.poller.close()
        await self.gateway.aclose()
        if self.queue is not None:
            await self.queue.aclose()
        if self.redis is not None:
            await self.redis.aclose()
        if self.mongo is not None:
            self.mongo.close()
