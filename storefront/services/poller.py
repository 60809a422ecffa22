"""Reconciliation poller: re-query the gateway for transactions a webhook may have missed.

One asyncio task per order, tracked in a registry keyed by order id. Each task asks
the gateway once per interval (no in-call retries) until the payment resolves or
``max_attempts`` ticks have passed. Attempts and the end of polling are stored on
the Transaction, so a restarted worker resumes the budget instead of starting over.
Exhaustion is logged and audited; the order is left in ``awaiting_payment`` for an
operator.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from beanie import PydanticObjectId

from storefront.core.audit import log_event
from storefront.core.exceptions import GatewayError, TransientGatewayError
from storefront.core.logging import get_logger
from storefront.models.transaction import OPEN_TRANSACTION_STATUSES, Transaction
from storefront.services.gateway import GatewayClient, UnrecognizedTransaction
from storefront.services.order_store import OrderStore
from storefront.services.transitions import PaymentStatusApplier

log = get_logger(__name__)

RESOLVED_STATUSES = ("approved", "declined", "refunded")


@dataclass
class PollState:
    order_id: str
    order_number: str
    external_id: str
    max_attempts: int
    attempts: int = 0
    started_at: datetime = field(default_factory=datetime.utcnow)
    last_status: str | None = None
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task | None = None

    def snapshot(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "external_id": self.external_id,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "last_status": self.last_status,
            "started_at": self.started_at.isoformat(),
        }


class ReconciliationPoller:
    def __init__(
        self,
        store: OrderStore,
        gateway: GatewayClient,
        applier: PaymentStatusApplier,
        interval: float = 30.0,
        max_attempts: int = 60,
    ):
        self.store = store
        self.gateway = gateway
        self.applier = applier
        self.interval = interval
        self.max_attempts = max_attempts
        self._registry: dict[str, PollState] = {}
        self._closed = False

    async def start(self) -> int:
        started = await self.scan()
        log.info("poller_started", tracked=started, interval=self.interval, max_attempts=self.max_attempts)
        return started

    async def scan(self) -> int:
        """Track every open transaction not already being polled. Returns how many were added."""
        if self._closed:
            return 0
        started = 0
        for txn in await self.store.find_pending_transactions():
            if self.track(txn):
                started += 1
        if started:
            log.info("poller_scan", started=started, active=len(self._registry))
        return started

    def track(self, txn: Transaction) -> bool:
        key = str(txn.order_id)
        if self._closed or key in self._registry or txn.polling_ended_at is not None:
            return False
        state = PollState(
            order_id=key,
            order_number=txn.order_number,
            external_id=txn.external_id,
            max_attempts=self.max_attempts,
            attempts=txn.poll_attempts,
        )
        self._registry[key] = state
        state.task = asyncio.create_task(self._run(state), name=f"poll:{txn.order_number}")
        return True

    async def stop(self, order_id: PydanticObjectId | str) -> bool:
        """Stop polling an order for good. False when nothing was being polled."""
        key = str(order_id)
        state = self._registry.get(key)
        if state is not None:
            external_id = state.external_id
        else:
            order = await self.store.get_order(PydanticObjectId(key))
            external_id = order.transaction_id if order else None

        ended = False
        if external_id:
            ended = (await self.store.end_polling(external_id, "stopped")).applied
        state = self._registry.pop(key, None)
        if state is not None:
            state.stop_event.set()
        if not ended and state is None:
            return False
        log.info("poll_stopped", order_id=key, external_id=external_id, attempts=state.attempts if state else None)
        return True

    def status(self) -> list[dict[str, Any]]:
        return [state.snapshot() for state in self._registry.values()]

    async def join(self) -> None:
        """Wait for every running poll task to finish."""
        tasks = [s.task for s in list(self._registry.values()) if s.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        self._closed = True
        states = list(self._registry.values())
        self._registry.clear()
        for state in states:
            state.stop_event.set()
            if state.task is not None:
                state.task.cancel()
        tasks = [s.task for s in states if s.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        log.info("poller_closed", cancelled=len(tasks))

    async def _sleep(self, state: PollState) -> None:
        try:
            await asyncio.wait_for(state.stop_event.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            pass

    async def _run(self, state: PollState) -> None:
        try:
            while state.attempts < state.max_attempts:
                await self._sleep(state)
                if state.stop_event.is_set():
                    return
                state.attempts += 1
                try:
                    await self.store.record_poll_attempt(state.external_id)
                    if await self._tick(state):
                        return
                except GatewayError as e:
                    level = "info" if isinstance(e, TransientGatewayError) else "warning"
                    getattr(log, level)(
                        "poll_gateway_error",
                        order_number=state.order_number,
                        attempt=state.attempts,
                        code=e.code,
                        error=e.message,
                    )
                except Exception:
                    log.exception("poll_tick_failed", order_number=state.order_number, attempt=state.attempts)
            await self._exhausted(state)
        finally:
            if self._registry.get(state.order_id) is state:
                del self._registry[state.order_id]

    async def _tick(self, state: PollState) -> bool:
        """One status check. True when polling for this order is over."""
        local = await self.store.find_transaction(state.external_id)
        if local is None or local.status not in OPEN_TRANSACTION_STATUSES:
            log.info("poll_already_resolved", order_number=state.order_number, attempt=state.attempts)
            return True
        if local.polling_ended_at is not None:
            # stopped from another process
            log.info("poll_ended_elsewhere", order_number=state.order_number, reason=local.polling_end_reason)
            return True

        txn = await self.gateway.get_transaction_status(state.external_id, retry=False)
        if state.stop_event.is_set():
            log.info("poll_result_discarded", order_number=state.order_number, status=txn.status)
            return True
        state.last_status = txn.status
        if isinstance(txn, UnrecognizedTransaction):
            log.warning("poll_unrecognized_status", order_number=state.order_number, status=txn.status)
            return False
        if txn.status == "processing":
            await self.store.transition_transaction(state.external_id, "processing", txn.raw)
            return False
        if txn.status not in RESOLVED_STATUSES:
            log.debug("poll_still_pending", order_number=state.order_number, attempt=state.attempts)
            return False

        order = await self.store.get_order(local.order_id)
        if order is None:
            log.error("poll_order_missing", order_number=state.order_number)
            return True
        result = await self.applier.apply(
            order, txn.status, state.external_id, raw=txn.raw, source="poller", note=txn.message
        )
        log.info(
            "poll_resolved",
            order_number=state.order_number,
            status=txn.status,
            attempt=state.attempts,
            applied=result.applied,
        )
        return True

    async def _exhausted(self, state: PollState) -> None:
        if not (await self.store.end_polling(state.external_id, "exhausted")).applied:
            return
        log.warning(
            "reconciliation_exhausted",
            order_number=state.order_number,
            external_id=state.external_id,
            attempts=state.attempts,
        )
        await log_event(
            "poller",
            "reconciliation_exhausted",
            "order",
            state.order_number,
            {"external_id": state.external_id, "attempts": state.attempts, "last_status": state.last_status},
        )
