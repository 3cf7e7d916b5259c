"""Live countdowns and automatic expiry of delivered payloads.

Each tracked delivery gets its own asyncio task. The task sleeps for an
interval chosen from the remaining time, redraws the countdown and, once the
payload's TTL has elapsed, runs the terminal sequence: revoke view tokens,
ask the ledger to archive the contract, draw the expired notice and forget the
delivery.

Tracking is in memory only. After a restart countdowns stop updating, but
expiry is still enforced by the token store's own timestamps.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from cloak_courier.core.errors import LedgerError, NotificationError
from cloak_courier.db.time import utcnow
from cloak_courier.services.ledger import LedgerAdapter
from cloak_courier.services.notifier import MessageRef, Notifier
from cloak_courier.services.renderables import (
    Renderable,
    RenderState,
    countdown_message,
    expired_message,
)
from cloak_courier.services.token_store import TokenStore

logger = logging.getLogger(__name__)

TRANSFER_TEMPLATE = "SecretTransfer"
REVOKE_CHOICE = "RevokeTransfer"
# Pause before retrying a tick that failed on the database.
RETRY_SECONDS = 30.0

Sleep = Callable[[float], Awaitable[None]]


def refresh_interval(remaining: timedelta) -> float:
    """Seconds between countdown redraws for the given remaining time."""
    seconds = remaining.total_seconds()
    if seconds <= 5 * 60:
        return 30.0
    if seconds <= 60 * 60:
        return 60.0
    if seconds <= 24 * 60 * 60:
        return 5 * 60.0
    return 30 * 60.0


@dataclass
class TrackedTimer:
    """In-memory registration of one delivered payload."""

    delivery_id: str
    recipient_identity: str
    render_state: RenderState
    message_ref: MessageRef | None = None
    task: asyncio.Task[None] | None = None

    @property
    def expires_at(self) -> datetime | None:
        return self.render_state.expires_at


class ExpirationEngine:
    """Registry of per-delivery countdown tasks."""

    def __init__(
        self,
        *,
        token_store: TokenStore,
        ledger: LedgerAdapter,
        notifier: Notifier,
        clock: Callable[[], datetime] = utcnow,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._token_store = token_store
        self._ledger = ledger
        self._notifier = notifier
        self._clock = clock
        self._sleep = sleep
        self._timers: dict[str, TrackedTimer] = {}

    def __contains__(self, delivery_id: object) -> bool:
        return delivery_id in self._timers

    def __len__(self) -> int:
        return len(self._timers)

    def get(self, delivery_id: str) -> TrackedTimer | None:
        return self._timers.get(delivery_id)

    def track(
        self,
        recipient_identity: str,
        render_state: RenderState,
        message_ref: MessageRef | None = None,
    ) -> TrackedTimer:
        """Start tracking a delivery.

        Deliveries without a TTL are kept for rendering and acknowledgement
        only; no task is scheduled for them.
        """
        delivery_id = render_state.delivery_id
        self.untrack(delivery_id)

        timer = TrackedTimer(
            delivery_id=delivery_id,
            recipient_identity=recipient_identity,
            render_state=render_state,
            message_ref=message_ref,
        )
        self._timers[delivery_id] = timer
        if timer.expires_at is not None:
            timer.task = asyncio.create_task(
                self._run(delivery_id), name=f"expiry:{delivery_id}"
            )
        logger.debug("Tracking delivery %s (expires %s)", delivery_id, timer.expires_at)
        return timer

    def untrack(self, delivery_id: str) -> TrackedTimer | None:
        """Stop tracking a delivery and cancel its task, if any."""
        timer = self._timers.pop(delivery_id, None)
        if timer is not None and timer.task is not None:
            if timer.task is not asyncio.current_task() and not timer.task.done():
                timer.task.cancel()
        return timer

    def next_delay(self, expires_at: datetime) -> float:
        """Sleep before the next tick, never overshooting the expiry itself."""
        remaining = expires_at - self._clock()
        if remaining <= timedelta(0):
            return 0.0
        return min(refresh_interval(remaining), remaining.total_seconds())

    async def _run(self, delivery_id: str) -> None:
        try:
            while True:
                timer = self._timers.get(delivery_id)
                if timer is None or timer.expires_at is None:
                    return
                await self._sleep(self.next_delay(timer.expires_at))
                try:
                    if await self.tick(delivery_id):
                        return
                except SQLAlchemyError as exc:
                    logger.error(
                        "Countdown tick for %s failed, retrying in %.0fs: %s",
                        delivery_id,
                        RETRY_SECONDS,
                        exc,
                        extra={"delivery_id": delivery_id},
                    )
                    await self._sleep(RETRY_SECONDS)
        except Exception:
            logger.exception(
                "Countdown for %s stopped", delivery_id, extra={"delivery_id": delivery_id}
            )
        finally:
            timer = self._timers.get(delivery_id)
            if timer is not None and timer.task is asyncio.current_task():
                del self._timers[delivery_id]

    async def tick(self, delivery_id: str) -> bool:
        """Redraw or expire one delivery; return True once it is terminal."""
        timer = self._timers.get(delivery_id)
        if timer is None:
            return True

        now = self._clock()
        if timer.expires_at is not None and now >= timer.expires_at:
            await self._expire(timer)
            return True

        await self._render(timer, countdown_message(timer.render_state, now))
        return False

    async def _expire(self, timer: TrackedTimer) -> None:
        # Local revocation is the access boundary; archival below is cleanup.
        await asyncio.to_thread(self._token_store.revoke_by_delivery, timer.delivery_id)

        try:
            await self._ledger.exercise_choice(
                timer.recipient_identity,
                TRANSFER_TEMPLATE,
                timer.delivery_id,
                REVOKE_CHOICE,
            )
        except LedgerError as exc:
            logger.warning(
                "Archival of expired delivery %s failed: %s",
                timer.delivery_id,
                exc,
                extra={"delivery_id": timer.delivery_id},
            )

        await self._render(timer, expired_message(timer.render_state))
        self._timers.pop(timer.delivery_id, None)
        logger.info(
            "Delivery %s expired", timer.delivery_id, extra={"delivery_id": timer.delivery_id}
        )

    async def _render(self, timer: TrackedTimer, renderable: Renderable) -> None:
        if timer.message_ref is None:
            return
        try:
            await self._notifier.update_notification(timer.message_ref, renderable)
        except NotificationError as exc:
            logger.warning("Countdown update for %s failed: %s", timer.delivery_id, exc)

    def shutdown(self) -> None:
        """Cancel every task without touching the network."""
        for timer in self._timers.values():
            if timer.task is not None and not timer.task.done():
                timer.task.cancel()
        count = len(self._timers)
        self._timers.clear()
        if count:
            logger.info("Dropped %d tracked countdown(s) on shutdown", count)
