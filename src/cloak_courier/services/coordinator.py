"""Orchestration of the one-time disclosure lifecycle.

A delivery moves through these states:

    Pending -> AwaitingDelivery -> Delivered -> Resolved -> Acknowledged | Expired

and may end as Rejected from any step before Delivered. Nothing here stores
the state: it is derived from the ledger contract and the local token rows.

Token consumption always happens before the ledger call it authorizes and no
transaction is held open across network I/O. Notification and expiry archival
are best-effort; every other failure reaches the caller as a typed error.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from urllib.parse import urlencode

from cloak_courier.core.errors import (
    DeliveryFailed,
    DeliveryRejected,
    LedgerError,
    NotificationError,
    TokenExpired,
    UnknownDelivery,
)
from cloak_courier.core.logger import token_prefix
from cloak_courier.core.settings import settings
from cloak_courier.db.time import utcnow
from cloak_courier.services.expiration import (
    REVOKE_CHOICE,
    TRANSFER_TEMPLATE,
    ExpirationEngine,
)
from cloak_courier.services.identity import IdentityDirectory
from cloak_courier.services.ledger import ContractRef, LedgerAdapter
from cloak_courier.services.notifier import MessageRef, Notifier
from cloak_courier.services.renderables import (
    RenderState,
    acknowledged_message,
    countdown_message,
)
from cloak_courier.services.token_store import DeliveryTokenSummary, TokenStore

logger = logging.getLogger(__name__)

ACKNOWLEDGE_CHOICE = "Acknowledge"


class DeliveryState(str, Enum):
    PENDING = "Pending"
    AWAITING_DELIVERY = "AwaitingDelivery"
    DELIVERED = "Delivered"
    RESOLVED = "Resolved"
    ACKNOWLEDGED = "Acknowledged"
    EXPIRED = "Expired"
    REJECTED = "Rejected"


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass(frozen=True)
class DeliveryRecord:
    """Ledger-held transfer, as seen by its sender or recipient."""

    id: str
    sender_identity: str
    recipient_identity: str
    label: str
    description: str
    ciphertext: str = field(repr=False)
    created_at: datetime | None
    expires_at: datetime | None

    @classmethod
    def from_contract(cls, contract: ContractRef) -> DeliveryRecord:
        payload = contract.payload
        return cls(
            id=contract.contract_id,
            sender_identity=str(payload.get("sender", "")),
            recipient_identity=str(payload.get("recipient", "")),
            label=str(payload.get("label", "")),
            description=str(payload.get("description") or ""),
            ciphertext=str(payload.get("encryptedSecret", "")),
            created_at=_parse_timestamp(payload.get("sentAt")),
            expires_at=_parse_timestamp(payload.get("expiresAt")),
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass(frozen=True)
class SendTokenIssued:
    token: str
    compose_url: str
    expires_at: datetime
    state: DeliveryState = DeliveryState.PENDING


@dataclass(frozen=True)
class ComposeInfo:
    label: str
    sender_display: str
    recipient_display: str
    expires_at: datetime
    ttl_choices: list[int | None]


@dataclass(frozen=True)
class DeliveryReceipt:
    delivery_id: str
    expires_at: datetime | None
    degraded: bool = False
    state: DeliveryState = DeliveryState.DELIVERED


@dataclass(frozen=True)
class ResolutionGrant:
    """Short-lived read-only credential for fetching one payload."""

    delivery_id: str
    recipient_identity: str
    template_id: str
    credential: str = field(repr=False)
    viewer_url: str = field(repr=False)
    expires_in: int = 60
    state: DeliveryState = DeliveryState.RESOLVED


@dataclass(frozen=True)
class InboxItem:
    delivery_id: str
    sender_display: str
    label: str
    description: str
    sent_at: datetime | None
    expires_at: datetime | None


class DisclosureCoordinator:
    """Composition root tying tokens, ledger, countdowns and notifications together."""

    def __init__(
        self,
        *,
        token_store: TokenStore,
        ledger: LedgerAdapter,
        identities: IdentityDirectory,
        notifier: Notifier,
        engine: ExpirationEngine,
        clock: Callable[[], datetime] = utcnow,
        public_base_url: str | None = None,
        viewer_base_url: str | None = None,
        viewer_ttl_seconds: int | None = None,
        max_ttl_seconds: int | None = None,
    ) -> None:
        self.token_store = token_store
        self.ledger = ledger
        self.identities = identities
        self.notifier = notifier
        self.engine = engine
        self._clock = clock
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")
        self.viewer_base_url = (viewer_base_url or settings.ledger_viewer_base_url).rstrip("/")
        self.viewer_ttl_seconds = viewer_ttl_seconds or settings.viewer_credential_ttl_seconds
        self.max_ttl_seconds = max_ttl_seconds or settings.max_ttl_seconds

    # --- Pending --------------------------------------------------------------------

    async def issue_send_token(
        self, sender_handle: str, recipient_handle: str, label: str
    ) -> SendTokenIssued:
        """Authorize ``sender_handle`` to send one payload to ``recipient_handle``."""
        label = label.strip()
        if not label:
            raise DeliveryRejected("A label is required")

        sender = await asyncio.to_thread(self.identities.require, sender_handle)
        recipient = await asyncio.to_thread(self.identities.require, recipient_handle)

        record = await asyncio.to_thread(
            self.token_store.create_send_token,
            sender_identity=sender.ledger_identity,
            sender_handle=sender.handle,
            recipient_identity=recipient.ledger_identity,
            recipient_handle=recipient.handle,
            label=label,
        )
        return SendTokenIssued(
            token=record.token,
            compose_url=f"{self.public_base_url}/compose/{record.token}",
            expires_at=record.expires_at,
        )

    async def peek_compose(self, token: str) -> ComposeInfo:
        """Metadata for the compose form; never consumes the token."""
        record = await asyncio.to_thread(self.token_store.peek_send_token, token)
        if record is None:
            raise TokenExpired()
        sender_display = await asyncio.to_thread(
            self.identities.display_name, record.sender_identity
        )
        recipient_display = await asyncio.to_thread(
            self.identities.display_name, record.recipient_identity
        )
        return ComposeInfo(
            label=record.label,
            sender_display=sender_display,
            recipient_display=recipient_display,
            expires_at=record.expires_at,
            ttl_choices=settings.ttl_choices,
        )

    # --- AwaitingDelivery -> Delivered ----------------------------------------------

    def _validate_submission(self, ciphertext: str, ttl_seconds: int | None) -> None:
        if not ciphertext:
            raise DeliveryRejected("Ciphertext is required")
        if ttl_seconds is not None and not 0 < ttl_seconds <= self.max_ttl_seconds:
            raise DeliveryRejected(
                f"TTL must be between 1 and {self.max_ttl_seconds} seconds"
            )

    async def submit(
        self,
        token: str,
        ciphertext: str,
        description: str = "",
        ttl_seconds: int | None = None,
    ) -> DeliveryReceipt:
        """Spend a send token on one ledger write and deliver the result.

        Validation happens before the token is spent. Once it is spent, a ledger
        failure is terminal for that token and surfaces as
        :class:`DeliveryFailed`.
        """
        self._validate_submission(ciphertext, ttl_seconds)

        record = await asyncio.to_thread(self.token_store.consume_send_token, token)
        logger.debug(
            "Send token %s -> %s", token_prefix(token), DeliveryState.AWAITING_DELIVERY.value
        )

        now = self._clock()
        expires_at = now + timedelta(seconds=ttl_seconds) if ttl_seconds else None
        payload: dict[str, Any] = {
            "sender": record.sender_identity,
            "recipient": record.recipient_identity,
            "operator": self.ledger.admin_identity,
            "label": record.label,
            "encryptedSecret": ciphertext,
            "description": description,
            "sentAt": now.isoformat(),
            "expiresAt": expires_at.isoformat() if expires_at else None,
        }

        try:
            contract = await self.ledger.create_contract(
                record.sender_identity, TRANSFER_TEMPLATE, payload
            )
        except LedgerError as exc:
            logger.error(
                "Delivery for send token %s %s: %s",
                token_prefix(token),
                DeliveryState.REJECTED.value,
                exc,
                extra={"token_prefix": token_prefix(token)},
            )
            raise DeliveryFailed(
                "The secret could not be stored; request a new link and try again", exc
            ) from exc

        delivery_id = contract.contract_id
        view_token = await asyncio.to_thread(
            self.token_store.issue_view_token,
            delivery_id,
            record.recipient_identity,
            expires_at,
        )

        sender_display = await asyncio.to_thread(
            self.identities.display_name, record.sender_identity
        )
        render_state = RenderState(
            delivery_id=delivery_id,
            label=record.label,
            sender_display=sender_display,
            description=description,
            view_url=f"{self.public_base_url}/secret/{view_token}",
            sent_at=now,
            expires_at=expires_at,
        )
        message_ref = await self._notify_delivery(record.recipient_handle, render_state)
        self.engine.track(record.recipient_identity, render_state, message_ref)

        logger.info(
            "Delivered %s to %s", delivery_id, record.recipient_handle,
            extra={"delivery_id": delivery_id},
        )
        return DeliveryReceipt(
            delivery_id=delivery_id, expires_at=expires_at, degraded=contract.degraded
        )

    async def _notify_delivery(self, handle: str, state: RenderState) -> MessageRef | None:
        try:
            return await self.notifier.post_notification(
                handle, countdown_message(state, self._clock())
            )
        except NotificationError as exc:
            logger.warning(
                "Could not notify %s about %s: %s",
                handle,
                state.delivery_id,
                exc,
                extra={"delivery_id": state.delivery_id},
            )
            return None

    # --- Resolved -------------------------------------------------------------------

    async def resolve(self, view_token: str) -> ResolutionGrant:
        """Spend a view token on a short-lived read-only ledger credential.

        The credential lets the browser read the payload directly from the
        ledger; how many reads it allows is up to the ledger.
        """
        record = await asyncio.to_thread(self.token_store.consume_view_token, view_token)

        credential = self.ledger.tokens.viewer_token(
            record.recipient_identity, ttl_seconds=self.viewer_ttl_seconds
        )
        template_id = self.ledger.template_id(TRANSFER_TEMPLATE)
        fragment = urlencode(
            {
                "jwt": credential,
                "cid": record.delivery_id,
                "tid": template_id,
                "party": record.recipient_identity,
            }
        )
        logger.info(
            "Resolved delivery %s", record.delivery_id, extra={"delivery_id": record.delivery_id}
        )
        return ResolutionGrant(
            delivery_id=record.delivery_id,
            recipient_identity=record.recipient_identity,
            template_id=template_id,
            credential=credential,
            viewer_url=f"{self.viewer_base_url}/viewer/index.html#{fragment}",
            expires_in=self.viewer_ttl_seconds,
        )

    # --- Acknowledged ---------------------------------------------------------------

    async def acknowledge(self, delivery_id: str, recipient_handle: str) -> int:
        """Archive a delivery on the recipient's behalf and revoke its tokens.

        Returns the number of view tokens that were still live. Tokens issued
        to somebody else are never touched: a handle that is not the
        delivery's recipient gets :class:`UnknownDelivery`.
        """
        recipient = await asyncio.to_thread(self.identities.require, recipient_handle)
        summary = await asyncio.to_thread(self.token_store.delivery_token_summary, delivery_id)
        self._require_recipient(delivery_id, summary, recipient.ledger_identity)

        revoked = await asyncio.to_thread(
            self.token_store.revoke_by_delivery, delivery_id, recipient.ledger_identity
        )
        await self.ledger.exercise_choice(
            recipient.ledger_identity, TRANSFER_TEMPLATE, delivery_id, ACKNOWLEDGE_CHOICE
        )
        await asyncio.to_thread(
            self.token_store.mark_acknowledged, delivery_id, recipient.ledger_identity
        )

        timer = self.engine.untrack(delivery_id)
        if timer is not None and timer.message_ref is not None:
            try:
                await self.notifier.update_notification(
                    timer.message_ref, acknowledged_message(timer.render_state)
                )
            except NotificationError as exc:
                logger.warning("Acknowledged notice for %s failed: %s", delivery_id, exc)

        logger.info(
            "Delivery %s %s", delivery_id, DeliveryState.ACKNOWLEDGED.value,
            extra={"delivery_id": delivery_id},
        )
        return revoked

    # --- Queries --------------------------------------------------------------------

    async def _transfers_for(self, ledger_identity: str) -> list[ContractRef]:
        return await self.ledger.query_contracts(
            ledger_identity, TRANSFER_TEMPLATE, {"recipient": ledger_identity}
        )

    async def list_inbox(self, recipient_handle: str) -> list[InboxItem]:
        """Active deliveries for a recipient, newest first, without ciphertext.

        Transfers whose TTL elapsed are archived on the way (best-effort).
        """
        recipient = await asyncio.to_thread(self.identities.require, recipient_handle)
        now = self._clock()

        items: list[InboxItem] = []
        for contract in await self._transfers_for(recipient.ledger_identity):
            record = DeliveryRecord.from_contract(contract)
            if record.is_expired(now):
                await self._archive_expired(record, recipient.ledger_identity)
                continue
            items.append(
                InboxItem(
                    delivery_id=record.id,
                    sender_display=await asyncio.to_thread(
                        self.identities.display_name, record.sender_identity
                    ),
                    label=record.label,
                    description=record.description,
                    sent_at=record.created_at,
                    expires_at=record.expires_at,
                )
            )
        items.sort(key=lambda item: item.sent_at or now, reverse=True)
        return items

    async def _archive_expired(self, record: DeliveryRecord, acting: str) -> None:
        await asyncio.to_thread(self.token_store.revoke_by_delivery, record.id, acting)
        try:
            await self.ledger.exercise_choice(acting, TRANSFER_TEMPLATE, record.id, REVOKE_CHOICE)
        except LedgerError as exc:
            logger.warning("Archival of expired delivery %s failed: %s", record.id, exc)

    @staticmethod
    def _require_recipient(
        delivery_id: str, summary: DeliveryTokenSummary, ledger_identity: str
    ) -> None:
        if summary.issued and not summary.addressed_to(ledger_identity):
            logger.warning(
                "Delivery %s is not addressed to %s",
                delivery_id,
                ledger_identity,
                extra={"delivery_id": delivery_id, "identity": ledger_identity},
            )
            raise UnknownDelivery(delivery_id)

    async def delivery_state(self, delivery_id: str, recipient_handle: str) -> DeliveryState:
        """Derive the current state from ledger existence and token rows.

        Acknowledged wins over Expired once the acknowledgement is recorded. A
        contract the ledger does not show (for instance a degraded receipt
        whose id is an update id) falls back to the token rows.
        """
        recipient = await asyncio.to_thread(self.identities.require, recipient_handle)
        summary = await asyncio.to_thread(self.token_store.delivery_token_summary, delivery_id)
        self._require_recipient(delivery_id, summary, recipient.ledger_identity)
        contracts: Mapping[str, ContractRef] = {
            contract.contract_id: contract
            for contract in await self._transfers_for(recipient.ledger_identity)
        }

        contract = contracts.get(delivery_id)
        if summary.issued == 0:
            if contract is None:
                raise UnknownDelivery(delivery_id)
            return DeliveryState.AWAITING_DELIVERY

        if summary.acknowledged_at is not None:
            return DeliveryState.ACKNOWLEDGED

        now = self._clock()
        expires_at = summary.expires_at
        if contract is not None:
            expires_at = DeliveryRecord.from_contract(contract).expires_at or expires_at
        if expires_at is not None and now >= expires_at:
            return DeliveryState.EXPIRED
        if summary.consumed:
            return DeliveryState.RESOLVED
        return DeliveryState.DELIVERED
