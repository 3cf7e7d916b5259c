"""Durable single-use tokens.

Send tokens authorize one payload submission; view tokens authorize one
resolution of a delivered payload. Consumption is a single conditional
``UPDATE`` so two racing consumers can never both succeed: the storage engine
serializes the writes and only one of them sees the row still unconsumed.
Revocation goes through the same kind of statement, which makes it atomic with
respect to consumption as well.
"""

from __future__ import annotations

import logging
import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from cloak_courier.core.errors import (
    InvalidToken,
    TokenCollision,
    TokenConsumed,
    TokenExpired,
    TokenGone,
    TokenNotFound,
    TokenRevoked,
)
from cloak_courier.core.logger import token_prefix
from cloak_courier.core.settings import settings
from cloak_courier.db.time import as_utc, utcnow
from cloak_courier.models import SendToken, ViewToken

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
TOKEN_PATTERN = re.compile(r"^[a-f0-9]{64}$")

Clock = Callable[[], datetime]


def is_well_formed(token: str) -> bool:
    """Return True if ``token`` looks like a token this store could have issued."""
    return bool(TOKEN_PATTERN.fullmatch(token))


def _require_well_formed(token: str) -> None:
    if not is_well_formed(token):
        raise InvalidToken("Malformed token")


def _optional_utc(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


@dataclass(frozen=True)
class SendTokenRecord:
    """Detached snapshot of a send token row."""

    token: str
    sender_identity: str
    sender_handle: str
    recipient_identity: str
    recipient_handle: str
    label: str
    created_at: datetime
    expires_at: datetime
    consumed_at: datetime | None

    @classmethod
    def from_row(cls, row: SendToken) -> SendTokenRecord:
        return cls(
            token=row.token,
            sender_identity=row.sender_identity,
            sender_handle=row.sender_handle,
            recipient_identity=row.recipient_identity,
            recipient_handle=row.recipient_handle,
            label=row.label,
            created_at=as_utc(row.created_at),
            expires_at=as_utc(row.expires_at),
            consumed_at=_optional_utc(row.consumed_at),
        )


@dataclass(frozen=True)
class ViewTokenRecord:
    """Detached snapshot of a view token row."""

    token: str
    delivery_id: str
    recipient_identity: str
    created_at: datetime
    expires_at: datetime | None
    consumed_at: datetime | None
    revoked: bool

    @classmethod
    def from_row(cls, row: ViewToken) -> ViewTokenRecord:
        return cls(
            token=row.token,
            delivery_id=row.delivery_id,
            recipient_identity=row.recipient_identity,
            created_at=as_utc(row.created_at),
            expires_at=_optional_utc(row.expires_at),
            consumed_at=_optional_utc(row.consumed_at),
            revoked=bool(row.revoked),
        )


@dataclass(frozen=True)
class DeliveryTokenSummary:
    """Aggregate view-token state for one delivery."""

    issued: int
    consumed: int
    revoked: int
    expires_at: datetime | None
    recipients: frozenset[str] = frozenset()
    revoked_at: datetime | None = None
    acknowledged_at: datetime | None = None

    def addressed_to(self, ledger_identity: str) -> bool:
        return ledger_identity in self.recipients


class TokenStore:
    """Issue, peek, consume and revoke single-use tokens."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        clock: Clock = utcnow,
        send_token_ttl: timedelta | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self.send_token_ttl = send_token_ttl or timedelta(
            seconds=settings.send_token_ttl_seconds
        )

    def now(self) -> datetime:
        return self._clock()

    # --- Send tokens ----------------------------------------------------------------

    def issue_send_token(
        self,
        *,
        sender_identity: str,
        sender_handle: str,
        recipient_identity: str,
        recipient_handle: str,
        label: str,
    ) -> str:
        """Create a send token valid for the configured short TTL."""
        return self.create_send_token(
            sender_identity=sender_identity,
            sender_handle=sender_handle,
            recipient_identity=recipient_identity,
            recipient_handle=recipient_handle,
            label=label,
        ).token

    def create_send_token(
        self,
        *,
        sender_identity: str,
        sender_handle: str,
        recipient_identity: str,
        recipient_handle: str,
        label: str,
    ) -> SendTokenRecord:
        """Like :meth:`issue_send_token`, returning the stored row's snapshot."""
        token = secrets.token_hex(TOKEN_BYTES)
        now = self._clock()
        row = SendToken(
            token=token,
            sender_identity=sender_identity,
            sender_handle=sender_handle,
            recipient_identity=recipient_identity,
            recipient_handle=recipient_handle,
            label=label,
            created_at=now,
            expires_at=now + self.send_token_ttl,
        )
        record = SendTokenRecord.from_row(row)
        self._insert(row)
        logger.info("Issued send token %s", token_prefix(token))
        return record

    def peek_send_token(self, token: str) -> SendTokenRecord | None:
        """Return the token if consuming it right now would succeed.

        Applies exactly the predicate used by :meth:`consume_send_token` but
        never writes.
        """
        _require_well_formed(token)
        now = self._clock()
        with self._session_factory() as db:
            row = db.scalars(
                select(SendToken).where(
                    SendToken.token == token,
                    SendToken.consumed_at.is_(None),
                    SendToken.expires_at > now,
                )
            ).first()
            return SendTokenRecord.from_row(row) if row is not None else None

    def consume_send_token(self, token: str) -> SendTokenRecord:
        """Atomically mark a send token consumed and return its snapshot.

        Raises:
            InvalidToken: malformed token string.
            TokenNotFound, TokenConsumed, TokenExpired: the token is not usable.
        """
        _require_well_formed(token)
        now = self._clock()
        with self._session_factory.begin() as db:
            result = db.execute(
                update(SendToken)
                .where(
                    SendToken.token == token,
                    SendToken.consumed_at.is_(None),
                    SendToken.expires_at > now,
                )
                .values(consumed_at=now)
                .execution_options(synchronize_session=False)
            )
            row = db.get(SendToken, token)
            if result.rowcount != 1:
                error = self._classify_send(row)
                logger.info(
                    "Rejected send token %s (%s)", token_prefix(token), error.reason
                )
                raise error
            record = SendTokenRecord.from_row(row)

        logger.info("Consumed send token %s", token_prefix(token))
        return record

    @staticmethod
    def _classify_send(row: SendToken | None) -> TokenGone:
        if row is None:
            return TokenNotFound()
        if row.consumed_at is not None:
            return TokenConsumed()
        return TokenExpired()

    # --- View tokens ----------------------------------------------------------------

    def issue_view_token(
        self,
        delivery_id: str,
        recipient_identity: str,
        payload_expires_at: datetime | None,
    ) -> str:
        """Create a view token whose lifetime mirrors the payload's TTL."""
        token = secrets.token_hex(TOKEN_BYTES)
        row = ViewToken(
            token=token,
            delivery_id=delivery_id,
            recipient_identity=recipient_identity,
            created_at=self._clock(),
            expires_at=payload_expires_at,
            revoked=False,
        )
        self._insert(row)
        logger.info(
            "Issued view token %s for delivery %s", token_prefix(token), delivery_id
        )
        return token

    def consume_view_token(self, token: str) -> ViewTokenRecord:
        """Atomically consume a view token.

        The payload expiry is re-checked here, whatever happened since issuance.

        Raises:
            InvalidToken: malformed token string.
            TokenNotFound, TokenConsumed, TokenRevoked, TokenExpired: not usable.
        """
        _require_well_formed(token)
        now = self._clock()
        with self._session_factory.begin() as db:
            result = db.execute(
                update(ViewToken)
                .where(
                    ViewToken.token == token,
                    ViewToken.consumed_at.is_(None),
                    ViewToken.revoked.is_(False),
                    or_(ViewToken.expires_at.is_(None), ViewToken.expires_at > now),
                )
                .values(consumed_at=now)
                .execution_options(synchronize_session=False)
            )
            row = db.get(ViewToken, token)
            if result.rowcount != 1:
                error = self._classify_view(row)
                logger.info(
                    "Rejected view token %s (%s)", token_prefix(token), error.reason
                )
                raise error
            record = ViewTokenRecord.from_row(row)

        logger.info(
            "Consumed view token %s for delivery %s",
            token_prefix(token),
            record.delivery_id,
        )
        return record

    @staticmethod
    def _classify_view(row: ViewToken | None) -> TokenGone:
        if row is None:
            return TokenNotFound()
        if row.consumed_at is not None:
            return TokenConsumed()
        if row.revoked:
            return TokenRevoked()
        return TokenExpired()

    def revoke_by_delivery(
        self, delivery_id: str, recipient_identity: str | None = None
    ) -> int:
        """Revoke every unconsumed view token of a delivery.

        With ``recipient_identity`` only that recipient's tokens are touched.
        Idempotent: repeated calls find nothing left to revoke and return 0.
        Tokens consumed before this statement keep their consumed state.
        """
        now = self._clock()
        conditions = [
            ViewToken.delivery_id == delivery_id,
            ViewToken.consumed_at.is_(None),
            ViewToken.revoked.is_(False),
        ]
        if recipient_identity is not None:
            conditions.append(ViewToken.recipient_identity == recipient_identity)
        with self._session_factory.begin() as db:
            result = db.execute(
                update(ViewToken)
                .where(*conditions)
                .values(revoked=True, revoked_at=now)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.info(
                "Revoked %d view token(s) for delivery %s", result.rowcount, delivery_id
            )
        return result.rowcount

    def mark_acknowledged(self, delivery_id: str, recipient_identity: str) -> int:
        """Record that the recipient acknowledged the delivery on the ledger."""
        with self._session_factory.begin() as db:
            result = db.execute(
                update(ViewToken)
                .where(
                    ViewToken.delivery_id == delivery_id,
                    ViewToken.recipient_identity == recipient_identity,
                    ViewToken.acknowledged_at.is_(None),
                )
                .values(acknowledged_at=self._clock())
                .execution_options(synchronize_session=False)
            )
        return result.rowcount

    def delivery_token_summary(self, delivery_id: str) -> DeliveryTokenSummary:
        """Aggregate the view tokens issued for a delivery."""
        with self._session_factory() as db:
            rows = db.scalars(
                select(ViewToken).where(ViewToken.delivery_id == delivery_id)
            ).all()
            expiries = [as_utc(row.expires_at) for row in rows if row.expires_at is not None]
            revocations = [as_utc(row.revoked_at) for row in rows if row.revoked_at is not None]
            acknowledgements = [
                as_utc(row.acknowledged_at) for row in rows if row.acknowledged_at is not None
            ]
            return DeliveryTokenSummary(
                issued=len(rows),
                consumed=sum(1 for row in rows if row.consumed_at is not None),
                revoked=sum(1 for row in rows if row.revoked),
                expires_at=max(expiries) if expiries else None,
                recipients=frozenset(row.recipient_identity for row in rows),
                revoked_at=max(revocations) if revocations else None,
                acknowledged_at=min(acknowledgements) if acknowledgements else None,
            )

    # --- Housekeeping ---------------------------------------------------------------

    def purge(self, retention: timedelta | None = None) -> int:
        """Delete token rows that stopped mattering more than ``retention`` ago."""
        retention = retention or timedelta(hours=settings.token_retention_hours)
        cutoff = self._clock() - retention
        with self._session_factory.begin() as db:
            send_deleted = db.execute(
                delete(SendToken)
                .where(
                    or_(
                        and_(
                            SendToken.consumed_at.is_not(None),
                            SendToken.consumed_at < cutoff,
                        ),
                        SendToken.expires_at < cutoff,
                    )
                )
                .execution_options(synchronize_session=False)
            ).rowcount
            view_deleted = db.execute(
                delete(ViewToken)
                .where(
                    or_(
                        and_(
                            ViewToken.consumed_at.is_not(None),
                            ViewToken.consumed_at < cutoff,
                        ),
                        and_(
                            ViewToken.revoked.is_(True),
                            func.coalesce(ViewToken.revoked_at, ViewToken.created_at)
                            < cutoff,
                        ),
                        and_(
                            ViewToken.expires_at.is_not(None),
                            ViewToken.expires_at < cutoff,
                        ),
                    )
                )
                .execution_options(synchronize_session=False)
            ).rowcount

        total = send_deleted + view_deleted
        if total:
            logger.info(
                "Purged %d send token(s) and %d view token(s)", send_deleted, view_deleted
            )
        return total

    def _insert(self, row: SendToken | ViewToken) -> None:
        try:
            with self._session_factory.begin() as db:
                db.add(row)
        except IntegrityError as exc:
            logger.critical("Token collision detected; refusing to overwrite")
            raise TokenCollision("Generated token already exists") from exc
