"""Registration and lookup of chat handles against ledger identities."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from cloak_courier.core.errors import LedgerRejected, UnknownIdentity
from cloak_courier.db.time import as_utc, utcnow
from cloak_courier.models import IdentityMapping
from cloak_courier.services.ledger import LedgerAdapter

logger = logging.getLogger(__name__)

USER_IDENTITY_TEMPLATE = "UserIdentity"
ALREADY_ALLOCATED_MARKERS = ("already allocated", "already exists", "ALREADY_EXISTS")


@dataclass(frozen=True)
class RegisteredIdentity:
    handle: str
    username: str
    ledger_identity: str
    registered_at: datetime

    @classmethod
    def from_row(cls, row: IdentityMapping) -> RegisteredIdentity:
        return cls(
            handle=row.handle,
            username=row.username,
            ledger_identity=row.ledger_identity,
            registered_at=as_utc(row.registered_at),
        )


def short_identity(ledger_identity: str) -> str:
    """Strip the namespace fingerprint from a ledger identity."""
    return ledger_identity.split("::", 1)[0]


async def allocate_or_find(ledger: LedgerAdapter, hint: str, display_name: str) -> str:
    """Allocate ``hint``, or recover the identity if the ledger already has it."""
    try:
        return await ledger.allocate_identity(hint, display_name)
    except LedgerRejected as exc:
        if not any(marker in exc.body for marker in ALREADY_ALLOCATED_MARKERS):
            raise
        for identity in await ledger.list_identities():
            if identity.startswith(hint):
                logger.info("Reusing existing ledger identity %s", identity)
                return identity
        raise


async def bootstrap_operator(ledger: LedgerAdapter, hint: str) -> str:
    """Make sure the operator identity exists and use it for admin calls."""
    identity = await allocate_or_find(ledger, hint, "Operator")
    ledger.admin_identity = identity
    logger.info("Operator identity: %s", identity)
    return identity


class IdentityDirectory:
    """Local mapping of handles to ledger identities, backed by the ledger."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        ledger: LedgerAdapter,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._clock = clock

    def lookup(self, handle: str) -> RegisteredIdentity | None:
        with self._session_factory() as db:
            row = db.get(IdentityMapping, handle)
            return RegisteredIdentity.from_row(row) if row is not None else None

    def require(self, handle: str) -> RegisteredIdentity:
        """Return the registration for ``handle`` or raise :class:`UnknownIdentity`."""
        identity = self.lookup(handle)
        if identity is None:
            raise UnknownIdentity(handle)
        return identity

    def by_ledger_identity(self, ledger_identity: str) -> RegisteredIdentity | None:
        with self._session_factory() as db:
            row = db.scalars(
                select(IdentityMapping).where(IdentityMapping.ledger_identity == ledger_identity)
            ).first()
            return RegisteredIdentity.from_row(row) if row is not None else None

    def display_name(self, ledger_identity: str) -> str:
        """Human-readable name for a ledger identity, registered or not."""
        identity = self.by_ledger_identity(ledger_identity)
        if identity is not None:
            return identity.username
        return short_identity(ledger_identity)

    def save(self, handle: str, username: str, ledger_identity: str) -> RegisteredIdentity:
        with self._session_factory.begin() as db:
            row = db.merge(
                IdentityMapping(
                    handle=handle,
                    username=username,
                    ledger_identity=ledger_identity,
                    registered_at=self._clock(),
                )
            )
            db.flush()
            return RegisteredIdentity.from_row(row)

    async def register(self, handle: str, username: str) -> RegisteredIdentity:
        """Register ``handle``, allocating a ledger identity when needed.

        An existing mapping is kept as long as the ledger still knows the
        identity; a ledger reset makes the mapping stale and triggers a fresh
        allocation.
        """
        existing = await asyncio.to_thread(self.lookup, handle)
        if existing is not None:
            if existing.ledger_identity in await self._ledger.list_identities():
                return existing
            logger.info("Stale ledger identity for %s; registering again", handle)

        ledger_identity = await allocate_or_find(self._ledger, f"user-{handle}", username)

        operator = self._ledger.admin_identity
        key = {"operator": operator, "slackUserId": handle}
        if await self._ledger.fetch_by_key(operator, USER_IDENTITY_TEMPLATE, key) is None:
            await self._ledger.create_contract(
                operator,
                USER_IDENTITY_TEMPLATE,
                {
                    "operator": operator,
                    "user": ledger_identity,
                    "slackUserId": handle,
                    "slackUsername": username,
                    "registeredAt": self._clock().isoformat(),
                },
            )

        registered = await asyncio.to_thread(self.save, handle, username, ledger_identity)
        logger.info("Registered %s as %s", handle, ledger_identity, extra={"identity": handle})
        return registered
