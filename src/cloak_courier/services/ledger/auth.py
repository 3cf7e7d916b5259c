"""Signed tokens for the ledger JSON API."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from jose import jwt

if TYPE_CHECKING:
    from cloak_courier.services.ledger.base import LedgerConfig

LEDGER_CLAIM = "https://daml.com/ledger-api"
ADMIN_SCOPE = "daml_ledger_api"


class LedgerTokenFactory:
    """Mint HS-signed JWTs understood by the ledger.

    Three flavours exist: per-identity acting tokens, one application-wide
    admin token, and short-lived read-only viewer credentials handed to the
    browser after a view token is consumed.
    """

    def __init__(
        self,
        *,
        secret: str,
        ledger_id: str,
        application_id: str,
        algorithm: str = "HS256",
        ttl_seconds: int = 60 * 60 * 24,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.secret = secret
        self.ledger_id = ledger_id
        self.application_id = application_id
        self.algorithm = algorithm
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    @classmethod
    def from_config(cls, config: LedgerConfig) -> LedgerTokenFactory:
        return cls(
            secret=config.jwt_secret,
            ledger_id=config.ledger_id,
            application_id=config.application_id,
            algorithm=config.jwt_algorithm,
            ttl_seconds=config.token_ttl_seconds,
        )

    def _encode(self, subject: str, ttl_seconds: int, extra: dict[str, Any]) -> str:
        now = int(self._clock())
        payload = {
            "sub": subject,
            "iat": now,
            "exp": now + max(1, ttl_seconds),
            **extra,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def acting_token(self, identity: str) -> str:
        """Token allowed to act and read as ``identity``."""
        return self._encode(
            identity,
            self.ttl_seconds,
            {
                LEDGER_CLAIM: {
                    "ledgerId": self.ledger_id,
                    "applicationId": self.application_id,
                    "actAs": [identity],
                    "readAs": [identity],
                }
            },
        )

    def admin_token(self) -> str:
        """Application-wide user token; identities are scoped per request."""
        return self._encode(self.application_id, self.ttl_seconds, {"scope": ADMIN_SCOPE})

    def viewer_token(self, identity: str, ttl_seconds: int = 60) -> str:
        """Read-only credential for one identity.

        ``actAs`` is empty so the holder can never submit commands.
        """
        return self._encode(
            identity,
            ttl_seconds,
            {
                LEDGER_CLAIM: {
                    "ledgerId": self.ledger_id,
                    "applicationId": f"{self.application_id}-viewer",
                    "actAs": [],
                    "readAs": [identity],
                }
            },
        )
