"""Shared plumbing for ledger JSON API adapters.

This module provides the pieces both protocol generations rely on:

- Immutable adapter configuration built from settings
- Circuit breaker guarding the ledger connection
- HTTP client management and error classification
- The abstract ``LedgerAdapter`` interface used by the rest of the service
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from cloak_courier.core.errors import LedgerRejected, LedgerUnavailable
from cloak_courier.core.settings import settings
from cloak_courier.services.ledger.auth import LedgerTokenFactory

logger = logging.getLogger(__name__)

HTTP_SERVER_ERROR = 500
BODY_PREVIEW_CHARS = 500

# Templates every installed package of the application must expose.
PROBE_TEMPLATES = ("UserIdentity", "SecretTransfer")


@dataclass(frozen=True)
class ContractRef:
    """Reference to an active ledger contract.

    ``degraded`` is set when the ledger confirmed a write but did not report the
    created contract; ``contract_id`` then holds the transaction identifier.
    """

    contract_id: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    degraded: bool = False


class CircuitState(Enum):
    """Circuit breaker states for the ledger connection."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """Stop hammering an unreachable ledger.

    Opens after ``failure_threshold`` consecutive transport or 5xx failures and
    lets a probe through once ``recovery_timeout`` seconds have passed.
    """

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    success_threshold: int = 2

    _state: CircuitState = CircuitState.CLOSED
    _failure_count: int = 0
    _success_count: int = 0
    _last_failure_time: float = 0.0

    def is_open(self) -> bool:
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._last_failure_time > self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
            return self._state == CircuitState.OPEN
        return False

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.success_threshold:
                self._state = CircuitState.CLOSED
                self._failure_count = 0
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN

    def status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "is_open": self.is_open(),
        }


@dataclass(frozen=True)
class LedgerConfig:
    """Immutable configuration for ledger access."""

    api_version: str
    base_url: str
    package_name: str
    package_version: str
    dar_path: str | None
    application_id: str
    ledger_id: str
    jwt_secret: str
    jwt_algorithm: str
    auth_token: str | None
    token_ttl_seconds: int
    timeout_seconds: float
    admin_identity: str


def load_ledger_config() -> LedgerConfig:
    """Build configuration object from global settings."""

    return LedgerConfig(
        api_version=settings.ledger_api_version.lower(),
        base_url=settings.ledger_json_api_url.rstrip("/"),
        package_name=settings.ledger_package_name,
        package_version=settings.ledger_package_version,
        dar_path=settings.ledger_dar_path,
        application_id=settings.ledger_application_id,
        ledger_id=settings.ledger_id,
        jwt_secret=settings.ledger_jwt_secret,
        jwt_algorithm=settings.ledger_jwt_algorithm,
        auth_token=settings.ledger_auth_token,
        token_ttl_seconds=settings.ledger_token_ttl_seconds,
        timeout_seconds=float(settings.ledger_http_timeout_seconds),
        admin_identity=settings.operator_identity_hint,
    )


class LedgerAdapter(ABC):
    """One contract-operation interface over a ledger JSON API generation.

    ``acting`` and ``identity`` parameters always name the ledger identity the
    call is made on behalf of; how that identity is conveyed (token claims or
    request body) is the concrete adapter's business.
    """

    api_version: str = ""
    health_path: str = "/livez"

    def __init__(
        self,
        config: LedgerConfig | None = None,
        *,
        tokens: LedgerTokenFactory | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_ledger_config()
        self.tokens = tokens or LedgerTokenFactory.from_config(self.config)
        self.admin_identity = self.config.admin_identity
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._circuit_breaker = CircuitBreaker()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    @dataclass
    class RequestParams:
        """Parameters for HTTP requests."""

        method: str
        path: str
        identity: str | None = None
        json_data: Any | None = None
        content: bytes | None = None
        params: Mapping[str, Any] | None = None
        headers: dict[str, str] | None = None
        allow_statuses: tuple[int, ...] = ()

    @abstractmethod
    def _auth_headers(self, identity: str | None) -> dict[str, str]:
        """Return the Authorization header for a call made as ``identity``."""

    async def _request(self, params: RequestParams) -> httpx.Response:
        """Send one request, classifying every failure.

        Raises:
            LedgerUnavailable: transport failure or open circuit breaker.
            LedgerRejected: any non-2xx status not listed in ``allow_statuses``.
        """
        if self._circuit_breaker.is_open():
            raise LedgerUnavailable("Ledger circuit breaker is open")

        client = await self._ensure_client()
        headers = self._auth_headers(params.identity)
        if params.headers:
            headers.update(params.headers)

        try:
            response = await client.request(
                params.method,
                params.path,
                json=params.json_data,
                content=params.content,
                params=params.params,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            self._circuit_breaker.record_failure()
            logger.warning("Ledger request %s %s failed: %s", params.method, params.path, exc)
            raise LedgerUnavailable(f"Ledger request failed: {exc}") from exc

        if response.status_code >= HTTP_SERVER_ERROR:
            self._circuit_breaker.record_failure()
        else:
            self._circuit_breaker.record_success()

        if response.is_success or response.status_code in params.allow_statuses:
            return response

        body = response.text[:BODY_PREVIEW_CHARS]
        logger.error(
            "Ledger rejected %s %s (%s): %s",
            params.method,
            params.path,
            response.status_code,
            body,
            extra={"status_code": response.status_code},
        )
        raise LedgerRejected(response.status_code, body)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise LedgerRejected(
                response.status_code,
                response.text[:BODY_PREVIEW_CHARS],
                "Ledger returned a non-JSON body",
            ) from exc

    # --- Contract operations --------------------------------------------------------

    @abstractmethod
    async def discover(self) -> None:
        """Resolve template identifiers once for the process lifetime."""

    @abstractmethod
    def template_id(self, template: str) -> str:
        """Return the fully qualified identifier of ``template``."""

    @abstractmethod
    async def create_contract(
        self, acting: str, template: str, payload: Mapping[str, Any]
    ) -> ContractRef:
        """Create a contract as ``acting`` and return its reference."""

    @abstractmethod
    async def exercise_choice(
        self,
        acting: str,
        template: str,
        contract_id: str,
        choice: str,
        argument: Mapping[str, Any] | None = None,
    ) -> ContractRef:
        """Exercise ``choice`` on a contract.

        Returns the contract created by the exercise when there is one, else a
        reference to the exercised contract itself.
        """

    @abstractmethod
    async def query_contracts(
        self,
        identity: str,
        template: str,
        filter: Mapping[str, Any] | None = None,
    ) -> list[ContractRef]:
        """Return active contracts visible to ``identity`` matching ``filter``."""

    @abstractmethod
    async def fetch_by_key(
        self, identity: str, template: str, key: Mapping[str, Any]
    ) -> ContractRef | None:
        """Look a contract up by its key fields; ``None`` when absent."""

    @abstractmethod
    async def allocate_identity(self, hint: str, display_name: str) -> str:
        """Allocate a new ledger identity and return its full identifier."""

    @abstractmethod
    async def list_identities(self) -> list[str]:
        """Return every identity known to the ledger."""

    # --- Housekeeping ---------------------------------------------------------------

    def get_circuit_breaker_status(self) -> dict[str, Any]:
        return self._circuit_breaker.status()

    async def health_check(self) -> dict[str, Any]:
        """Probe the ledger's liveness endpoint."""

        status: dict[str, Any] = {
            "api_version": self.api_version,
            "base_url": self.config.base_url,
            "circuit_breaker": self.get_circuit_breaker_status(),
        }
        try:
            response = await self._request(
                self.RequestParams(method="GET", path=self.health_path)
            )
            status["status"] = "healthy"
            status["status_code"] = response.status_code
        except LedgerUnavailable as exc:
            status["status"] = "unreachable"
            status["error"] = str(exc)
        except LedgerRejected as exc:
            status["status"] = "unhealthy"
            status["status_code"] = exc.status_code
        return status

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
