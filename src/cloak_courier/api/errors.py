"""Translate service errors into HTTP responses.

Every token failure other than a malformed string renders the same 410 body,
so a client probing tokens cannot tell unknown, used, revoked and expired apart.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from cloak_courier.core.errors import (
    DeliveryFailed,
    DeliveryRejected,
    InvalidToken,
    LedgerRejected,
    LedgerUnavailable,
    ServiceKeyError,
    TokenGone,
    UnknownDelivery,
    UnknownIdentity,
)

logger = logging.getLogger(__name__)

GONE_DETAIL = "This link is no longer valid."
INVALID_DETAIL = "This link is malformed."


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


async def invalid_token_handler(request: Request, exc: InvalidToken) -> JSONResponse:
    return _error(status.HTTP_400_BAD_REQUEST, INVALID_DETAIL)


async def token_gone_handler(request: Request, exc: TokenGone) -> JSONResponse:
    return _error(status.HTTP_410_GONE, GONE_DETAIL)


async def ledger_unavailable_handler(request: Request, exc: LedgerUnavailable) -> JSONResponse:
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "The ledger is unavailable; try again later.")


async def ledger_rejected_handler(request: Request, exc: LedgerRejected) -> JSONResponse:
    logger.error("Ledger rejected request for %s: %s", request.url.path, exc)
    return _error(status.HTTP_502_BAD_GATEWAY, "The ledger rejected the request.")


async def delivery_failed_handler(request: Request, exc: DeliveryFailed) -> JSONResponse:
    status_code = (
        status.HTTP_503_SERVICE_UNAVAILABLE if exc.retryable else status.HTTP_502_BAD_GATEWAY
    )
    return _error(status_code, str(exc))


async def delivery_rejected_handler(request: Request, exc: DeliveryRejected) -> JSONResponse:
    return _error(status.HTTP_400_BAD_REQUEST, str(exc))


async def not_found_handler(
    request: Request, exc: UnknownIdentity | UnknownDelivery
) -> JSONResponse:
    return _error(status.HTTP_404_NOT_FOUND, str(exc))


async def service_key_handler(request: Request, exc: ServiceKeyError) -> JSONResponse:
    return _error(status.HTTP_401_UNAUTHORIZED, "Invalid service key")


def register_exception_handlers(app: FastAPI) -> None:
    """Install the error mapping on ``app``."""
    app.add_exception_handler(InvalidToken, invalid_token_handler)
    app.add_exception_handler(TokenGone, token_gone_handler)
    app.add_exception_handler(LedgerUnavailable, ledger_unavailable_handler)
    app.add_exception_handler(LedgerRejected, ledger_rejected_handler)
    app.add_exception_handler(DeliveryFailed, delivery_failed_handler)
    app.add_exception_handler(DeliveryRejected, delivery_rejected_handler)
    app.add_exception_handler(UnknownIdentity, not_found_handler)
    app.add_exception_handler(UnknownDelivery, not_found_handler)
    app.add_exception_handler(ServiceKeyError, service_key_handler)
