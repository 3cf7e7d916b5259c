# src/cloak_courier/main.py
"""Main entry point for the Cloak Courier application."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session, sessionmaker

from cloak_courier.api.deps import CoordinatorDep
from cloak_courier.api.errors import register_exception_handlers
from cloak_courier.api.public import router as public_router
from cloak_courier.api.v1 import (
    deliveries_router,
    identities_router,
    inbox_router,
    send_tokens_router,
)
from cloak_courier.core.errors import LedgerError
from cloak_courier.core.logger import configure_logging
from cloak_courier.core.settings import settings
from cloak_courier.db.session import SessionLocal, create_tables
from cloak_courier.services.coordinator import DisclosureCoordinator
from cloak_courier.services.expiration import ExpirationEngine
from cloak_courier.services.identity import IdentityDirectory, bootstrap_operator
from cloak_courier.services.ledger import LedgerAdapter, get_ledger_adapter
from cloak_courier.services.notifier import Notifier, build_notifier
from cloak_courier.services.token_store import TokenStore
from cloak_courier.services.token_sweep import TokenSweepWorker

configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "Cache-Control": "no-store",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": (
        "default-src 'none'; style-src 'unsafe-inline'; script-src 'unsafe-inline'"
    ),
}

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="One-time disclosure of ledger-held secrets",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)


@app.middleware("http")
async def security_headers(request: Request, call_next: Any) -> Response:
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers[name] = value
    return response


register_exception_handlers(app)

# Include routers
app.include_router(public_router)
app.include_router(identities_router, prefix="/api/v1")
app.include_router(send_tokens_router, prefix="/api/v1")
app.include_router(deliveries_router, prefix="/api/v1")
app.include_router(inbox_router, prefix="/api/v1")


def build_coordinator(
    ledger: LedgerAdapter,
    notifier: Notifier | None = None,
    session_factory: sessionmaker[Session] = SessionLocal,
) -> DisclosureCoordinator:
    """Wire the services that make up one coordinator."""
    token_store = TokenStore(session_factory)
    notifier = notifier or build_notifier()
    engine = ExpirationEngine(token_store=token_store, ledger=ledger, notifier=notifier)
    return DisclosureCoordinator(
        token_store=token_store,
        ledger=ledger,
        identities=IdentityDirectory(session_factory, ledger),
        notifier=notifier,
        engine=engine,
    )


@app.on_event("startup")
async def on_startup() -> None:
    if settings.auto_create_tables:
        create_tables()

    ledger = get_ledger_adapter()
    if settings.ledger_bootstrap_on_startup:
        try:
            await bootstrap_operator(ledger, settings.operator_identity_hint)
            await ledger.discover()
        except LedgerError as exc:
            logger.error("Ledger bootstrap failed: %s", exc)
            raise

    coordinator = build_coordinator(ledger)
    app.state.coordinator = coordinator

    worker = TokenSweepWorker(coordinator.token_store)
    await worker.start()
    app.state.token_sweep = worker
    logger.info("%s started (ledger %s)", settings.app_name, ledger.api_version)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    coordinator: DisclosureCoordinator | None = getattr(app.state, "coordinator", None)
    if coordinator:
        coordinator.engine.shutdown()
    worker: TokenSweepWorker | None = getattr(app.state, "token_sweep", None)
    if worker:
        await worker.stop()
    await get_ledger_adapter().close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/health/ledger")
async def ledger_health(coordinator: CoordinatorDep) -> dict[str, Any]:
    """Probe the ledger and report the circuit breaker state."""
    return await coordinator.ledger.health_check()


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


def run() -> None:
    import uvicorn

    uvicorn.run("cloak_courier.main:app", host=settings.host, port=settings.port, reload=settings.debug)


if __name__ == "__main__":
    run()
