# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Generator, Iterator
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")
os.environ.setdefault("LEDGER_BOOTSTRAP_ON_STARTUP", "false")
os.environ.setdefault("NOTIFIER_BACKEND", "log")
os.environ.setdefault("SERVICE_API_KEY", "test-service-key")
os.environ.setdefault("PUBLIC_BASE_URL", "http://courier.test")
os.environ.setdefault("LEDGER_VIEWER_BASE_URL", "http://ledger.test")

from cloak_courier.api.deps import get_coordinator
from cloak_courier.db.session import Base
from cloak_courier.main import app as fastapi_app
from cloak_courier.services.coordinator import DisclosureCoordinator
from cloak_courier.services.expiration import ExpirationEngine
from cloak_courier.services.identity import IdentityDirectory
from cloak_courier.services.ledger import ContractRef, LedgerAdapter, LedgerTokenFactory
from cloak_courier.services.notifier import LogNotifier, MessageRef
from cloak_courier.services.token_store import TokenStore

TEST_DB_URL = "sqlite://"
SERVICE_KEY_HEADERS = {"X-Courier-Key": "test-service-key"}

ALICE = ("U_ALICE", "alice", "alice::1220abcd")
BOB = ("U_BOB", "bob", "bob::1220abcd")
OPERATOR = "operator::1220abcd"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Iterator[sessionmaker[Session]]:
    factory = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    try:
        yield factory
    finally:
        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 10, 0, tzinfo=UTC))


@pytest.fixture()
def token_store(session_factory: sessionmaker[Session], clock: FakeClock) -> TokenStore:
    return TokenStore(session_factory, clock=clock, send_token_ttl=timedelta(minutes=10))


@pytest.fixture()
def ledger_tokens() -> LedgerTokenFactory:
    return LedgerTokenFactory(
        secret="test-secret",
        ledger_id="sandbox",
        application_id="cloak-courier",
    )


@pytest.fixture()
def fake_ledger(ledger_tokens: LedgerTokenFactory) -> AsyncMock:
    ledger = AsyncMock(spec=LedgerAdapter)
    ledger.api_version = "v1"
    ledger.admin_identity = OPERATOR
    ledger.tokens = ledger_tokens
    ledger.template_id = MagicMock(side_effect=lambda name: f"abc123:Main:{name}")
    ledger.create_contract.return_value = ContractRef(contract_id="#1:0", payload={})
    ledger.exercise_choice.return_value = ContractRef(contract_id="#1:0")
    ledger.query_contracts.return_value = []
    ledger.fetch_by_key.return_value = None
    return ledger


@pytest.fixture()
def fake_notifier() -> AsyncMock:
    notifier = AsyncMock(spec=LogNotifier)
    notifier.post_notification.return_value = MessageRef(channel="D0001", ts="1700000000.0001")
    return notifier


@pytest.fixture()
def identities(
    session_factory: sessionmaker[Session], fake_ledger: AsyncMock, clock: FakeClock
) -> IdentityDirectory:
    return IdentityDirectory(session_factory, fake_ledger, clock=clock)


@pytest.fixture()
def registered(identities: IdentityDirectory) -> IdentityDirectory:
    """Directory with alice and bob already registered."""
    for handle, username, ledger_identity in (ALICE, BOB):
        identities.save(handle, username, ledger_identity)
    return identities


@pytest.fixture()
def expiration_engine(
    token_store: TokenStore,
    fake_ledger: AsyncMock,
    fake_notifier: AsyncMock,
    clock: FakeClock,
) -> ExpirationEngine:
    return ExpirationEngine(
        token_store=token_store,
        ledger=fake_ledger,
        notifier=fake_notifier,
        clock=clock,
    )


@pytest.fixture()
def coordinator(
    token_store: TokenStore,
    fake_ledger: AsyncMock,
    registered: IdentityDirectory,
    fake_notifier: AsyncMock,
    expiration_engine: ExpirationEngine,
    clock: FakeClock,
) -> DisclosureCoordinator:
    return DisclosureCoordinator(
        token_store=token_store,
        ledger=fake_ledger,
        identities=registered,
        notifier=fake_notifier,
        engine=expiration_engine,
        clock=clock,
        public_base_url="http://courier.test",
        viewer_base_url="http://ledger.test",
        viewer_ttl_seconds=60,
        max_ttl_seconds=7 * 24 * 3600,
    )


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(app: FastAPI, coordinator: DisclosureCoordinator) -> Iterator[TestClient]:
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    try:
        yield TestClient(app, base_url="http://test", follow_redirects=False)
    finally:
        app.dependency_overrides.pop(get_coordinator, None)
