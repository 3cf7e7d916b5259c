# tests/test_health.py
from typing import Any

from fastapi.testclient import TestClient


def test_root_responds(client: TestClient) -> None:
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["docs"] == "/docs"


def test_health_responds(client: TestClient) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_ledger_health_reports_adapter_status(client: TestClient, fake_ledger: Any) -> None:
    fake_ledger.health_check.return_value = {"status": "healthy", "api_version": "v1"}

    r = client.get("/health/ledger")

    assert r.status_code == 200
    assert r.json()["status"] == "healthy"
