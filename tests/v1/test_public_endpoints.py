# tests/v1/test_public_endpoints.py
"""Tests for the browser-facing one-time link endpoints."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from cloak_courier.api.errors import GONE_DETAIL, INVALID_DETAIL
from cloak_courier.core.errors import LedgerUnavailable
from cloak_courier.main import SECURITY_HEADERS

BOB_ID = "bob::1220abcd"
SLACKBOT = "Slackbot-LinkExpanding 1.0 (+https://api.slack.com/robots)"
BROWSER = "Mozilla/5.0 (X11; Linux x86_64) Firefox/124.0"


def issue_send_token(coordinator) -> str:
    return coordinator.token_store.issue_send_token(
        sender_identity="alice::1220abcd",
        sender_handle="U_ALICE",
        recipient_identity=BOB_ID,
        recipient_handle="U_BOB",
        label="db-password",
    )


def test_compose_returns_metadata_without_spending(client: TestClient, coordinator) -> None:
    token = issue_send_token(coordinator)

    first = client.get(f"/compose/{token}")
    second = client.get(f"/compose/{token}")

    assert first.status_code == 200
    assert second.status_code == 200
    data = first.json()
    assert data["label"] == "db-password"
    assert data["sender"] == "alice"
    assert data["recipient"] == "bob"
    assert None in data["ttl_choices"]


def test_send_spends_token_once(client: TestClient, coordinator, fake_ledger) -> None:
    token = issue_send_token(coordinator)

    response = client.post(f"/send/{token}", json={"ciphertext": "Y2lwaGVy", "description": "x"})
    assert response.status_code == 202
    assert response.json() == {"status": "sent"}
    assert "Y2lwaGVy" not in response.text

    again = client.post(f"/send/{token}", json={"ciphertext": "Y2lwaGVy"})
    assert again.status_code == 410
    assert again.json() == {"detail": GONE_DETAIL}
    fake_ledger.create_contract.assert_awaited_once()


def test_send_validation_failure_keeps_token(client: TestClient, coordinator) -> None:
    token = issue_send_token(coordinator)

    assert client.post(f"/send/{token}", json={"ciphertext": ""}).status_code == 422
    assert client.post(f"/send/{token}", json={"ciphertext": "x", "ttl": 0}).status_code == 422
    too_long = client.post(f"/send/{token}", json={"ciphertext": "x", "ttl": 8 * 24 * 3600})
    assert too_long.status_code == 400

    assert coordinator.token_store.peek_send_token(token) is not None


def test_send_ledger_outage_is_service_unavailable(client: TestClient, coordinator, fake_ledger) -> None:
    fake_ledger.create_contract.side_effect = LedgerUnavailable("down")
    token = issue_send_token(coordinator)

    response = client.post(f"/send/{token}", json={"ciphertext": "Y2lwaGVy"})

    assert response.status_code == 503
    assert client.get(f"/compose/{token}").status_code == 410


def test_expired_send_token_is_gone(client: TestClient, coordinator, clock) -> None:
    token = issue_send_token(coordinator)
    clock.advance(minutes=10, seconds=1)

    response = client.get(f"/compose/{token}")
    assert response.status_code == 410
    assert response.json() == {"detail": GONE_DETAIL}


@pytest.mark.parametrize("path", ["/compose/not-a-token", "/secret/not-a-token", "/secret/" + "A" * 64])
def test_malformed_token_is_bad_request(client: TestClient, path: str) -> None:
    response = client.get(path)
    assert response.status_code == 400
    assert response.json() == {"detail": INVALID_DETAIL}


def test_unknown_view_token_is_gone(client: TestClient) -> None:
    response = client.get("/secret/" + "f" * 64, headers={"User-Agent": BROWSER})
    assert response.status_code == 410
    assert response.json() == {"detail": GONE_DETAIL}


def test_preview_agent_does_not_consume_view_token(client: TestClient, coordinator) -> None:
    token = coordinator.token_store.issue_view_token("#1:0", BOB_ID, None)

    preview = client.get(f"/secret/{token}", headers={"User-Agent": SLACKBOT})
    assert preview.status_code == 200
    assert "text/html" in preview.headers["content-type"]
    assert "ledger.test" not in preview.text

    opened = client.get(f"/secret/{token}", headers={"User-Agent": BROWSER})
    assert opened.status_code == 302
    assert opened.headers["location"].startswith("http://ledger.test/viewer/index.html#")
    assert "cid=%231%3A0" in opened.headers["location"]

    reopened = client.get(f"/secret/{token}", headers={"User-Agent": BROWSER})
    assert reopened.status_code == 410


def test_expired_view_token_is_gone(client: TestClient, coordinator, clock) -> None:
    token = coordinator.token_store.issue_view_token("#1:0", BOB_ID, clock.now + timedelta(seconds=30))
    clock.advance(seconds=31)

    response = client.get(f"/secret/{token}", headers={"User-Agent": BROWSER})
    assert response.status_code == 410


def test_revoked_and_consumed_render_identically(client: TestClient, coordinator) -> None:
    revoked = coordinator.token_store.issue_view_token("#1:0", BOB_ID, None)
    consumed = coordinator.token_store.issue_view_token("#2:0", BOB_ID, None)
    coordinator.token_store.revoke_by_delivery("#1:0")
    coordinator.token_store.consume_view_token(consumed)

    first = client.get(f"/secret/{revoked}", headers={"User-Agent": BROWSER})
    second = client.get(f"/secret/{consumed}", headers={"User-Agent": BROWSER})

    assert first.status_code == second.status_code == 410
    assert first.content == second.content


def test_security_headers_on_every_response(client: TestClient) -> None:
    for response in (client.get("/health"), client.get("/secret/not-a-token")):
        for name, value in SECURITY_HEADERS.items():
            assert response.headers[name] == value
