# tests/v1/test_service_api.py
"""Tests for the key-protected service API used by the chat bot."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from cloak_courier.core.errors import LedgerRejected
from cloak_courier.services.ledger import ContractRef

BOB_ID = "bob::1220abcd"
SERVICE_KEY_HEADERS = {"X-Courier-Key": "test-service-key"}


@pytest.mark.parametrize(
    ("method", "path"),
    [
        ("post", "/api/v1/identities/"),
        ("get", "/api/v1/identities/U_ALICE"),
        ("post", "/api/v1/send-tokens/"),
        ("post", "/api/v1/deliveries/%231:0/acknowledge"),
        ("get", "/api/v1/deliveries/%231:0/state?handle=U_BOB"),
        ("get", "/api/v1/inbox/U_BOB"),
    ],
)
def test_service_api_requires_key(client: TestClient, method: str, path: str) -> None:
    missing = client.request(method, path, json={})
    wrong = client.request(method, path, json={}, headers={"X-Courier-Key": "nope"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert missing.json() == {"detail": "Invalid service key"}


def test_register_identity(client: TestClient, fake_ledger) -> None:
    fake_ledger.allocate_identity.return_value = "user-U_CAROL::1220abcd"

    response = client.post(
        "/api/v1/identities/",
        json={"handle": "U_CAROL", "username": "carol"},
        headers=SERVICE_KEY_HEADERS,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["handle"] == "U_CAROL"
    assert data["ledger_identity"] == "user-U_CAROL::1220abcd"

    lookup = client.get("/api/v1/identities/U_CAROL", headers=SERVICE_KEY_HEADERS)
    assert lookup.status_code == 200
    assert lookup.json()["username"] == "carol"


def test_unknown_identity_is_not_found(client: TestClient) -> None:
    response = client.get("/api/v1/identities/U_NOBODY", headers=SERVICE_KEY_HEADERS)
    assert response.status_code == 404


def test_issue_send_token(client: TestClient, clock) -> None:
    response = client.post(
        "/api/v1/send-tokens/",
        json={"sender_handle": "U_ALICE", "recipient_handle": "U_BOB", "label": "db-password"},
        headers=SERVICE_KEY_HEADERS,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["state"] == "Pending"
    assert data["compose_url"] == f"http://courier.test/compose/{data['token']}"
    assert len(data["token"]) == 64


def test_issue_send_token_for_unknown_recipient(client: TestClient) -> None:
    response = client.post(
        "/api/v1/send-tokens/",
        json={"sender_handle": "U_ALICE", "recipient_handle": "U_NOBODY", "label": "x"},
        headers=SERVICE_KEY_HEADERS,
    )
    assert response.status_code == 404


def test_full_round_trip_through_http(client: TestClient, fake_ledger, clock) -> None:
    issued = client.post(
        "/api/v1/send-tokens/",
        json={"sender_handle": "U_ALICE", "recipient_handle": "U_BOB", "label": "db-password"},
        headers=SERVICE_KEY_HEADERS,
    ).json()

    sent = client.post(f"/send/{issued['token']}", json={"ciphertext": "Y2lwaGVy"})
    assert sent.status_code == 202

    fake_ledger.query_contracts.return_value = [
        ContractRef(
            contract_id="#1:0",
            payload={
                "sender": "alice::1220abcd",
                "recipient": BOB_ID,
                "label": "db-password",
                "encryptedSecret": "Y2lwaGVy",
                "description": "",
                "sentAt": clock.now.isoformat(),
                "expiresAt": None,
            },
        )
    ]
    state = client.get(
        "/api/v1/deliveries/%231:0/state", params={"handle": "U_BOB"}, headers=SERVICE_KEY_HEADERS
    )
    assert state.json() == {"delivery_id": "#1:0", "state": "Delivered"}

    inbox = client.get("/api/v1/inbox/U_BOB", headers=SERVICE_KEY_HEADERS)
    assert inbox.status_code == 200
    assert inbox.json()[0]["sender"] == "alice"
    assert "Y2lwaGVy" not in inbox.text

    acknowledged = client.post(
        "/api/v1/deliveries/%231:0/acknowledge",
        json={"recipient_handle": "U_BOB"},
        headers=SERVICE_KEY_HEADERS,
    )
    assert acknowledged.status_code == 200
    assert acknowledged.json() == {
        "delivery_id": "#1:0",
        "state": "Acknowledged",
        "revoked_tokens": 1,
    }

    fake_ledger.query_contracts.return_value = []
    state = client.get(
        "/api/v1/deliveries/%231:0/state", params={"handle": "U_BOB"}, headers=SERVICE_KEY_HEADERS
    )
    assert state.json()["state"] == "Acknowledged"


def test_acknowledge_rejected_by_ledger(client: TestClient, fake_ledger) -> None:
    fake_ledger.exercise_choice.side_effect = LedgerRejected(404, "contract not found")

    response = client.post(
        "/api/v1/deliveries/%231:0/acknowledge",
        json={"recipient_handle": "U_BOB"},
        headers=SERVICE_KEY_HEADERS,
    )
    assert response.status_code == 502


def test_state_of_unknown_delivery(client: TestClient) -> None:
    response = client.get(
        "/api/v1/deliveries/%239:9/state", params={"handle": "U_BOB"}, headers=SERVICE_KEY_HEADERS
    )
    assert response.status_code == 404


def test_inbox_hides_expired_entries(client: TestClient, fake_ledger, clock) -> None:
    sent_at = clock.now - timedelta(hours=2)
    fake_ledger.query_contracts.return_value = [
        ContractRef(
            contract_id="#4:0",
            payload={
                "sender": "alice::1220abcd",
                "recipient": BOB_ID,
                "label": "stale",
                "sentAt": sent_at.isoformat(),
                "expiresAt": (sent_at + timedelta(minutes=5)).isoformat(),
            },
        )
    ]

    response = client.get("/api/v1/inbox/U_BOB", headers=SERVICE_KEY_HEADERS)

    assert response.status_code == 200
    assert response.json() == []


def test_acknowledge_by_wrong_handle_is_not_found(client: TestClient, coordinator, fake_ledger) -> None:
    view_token = coordinator.token_store.issue_view_token("#9:0", BOB_ID, None)

    response = client.post(
        "/api/v1/deliveries/%239:0/acknowledge",
        json={"recipient_handle": "U_ALICE"},
        headers=SERVICE_KEY_HEADERS,
    )

    assert response.status_code == 404
    fake_ledger.exercise_choice.assert_not_awaited()
    assert coordinator.token_store.consume_view_token(view_token).delivery_id == "#9:0"
