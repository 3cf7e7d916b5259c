# tests/services/test_token_store.py
"""Tests for single-use token issuance and consumption."""

from datetime import timedelta

import pytest

from cloak_courier.core.errors import (
    InvalidToken,
    TokenConsumed,
    TokenExpired,
    TokenGone,
    TokenNotFound,
    TokenRevoked,
)
from cloak_courier.services.token_store import is_well_formed


def _issue_send(token_store) -> str:
    return token_store.issue_send_token(
        sender_identity="alice::1220abcd",
        sender_handle="U_ALICE",
        recipient_identity="bob::1220abcd",
        recipient_handle="U_BOB",
        label="db-password",
    )


def test_issued_tokens_are_64_hex_chars_and_unique(token_store) -> None:
    tokens = {_issue_send(token_store) for _ in range(20)}
    assert len(tokens) == 20
    assert all(is_well_formed(token) for token in tokens)


def test_send_token_consumed_just_before_expiry(token_store, clock) -> None:
    token = _issue_send(token_store)

    clock.advance(minutes=9, seconds=59)
    record = token_store.consume_send_token(token)

    assert record.label == "db-password"
    assert record.recipient_identity == "bob::1220abcd"
    assert record.consumed_at == clock.now


def test_second_send_consumption_fails_as_consumed(token_store, clock) -> None:
    token = _issue_send(token_store)
    clock.advance(minutes=9, seconds=59)
    token_store.consume_send_token(token)

    with pytest.raises(TokenConsumed):
        token_store.consume_send_token(token)


def test_send_token_after_ttl_fails_as_expired(token_store, clock) -> None:
    token = _issue_send(token_store)

    clock.advance(minutes=10, seconds=1)
    with pytest.raises(TokenExpired):
        token_store.consume_send_token(token)


def test_send_token_expires_exactly_at_ttl(token_store, clock) -> None:
    token = _issue_send(token_store)

    clock.advance(minutes=10)
    with pytest.raises(TokenExpired):
        token_store.consume_send_token(token)


def test_unknown_token_is_gone(token_store) -> None:
    with pytest.raises(TokenNotFound) as exc_info:
        token_store.consume_send_token("a" * 64)
    assert isinstance(exc_info.value, TokenGone)


@pytest.mark.parametrize("bad", ["", "xyz", "A" * 64, "a" * 63, "g" * 64, "a" * 65])
def test_malformed_tokens_are_rejected_before_lookup(token_store, bad) -> None:
    with pytest.raises(InvalidToken):
        token_store.consume_send_token(bad)
    with pytest.raises(InvalidToken):
        token_store.consume_view_token(bad)


def test_peek_agrees_with_consumption(token_store, clock) -> None:
    token = _issue_send(token_store)

    peeked = token_store.peek_send_token(token)
    assert peeked is not None
    assert peeked.sender_handle == "U_ALICE"
    # Peeking never spends the token
    assert token_store.peek_send_token(token) is not None

    token_store.consume_send_token(token)
    assert token_store.peek_send_token(token) is None


def test_peek_hides_expired_token(token_store, clock) -> None:
    token = _issue_send(token_store)
    clock.advance(minutes=10)
    assert token_store.peek_send_token(token) is None


def test_view_token_single_use(token_store) -> None:
    token = token_store.issue_view_token("#1:0", "bob::1220abcd", None)

    record = token_store.consume_view_token(token)
    assert record.delivery_id == "#1:0"
    assert record.expires_at is None

    with pytest.raises(TokenConsumed):
        token_store.consume_view_token(token)


def test_view_token_expiry_is_self_enforcing(token_store, clock) -> None:
    expires_at = clock.now + timedelta(minutes=5)
    token = token_store.issue_view_token("#1:0", "bob::1220abcd", expires_at)

    # No revocation and no sweep: the stored expiry alone must block it.
    clock.advance(minutes=5, seconds=1)
    with pytest.raises(TokenExpired):
        token_store.consume_view_token(token)


def test_revoked_view_token_cannot_be_consumed(token_store) -> None:
    token = token_store.issue_view_token("#1:0", "bob::1220abcd", None)

    assert token_store.revoke_by_delivery("#1:0") == 1
    with pytest.raises(TokenRevoked):
        token_store.consume_view_token(token)


def test_revoke_is_idempotent(token_store) -> None:
    first = token_store.issue_view_token("#1:0", "bob::1220abcd", None)
    second = token_store.issue_view_token("#1:0", "bob::1220abcd", None)
    other = token_store.issue_view_token("#2:0", "bob::1220abcd", None)

    assert token_store.revoke_by_delivery("#1:0") == 2
    assert token_store.revoke_by_delivery("#1:0") == 0
    assert token_store.revoke_by_delivery("#1:0") == 0

    for token in (first, second):
        with pytest.raises(TokenRevoked):
            token_store.consume_view_token(token)
    assert token_store.consume_view_token(other).delivery_id == "#2:0"


def test_revoke_leaves_consumed_tokens_consumed(token_store) -> None:
    token = token_store.issue_view_token("#1:0", "bob::1220abcd", None)
    token_store.consume_view_token(token)

    assert token_store.revoke_by_delivery("#1:0") == 0
    summary = token_store.delivery_token_summary("#1:0")
    assert summary.consumed == 1
    assert summary.revoked == 0


def test_delivery_token_summary(token_store, clock) -> None:
    expires_at = clock.now + timedelta(hours=1)
    token_store.issue_view_token("#1:0", "bob::1220abcd", expires_at)
    used = token_store.issue_view_token("#1:0", "bob::1220abcd", expires_at)
    token_store.consume_view_token(used)

    summary = token_store.delivery_token_summary("#1:0")
    assert summary.issued == 2
    assert summary.consumed == 1
    assert summary.revoked == 0
    assert summary.expires_at == expires_at

    empty = token_store.delivery_token_summary("#9:9")
    assert empty.issued == 0
    assert empty.expires_at is None


def test_purge_removes_only_rows_past_retention(token_store, clock) -> None:
    old_send = _issue_send(token_store)
    token_store.consume_send_token(old_send)
    old_view = token_store.issue_view_token("#1:0", "bob::1220abcd", None)
    token_store.revoke_by_delivery("#1:0")

    clock.advance(hours=25)
    fresh_send = _issue_send(token_store)
    live_view = token_store.issue_view_token("#2:0", "bob::1220abcd", None)

    assert token_store.purge(timedelta(hours=24)) == 2

    with pytest.raises(TokenNotFound):
        token_store.consume_send_token(old_send)
    with pytest.raises(TokenNotFound):
        token_store.consume_view_token(old_view)
    assert token_store.consume_send_token(fresh_send).token == fresh_send
    assert token_store.consume_view_token(live_view).delivery_id == "#2:0"


def test_purge_drops_long_expired_unconsumed_send_tokens(token_store, clock) -> None:
    _issue_send(token_store)
    clock.advance(hours=24, minutes=11)
    assert token_store.purge(timedelta(hours=24)) == 1


def test_revoke_scoped_to_recipient(token_store) -> None:
    bobs = token_store.issue_view_token("#1:0", "bob::1220abcd", None)
    carols = token_store.issue_view_token("#1:0", "carol::1220abcd", None)

    assert token_store.revoke_by_delivery("#1:0", "carol::1220abcd") == 1

    with pytest.raises(TokenRevoked):
        token_store.consume_view_token(carols)
    assert token_store.consume_view_token(bobs).recipient_identity == "bob::1220abcd"


def test_summary_records_recipients_revocation_and_acknowledgement(token_store, clock) -> None:
    token_store.issue_view_token("#1:0", "bob::1220abcd", clock.now + timedelta(hours=1))
    clock.advance(minutes=2)
    token_store.revoke_by_delivery("#1:0")
    revoked_at = clock.now
    clock.advance(minutes=1)

    assert token_store.mark_acknowledged("#1:0", "alice::1220abcd") == 0
    assert token_store.mark_acknowledged("#1:0", "bob::1220abcd") == 1
    assert token_store.mark_acknowledged("#1:0", "bob::1220abcd") == 0

    summary = token_store.delivery_token_summary("#1:0")
    assert summary.recipients == frozenset({"bob::1220abcd"})
    assert summary.addressed_to("bob::1220abcd")
    assert not summary.addressed_to("alice::1220abcd")
    assert summary.revoked_at == revoked_at
    assert summary.acknowledged_at == clock.now


def test_create_send_token_returns_stored_snapshot(token_store, clock) -> None:
    record = token_store.create_send_token(
        sender_identity="alice::1220abcd",
        sender_handle="U_ALICE",
        recipient_identity="bob::1220abcd",
        recipient_handle="U_BOB",
        label="db-password",
    )

    assert record.expires_at == clock.now + timedelta(minutes=10)
    assert record.consumed_at is None
    assert token_store.peek_send_token(record.token) == record
