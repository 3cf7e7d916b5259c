"""Notification bodies for delivered payloads.

Renderables are built only from metadata captured when a delivery was made;
nothing here ever sees ciphertext or plaintext.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

ACKNOWLEDGE_ACTION_ID = "acknowledge_delivery"
VIEW_ACTION_ID = "view_delivery"

Block = dict[str, Any]


@dataclass(frozen=True)
class RenderState:
    """Everything needed to redraw a delivery notification."""

    delivery_id: str
    label: str
    sender_display: str
    description: str
    view_url: str
    sent_at: datetime
    expires_at: datetime | None = None


@dataclass(frozen=True)
class Renderable:
    """Plain-text fallback plus structured blocks for rich clients."""

    text: str
    blocks: list[Block] = field(default_factory=list)


def format_time_remaining(expires_at: datetime | None, now: datetime) -> str:
    """Describe the time left until ``expires_at`` in the two largest units."""
    if expires_at is None:
        return "No expiration"

    remaining = int((expires_at - now).total_seconds())
    if remaining <= 0:
        return "Expired"

    days, remainder = divmod(remaining, 86_400)
    hours, remainder = divmod(remainder, 3_600)
    minutes, seconds = divmod(remainder, 60)

    if days:
        return f"Expires in {days}d {hours}h"
    if hours:
        return f"Expires in {hours}h {minutes}m"
    if minutes:
        return f"Expires in {minutes}m {seconds}s"
    return f"Expires in {seconds}s"


def _section(text: str) -> Block:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _context(*texts: str) -> Block:
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": t} for t in texts]}


def _header(text: str) -> Block:
    return {"type": "header", "text": {"type": "plain_text", "text": text, "emoji": True}}


def countdown_message(state: RenderState, now: datetime) -> Renderable:
    """Live notification with a countdown, a view link and an acknowledge button."""
    blocks: list[Block] = [
        _header("You received a secret"),
        _section(
            f"*From:* {state.sender_display}\n"
            f"*Label:* `{state.label}`\n"
            f"*Description:* {state.description or '_none_'}\n"
            f"*Sent:* {state.sent_at.strftime('%Y-%m-%d %H:%M UTC')}"
        ),
        _context(f":hourglass: {format_time_remaining(state.expires_at, now)}"),
        {
            "type": "actions",
            "block_id": f"delivery-{state.delivery_id}",
            "elements": [
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "View secret", "emoji": True},
                    "action_id": VIEW_ACTION_ID,
                    "url": state.view_url,
                    "style": "primary",
                },
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "Acknowledge Receipt", "emoji": True},
                    "action_id": ACKNOWLEDGE_ACTION_ID,
                    "value": state.delivery_id,
                },
            ],
        },
    ]
    return Renderable(
        text=f"Secret '{state.label}' from {state.sender_display}",
        blocks=blocks,
    )


def expired_message(state: RenderState) -> Renderable:
    """Terminal notification once the payload's TTL elapsed."""
    return Renderable(
        text=f"Secret '{state.label}' has expired",
        blocks=[
            _section(
                f":lock: The secret `{state.label}` from {state.sender_display} has expired "
                "and can no longer be viewed."
            )
        ],
    )


def acknowledged_message(state: RenderState) -> Renderable:
    """Terminal notification after the recipient acknowledged receipt."""
    return Renderable(
        text=f"Secret '{state.label}' acknowledged",
        blocks=[
            _section(
                f":white_check_mark: You acknowledged `{state.label}` from "
                f"{state.sender_display}. The secret has been archived."
            )
        ],
    )
