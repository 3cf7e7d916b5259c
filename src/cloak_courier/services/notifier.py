"""Delivery notifications on the chat platform."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Protocol

import aiohttp
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from cloak_courier.core.errors import NotificationError
from cloak_courier.core.settings import settings
from cloak_courier.services.renderables import Renderable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageRef:
    """Location of a posted notification, needed to update it later."""

    channel: str
    ts: str


class Notifier(Protocol):
    """Posts and refreshes notifications addressed to a chat handle."""

    async def post_notification(self, handle: str, renderable: Renderable) -> MessageRef:
        ...

    async def update_notification(self, ref: MessageRef, renderable: Renderable) -> None:
        ...


class SlackNotifier:
    """Notifier backed by the Slack Web API."""

    def __init__(self, token: str | None = None, client: AsyncWebClient | None = None) -> None:
        self._client = client or AsyncWebClient(token=token)

    async def post_notification(self, handle: str, renderable: Renderable) -> MessageRef:
        try:
            response = await self._client.chat_postMessage(
                channel=handle, text=renderable.text, blocks=renderable.blocks
            )
        except SlackApiError as exc:
            error = exc.response.get("error") or "unknown_error"
            raise NotificationError(f"Slack rejected message to {handle}: {error}") from exc
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise NotificationError(f"Slack unreachable: {exc}") from exc
        return MessageRef(channel=response["channel"], ts=response["ts"])

    async def update_notification(self, ref: MessageRef, renderable: Renderable) -> None:
        try:
            await self._client.chat_update(
                channel=ref.channel, ts=ref.ts, text=renderable.text, blocks=renderable.blocks
            )
        except SlackApiError as exc:
            error = exc.response.get("error") or "unknown_error"
            raise NotificationError(f"Slack rejected update of {ref.ts}: {error}") from exc
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise NotificationError(f"Slack unreachable: {exc}") from exc


class LogNotifier:
    """Notifier that only logs; used in development and when Slack is off."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)

    async def post_notification(self, handle: str, renderable: Renderable) -> MessageRef:
        ref = MessageRef(channel=f"log:{handle}", ts=str(next(self._counter)))
        logger.info("Notify %s [%s]: %s", handle, ref.ts, renderable.text)
        return ref

    async def update_notification(self, ref: MessageRef, renderable: Renderable) -> None:
        logger.info("Update %s [%s]: %s", ref.channel, ref.ts, renderable.text)


def build_notifier() -> Notifier:
    """Return the notifier selected by ``NOTIFIER_BACKEND``."""
    backend = settings.notifier_backend.lower()
    if backend == "slack":
        if not settings.slack_bot_token:
            raise ValueError("NOTIFIER_BACKEND=slack requires SLACK_BOT_TOKEN")
        return SlackNotifier(token=settings.slack_bot_token)
    if backend != "log":
        logger.warning("Unknown notifier backend %r; falling back to log", backend)
    return LogNotifier()
