# src/cloak_courier/api/public.py
"""Browser-facing one-time link endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Header, status
from fastapi.responses import HTMLResponse, RedirectResponse

from cloak_courier.api.deps import CoordinatorDep
from cloak_courier.core.errors import InvalidToken
from cloak_courier.core.settings import settings
from cloak_courier.schemas import ComposeResponse, SubmitRequest, SubmitResponse
from cloak_courier.services.token_store import is_well_formed

router = APIRouter(tags=["public"])

PREVIEW_PAGE = (
    "<!doctype html><html><head><meta charset=\"utf-8\">"
    "<title>One-time secret link</title>"
    "<meta property=\"og:title\" content=\"One-time secret link\">"
    "<meta property=\"og:description\" content=\"Open this link to view a secret. "
    "It works exactly once.\"></head>"
    "<body><p>Open this link in your browser to view the secret.</p></body></html>"
)


def is_preview_agent(user_agent: str | None) -> bool:
    """True for link-unfurling crawlers that must not spend a token."""
    if not user_agent:
        return False
    return any(pattern in user_agent for pattern in settings.preview_agent_patterns)


@router.get("/compose/{token}", response_model=ComposeResponse)
async def compose(token: str, coordinator: CoordinatorDep) -> ComposeResponse:
    """Return what the compose form needs without spending the send token."""
    info = await coordinator.peek_compose(token)
    return ComposeResponse(
        label=info.label,
        sender=info.sender_display,
        recipient=info.recipient_display,
        expires_at=info.expires_at,
        ttl_choices=info.ttl_choices,
    )


@router.post(
    "/send/{token}",
    response_model=SubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def send(token: str, body: SubmitRequest, coordinator: CoordinatorDep) -> SubmitResponse:
    """Submit an encrypted payload; spends the send token."""
    await coordinator.submit(
        token,
        ciphertext=body.ciphertext,
        description=body.description,
        ttl_seconds=body.ttl,
    )
    return SubmitResponse()


@router.get("/secret/{token}", response_model=None)
async def secret(
    token: str,
    coordinator: CoordinatorDep,
    user_agent: Annotated[str | None, Header()] = None,
) -> HTMLResponse | RedirectResponse:
    """Spend a view token and redirect to the ledger viewer with a read credential."""
    if not is_well_formed(token):
        raise InvalidToken("Malformed token")

    if is_preview_agent(user_agent):
        return HTMLResponse(PREVIEW_PAGE, status_code=status.HTTP_200_OK)

    grant = await coordinator.resolve(token)
    return RedirectResponse(grant.viewer_url, status_code=status.HTTP_302_FOUND)
