# src/cloak_courier/api/v1/endpoints/send_tokens.py
"""Send token issuance for the service API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from cloak_courier.api.deps import CoordinatorDep, require_service_key
from cloak_courier.schemas import SendTokenCreate, SendTokenResponse

router = APIRouter(
    prefix="/send-tokens",
    tags=["send-tokens"],
    dependencies=[Depends(require_service_key)],
)


@router.post("/", response_model=SendTokenResponse, status_code=status.HTTP_201_CREATED)
async def issue_send_token(
    body: SendTokenCreate, coordinator: CoordinatorDep
) -> SendTokenResponse:
    """Issue a one-time compose link for a sender/recipient/label triple."""
    issued = await coordinator.issue_send_token(
        body.sender_handle, body.recipient_handle, body.label
    )
    return SendTokenResponse(
        token=issued.token,
        compose_url=issued.compose_url,
        expires_at=issued.expires_at,
        state=issued.state.value,
    )
