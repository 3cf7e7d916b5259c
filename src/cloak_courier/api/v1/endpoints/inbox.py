# src/cloak_courier/api/v1/endpoints/inbox.py
"""Recipient inbox for the service API."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from cloak_courier.api.deps import CoordinatorDep, require_service_key
from cloak_courier.schemas import InboxItemResponse

router = APIRouter(
    prefix="/inbox",
    tags=["inbox"],
    dependencies=[Depends(require_service_key)],
)


@router.get("/{handle}", response_model=list[InboxItemResponse])
async def list_inbox(handle: str, coordinator: CoordinatorDep) -> list[InboxItemResponse]:
    """List active deliveries for a recipient; expired ones are archived on the way."""
    items = await coordinator.list_inbox(handle)
    return [InboxItemResponse.model_validate(item) for item in items]
