# src/cloak_courier/api/v1/endpoints/deliveries.py
"""Delivery lifecycle endpoints for the service API."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from cloak_courier.api.deps import CoordinatorDep, require_service_key
from cloak_courier.schemas import (
    AcknowledgeRequest,
    AcknowledgeResponse,
    DeliveryStateResponse,
)
from cloak_courier.services.coordinator import DeliveryState

router = APIRouter(
    prefix="/deliveries",
    tags=["deliveries"],
    dependencies=[Depends(require_service_key)],
)


@router.post("/{delivery_id}/acknowledge", response_model=AcknowledgeResponse)
async def acknowledge_delivery(
    delivery_id: str, body: AcknowledgeRequest, coordinator: CoordinatorDep
) -> AcknowledgeResponse:
    """Archive a delivery on behalf of its recipient and revoke its links."""
    revoked = await coordinator.acknowledge(delivery_id, body.recipient_handle)
    return AcknowledgeResponse(
        delivery_id=delivery_id,
        state=DeliveryState.ACKNOWLEDGED.value,
        revoked_tokens=revoked,
    )


@router.get("/{delivery_id}/state", response_model=DeliveryStateResponse)
async def get_delivery_state(
    delivery_id: str,
    handle: Annotated[str, Query(min_length=1)],
    coordinator: CoordinatorDep,
) -> DeliveryStateResponse:
    """Report where a delivery is in its lifecycle."""
    state = await coordinator.delivery_state(delivery_id, handle)
    return DeliveryStateResponse(delivery_id=delivery_id, state=state.value)
