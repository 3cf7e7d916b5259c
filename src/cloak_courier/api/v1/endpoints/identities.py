# src/cloak_courier/api/v1/endpoints/identities.py
"""Identity registration endpoints for the service API."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, status

from cloak_courier.api.deps import CoordinatorDep, require_service_key
from cloak_courier.core.errors import UnknownIdentity
from cloak_courier.schemas import IdentityRegister, IdentityResponse

router = APIRouter(
    prefix="/identities",
    tags=["identities"],
    dependencies=[Depends(require_service_key)],
)


@router.post("/", response_model=IdentityResponse, status_code=status.HTTP_201_CREATED)
async def register_identity(
    body: IdentityRegister, coordinator: CoordinatorDep
) -> IdentityResponse:
    """Register a handle, allocating a ledger identity when it has none."""
    registered = await coordinator.identities.register(body.handle, body.username)
    return IdentityResponse.model_validate(registered)


@router.get("/{handle}", response_model=IdentityResponse)
async def get_identity(handle: str, coordinator: CoordinatorDep) -> IdentityResponse:
    """Look up the ledger identity registered for a handle."""
    registered = await asyncio.to_thread(coordinator.identities.lookup, handle)
    if registered is None:
        raise UnknownIdentity(handle)
    return IdentityResponse.model_validate(registered)
