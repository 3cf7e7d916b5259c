# src/cloak_courier/schemas/delivery.py
"""Delivery-related Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class SubmitRequest(BaseModel):
    """Encrypted payload posted from the compose page."""

    ciphertext: str = Field(..., min_length=1, description="Opaque client-side encrypted blob")
    description: str = Field("", max_length=2000, description="Optional note shown to the recipient")
    ttl: int | None = Field(None, gt=0, description="Seconds until the payload expires; null for none")


class SubmitResponse(BaseModel):
    """Generic acknowledgement; never echoes the payload."""

    status: str = "sent"


class ComposeResponse(BaseModel):
    """Metadata needed to render the compose form."""

    label: str
    sender: str
    recipient: str
    expires_at: datetime
    ttl_choices: list[int | None]

    model_config = ConfigDict(from_attributes=True)


class IdentityRegister(BaseModel):
    """Register a notifier handle with the ledger."""

    handle: str = Field(..., min_length=1, max_length=64)
    username: str = Field(..., min_length=1, max_length=128)


class IdentityResponse(BaseModel):
    handle: str
    username: str
    ledger_identity: str
    registered_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SendTokenCreate(BaseModel):
    """Request a one-time compose link."""

    sender_handle: str = Field(..., min_length=1)
    recipient_handle: str = Field(..., min_length=1)
    label: str = Field(..., min_length=1, max_length=200)


class SendTokenResponse(BaseModel):
    token: str
    compose_url: str
    expires_at: datetime
    state: str

    model_config = ConfigDict(from_attributes=True)


class AcknowledgeRequest(BaseModel):
    recipient_handle: str = Field(..., min_length=1)


class AcknowledgeResponse(BaseModel):
    delivery_id: str
    state: str
    revoked_tokens: int


class DeliveryStateResponse(BaseModel):
    delivery_id: str
    state: str


class InboxItemResponse(BaseModel):
    """Inbox entry; the ciphertext stays on the ledger."""

    delivery_id: str
    sender: str = Field(..., validation_alias="sender_display")
    label: str
    description: str
    sent_at: datetime | None
    expires_at: datetime | None

    model_config = ConfigDict(from_attributes=True)
