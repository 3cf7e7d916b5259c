# src/cloak_courier/schemas/__init__.py
"""Pydantic schemas for the Cloak Courier API."""

from .delivery import (
    AcknowledgeRequest,
    AcknowledgeResponse,
    ComposeResponse,
    DeliveryStateResponse,
    IdentityRegister,
    IdentityResponse,
    InboxItemResponse,
    SendTokenCreate,
    SendTokenResponse,
    SubmitRequest,
    SubmitResponse,
)

__all__ = [
    "AcknowledgeRequest",
    "AcknowledgeResponse",
    "ComposeResponse",
    "DeliveryStateResponse",
    "IdentityRegister",
    "IdentityResponse",
    "InboxItemResponse",
    "SendTokenCreate",
    "SendTokenResponse",
    "SubmitRequest",
    "SubmitResponse",
]
