# src/cloak_courier/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .deliveries import router as deliveries_router
from .identities import router as identities_router
from .inbox import router as inbox_router
from .send_tokens import router as send_tokens_router

__all__ = [
    "deliveries_router",
    "identities_router",
    "inbox_router",
    "send_tokens_router",
]
