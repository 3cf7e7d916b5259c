# src/cloak_courier/api/v1/__init__.py
"""Version 1 service API endpoints."""

from .endpoints import (
    deliveries_router,
    identities_router,
    inbox_router,
    send_tokens_router,
)

__all__ = [
    "deliveries_router",
    "identities_router",
    "inbox_router",
    "send_tokens_router",
]
