# src/cloak_courier/models/__init__.py
"""SQLAlchemy models for the Cloak Courier service."""

from .identity import IdentityMapping
from .send_token import SendToken
from .view_token import ViewToken

__all__ = [
    "IdentityMapping",
    "SendToken",
    "ViewToken",
]
