# src/cloak_courier/models/view_token.py
"""Single-use tokens authorizing one resolution of a delivered payload."""

from datetime import datetime

from sqlalchemy import CHAR, Boolean, DateTime, Index, Text, false
from sqlalchemy.orm import Mapped, mapped_column

from cloak_courier.db.session import Base
from cloak_courier.db.time import utcnow


class ViewToken(Base):
    """One-time link handed to the recipient of a delivery.

    Consumption and revocation are independent flags; once either is set the
    token is permanently unusable. Several tokens may point at one delivery.
    """

    __tablename__ = "view_tokens"
    __table_args__ = (Index("ix_view_tokens_delivery_id", "delivery_id"),)

    token: Mapped[str] = mapped_column(CHAR(64), primary_key=True)
    delivery_id: Mapped[str] = mapped_column(Text, nullable=False)
    recipient_identity: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    # Mirrors the payload's own TTL; null means the payload never expires.
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Set only after the recipient's acknowledgement reached the ledger.
    acknowledged_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
