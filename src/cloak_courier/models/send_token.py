# src/cloak_courier/models/send_token.py
"""Single-use tokens authorizing one payload submission."""

from datetime import datetime

from sqlalchemy import CHAR, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from cloak_courier.db.session import Base
from cloak_courier.db.time import utcnow


class SendToken(Base):
    """Authorization to compose and submit one encrypted payload.

    A row is valid while ``consumed_at`` is null and ``expires_at`` lies in the
    future. ``consumed_at`` is written exactly once by an atomic update.
    """

    __tablename__ = "send_tokens"

    token: Mapped[str] = mapped_column(CHAR(64), primary_key=True)

    sender_identity: Mapped[str] = mapped_column(Text, nullable=False)
    sender_handle: Mapped[str] = mapped_column(Text, nullable=False)
    recipient_identity: Mapped[str] = mapped_column(Text, nullable=False)
    recipient_handle: Mapped[str] = mapped_column(Text, nullable=False)
    label: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
