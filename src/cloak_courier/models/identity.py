# src/cloak_courier/models/identity.py
"""Mapping between notifier handles and ledger identities."""

from datetime import datetime

from sqlalchemy import DateTime, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from cloak_courier.db.session import Base
from cloak_courier.db.time import utcnow


class IdentityMapping(Base):
    """Registered user: chat handle on one side, ledger identity on the other."""

    __tablename__ = "identity_mapping"
    __table_args__ = (Index("ix_identity_mapping_ledger_identity", "ledger_identity"),)

    handle: Mapped[str] = mapped_column(Text, primary_key=True)
    username: Mapped[str] = mapped_column(Text, nullable=False)
    ledger_identity: Mapped[str] = mapped_column(Text, nullable=False)
    registered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
