"""create token and identity tables

Revision ID: 3c9e41d07a2b
Revises:
Create Date: 2026-10-17 09:12:44.318204

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3c9e41d07a2b"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create send_tokens, view_tokens and identity_mapping."""
    op.create_table(
        "send_tokens",
        sa.Column("token", sa.CHAR(length=64), nullable=False),
        sa.Column("sender_identity", sa.Text(), nullable=False),
        sa.Column("sender_handle", sa.Text(), nullable=False),
        sa.Column("recipient_identity", sa.Text(), nullable=False),
        sa.Column("recipient_handle", sa.Text(), nullable=False),
        sa.Column("label", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("token"),
    )
    op.create_table(
        "view_tokens",
        sa.Column("token", sa.CHAR(length=64), nullable=False),
        sa.Column("delivery_id", sa.Text(), nullable=False),
        sa.Column("recipient_identity", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("token"),
    )
    op.create_index("ix_view_tokens_delivery_id", "view_tokens", ["delivery_id"])
    op.create_table(
        "identity_mapping",
        sa.Column("handle", sa.Text(), nullable=False),
        sa.Column("username", sa.Text(), nullable=False),
        sa.Column("ledger_identity", sa.Text(), nullable=False),
        sa.Column("registered_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("handle"),
    )
    op.create_index(
        "ix_identity_mapping_ledger_identity", "identity_mapping", ["ledger_identity"]
    )


def downgrade() -> None:
    """Drop the token and identity tables."""
    op.drop_index("ix_identity_mapping_ledger_identity", table_name="identity_mapping")
    op.drop_table("identity_mapping")
    op.drop_index("ix_view_tokens_delivery_id", table_name="view_tokens")
    op.drop_table("view_tokens")
    op.drop_table("send_tokens")
