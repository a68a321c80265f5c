"""forwarded message provenance

Revision ID: b7d2e4f10002
Revises: a1f3c9d20001
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "b7d2e4f10002"
down_revision: Union[str, None] = "a1f3c9d20001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("messages", sa.Column("is_forwarded", sa.Boolean(), nullable=False, server_default="false"))
    op.add_column("messages", sa.Column("forwarded_from_message_id", postgresql.UUID(as_uuid=True), nullable=True))
    op.add_column("messages", sa.Column("forwarded_from_sender_id", postgresql.UUID(as_uuid=True), nullable=True))
    op.add_column("messages", sa.Column("forwarded_from_sender_name", sa.String(), nullable=True))
    op.add_column("messages", sa.Column("forwarded_from_chat_id", postgresql.UUID(as_uuid=True), nullable=True))


def downgrade() -> None:
    op.drop_column("messages", "forwarded_from_chat_id")
    op.drop_column("messages", "forwarded_from_sender_name")
    op.drop_column("messages", "forwarded_from_sender_id")
    op.drop_column("messages", "forwarded_from_message_id")
    op.drop_column("messages", "is_forwarded")
