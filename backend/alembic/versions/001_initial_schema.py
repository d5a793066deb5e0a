"""Initial schema - game_sessions, rounds, roles, words, game_messages.

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "roles",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "words",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("word", sa.String(100), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "game_sessions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("host_id", sa.String(64), nullable=False),
        sa.Column("guest_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="waiting"),
        sa.Column("current_round", sa.Integer, nullable=False, server_default="1"),
        sa.Column("host_ready", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("guest_ready", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "rounds",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "session_id", UUID(as_uuid=True),
            sa.ForeignKey("game_sessions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("round_number", sa.Integer, nullable=False),
        sa.Column("customer_id", sa.String(64), nullable=False),
        sa.Column("seller_id", sa.String(64), nullable=False),
        sa.Column("selected_role_id", UUID(as_uuid=True), sa.ForeignKey("roles.id"), nullable=True),
        sa.Column("word1_id", UUID(as_uuid=True), sa.ForeignKey("words.id"), nullable=True),
        sa.Column("word2_id", UUID(as_uuid=True), sa.ForeignKey("words.id"), nullable=True),
        sa.Column("accepted", sa.Boolean, nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("session_id", "round_number", name="uq_rounds_session_round"),
    )
    op.create_index("ix_rounds_session_id", "rounds", ["session_id"])

    op.create_table(
        "game_messages",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "session_id", UUID(as_uuid=True),
            sa.ForeignKey("game_sessions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_game_messages_session_id", "game_messages", ["session_id"])


def downgrade() -> None:
    op.drop_index("ix_game_messages_session_id", table_name="game_messages")
    op.drop_table("game_messages")
    op.drop_index("ix_rounds_session_id", table_name="rounds")
    op.drop_table("rounds")
    op.drop_table("game_sessions")
    op.drop_table("words")
    op.drop_table("roles")
