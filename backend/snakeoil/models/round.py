"""Round ORM - one negotiation cycle of a session.

Invariants:
    - Always belongs to a GameSession (session_id FK)
    - (session_id, round_number) is unique: one row per session round
    - A new row is inserted per round; resolved rows are never deleted, an
      unresolved row is deleted when the guest it was seated for leaves
    - word1_id/word2_id written together, after selected_role_id
    - accepted written at most once

Design Decisions:
    - round_number as Integer (not auto-increment): copied from session.current_round
      when the Customer selects the role
    - Unique constraint is the race arbiter for concurrent role selection
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from snakeoil.db.base import Base


class Round(Base):
    """Round entity - role pick, word pick, pitch, verdict."""
    __tablename__ = "rounds"
    __table_args__ = (
        UniqueConstraint(
            "session_id", "round_number", name="uq_rounds_session_round",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("game_sessions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    round_number: Mapped[int] = mapped_column(Integer, nullable=False)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    selected_role_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("roles.id"), nullable=True,
    )
    word1_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("words.id"), nullable=True,
    )
    word2_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("words.id"), nullable=True,
    )
    accepted: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
