"""GameSession ORM - persists one two-player game and its round counter.

Invariants:
    - id is UUID primary key
    - status in {waiting, in_progress, completed}; completed is terminal
    - current_round starts at 1 and only increases, by exactly 1
    - version starts at 1 and increments on every write (reconciliation key)

Design Decisions:
    - Ready flags live on the session row: the round advance clears them in the
      same UPDATE that increments current_round
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from snakeoil.core.domain_types import SessionStatus
from snakeoil.db.base import Base


class GameSession(Base):
    """Session aggregate root - rounds and chat messages reference it by FK."""
    __tablename__ = "game_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    host_id: Mapped[str] = mapped_column(String(64), nullable=False)
    guest_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SessionStatus.WAITING.value,
    )
    current_round: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1,
    )
    host_ready: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    guest_ready: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
