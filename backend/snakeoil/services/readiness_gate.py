"""Readiness Gate Service - records each participant's ready flag for the current round."""

import logging
from uuid import UUID

from snakeoil.core.enforce_round import require_participant
from snakeoil.core.readiness import both_ready, content_visible
from snakeoil.core.records import SessionRecord
from snakeoil.services.session_store import SessionStore

logger = logging.getLogger(__name__)


class ReadinessGate:
    """Both-sides-ready barrier over the session row."""

    def __init__(self, store: SessionStore):
        self._store = store

    async def set_ready(
        self, session_id: UUID, user_id: str, expected_round: int | None = None,
    ) -> SessionRecord:
        """Mark user_id ready. Idempotent within a round.

        expected_round pins the write to the round the caller saw, so a ready
        click cannot leak into the next round after an advance.
        """
        session = await self._store.require_session(session_id)
        require_participant(session, user_id)
        record = await self._store.mark_ready(
            session_id, session.host_id == user_id, expected_round,
        )
        logger.info(
            "Participant ready",
            extra={
                "session_id": session_id, "user_id": user_id,
                "round_number": record.current_round,
            },
        )
        return record

    async def both_ready(self, session_id: UUID) -> bool:
        return both_ready(await self._store.require_session(session_id))

    async def content_visible(self, session_id: UUID) -> bool:
        return content_visible(await self._store.get_session(session_id))
