"""Round Negotiator - drives one round: role pick, word pick, pitch resolution.

Invariants:
    - Preconditions checked by core/enforce_round.py against a fresh snapshot
    - Writes go through SessionStore conditional updates (final race arbiter)
    - Catalog ids are validated before any write

Design Decisions:
    - Stateless: every command re-reads session and active round, nothing is cached
"""

import logging
from collections.abc import Sequence
from uuid import UUID

from snakeoil.core.enforce_round import (
    check_pitch_resolution,
    check_role_selection,
    check_word_selection,
    current_round_of,
)
from snakeoil.core.errors import ErrorContext, InvalidSelectionError
from snakeoil.core.records import RoundRecord, SessionRecord
from snakeoil.core.turn_order import customer_id_for, seller_id_for
from snakeoil.services.content_oracle import ContentOracle
from snakeoil.services.session_store import SessionStore

logger = logging.getLogger(__name__)


class RoundNegotiator:
    """Turn-gated round commands."""

    def __init__(self, store: SessionStore, oracle: ContentOracle):
        self._store = store
        self._oracle = oracle

    async def _snapshot(
        self, session_id: UUID,
    ) -> tuple[SessionRecord, RoundRecord | None]:
        session = await self._store.require_session(session_id)
        latest = await self._store.get_active_round(session_id)
        return session, current_round_of(session, latest)

    async def select_role(
        self, session_id: UUID, user_id: str, role_id: UUID,
    ) -> RoundRecord:
        """Customer picks the persona; inserts the round row."""
        session, active = await self._snapshot(session_id)
        check_role_selection(session, active, user_id)
        if not await self._oracle.role_exists(role_id):
            raise InvalidSelectionError(
                f"Unknown role '{role_id}'", "role_id",
                ErrorContext(session_id=str(session_id), user_id=user_id),
            )
        record = await self._store.insert_round(
            session,
            customer_id_for(session.current_round, session.host_id, session.guest_id),
            seller_id_for(session.current_round, session.host_id, session.guest_id),
            role_id,
        )
        logger.info(
            "Role selected",
            extra={
                "session_id": session_id, "user_id": user_id,
                "round_number": record.round_number,
            },
        )
        return record

    async def select_words(
        self, session_id: UUID, user_id: str, word_ids: Sequence[UUID],
    ) -> RoundRecord:
        """Seller picks exactly two distinct words for the product."""
        session, active = await self._snapshot(session_id)
        word1_id, word2_id = check_word_selection(session, active, user_id, word_ids)
        if not await self._oracle.words_exist((word1_id, word2_id)):
            raise InvalidSelectionError(
                "Unknown word in selection", "word_ids",
                ErrorContext(session_id=str(session_id), user_id=user_id),
            )
        record = await self._store.set_round_words(
            session, active.id, user_id, word1_id, word2_id,
        )
        logger.info(
            "Words selected",
            extra={
                "session_id": session_id, "user_id": user_id,
                "round_number": record.round_number,
            },
        )
        return record

    async def resolve_pitch(
        self, session_id: UUID, user_id: str, accepted: bool,
    ) -> tuple[RoundRecord, SessionRecord]:
        """Customer accepts or rejects; the session moves to the next round."""
        session, active = await self._snapshot(session_id)
        active = check_pitch_resolution(session, active, user_id)
        return await self._store.resolve_round(session, active.id, user_id, accepted)
