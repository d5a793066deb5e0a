"""Round Enforcement - pure precondition checks for the round handshake.

Invariants:
    - Role selection precedes word selection; word selection precedes pitch resolution
    - Only the Customer selects the role and resolves the pitch; only the Seller picks words
    - Exactly two distinct word ids per product
    - Checks are PURE: they raise typed errors, the shell performs the writes

Design Decisions:
    - `active_round` is the row whose round_number equals session.current_round
      and whose customer/seller match the seated players; rows from earlier
      rounds or from a departed guest are never treated as active
    - Checks run against the caller's freshly read snapshot; the conditional
      write in the store is the final arbiter for races
"""

from collections.abc import Sequence
from uuid import UUID

from snakeoil.core.domain_types import PlayerRole, SessionStatus, WORDS_PER_PRODUCT
from snakeoil.core.errors import (
    AlreadyResolvedError,
    ErrorContext,
    InvalidSelectionError,
    InvalidTurnError,
    NotAParticipantError,
    RoundNotReadyError,
    SessionUnavailableError,
)
from snakeoil.core.readiness import both_ready
from snakeoil.core.records import RoundRecord, SessionRecord
from snakeoil.core.turn_order import (
    customer_id_for, is_participant, role_of, seller_id_for,
)


def _ctx(session: SessionRecord, user_id: str | None = None) -> ErrorContext:
    return ErrorContext(
        session_id=str(session.id), user_id=user_id,
        round_number=session.current_round,
    )


def require_in_progress(session: SessionRecord) -> None:
    if session.status != SessionStatus.IN_PROGRESS:
        raise SessionUnavailableError(
            str(session.id), f"status is {session.status.value}",
            _ctx(session),
        )


def require_participant(session: SessionRecord, user_id: str) -> None:
    if not is_participant(session, user_id):
        raise NotAParticipantError(str(session.id), user_id, _ctx(session, user_id))


def current_round_of(
    session: SessionRecord, latest: RoundRecord | None,
) -> RoundRecord | None:
    """Latest round row if it belongs to the session's current round and seats.

    A row recorded for a guest who has since left is superseded, not active.
    """
    if latest is None or latest.round_number != session.current_round:
        return None
    seats = (
        customer_id_for(session.current_round, session.host_id, session.guest_id),
        seller_id_for(session.current_round, session.host_id, session.guest_id),
    )
    if (latest.customer_id, latest.seller_id) != seats:
        return None
    return latest


def check_role_selection(
    session: SessionRecord, active_round: RoundRecord | None, user_id: str,
) -> None:
    """Customer picks the persona, once per round."""
    require_in_progress(session)
    require_participant(session, user_id)
    if role_of(session, user_id) != PlayerRole.CUSTOMER:
        raise InvalidTurnError(
            f"Only the Customer selects the role in round {session.current_round}",
            _ctx(session, user_id),
        )
    if active_round is not None and active_round.has_role:
        raise InvalidTurnError(
            f"Role for round {session.current_round} is already selected",
            _ctx(session, user_id),
        )


def normalize_word_ids(word_ids: Sequence[UUID]) -> tuple[UUID, UUID]:
    """Exactly two distinct ids, order preserved."""
    if len(word_ids) != WORDS_PER_PRODUCT or len(set(word_ids)) != WORDS_PER_PRODUCT:
        raise InvalidSelectionError(
            f"Select exactly {WORDS_PER_PRODUCT} distinct words "
            f"(got {len(word_ids)}, {len(set(word_ids))} distinct)",
            "word_ids",
        )
    return word_ids[0], word_ids[1]


def check_word_selection(
    session: SessionRecord,
    active_round: RoundRecord | None,
    user_id: str,
    word_ids: Sequence[UUID],
) -> tuple[UUID, UUID]:
    """Seller picks the product words after the Customer's role is visible."""
    pair = normalize_word_ids(word_ids)
    require_in_progress(session)
    require_participant(session, user_id)
    if role_of(session, user_id) != PlayerRole.SELLER:
        raise InvalidTurnError(
            f"Only the Seller selects words in round {session.current_round}",
            _ctx(session, user_id),
        )
    if active_round is None or not active_round.has_role:
        raise RoundNotReadyError(
            "Customer has not selected a role yet", _ctx(session, user_id),
        )
    if active_round.has_words:
        raise InvalidSelectionError(
            f"Words for round {session.current_round} are already selected",
            "word_ids", _ctx(session, user_id),
        )
    return pair


def check_pitch_resolution(
    session: SessionRecord, active_round: RoundRecord | None, user_id: str,
) -> RoundRecord:
    """Customer accepts or rejects once words are set and both sides are ready."""
    require_in_progress(session)
    require_participant(session, user_id)
    if role_of(session, user_id) != PlayerRole.CUSTOMER:
        raise InvalidTurnError(
            f"Only the Customer resolves the pitch in round {session.current_round}",
            _ctx(session, user_id),
        )
    if active_round is None or not active_round.has_words:
        raise RoundNotReadyError(
            "Seller has not selected words yet", _ctx(session, user_id),
        )
    if active_round.is_resolved:
        raise AlreadyResolvedError(session.current_round, _ctx(session, user_id))
    if not both_ready(session):
        raise RoundNotReadyError(
            "Both participants must be ready before the pitch is resolved",
            _ctx(session, user_id),
        )
    return active_round
