"""Game View - read-only state exposed to the presentation layer.

Invariants:
    - Derived from LocalState + user id on every call, never cached
    - customer_role_name and product are exposed only while the readiness gate is open
    - is_my_turn follows the handshake: Customer picks role, Seller picks words,
      Customer resolves the pitch

Design Decisions:
    - Catalog names passed in as a mapping: catalog rows are immutable, the
      coordinator owns the cache and the IO to fill it
"""

from collections.abc import Mapping
from uuid import UUID

from pydantic import BaseModel

from snakeoil.core.domain_types import PlayerRole, SessionStatus
from snakeoil.core.enforce_round import current_round_of
from snakeoil.core.readiness import content_visible, is_ready
from snakeoil.core.reconcile import LocalState
from snakeoil.core.records import ChatMessageRecord, RoundRecord, SessionRecord
from snakeoil.core.turn_order import role_of


class GameView(BaseModel):
    """Observable state for one participant."""
    session: SessionRecord | None = None
    round_number: int | None = None
    my_role: PlayerRole | None = None
    is_host: bool = False
    i_am_ready: bool = False
    is_my_turn: bool = False
    waiting_for_opponent: bool = False
    ended: bool = False
    content_visible: bool = False
    role_selected: bool = False
    words_selected: bool = False
    customer_role_name: str | None = None
    product: tuple[str, str] | None = None
    accepted: bool | None = None
    messages: list[ChatMessageRecord] = []
    error: dict | None = None


def is_my_turn(
    session: SessionRecord | None, active_round: RoundRecord | None, user_id: str,
) -> bool:
    if session is None or session.status != SessionStatus.IN_PROGRESS:
        return False
    role = role_of(session, user_id)
    if role is None:
        return False
    if active_round is None or not active_round.has_role:
        return role == PlayerRole.CUSTOMER
    if not active_round.has_words:
        return role == PlayerRole.SELLER
    if not active_round.is_resolved:
        return role == PlayerRole.CUSTOMER
    return False


def build_view(
    state: LocalState,
    user_id: str,
    names: Mapping[UUID, str],
    error: dict | None = None,
) -> GameView:
    session = state.session
    if session is None:
        return GameView(error=error)
    active = current_round_of(session, state.round)

    visible = content_visible(session)
    as_host = session.host_id == user_id
    view = GameView(
        session=session,
        round_number=session.current_round,
        my_role=role_of(session, user_id),
        is_host=as_host,
        i_am_ready=is_ready(session, as_host),
        is_my_turn=is_my_turn(session, active, user_id),
        waiting_for_opponent=session.status == SessionStatus.WAITING,
        ended=session.status == SessionStatus.COMPLETED,
        content_visible=visible,
        role_selected=active is not None and active.has_role,
        words_selected=active is not None and active.has_words,
        accepted=active.accepted if active is not None else None,
        messages=list(state.messages),
        error=error,
    )
    if visible and active is not None:
        if active.selected_role_id is not None:
            view.customer_role_name = names.get(active.selected_role_id)
        if active.has_words:
            w1 = names.get(active.word1_id)
            w2 = names.get(active.word2_id)
            if w1 is not None and w2 is not None:
                view.product = (w1, w2)
    return view
