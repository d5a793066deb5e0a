"""Game View - tests for the participant-facing view derivation.

Tests cover:
    - turn follows role -> words -> pitch
    - role name and product hidden until both are ready
    - waiting / ended flags
"""

import uuid

from snakeoil.core.domain_types import PlayerRole, SessionStatus
from snakeoil.core.game_view import build_view, is_my_turn
from snakeoil.core.reconcile import LocalState

SID = uuid.UUID(int=1)
ROLE = uuid.UUID(int=401)
W1, W2 = uuid.UUID(int=501), uuid.UUID(int=502)
NAMES = {ROLE: "Negotiator", W1: "Umbrella", W2: "Toaster"}
HOST, GUEST = "host-user", "guest-user"


def test_turn_sequence(make_session, make_round):
    session = make_session()
    assert is_my_turn(session, None, HOST)
    assert not is_my_turn(session, None, GUEST)
    with_role = make_round(selected_role_id=ROLE)
    assert is_my_turn(session, with_role, GUEST)
    with_words = make_round(selected_role_id=ROLE, word1_id=W1, word2_id=W2)
    assert is_my_turn(session, with_words, HOST)
    resolved = make_round(
        selected_role_id=ROLE, word1_id=W1, word2_id=W2, accepted=False,
    )
    assert not is_my_turn(session, resolved, HOST)
    assert not is_my_turn(session, resolved, GUEST)


def test_content_hidden_until_both_ready(make_session, make_round):
    active = make_round(selected_role_id=ROLE, word1_id=W1, word2_id=W2)
    state = LocalState(session_id=SID, session=make_session(host_ready=True), round=active)
    view = build_view(state, GUEST, NAMES)
    assert view.words_selected
    assert view.customer_role_name is None
    assert view.product is None


def test_content_revealed_when_both_ready(make_session, make_round):
    active = make_round(selected_role_id=ROLE, word1_id=W1, word2_id=W2)
    session = make_session(host_ready=True, guest_ready=True)
    view = build_view(LocalState(session_id=SID, session=session, round=active), HOST, NAMES)
    assert view.content_visible
    assert view.customer_role_name == "Negotiator"
    assert view.product == ("Umbrella", "Toaster")
    assert view.my_role == PlayerRole.CUSTOMER
    assert view.is_my_turn


def test_previous_round_not_shown_as_active(make_session, make_round):
    finished = make_round(
        selected_role_id=ROLE, word1_id=W1, word2_id=W2, accepted=True,
    )
    session = make_session(current_round=2, host_ready=True, guest_ready=True)
    view = build_view(LocalState(session_id=SID, session=session, round=finished), GUEST, NAMES)
    assert not view.role_selected
    assert view.accepted is None
    assert view.my_role == PlayerRole.CUSTOMER
    assert view.is_my_turn


def test_waiting_and_ended_flags(make_session):
    waiting = make_session(status=SessionStatus.WAITING, guest_id=None)
    assert build_view(LocalState(SID, waiting), HOST, {}).waiting_for_opponent
    ended = make_session(status=SessionStatus.COMPLETED)
    view = build_view(LocalState(SID, ended), GUEST, {})
    assert view.ended
    assert not view.is_my_turn


def test_empty_state_carries_error():
    view = build_view(LocalState(session_id=None), HOST, {}, {"code": "X"})
    assert view.session is None
    assert view.error == {"code": "X"}


def test_round_of_departed_guest_is_hidden(make_session, make_round):
    stale = make_round(selected_role_id=ROLE)
    replaced = make_session(guest_id="newcomer")
    view = build_view(LocalState(SID, replaced, stale), HOST, {ROLE: "Negotiator"})
    assert not view.role_selected
    assert view.customer_role_name is None
    assert view.is_my_turn
