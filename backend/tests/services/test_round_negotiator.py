"""Round Negotiator - tests for the role -> words -> pitch handshake against the store.

Tests cover:
    - full round 1 scenario, round advance and ready reset
    - role alternation in round 2
    - ordering guards (words before role, pitch before words, pitch before ready)
    - role-selection and resolve races
    - unknown catalog ids rejected
    - an open round does not carry over to a replacement guest
"""

import asyncio
import uuid

import pytest

from snakeoil.core.errors import (
    AlreadyResolvedError,
    InvalidSelectionError,
    InvalidTurnError,
    RoundNotReadyError,
)
from snakeoil.services.round_negotiator import RoundNegotiator

HOST, GUEST = "host-user", "guest-user"


@pytest.fixture
def negotiator(store, oracle):
    return RoundNegotiator(store, oracle)


async def _ready_both(store, session_id):
    await store.mark_ready(session_id, as_host=True)
    await store.mark_ready(session_id, as_host=False)


async def test_full_round_advances(store, negotiator, catalog, active_session):
    sid = active_session.id
    role = catalog["roles"]["Negotiator"]
    w3, w4 = catalog["words"]["Cactus"], catalog["words"]["Rocket"]

    r1 = await negotiator.select_role(sid, HOST, role)
    assert (r1.round_number, r1.customer_id, r1.seller_id) == (1, HOST, GUEST)
    assert r1.selected_role_id == role

    r1 = await negotiator.select_words(sid, GUEST, [w3, w4])
    assert (r1.word1_id, r1.word2_id) == (w3, w4)

    await _ready_both(store, sid)
    resolved, session = await negotiator.resolve_pitch(sid, HOST, True)
    assert resolved.accepted is True
    assert session.current_round == 2
    assert not session.host_ready and not session.guest_ready


async def test_roles_alternate_next_round(store, negotiator, catalog, active_session):
    sid = active_session.id
    words = list(catalog["words"].values())
    await negotiator.select_role(sid, HOST, catalog["roles"]["Pirate"])
    await negotiator.select_words(sid, GUEST, words[:2])
    await _ready_both(store, sid)
    await negotiator.resolve_pitch(sid, HOST, False)

    with pytest.raises(InvalidTurnError):
        await negotiator.select_role(sid, HOST, catalog["roles"]["Wizard"])
    r2 = await negotiator.select_role(sid, GUEST, catalog["roles"]["Wizard"])
    assert (r2.round_number, r2.customer_id, r2.seller_id) == (2, GUEST, HOST)
    assert r2.word1_id is None and r2.accepted is None


async def test_round_counter_increments_by_one(store, negotiator, catalog, active_session):
    sid = active_session.id
    words = list(catalog["words"].values())
    seen = [active_session.current_round]
    for n in range(1, 4):
        customer, seller = (HOST, GUEST) if n % 2 else (GUEST, HOST)
        await negotiator.select_role(sid, customer, catalog["roles"]["Negotiator"])
        await negotiator.select_words(sid, seller, words[n:n + 2])
        await _ready_both(store, sid)
        _, session = await negotiator.resolve_pitch(sid, customer, n % 2 == 0)
        seen.append(session.current_round)
    assert seen == [1, 2, 3, 4]


async def test_words_before_role(negotiator, catalog, active_session):
    words = list(catalog["words"].values())[:2]
    with pytest.raises(RoundNotReadyError):
        await negotiator.select_words(active_session.id, GUEST, words)


async def test_words_need_two_distinct(negotiator, catalog, active_session):
    sid = active_session.id
    await negotiator.select_role(sid, HOST, catalog["roles"]["Negotiator"])
    w = catalog["words"]["Umbrella"]
    with pytest.raises(InvalidSelectionError):
        await negotiator.select_words(sid, GUEST, [w, w])


async def test_words_only_once(negotiator, catalog, active_session):
    sid = active_session.id
    words = list(catalog["words"].values())
    await negotiator.select_role(sid, HOST, catalog["roles"]["Negotiator"])
    await negotiator.select_words(sid, GUEST, words[:2])
    with pytest.raises(InvalidSelectionError):
        await negotiator.select_words(sid, GUEST, words[2:4])


async def test_unknown_catalog_ids(negotiator, catalog, active_session):
    sid = active_session.id
    with pytest.raises(InvalidSelectionError):
        await negotiator.select_role(sid, HOST, uuid.uuid4())
    await negotiator.select_role(sid, HOST, catalog["roles"]["Negotiator"])
    with pytest.raises(InvalidSelectionError):
        await negotiator.select_words(
            sid, GUEST, [catalog["words"]["Umbrella"], uuid.uuid4()],
        )


async def test_pitch_requires_words_and_readiness(store, negotiator, catalog, active_session):
    sid = active_session.id
    await negotiator.select_role(sid, HOST, catalog["roles"]["Negotiator"])
    with pytest.raises(RoundNotReadyError):
        await negotiator.resolve_pitch(sid, HOST, True)
    await negotiator.select_words(sid, GUEST, list(catalog["words"].values())[:2])
    with pytest.raises(RoundNotReadyError):
        await negotiator.resolve_pitch(sid, HOST, True)
    with pytest.raises(InvalidTurnError):
        await negotiator.resolve_pitch(sid, GUEST, True)


async def test_role_race_has_one_winner(negotiator, catalog, active_session):
    sid = active_session.id
    results = await asyncio.gather(
        negotiator.select_role(sid, HOST, catalog["roles"]["Negotiator"]),
        negotiator.select_role(sid, HOST, catalog["roles"]["Pirate"]),
        return_exceptions=True,
    )
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], InvalidTurnError)


async def test_resolve_race_resolves_once(store, negotiator, catalog, active_session):
    sid = active_session.id
    await negotiator.select_role(sid, HOST, catalog["roles"]["Negotiator"])
    await negotiator.select_words(sid, GUEST, list(catalog["words"].values())[:2])
    await _ready_both(store, sid)
    results = await asyncio.gather(
        negotiator.resolve_pitch(sid, HOST, True),
        negotiator.resolve_pitch(sid, HOST, False),
        return_exceptions=True,
    )
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    # the loser either lost the write or already saw the advanced round
    assert isinstance(errors[0], (AlreadyResolvedError, InvalidTurnError))
    session = await store.get_session(sid)
    assert session.current_round == 2


async def test_stale_resolve_is_already_resolved(store, negotiator, catalog, active_session):
    sid = active_session.id
    await negotiator.select_role(sid, HOST, catalog["roles"]["Negotiator"])
    active = await negotiator.select_words(sid, GUEST, list(catalog["words"].values())[:2])
    await _ready_both(store, sid)
    observed = await store.get_session(sid)
    await store.resolve_round(observed, active.id, HOST, True)
    with pytest.raises(AlreadyResolvedError):
        await store.resolve_round(observed, active.id, HOST, False)
    final = await store.get_active_round(sid)
    assert final.accepted is True


async def test_replacement_guest_restarts_open_round(store, negotiator, catalog, active_session):
    sid = active_session.id
    words = list(catalog["words"].values())
    await negotiator.select_role(sid, HOST, catalog["roles"]["Negotiator"])

    await store.leave_session(sid, GUEST)
    await store.join_session(sid, "newcomer")
    assert await store.get_active_round(sid) is None

    with pytest.raises(RoundNotReadyError):
        await negotiator.select_words(sid, "newcomer", words[:2])

    again = await negotiator.select_role(sid, HOST, catalog["roles"]["Pirate"])
    assert (again.customer_id, again.seller_id) == (HOST, "newcomer")
    picked = await negotiator.select_words(sid, "newcomer", words[:2])
    assert picked.seller_id == "newcomer"
    assert (picked.word1_id, picked.word2_id) == (words[0], words[1])


async def test_words_pinned_to_seated_seller(store, negotiator, catalog, active_session):
    sid = active_session.id
    active = await negotiator.select_role(sid, HOST, catalog["roles"]["Negotiator"])
    observed = await store.get_session(sid)
    w1, w2 = list(catalog["words"].values())[:2]
    with pytest.raises(InvalidTurnError):
        await store.set_round_words(observed, active.id, "newcomer", w1, w2)
    untouched = await store.get_active_round(sid)
    assert untouched.word1_id is None


async def test_verdict_pinned_to_seated_customer(store, negotiator, catalog, active_session):
    sid = active_session.id
    await negotiator.select_role(sid, HOST, catalog["roles"]["Negotiator"])
    active = await negotiator.select_words(sid, GUEST, list(catalog["words"].values())[:2])
    await _ready_both(store, sid)
    observed = await store.get_session(sid)
    with pytest.raises(InvalidTurnError):
        await store.resolve_round(observed, active.id, GUEST, True)
    session = await store.get_session(sid)
    assert session.current_round == 1
    assert (await store.get_active_round(sid)).accepted is None
