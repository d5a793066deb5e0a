"""Game Commands - JSON endpoints over the per-request SessionCoordinator.

Invariants:
    - Caller identity from X-User-Id only; the body never names a user
    - A failed CommandResult is re-raised and rendered by the global SnakeOilError handler
    - Routes hold no game rules: preconditions live in core/ and services/
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status

from snakeoil.api.deps import get_coordinator
from snakeoil.core.records import (
    ChatMessageRecord, RoleRecord, RoundRecord, SessionRecord, WordRecord,
)
from snakeoil.schemas.game import (
    MessageCreate, PitchResolution, PitchVerdict, RoleSelection, WordSelection,
)
from snakeoil.services.session_coordinator import SessionCoordinator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/games", tags=["games"])


# ─── Session lifecycle ──────────────────────────────────────────

@router.post(
    "", response_model=SessionRecord, status_code=status.HTTP_201_CREATED,
)
async def create_game(coordinator: SessionCoordinator = Depends(get_coordinator)):
    """Create a waiting session hosted by the caller."""
    return (await coordinator.create_session()).unwrap()


@router.get("/{session_id}", response_model=SessionRecord)
async def get_game(
    session_id: UUID, coordinator: SessionCoordinator = Depends(get_coordinator),
):
    return (await coordinator.get_session(session_id)).unwrap()


@router.post("/{session_id}/join", response_model=SessionRecord)
async def join_game(
    session_id: UUID, coordinator: SessionCoordinator = Depends(get_coordinator),
):
    return (await coordinator.join_session(session_id)).unwrap()


@router.post("/{session_id}/leave", response_model=SessionRecord)
async def leave_game(
    session_id: UUID, coordinator: SessionCoordinator = Depends(get_coordinator),
):
    """Host leaving ends the game; guest leaving reopens it."""
    return (await coordinator.leave(session_id)).unwrap()


@router.post("/{session_id}/ready", response_model=SessionRecord)
async def mark_ready(
    session_id: UUID, coordinator: SessionCoordinator = Depends(get_coordinator),
):
    return (await coordinator.mark_ready(session_id)).unwrap()


# ─── Round handshake ────────────────────────────────────────────

@router.get("/{session_id}/roles", response_model=list[RoleRecord])
async def offer_roles(
    session_id: UUID, coordinator: SessionCoordinator = Depends(get_coordinator),
):
    return (await coordinator.offer_roles(session_id)).unwrap()


@router.post("/{session_id}/role", response_model=RoundRecord)
async def select_role(
    session_id: UUID,
    body: RoleSelection,
    coordinator: SessionCoordinator = Depends(get_coordinator),
):
    """Customer picks the persona for the current round."""
    return (await coordinator.select_role(body.role_id, session_id)).unwrap()


@router.get("/{session_id}/words", response_model=list[WordRecord])
async def offer_words(
    session_id: UUID, coordinator: SessionCoordinator = Depends(get_coordinator),
):
    return (await coordinator.offer_words(session_id)).unwrap()


@router.post("/{session_id}/words", response_model=RoundRecord)
async def select_words(
    session_id: UUID,
    body: WordSelection,
    coordinator: SessionCoordinator = Depends(get_coordinator),
):
    """Seller picks the two product words."""
    return (await coordinator.select_words(body.word_ids, session_id)).unwrap()


@router.post("/{session_id}/pitch", response_model=PitchResolution)
async def resolve_pitch(
    session_id: UUID,
    body: PitchVerdict,
    coordinator: SessionCoordinator = Depends(get_coordinator),
):
    """Customer accepts or rejects; the session advances to the next round."""
    round_record, session = (
        await coordinator.resolve_pitch(body.accepted, session_id)
    ).unwrap()
    return PitchResolution(round=round_record, session=session)


# ─── Chat ───────────────────────────────────────────────────────

@router.get("/{session_id}/messages", response_model=list[ChatMessageRecord])
async def list_messages(
    session_id: UUID, coordinator: SessionCoordinator = Depends(get_coordinator),
):
    return (await coordinator.list_messages(session_id)).unwrap()


@router.post(
    "/{session_id}/messages",
    response_model=ChatMessageRecord,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    session_id: UUID,
    body: MessageCreate,
    coordinator: SessionCoordinator = Depends(get_coordinator),
):
    return (await coordinator.send_message(body.content, session_id)).unwrap()
