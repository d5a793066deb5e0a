"""Game Stream - SSE stream of one participant's reconciled view.

Invariants:
    - One coordinator per stream: entered on connect, exited when the generator ends
    - Emits a `view` event on enter and after every reconciled change
    - Emits one `error` event and ends when the change feed is lost for good
    - Ends after the session completes or the caller stops being a participant

Design Decisions:
    - Listener -> asyncio.Queue -> generator: feed callbacks never block on the socket
"""

import asyncio
import json
import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from snakeoil.api.deps import get_coordinator
from snakeoil.core.game_view import GameView
from snakeoil.services.session_coordinator import SessionCoordinator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/games", tags=["games"])

# Prevent proxy/browser buffering of streamed events
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}

FEED_LOST_CODE = "SUBSCRIPTION_LOST"


def _sse_line(event: dict) -> str:
    """Format event as SSE data line."""
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


def _is_final(view: GameView) -> bool:
    return view.ended or view.session is None or view.my_role is None


@router.get("/{session_id}/stream")
async def stream_game(
    session_id: UUID, coordinator: SessionCoordinator = Depends(get_coordinator),
):
    """Stream view updates for the caller until the game ends or the client leaves."""
    views: asyncio.Queue[GameView] = asyncio.Queue()

    async def on_view(view: GameView) -> None:
        views.put_nowait(view)

    coordinator.add_listener(on_view)
    entered = await coordinator.enter(session_id)
    if not entered.ok:
        coordinator.remove_listener(on_view)
        raise entered.error

    async def event_generator():
        try:
            while True:
                view = await views.get()
                yield _sse_line({"type": "view", "data": view.model_dump(mode="json")})
                if view.error and view.error.get("code") == FEED_LOST_CODE:
                    yield _sse_line({"type": "error", "data": view.error})
                    return
                if _is_final(view):
                    return
        except asyncio.CancelledError:
            logger.info(
                "Client disconnected from stream",
                extra={"session_id": session_id, "user_id": coordinator.user_id},
            )
            raise
        finally:
            coordinator.remove_listener(on_view)
            await coordinator.exit()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
