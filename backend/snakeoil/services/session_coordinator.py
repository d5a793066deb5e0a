"""Session Coordinator - per-participant orchestration of store, negotiator, gate and feed.

Invariants:
    - One instance per participant per session, built at enter and torn down at exit
    - Commands never raise SnakeOilError across this boundary: they return CommandResult
      and record the error in the view
    - Local state changes only through the reconcile merge (core/reconcile.py), both
      for the optimistic apply of a command's own write and for its feed echo
    - After exit() every late event or in-flight write result leaves state untouched
    - Malformed events are logged and dropped, never raised

Design Decisions:
    - Explicit instance with injected collaborators instead of a module-level store
    - Subscribe BEFORE the snapshot read: an event racing the read is merged either way
    - Reconnect re-fetches the snapshot; the feed does not replay missed events
    - Catalog names cached per instance (catalog rows are immutable)
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar
from uuid import UUID

from snakeoil.core.domain_types import ROLES_PER_ROUND, WORDS_PER_ROUND
from snakeoil.core.enforce_round import require_participant
from snakeoil.core.errors import (
    InvalidSelectionError,
    ResourceNotFoundError,
    SessionUnavailableError,
    SnakeOilError,
    SubscriptionError,
)
from snakeoil.core.game_view import GameView, build_view
from snakeoil.core.reconcile import (
    LocalState,
    MalformedEventError,
    apply_row,
    reconcile as merge_event,
    reconcile_snapshot,
)
from snakeoil.core.records import (
    ChangeEvent,
    ChatMessageRecord,
    RoleRecord,
    RoundRecord,
    SessionRecord,
    WordRecord,
)
from snakeoil.infrastructure.change_feed import ChangeFeedClient, FeedHandlers
from snakeoil.services.content_oracle import ContentOracle
from snakeoil.services.readiness_gate import ReadinessGate
from snakeoil.services.round_negotiator import RoundNegotiator
from snakeoil.services.session_store import SessionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")
ViewListener = Callable[[GameView], Awaitable[None]]

_ROW_TYPES = (SessionRecord, RoundRecord, ChatMessageRecord)


@dataclass(frozen=True)
class CommandResult(Generic[T]):
    """Outcome of one coordinator command."""
    ok: bool
    value: T | None = None
    error: SnakeOilError | None = None

    def unwrap(self) -> T:
        """Value on success, the original error raised on failure."""
        if not self.ok:
            raise self.error
        return self.value


class SessionCoordinator:
    """Commands plus the reconciled view of one participant."""

    def __init__(
        self,
        user_id: str,
        store: SessionStore,
        negotiator: RoundNegotiator,
        oracle: ContentOracle,
        readiness: ReadinessGate,
        feed: ChangeFeedClient,
        roles_per_round: int = ROLES_PER_ROUND,
        words_per_round: int = WORDS_PER_ROUND,
        chat_max_length: int = 500,
    ):
        self.user_id = user_id
        self._store = store
        self._negotiator = negotiator
        self._oracle = oracle
        self._readiness = readiness
        self._feed = feed
        self._roles_per_round = roles_per_round
        self._words_per_round = words_per_round
        self._chat_max_length = chat_max_length
        self.state = LocalState(session_id=None)
        self._names: dict[UUID, str] = {}
        self._error: dict | None = None
        self._listeners: list[ViewListener] = []

    # ─── Lifecycle ───────────────────────────────────────────────

    @property
    def session_id(self) -> UUID | None:
        return self.state.session_id

    async def enter(self, session_id: UUID) -> CommandResult[GameView]:
        """Subscribe to the session's feed and load its snapshot."""
        if self.state.session_id is not None:
            await self.exit()
        self.state = LocalState(session_id=session_id)
        try:
            await self._feed.subscribe(session_id, FeedHandlers(
                on_session_change=self.reconcile,
                on_round_change=self.reconcile,
                on_chat_insert=self.reconcile,
                on_reconnect=self._on_reconnect,
                on_lost=self._on_lost,
            ))
            await self.refresh()
            require_participant(self.state.session, self.user_id)
        except SnakeOilError as e:
            await self.exit()
            return await self._fail("enter", e)
        logger.info(
            "Coordinator entered session",
            extra={"session_id": session_id, "user_id": self.user_id},
        )
        return CommandResult(ok=True, value=await self._publish_view())

    async def exit(self) -> None:
        """Tear down the subscription and forget local state."""
        session_id = self.state.session_id
        await self._feed.unsubscribe()
        self.state = LocalState(session_id=None)
        self._error = None
        if session_id is not None:
            logger.info(
                "Coordinator exited session",
                extra={"session_id": session_id, "user_id": self.user_id},
            )

    async def refresh(self) -> None:
        """Fold a fresh session + latest round + chat snapshot into local state."""
        session_id = self.state.session_id
        if session_id is None:
            return
        session = await self._store.get_session(session_id)
        if session is None:
            raise SessionUnavailableError(str(session_id), "session not found")
        latest = await self._store.get_active_round(session_id)
        messages = await self._store.list_messages(session_id)
        if self.state.session_id != session_id:
            return
        self.state = reconcile_snapshot(self.state, session, latest, messages)

    # ─── Observation ─────────────────────────────────────────────

    def view(self) -> GameView:
        return build_view(self.state, self.user_id, self._names, self._error)

    def add_listener(self, listener: ViewListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ViewListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def reconcile(self, event: ChangeEvent) -> None:
        """Merge one change-feed event. Duplicates and stale events are no-ops."""
        try:
            merged = merge_event(self.state, event)
        except MalformedEventError as e:
            logger.warning(
                f"Dropping malformed change event: {e}",
                extra={
                    "session_id": event.session_id, "user_id": self.user_id,
                    "table": e.table,
                },
            )
            return
        if merged is self.state:
            return
        self.state = merged
        await self._publish_view()

    # ─── Session commands ────────────────────────────────────────

    async def create_session(self) -> CommandResult[SessionRecord]:
        return await self._execute(
            "create_session", lambda: self._store.create_session(self.user_id),
        )

    async def join_session(self, session_id: UUID) -> CommandResult[SessionRecord]:
        return await self._execute(
            "join_session", lambda: self._store.join_session(session_id, self.user_id),
        )

    async def leave(self, session_id: UUID | None = None) -> CommandResult[SessionRecord]:
        """Leave the session. Leaving the entered session also tears it down."""
        result = await self._execute(
            "leave",
            lambda: self._store.leave_session(self._target(session_id), self.user_id),
        )
        if result.ok and result.value.id == self.state.session_id:
            await self.exit()
        return result

    async def mark_ready(self, session_id: UUID | None = None) -> CommandResult[SessionRecord]:
        expected = None
        if session_id in (None, self.state.session_id) and self.state.session:
            expected = self.state.session.current_round
        return await self._execute(
            "mark_ready",
            lambda: self._readiness.set_ready(
                self._target(session_id), self.user_id, expected,
            ),
        )

    async def get_session(self, session_id: UUID | None = None) -> CommandResult[SessionRecord]:
        return await self._execute("get_session", lambda: self._snapshot(session_id))

    # ─── Round commands ──────────────────────────────────────────

    async def offer_roles(self, session_id: UUID | None = None) -> CommandResult[list[RoleRecord]]:
        return await self._execute("offer_roles", lambda: self._offer(
            session_id, lambda: self._oracle.fetch_random_roles(self._roles_per_round),
        ))

    async def offer_words(self, session_id: UUID | None = None) -> CommandResult[list[WordRecord]]:
        return await self._execute("offer_words", lambda: self._offer(
            session_id, lambda: self._oracle.fetch_random_words(self._words_per_round),
        ))

    async def select_role(
        self, role_id: UUID, session_id: UUID | None = None,
    ) -> CommandResult[RoundRecord]:
        return await self._execute(
            "select_role",
            lambda: self._negotiator.select_role(
                self._target(session_id), self.user_id, role_id,
            ),
        )

    async def select_words(
        self, word_ids: Sequence[UUID], session_id: UUID | None = None,
    ) -> CommandResult[RoundRecord]:
        return await self._execute(
            "select_words",
            lambda: self._negotiator.select_words(
                self._target(session_id), self.user_id, word_ids,
            ),
        )

    async def resolve_pitch(
        self, accepted: bool, session_id: UUID | None = None,
    ) -> CommandResult[tuple[RoundRecord, SessionRecord]]:
        return await self._execute(
            "resolve_pitch",
            lambda: self._negotiator.resolve_pitch(
                self._target(session_id), self.user_id, accepted,
            ),
        )

    async def accept(self, session_id: UUID | None = None):
        return await self.resolve_pitch(True, session_id)

    async def reject(self, session_id: UUID | None = None):
        return await self.resolve_pitch(False, session_id)

    # ─── Chat ────────────────────────────────────────────────────

    async def send_message(
        self, content: str, session_id: UUID | None = None,
    ) -> CommandResult[ChatMessageRecord]:
        return await self._execute(
            "send_message",
            lambda: self._store.append_message(
                self._target(session_id), self.user_id, self._clean_message(content),
            ),
        )

    async def list_messages(
        self, session_id: UUID | None = None,
    ) -> CommandResult[list[ChatMessageRecord]]:
        return await self._execute("list_messages", lambda: self._messages(session_id))

    # ─── Internals ───────────────────────────────────────────────

    def _target(self, session_id: UUID | None) -> UUID:
        target = session_id or self.state.session_id
        if target is None:
            raise SessionUnavailableError("-", "no session entered")
        return target

    def _clean_message(self, content: str) -> str:
        text = content.strip()
        if not text:
            raise InvalidSelectionError("Message cannot be empty", "content")
        if len(text) > self._chat_max_length:
            raise InvalidSelectionError(
                f"Message exceeds {self._chat_max_length} characters", "content",
            )
        return text

    async def _offer(
        self, session_id: UUID | None, draw: Callable[[], Awaitable[list]],
    ) -> list:
        session = await self._store.require_session(self._target(session_id))
        require_participant(session, self.user_id)
        records = await draw()
        for record in records:
            self._names[record.id] = record.name if isinstance(record, RoleRecord) else record.word
        return records

    async def _snapshot(self, session_id: UUID | None) -> SessionRecord:
        target = self._target(session_id)
        session = await self._store.get_session(target)
        if session is None:
            raise ResourceNotFoundError("Session", str(target))
        return session

    async def _messages(self, session_id: UUID | None) -> list[ChatMessageRecord]:
        session = await self._store.require_session(self._target(session_id))
        require_participant(session, self.user_id)
        return await self._store.list_messages(session.id)

    async def _execute(self, op: str, call: Callable[[], Awaitable[T]]) -> CommandResult[T]:
        try:
            value = await call()
        except SnakeOilError as e:
            return await self._fail(op, e)
        self._error = None
        self._absorb(value)
        if self.state.session_id is not None:
            await self._publish_view()
        return CommandResult(ok=True, value=value)

    async def _fail(self, op: str, error: SnakeOilError) -> CommandResult:
        log = logger.error if error.retryable else logger.info
        log(
            f"{op} refused: {error.message}",
            extra={
                "session_id": self.state.session_id, "user_id": self.user_id,
                "error_code": error.code, "operation": op,
            },
        )
        self._error = error.to_sse_event()["data"]
        if self.state.session_id is not None:
            await self._publish_view()
        return CommandResult(ok=False, error=error)

    def _absorb(self, value) -> None:
        """Optimistically merge rows returned by a command; the feed echo is a no-op."""
        rows = value if isinstance(value, (tuple, list)) else (value,)
        for row in rows:
            if isinstance(row, _ROW_TYPES):
                self.state = apply_row(self.state, row)

    async def _on_reconnect(self) -> None:
        try:
            await self.refresh()
        except SnakeOilError as e:
            logger.warning(
                f"Snapshot re-fetch after reconnect failed: {e.message}",
                extra={"session_id": self.state.session_id, "error_code": e.code},
            )
            self._error = e.to_sse_event()["data"]
        else:
            self._error = None
        await self._publish_view()

    async def _on_lost(self, error: SubscriptionError) -> None:
        error.context.session_id = str(self.state.session_id)
        error.context.user_message = "Connection to the game was lost. Rejoin to continue."
        self._error = error.to_sse_event()["data"]
        await self._publish_view()

    async def _resolve_names(self) -> None:
        active = self.state.round
        if active is None:
            return
        wanted = {
            i for i in (active.selected_role_id, active.word1_id, active.word2_id)
            if i is not None and i not in self._names
        }
        if not wanted:
            return
        try:
            self._names.update(await self._oracle.names_for(wanted))
        except SnakeOilError as e:
            logger.warning(
                f"Catalog name lookup failed: {e.message}",
                extra={"session_id": self.state.session_id, "error_code": e.code},
            )

    async def _publish_view(self) -> GameView:
        await self._resolve_names()
        view = self.view()
        for listener in list(self._listeners):
            try:
                await listener(view)
            except Exception as e:
                logger.error(
                    f"View listener failed: {e}", exc_info=True,
                    extra={"session_id": self.state.session_id, "user_id": self.user_id},
                )
        return view


def build_coordinator(
    user_id: str,
    store: SessionStore,
    oracle: ContentOracle,
    feed: ChangeFeedClient,
    settings=None,
) -> SessionCoordinator:
    """Wire a coordinator and its negotiator/gate around shared store and oracle."""
    kwargs = {}
    if settings is not None:
        kwargs = dict(
            roles_per_round=settings.roles_per_round,
            words_per_round=settings.words_per_round,
            chat_max_length=settings.chat_max_length,
        )
    return SessionCoordinator(
        user_id=user_id,
        store=store,
        negotiator=RoundNegotiator(store, oracle),
        oracle=oracle,
        readiness=ReadinessGate(store),
        feed=feed,
        **kwargs,
    )
