"""Session Store - conditional (compare-and-set) writes to session, round and chat rows.

Invariants:
    - The only component that writes game_sessions.status
    - Every mutation is an UPDATE filtered on the observed prior values (round
      words and verdict are also pinned to the seated seller/customer); 0 affected
      rows means a lost race and maps to a precondition error, never a retry
    - Every write increments the row's version
    - completed sessions accept no further writes
    - Round advance: accepted write + current_round increment + both ready flags
      cleared commit in ONE transaction, or not at all
    - Change events are published only after commit, one per written row
    - A guest leaving deletes the unresolved current-round row in the same
      transaction; the round restarts from role selection for the next guest

Design Decisions:
    - A publish failure after commit is logged, not raised: the write stands, and
      subscribers close the gap with their reconnect re-fetch
    - Records (core/records.py) are returned instead of ORM rows so callers never
      touch a live AsyncSession
"""

import logging
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from snakeoil.core.domain_types import ChangeOperation, ChangeTable, SessionStatus
from snakeoil.core.errors import (
    AlreadyResolvedError,
    ErrorContext,
    InvalidSelectionError,
    InvalidTurnError,
    NotAParticipantError,
    RoundNotReadyError,
    SessionUnavailableError,
    SubscriptionError,
)
from snakeoil.core.readiness import is_ready, ready_field
from snakeoil.core.records import (
    ChangeEvent, ChatMessageRecord, RoundRecord, SessionRecord,
)
from snakeoil.core.turn_order import is_participant
from snakeoil.infrastructure.change_feed import FeedTransport, channel_for
from snakeoil.infrastructure.database import DatabaseSessionManager
from snakeoil.models.chat_message import ChatMessage
from snakeoil.models.game_session import GameSession
from snakeoil.models.round import Round

logger = logging.getLogger(__name__)


def _ctx(session_id: UUID, user_id: str | None = None, round_number: int | None = None):
    return ErrorContext(
        session_id=str(session_id), user_id=user_id, round_number=round_number,
    )


class SessionStore:
    """Authoritative-by-convention record of game sessions and their rounds."""

    def __init__(self, db: DatabaseSessionManager, transport: FeedTransport):
        self._db = db
        self._transport = transport

    # ─── Reads ───────────────────────────────────────────────────

    async def get_session(self, session_id: UUID) -> SessionRecord | None:
        async with self._db.session() as db:
            return await self._load_session(db, session_id)

    async def require_session(self, session_id: UUID) -> SessionRecord:
        session = await self.get_session(session_id)
        if session is None:
            raise SessionUnavailableError(str(session_id), "session not found")
        return session

    async def get_active_round(self, session_id: UUID) -> RoundRecord | None:
        """Most recent round row of the session (highest round_number, then created_at)."""
        async with self._db.session() as db:
            result = await db.execute(
                select(Round)
                .where(Round.session_id == session_id)
                .order_by(Round.round_number.desc(), Round.created_at.desc())
                .limit(1),
            )
            row = result.scalar_one_or_none()
            return RoundRecord.model_validate(row) if row else None

    async def list_messages(self, session_id: UUID) -> list[ChatMessageRecord]:
        async with self._db.session() as db:
            result = await db.execute(
                select(ChatMessage)
                .where(ChatMessage.session_id == session_id)
                .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc()),
            )
            return [ChatMessageRecord.model_validate(m) for m in result.scalars()]

    # ─── Session lifecycle ───────────────────────────────────────

    async def create_session(self, host_id: str) -> SessionRecord:
        async with self._db.session() as db:
            row = GameSession(
                host_id=host_id,
                status=SessionStatus.WAITING.value,
                current_round=1,
                host_ready=False,
                guest_ready=False,
                version=1,
            )
            db.add(row)
            await db.commit()
            record = SessionRecord.model_validate(row)
        logger.info(
            "Session created",
            extra={"session_id": record.id, "user_id": host_id},
        )
        await self._publish(ChangeTable.SESSIONS, ChangeOperation.INSERT, record)
        return record

    async def join_session(self, session_id: UUID, guest_id: str) -> SessionRecord:
        """Seat the guest. Exactly one of several concurrent joiners wins."""
        async with self._db.session() as db:
            won = await self._cas_session(
                db, session_id,
                [
                    GameSession.status == SessionStatus.WAITING.value,
                    GameSession.guest_id.is_(None),
                    GameSession.host_id != guest_id,
                ],
                guest_id=guest_id,
                status=SessionStatus.IN_PROGRESS.value,
                host_ready=False,
                guest_ready=False,
            )
            if not won:
                current = await self._load_session(db, session_id)
                raise SessionUnavailableError(
                    str(session_id), self._join_refusal(current, guest_id),
                    _ctx(session_id, guest_id),
                )
            record = await self._load_session(db, session_id)
            await db.commit()
        logger.info(
            "Guest joined", extra={"session_id": session_id, "user_id": guest_id},
        )
        await self._publish(ChangeTable.SESSIONS, ChangeOperation.UPDATE, record)
        return record

    async def leave_session(self, session_id: UUID, user_id: str) -> SessionRecord:
        """Host leaving completes the session; guest leaving reopens it.

        A guest leaving also discards the unresolved round row seated for
        them, so the next guest starts the round from role selection.
        """
        superseded: RoundRecord | None = None
        async with self._db.session() as db:
            current = await self._load_session(db, session_id)
            if current is None:
                raise SessionUnavailableError(str(session_id), "session not found")
            if not is_participant(current, user_id):
                raise NotAParticipantError(
                    str(session_id), user_id, _ctx(session_id, user_id),
                )
            if current.status == SessionStatus.COMPLETED:
                return current

            if user_id == current.host_id:
                won = await self._cas_session(
                    db, session_id,
                    [GameSession.status != SessionStatus.COMPLETED.value],
                    status=SessionStatus.COMPLETED.value,
                )
            else:
                won = await self._cas_session(
                    db, session_id,
                    [
                        GameSession.guest_id == user_id,
                        GameSession.status == SessionStatus.IN_PROGRESS.value,
                    ],
                    guest_id=None,
                    status=SessionStatus.WAITING.value,
                    host_ready=False,
                    guest_ready=False,
                )
            record = await self._load_session(db, session_id)
            if won and user_id != current.host_id:
                superseded = await self._drop_open_round(db, record)
            if not won:
                if record is not None and (
                    record.status == SessionStatus.COMPLETED
                    or record.guest_id != user_id != record.host_id
                ):
                    # someone else already moved the session past this user
                    return record
                self._log_lost_race("leave", session_id, user_id)
                raise SessionUnavailableError(
                    str(session_id), "session changed during leave",
                    _ctx(session_id, user_id),
                )
            await db.commit()
        logger.info(
            "Participant left",
            extra={"session_id": session_id, "user_id": user_id},
        )
        await self._publish(ChangeTable.SESSIONS, ChangeOperation.UPDATE, record)
        if superseded is not None:
            await self._publish(ChangeTable.ROUNDS, ChangeOperation.DELETE, superseded)
        return record

    async def mark_ready(
        self, session_id: UUID, as_host: bool, expected_round: int | None = None,
    ) -> SessionRecord:
        """Set the caller's ready flag. Re-setting a set flag is a no-op."""
        field = ready_field(as_host)
        column = getattr(GameSession, field)
        async with self._db.session() as db:
            current = await self._load_session(db, session_id)
            if current is None:
                raise SessionUnavailableError(str(session_id), "session not found")
            if current.status != SessionStatus.IN_PROGRESS:
                raise SessionUnavailableError(
                    str(session_id), f"status is {current.status.value}",
                    _ctx(session_id, round_number=current.current_round),
                )
            round_number = expected_round or current.current_round
            if current.current_round != round_number:
                raise SessionUnavailableError(
                    str(session_id),
                    f"round advanced to {current.current_round}",
                    _ctx(session_id, round_number=current.current_round),
                )
            if is_ready(current, as_host):
                return current
            won = await self._cas_session(
                db, session_id,
                [
                    GameSession.status == SessionStatus.IN_PROGRESS.value,
                    GameSession.current_round == round_number,
                    GameSession.guest_id == current.guest_id,
                    column.is_(False),
                ],
                **{field: True},
            )
            record = await self._load_session(db, session_id)
            if not won:
                if (
                    record is not None
                    and record.status == SessionStatus.IN_PROGRESS
                    and record.current_round == round_number
                    and is_ready(record, as_host)
                ):
                    return record
                self._log_lost_race("mark_ready", session_id)
                raise SessionUnavailableError(
                    str(session_id), "session changed before ready was recorded",
                    _ctx(session_id, round_number=round_number),
                )
            await db.commit()
        await self._publish(ChangeTable.SESSIONS, ChangeOperation.UPDATE, record)
        return record

    # ─── Rounds ──────────────────────────────────────────────────

    async def insert_round(
        self,
        session: SessionRecord,
        customer_id: str,
        seller_id: str,
        role_id: UUID,
    ) -> RoundRecord:
        """Insert the round row for session.current_round with the role set."""
        ctx = _ctx(session.id, customer_id, session.current_round)
        async with self._db.session() as db:
            row = Round(
                session_id=session.id,
                round_number=session.current_round,
                customer_id=customer_id,
                seller_id=seller_id,
                selected_role_id=role_id,
                version=1,
            )
            db.add(row)
            try:
                await db.flush()
            except IntegrityError:
                self._log_lost_race("select_role", session.id, customer_id)
                raise InvalidTurnError(
                    f"Role for round {session.current_round} is already selected", ctx,
                )
            await self._require_round_open(db, session, ctx)
            await db.commit()
            record = RoundRecord.model_validate(row)
        await self._publish(ChangeTable.ROUNDS, ChangeOperation.INSERT, record)
        return record

    async def set_round_words(
        self,
        session: SessionRecord,
        round_id: UUID,
        seller_id: str,
        word1_id: UUID,
        word2_id: UUID,
    ) -> RoundRecord:
        """Write both words in one UPDATE, only after the role and only once."""
        ctx = _ctx(session.id, seller_id, session.current_round)
        async with self._db.session() as db:
            await self._require_round_open(db, session, ctx)
            won = await self._cas_round(
                db, round_id,
                [
                    Round.session_id == session.id,
                    Round.round_number == session.current_round,
                    Round.seller_id == seller_id,
                    Round.selected_role_id.is_not(None),
                    Round.word1_id.is_(None),
                ],
                word1_id=word1_id,
                word2_id=word2_id,
            )
            record = await self._load_round(db, round_id)
            if not won:
                self._log_lost_race("select_words", session.id, seller_id)
                if record is None or record.round_number != session.current_round:
                    raise SessionUnavailableError(
                        str(session.id), "round is no longer active", ctx,
                    )
                if record.seller_id != seller_id:
                    raise InvalidTurnError(
                        f"Round {session.current_round} is seated for another seller",
                        ctx,
                    )
                if record.has_words:
                    raise InvalidSelectionError(
                        f"Words for round {session.current_round} are already selected",
                        "word_ids", ctx,
                    )
                raise RoundNotReadyError("Customer has not selected a role yet", ctx)
            await db.commit()
        await self._publish(ChangeTable.ROUNDS, ChangeOperation.UPDATE, record)
        return record

    async def resolve_round(
        self, session: SessionRecord, round_id: UUID, customer_id: str, accepted: bool,
    ) -> tuple[RoundRecord, SessionRecord]:
        """Record the verdict and advance the session to the next round atomically."""
        ctx = _ctx(session.id, customer_id, session.current_round)
        async with self._db.session() as db:
            won_round = await self._cas_round(
                db, round_id,
                [
                    Round.session_id == session.id,
                    Round.round_number == session.current_round,
                    Round.customer_id == customer_id,
                    Round.word1_id.is_not(None),
                    Round.accepted.is_(None),
                ],
                accepted=accepted,
            )
            if not won_round:
                current_round = await self._load_round(db, round_id)
                self._log_lost_race("resolve_pitch", session.id, customer_id)
                if current_round is None:
                    raise SessionUnavailableError(
                        str(session.id), "round is no longer active", ctx,
                    )
                if current_round.customer_id != customer_id:
                    raise InvalidTurnError(
                        f"Round {session.current_round} is seated for another customer",
                        ctx,
                    )
                if current_round.is_resolved:
                    raise AlreadyResolvedError(session.current_round, ctx)
                raise RoundNotReadyError("Seller has not selected words yet", ctx)

            won_session = await self._cas_session(
                db, session.id,
                [
                    GameSession.status == SessionStatus.IN_PROGRESS.value,
                    GameSession.current_round == session.current_round,
                    GameSession.host_ready.is_(True),
                    GameSession.guest_ready.is_(True),
                ],
                current_round=GameSession.current_round + 1,
                host_ready=False,
                guest_ready=False,
            )
            if not won_session:
                current = await self._load_session(db, session.id)
                self._log_lost_race("advance_round", session.id)
                if (
                    current is not None
                    and current.status == SessionStatus.IN_PROGRESS
                    and current.current_round == session.current_round
                ):
                    raise RoundNotReadyError(
                        "Both participants must be ready before the pitch is resolved",
                        ctx,
                    )
                raise SessionUnavailableError(
                    str(session.id), "session changed before the round advanced", ctx,
                )
            round_record = await self._load_round(db, round_id)
            session_record = await self._load_session(db, session.id)
            await db.commit()
        logger.info(
            f"Round resolved (accepted={accepted})",
            extra={"session_id": session.id, "round_number": session.current_round},
        )
        await self._publish(ChangeTable.ROUNDS, ChangeOperation.UPDATE, round_record)
        await self._publish(ChangeTable.SESSIONS, ChangeOperation.UPDATE, session_record)
        return round_record, session_record

    # ─── Chat ────────────────────────────────────────────────────

    async def append_message(
        self, session_id: UUID, user_id: str, content: str,
    ) -> ChatMessageRecord:
        async with self._db.session() as db:
            current = await self._load_session(db, session_id)
            if current is None:
                raise SessionUnavailableError(str(session_id), "session not found")
            if not is_participant(current, user_id):
                raise NotAParticipantError(
                    str(session_id), user_id, _ctx(session_id, user_id),
                )
            if current.status == SessionStatus.COMPLETED:
                raise SessionUnavailableError(
                    str(session_id), "status is completed", _ctx(session_id, user_id),
                )
            row = ChatMessage(session_id=session_id, user_id=user_id, content=content)
            db.add(row)
            await db.commit()
            record = ChatMessageRecord.model_validate(row)
        await self._publish(ChangeTable.MESSAGES, ChangeOperation.INSERT, record)
        return record

    # ─── Internals ───────────────────────────────────────────────

    async def _load_session(
        self, db: AsyncSession, session_id: UUID,
    ) -> SessionRecord | None:
        result = await db.execute(
            select(GameSession)
            .where(GameSession.id == session_id)
            .execution_options(populate_existing=True),
        )
        row = result.scalar_one_or_none()
        return SessionRecord.model_validate(row) if row else None

    async def _load_round(self, db: AsyncSession, round_id: UUID) -> RoundRecord | None:
        result = await db.execute(
            select(Round)
            .where(Round.id == round_id)
            .execution_options(populate_existing=True),
        )
        row = result.scalar_one_or_none()
        return RoundRecord.model_validate(row) if row else None

    async def _drop_open_round(
        self, db: AsyncSession, session: SessionRecord,
    ) -> RoundRecord | None:
        """Delete the unresolved row of the session's current round, if any."""
        result = await db.execute(
            select(Round).where(
                Round.session_id == session.id,
                Round.round_number == session.current_round,
                Round.accepted.is_(None),
            ),
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        record = RoundRecord.model_validate(row)
        await db.execute(
            delete(Round)
            .where(Round.id == record.id, Round.accepted.is_(None))
            .execution_options(synchronize_session=False),
        )
        logger.info(
            "Open round superseded by guest leave",
            extra={"session_id": session.id, "round_number": record.round_number},
        )
        return record

    async def _cas_session(
        self, db: AsyncSession, session_id: UUID, conditions: list, **values,
    ) -> bool:
        result = await db.execute(
            update(GameSession)
            .where(GameSession.id == session_id, *conditions)
            .values(version=GameSession.version + 1, **values)
            .execution_options(synchronize_session=False),
        )
        return result.rowcount == 1

    async def _cas_round(
        self, db: AsyncSession, round_id: UUID, conditions: list, **values,
    ) -> bool:
        result = await db.execute(
            update(Round)
            .where(Round.id == round_id, *conditions)
            .values(version=Round.version + 1, **values)
            .execution_options(synchronize_session=False),
        )
        return result.rowcount == 1

    async def _require_round_open(
        self, db: AsyncSession, session: SessionRecord, ctx: ErrorContext,
    ) -> None:
        """Session is still in_progress at the round the caller observed."""
        result = await db.execute(
            select(GameSession.id).where(
                GameSession.id == session.id,
                GameSession.status == SessionStatus.IN_PROGRESS.value,
                GameSession.current_round == session.current_round,
            ),
        )
        if result.first() is None:
            self._log_lost_race("round_open_check", session.id)
            raise SessionUnavailableError(
                str(session.id), "session left the observed round", ctx,
            )

    @staticmethod
    def _join_refusal(current: SessionRecord | None, guest_id: str) -> str:
        if current is None:
            return "session not found"
        if current.host_id == guest_id:
            return "host cannot join their own session"
        if current.status != SessionStatus.WAITING:
            return f"status is {current.status.value}"
        return "session already has a guest"

    @staticmethod
    def _log_lost_race(op: str, session_id: UUID, user_id: str | None = None) -> None:
        logger.info(
            f"Conditional update lost ({op})",
            extra={"session_id": session_id, "user_id": user_id, "operation": op},
        )

    async def _publish(
        self,
        table: ChangeTable,
        operation: ChangeOperation,
        record: SessionRecord | RoundRecord | ChatMessageRecord,
    ) -> None:
        session_id = record.id if isinstance(record, SessionRecord) else record.session_id
        row = record.model_dump(mode="json")
        if operation == ChangeOperation.DELETE:
            event = ChangeEvent(
                table=table, operation=operation, session_id=session_id, old=row,
            )
        else:
            event = ChangeEvent(
                table=table, operation=operation, session_id=session_id, new=row,
            )
        try:
            await self._transport.publish(channel_for(session_id), event)
        except SubscriptionError as e:
            logger.error(
                f"Change event not published: {e.message}",
                extra={
                    "session_id": session_id, "table": table.value,
                    "operation": operation.value, "error_code": e.code,
                },
            )
