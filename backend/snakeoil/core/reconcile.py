"""Reconciliation - idempotent, order-insensitive merge of change events into local state.

Invariants:
    - reconcile(reconcile(s, e), e) == reconcile(s, e)
    - Applying any permutation of the same events converges to the same state
    - Session and round rows: the higher `version` wins, arrival order is irrelevant
    - Active round: highest (round_number, created_at, id); older rows never displace it
    - Chat: merged by id, ordered by (created_at, id)
    - Events for another session, or arriving after teardown, leave state unchanged

Design Decisions:
    - Each event is a total replacement of the row's known fields, never a delta
    - Ties on version are broken by the serialized row so the merge is a true max
    - Malformed payloads raise MalformedEventError; the shell logs and drops them
"""

from dataclasses import dataclass, replace
from uuid import UUID

from pydantic import ValidationError

from snakeoil.core.domain_types import ChangeOperation, ChangeTable
from snakeoil.core.records import (
    ChangeEvent, ChatMessageRecord, RoundRecord, SessionRecord,
)


class MalformedEventError(ValueError):
    """Change event payload does not describe a valid row."""

    def __init__(self, table: str, reason: str):
        super().__init__(f"Malformed {table} event: {reason}")
        self.table = table


@dataclass(frozen=True)
class LocalState:
    """One participant's reconciled view of a session."""
    session_id: UUID | None
    session: SessionRecord | None = None
    round: RoundRecord | None = None
    messages: tuple[ChatMessageRecord, ...] = ()


# ─── Row merges ──────────────────────────────────────────────────

def _version_key(record: SessionRecord | RoundRecord) -> tuple[int, str]:
    return record.version, record.model_dump_json()


def merge_session(
    current: SessionRecord | None, incoming: SessionRecord,
) -> SessionRecord:
    if current is None or current.id != incoming.id:
        return incoming
    return max(current, incoming, key=_version_key)


def _round_position(record: RoundRecord) -> tuple:
    return record.round_number, record.created_at, str(record.id)


def merge_round(
    current: RoundRecord | None, incoming: RoundRecord,
) -> RoundRecord:
    if current is None:
        return incoming
    if current.id == incoming.id:
        return max(current, incoming, key=_version_key)
    return max(current, incoming, key=_round_position)


def merge_messages(
    messages: tuple[ChatMessageRecord, ...], incoming: ChatMessageRecord,
) -> tuple[ChatMessageRecord, ...]:
    if any(m.id == incoming.id for m in messages):
        return messages
    return tuple(sorted(
        (*messages, incoming), key=lambda m: (m.created_at, str(m.id)),
    ))


# ─── Event parsing ───────────────────────────────────────────────

_ROW_TYPES = {
    ChangeTable.SESSIONS: SessionRecord,
    ChangeTable.ROUNDS: RoundRecord,
    ChangeTable.MESSAGES: ChatMessageRecord,
}


def parse_event_row(
    event: ChangeEvent,
) -> SessionRecord | RoundRecord | ChatMessageRecord:
    """Validate the event's `new` row into its record type."""
    if event.new is None:
        raise MalformedEventError(event.table.value, "missing new row")
    try:
        row = _ROW_TYPES[event.table].model_validate(event.new)
    except ValidationError as e:
        raise MalformedEventError(event.table.value, str(e)) from e
    row_session = row.id if isinstance(row, SessionRecord) else row.session_id
    if row_session != event.session_id:
        raise MalformedEventError(
            event.table.value, "row does not belong to the event's session",
        )
    return row


# ─── Reconcile ───────────────────────────────────────────────────

def apply_row(
    state: LocalState, row: SessionRecord | RoundRecord | ChatMessageRecord,
) -> LocalState:
    """Merge one validated row. Rows of other sessions are ignored."""
    if state.session_id is None:
        return state
    if isinstance(row, SessionRecord):
        if row.id != state.session_id:
            return state
        merged = merge_session(state.session, row)
        return state if merged is state.session else replace(state, session=merged)
    if row.session_id != state.session_id:
        return state
    if isinstance(row, RoundRecord):
        merged_round = merge_round(state.round, row)
        if merged_round is state.round:
            return state
        return replace(state, round=merged_round)
    merged_messages = merge_messages(state.messages, row)
    if merged_messages is state.messages:
        return state
    return replace(state, messages=merged_messages)


def reconcile(state: LocalState, event: ChangeEvent) -> LocalState:
    """Merge an inbound change event into local state.

    Raises MalformedEventError for payloads that fail validation.
    """
    if state.session_id is None or event.session_id != state.session_id:
        return state
    if event.operation == ChangeOperation.DELETE:
        return state
    return apply_row(state, parse_event_row(event))


def reconcile_snapshot(
    state: LocalState,
    session: SessionRecord | None,
    active_round: RoundRecord | None,
    messages: list[ChatMessageRecord] | tuple[ChatMessageRecord, ...] = (),
) -> LocalState:
    """Fold a freshly fetched snapshot in with the same merge rules as events."""
    for row in (session, active_round, *messages):
        if row is not None:
            state = apply_row(state, row)
    return state
