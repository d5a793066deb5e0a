"""Readiness Gate - the both-sides-ready barrier in front of round content.

Invariants:
    - Round content is visible only while the session is in_progress and both flags are set
    - A round advance clears both flags in the same write as the increment
"""

from snakeoil.core.domain_types import SessionStatus
from snakeoil.core.records import SessionRecord


def ready_field(as_host: bool) -> str:
    """Column name of the caller's ready flag."""
    return "host_ready" if as_host else "guest_ready"


def is_ready(session: SessionRecord, as_host: bool) -> bool:
    return session.host_ready if as_host else session.guest_ready


def both_ready(session: SessionRecord) -> bool:
    return session.host_ready and session.guest_ready


def content_visible(session: SessionRecord | None) -> bool:
    if session is None or session.status != SessionStatus.IN_PROGRESS:
        return False
    return both_ready(session)
