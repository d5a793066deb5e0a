"""Turn Order - pure role derivation from (current_round, host, guest, user).

Invariants:
    - Odd current_round: host is Customer, guest is Seller
    - Even current_round: guest is Customer, host is Seller
    - Roles are recomputed on every call, never cached across a round boundary

Design Decisions:
    - One canonical parity rule for every caller (negotiator, view, API)
"""

from snakeoil.core.domain_types import PlayerRole
from snakeoil.core.records import SessionRecord


def host_is_customer(current_round: int) -> bool:
    return current_round % 2 == 1


def customer_id_for(
    current_round: int, host_id: str, guest_id: str | None,
) -> str | None:
    """User holding the Customer role in this round (None if guest seat is empty)."""
    return host_id if host_is_customer(current_round) else guest_id


def seller_id_for(
    current_round: int, host_id: str, guest_id: str | None,
) -> str | None:
    return guest_id if host_is_customer(current_round) else host_id


def is_participant(session: SessionRecord, user_id: str) -> bool:
    return user_id in (session.host_id, session.guest_id)


def role_of(session: SessionRecord, user_id: str) -> PlayerRole | None:
    """Role of user_id in the session's current round, None for outsiders."""
    if not is_participant(session, user_id):
        return None
    customer = customer_id_for(
        session.current_round, session.host_id, session.guest_id,
    )
    return PlayerRole.CUSTOMER if user_id == customer else PlayerRole.SELLER
