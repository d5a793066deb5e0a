"""Domain Types - rich types that replace bare primitives across the codebase.

Invariants:
    - All valid states encoded as Enums - no raw string matching

Design Decisions:
    - str Enums: serialize to JSON and to DB string columns without custom encoders
"""

from enum import Enum


# ─── Enums ───────────────────────────────────────────────────────

class SessionStatus(str, Enum):
    """Session lifecycle states - maps to DB `status` column."""
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class PlayerRole(str, Enum):
    """Per-round role. Alternates between host and guest every round."""
    CUSTOMER = "customer"
    SELLER = "seller"


class ChangeTable(str, Enum):
    """Logical streams carried by the change feed."""
    SESSIONS = "game_sessions"
    ROUNDS = "rounds"
    MESSAGES = "game_messages"


class ChangeOperation(str, Enum):
    """Row operations announced on the change feed."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# Catalog sample sizes per round
ROLES_PER_ROUND: int = 2
WORDS_PER_ROUND: int = 6
WORDS_PER_PRODUCT: int = 2
