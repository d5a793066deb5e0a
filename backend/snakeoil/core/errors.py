"""Error Hierarchy - typed, categorized exceptions for all Snake Oil failure modes.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Precondition errors (400-level) are recoverable and never retried automatically
    - StoreWriteError is transient: the same command may be issued again
    - to_response() produces REST envelope; to_sse_event() produces SSE envelope

Design Decisions:
    - Single hierarchy with SnakeOilError base: FastAPI global handler catches all
    - ErrorContext as dataclass: rich observability without coupling to logging framework
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"
    RESOURCE_NOT_FOUND = "resource_not_found"
    DATABASE = "database"
    EXTERNAL = "external"
    CONFLICT = "conflict"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    session_id: str | None = None
    user_id: str | None = None
    round_number: int | None = None
    user_message: str | None = None
    debug_info: dict[str, Any] | None = None
    retry_after_ms: int | None = None


class SnakeOilError(Exception):
    """Base exception for all Snake Oil errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    @property
    def retryable(self) -> bool:
        return False

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "retryable": self.retryable,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "session_id": self.context.session_id,
                    "user_id": self.context.user_id,
                    "round_number": self.context.round_number,
                    "retry_after_ms": self.context.retry_after_ms,
                },
            }
        }

    def to_sse_event(self) -> dict:
        """Convert to SSE error event."""
        return {
            "type": "error",
            "data": {
                "code": self.code,
                "message": self.context.user_message or self.message,
                "severity": self.severity.value,
                "recoverable": self.severity in (
                    ErrorSeverity.INFO, ErrorSeverity.WARNING,
                ),
            },
        }


# ─── Precondition Errors (400-level) ────────────────────────────

class SessionUnavailableError(SnakeOilError):
    """Session is gone, completed, or lost a conditional-update race."""
    def __init__(self, session_id: str, reason: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.session_id = ctx.session_id or session_id
        super().__init__(
            f"Session '{session_id}' is not available: {reason}",
            "SESSION_UNAVAILABLE", ErrorCategory.CONFLICT,
            ErrorSeverity.WARNING, ctx, 409,
        )
        self.reason = reason


class InvalidTurnError(SnakeOilError):
    """Command issued by the participant who does not hold the required role."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, "INVALID_TURN", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.WARNING, context, 409,
        )


class RoundNotReadyError(SnakeOilError):
    """Round has not reached the step this command needs."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, "ROUND_NOT_READY", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.WARNING, context, 409,
        )


class InvalidSelectionError(SnakeOilError):
    """Role or word selection is malformed or refers to unknown catalog rows."""
    def __init__(self, message: str, field: str, context: ErrorContext | None = None):
        super().__init__(
            message, "INVALID_SELECTION", ErrorCategory.VALIDATION,
            ErrorSeverity.WARNING, context, 400,
        )
        self.field = field


class AlreadyResolvedError(SnakeOilError):
    """Pitch for this round was already accepted or rejected."""
    def __init__(self, round_number: int | None = None, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.round_number = round_number
        super().__init__(
            f"Round {round_number} has already been resolved",
            "ALREADY_RESOLVED", ErrorCategory.CONFLICT,
            ErrorSeverity.WARNING, ctx, 409,
        )


class NotAParticipantError(SnakeOilError):
    """User is neither host nor guest of the session."""
    def __init__(self, session_id: str, user_id: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.session_id = ctx.session_id or session_id
        ctx.user_id = user_id
        super().__init__(
            f"User '{user_id}' is not a participant of session '{session_id}'",
            "NOT_A_PARTICIPANT", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.WARNING, ctx, 403,
        )


class ResourceNotFoundError(SnakeOilError):
    """Requested resource does not exist."""
    def __init__(
        self, resource_type: str, resource_id: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            "RESOURCE_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, context, 404,
        )


# ─── Infrastructure Errors (500-level) ──────────────────────────

class StoreWriteError(SnakeOilError):
    """Backend write failed. Transient: the caller may retry the same command."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Store {operation} failed: {message}",
            "STORE_WRITE_FAILED", ErrorCategory.DATABASE,
            ErrorSeverity.ERROR, context, 503,
        )
        self.operation = operation

    @property
    def retryable(self) -> bool:
        return True


class SubscriptionError(SnakeOilError):
    """Change feed connection dropped or could not be re-established."""
    def __init__(self, channel: str, message: str, context: ErrorContext | None = None):
        super().__init__(
            f"Change feed '{channel}' unavailable: {message}",
            "SUBSCRIPTION_LOST", ErrorCategory.EXTERNAL,
            ErrorSeverity.ERROR, context, 503,
        )
        self.channel = channel
