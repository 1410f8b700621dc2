"""Error Hierarchy — typed, categorized exceptions for all TapLink failure modes.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Resolution errors (MalformedId, NotFound, Ambiguous, Transient) are never coalesced:
      each code implies a different corrective action
    - Only TransientResolveError is retryable
    - Per-step errors (PermissionDenied, Incompatible) are non-fatal and travel as values
    - to_response() produces the REST envelope; no internal details leaked in user-facing messages

Design Decisions:
    - Single hierarchy with TapLinkError base: FastAPI global handler catches all (uniform error shape)
    - Errors double as values: the resolver returns them inside ResolveResult instead of raising,
      the API layer raises them — same type, two transports
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
    RESOURCE_NOT_FOUND = "resource_not_found"
    CONFLICT = "conflict"
    TIMEOUT = "timeout"
    PERMISSION = "permission"
    COMPATIBILITY = "compatibility"
    EXECUTION = "execution"
    CAPACITY = "capacity"
    DEVICE = "device"
    DATABASE = "database"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    automation_id: str | None = None
    step_index: int | None = None
    step_kind: str | None = None
    user_message: str | None = None
    debug_info: dict[str, Any] | None = None
    retry_after_ms: int | None = None


class TapLinkError(Exception):
    """Base exception for all TapLink errors."""

    retryable: bool = False

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

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.context.user_message or self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "retryable": self.retryable,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "automation_id": self.context.automation_id,
                    "step_index": self.context.step_index,
                    "retry_after_ms": self.context.retry_after_ms,
                },
            }
        }


# ─── Resolution Errors ──────────────────────────────────────────

class MalformedIdError(TapLinkError):
    """Identifier does not match the UUID grammar — legacy or corrupted source."""
    def __init__(self, automation_id: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.automation_id = automation_id
        super().__init__(
            f"Automation id '{automation_id}' is not a valid UUID",
            "MALFORMED_ID", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, ctx, 400,
        )
        self.automation_id = automation_id


class AutomationNotFoundError(TapLinkError):
    """Well-formed id with no matching automation (deleted or never saved)."""
    def __init__(self, automation_id: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.automation_id = automation_id
        super().__init__(
            f"Automation '{automation_id}' not found",
            "NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, ctx, 404,
        )
        self.automation_id = automation_id


class AmbiguousAutomationError(TapLinkError):
    """More than one record for one id — store consistency violation."""
    def __init__(
        self, automation_id: str, match_count: int,
        context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.automation_id = automation_id
        super().__init__(
            f"Found {match_count} automations with id '{automation_id}'; using the first",
            "AMBIGUOUS", ErrorCategory.CONFLICT,
            ErrorSeverity.WARNING, ctx, 409,
        )
        self.automation_id = automation_id
        self.match_count = match_count


class TransientResolveError(TapLinkError):
    """Store unreachable or timed out. The only retryable class."""

    retryable = True

    def __init__(
        self, automation_id: str, reason: str,
        context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.automation_id = automation_id
        super().__init__(
            f"Could not reach the automation store: {reason}",
            "TRANSIENT_ERROR", ErrorCategory.TIMEOUT,
            ErrorSeverity.WARNING, ctx, 503,
        )
        self.automation_id = automation_id
        self.reason = reason


class StoreFailureError(TapLinkError):
    """Store raised something other than a connection or database failure."""
    def __init__(
        self, automation_id: str, reason: str,
        context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.automation_id = automation_id
        super().__init__(
            f"Automation store failed: {reason}",
            "STORE_ERROR", ErrorCategory.INTERNAL,
            ErrorSeverity.ERROR, ctx, 500,
        )
        self.automation_id = automation_id
        self.reason = reason


class InvalidRecordError(TapLinkError):
    """Store returned a record that cannot be read as an automation."""
    def __init__(
        self, automation_id: str, reason: str,
        context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.automation_id = automation_id
        super().__init__(
            f"Automation '{automation_id}' has an unreadable record: {reason}",
            "INVALID_RECORD", ErrorCategory.INTERNAL,
            ErrorSeverity.ERROR, ctx, 502,
        )
        self.automation_id = automation_id
        self.reason = reason


ResolveError = (
    MalformedIdError | AutomationNotFoundError
    | AmbiguousAutomationError | TransientResolveError
    | StoreFailureError | InvalidRecordError
)


# ─── Per-step Errors (non-fatal) ────────────────────────────────

class PermissionDeniedError(TapLinkError):
    """Host capability (location, notifications) refused by the user or OS."""
    def __init__(self, capability: str, context: ErrorContext | None = None):
        super().__init__(
            f"Permission denied for {capability}",
            "PERMISSION_DENIED", ErrorCategory.PERMISSION,
            ErrorSeverity.WARNING, context, 403,
        )
        self.capability = capability


class IncompatibleStepError(TapLinkError):
    """Step kind cannot run without the native bridge."""
    def __init__(self, step_kind: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.step_kind = step_kind
        super().__init__(
            f"Step type '{step_kind}' is not supported without the app",
            "INCOMPATIBLE", ErrorCategory.COMPATIBILITY,
            ErrorSeverity.WARNING, ctx, 422,
        )
        self.step_kind = step_kind


class ExecutionFailureError(TapLinkError):
    """Engine reported partial completion or raised."""
    def __init__(
        self, message: str, steps_completed: int, total_steps: int,
        context: ErrorContext | None = None,
    ):
        super().__init__(
            message, "EXECUTION_FAILURE", ErrorCategory.EXECUTION,
            ErrorSeverity.ERROR, context, 500,
        )
        self.steps_completed = steps_completed
        self.total_steps = total_steps


# ─── Link Generation Errors ─────────────────────────────────────

class PayloadTooLargeError(TapLinkError):
    """Encoded payload exceeds the carrier capacity (QR chars / NFC bytes)."""
    def __init__(
        self, carrier: str, size: int, limit: int,
        context: ErrorContext | None = None,
    ):
        super().__init__(
            f"{carrier} payload too large ({size} > {limit})",
            "PAYLOAD_TOO_LARGE", ErrorCategory.CAPACITY,
            ErrorSeverity.ERROR, context, 413,
        )
        self.carrier = carrier
        self.size = size
        self.limit = limit


class TagWriteError(TapLinkError):
    """Tag I/O reported a failed write."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, "TAG_WRITE_FAILED", ErrorCategory.DEVICE,
            ErrorSeverity.ERROR, context, 502,
        )


# ─── Infrastructure Errors ──────────────────────────────────────

class DatabaseError(TapLinkError):
    """Database operation failed."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Database {operation} failed: {message}",
            "DATABASE_ERROR", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation


class InvalidTransitionError(TapLinkError):
    """Dispatcher attempted a transition outside the transition table."""
    def __init__(self, current: str, target: str, context: ErrorContext | None = None):
        super().__init__(
            f"Illegal dispatch transition {current} -> {target}",
            "INVALID_TRANSITION", ErrorCategory.INTERNAL,
            ErrorSeverity.CRITICAL, context, 500,
        )
        self.current = current
        self.target = target
