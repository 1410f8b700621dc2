"""Domain Types — rich types that replace bare primitives across the codebase.

Invariants:
    - AutomationId is the canonical UUID string form (lowercase, hyphenated)
    - StepKind mirrors the full step catalog; UNKNOWN holds kinds the catalog lacks
    - FALLBACK_KINDS is a strict, closed subset of StepKind
    - All valid states encoded as Enums — no raw string matching

Design Decisions:
    - NewType over dataclass wrappers: zero runtime cost, full type-checker support
    - str Enums: serialize to JSON without custom encoders (links and REST share one shape)
    - Catalog values use the wire spelling ("open_url"), aliases normalize "open-url"
"""

import re
from enum import Enum
from typing import NewType


# ─── Identity Types ──────────────────────────────────────────────

AutomationId = NewType("AutomationId", str)

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_valid_automation_id(value: object) -> bool:
    """True when value matches the UUID grammar (case-insensitive)."""
    return isinstance(value, str) and bool(UUID_RE.match(value))


# ─── Enums ───────────────────────────────────────────────────────

class IntentKind(str, Enum):
    """What a link asks for — drives the Dispatcher branch."""
    AUTOMATION = "automation"
    SHARE = "share"
    EMERGENCY = "emergency"


class StepKind(str, Enum):
    """Full step catalog. The native Automation Engine owns the semantics."""
    NOTIFICATION = "notification"
    SMS = "sms"
    CALL = "call"
    EMAIL = "email"
    OPEN_URL = "open_url"
    DELAY = "delay"
    TEXT = "text"
    LOCATION = "location"
    WEBHOOK = "webhook"
    CONDITION = "condition"
    VARIABLE = "variable"
    GET_VARIABLE = "get_variable"
    CLIPBOARD = "clipboard"
    SHARE_TEXT = "share_text"
    LOOP = "loop"
    MATH = "math"
    PHOTO = "photo"
    APP = "app"
    PROMPT_INPUT = "prompt_input"
    UNKNOWN = "unknown"

    @classmethod
    def from_wire(cls, raw: object) -> "StepKind":
        """Normalize a wire-format kind ("open-url", "Display") to a StepKind."""
        if not isinstance(raw, str):
            return cls.UNKNOWN
        key = raw.strip().lower().replace("-", "_")
        key = _KIND_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            return cls.UNKNOWN


# Legacy spelling written into emergency QR codes by older releases
_KIND_ALIASES = {
    "display": "notification",
}


FALLBACK_KINDS = frozenset({
    StepKind.NOTIFICATION,
    StepKind.SMS,
    StepKind.CALL,
    StepKind.EMAIL,
    StepKind.OPEN_URL,
    StepKind.DELAY,
    StepKind.TEXT,
    StepKind.LOCATION,
})


class DispatchState(str, Enum):
    """Dispatcher state machine. See core/dispatch_state.py for the transition table."""
    IDLE = "idle"
    CLASSIFYING = "classifying"
    RESOLVING = "resolving"
    CONFIRMING = "confirming"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PRESENTED = "presented"
    IGNORED = "ignored"


TERMINAL_STATES = frozenset({
    DispatchState.SUCCEEDED,
    DispatchState.FAILED,
    DispatchState.PRESENTED,
    DispatchState.IGNORED,
})


class TransportSource(str, Enum):
    """Where a URL came from. All sources funnel through the same parse path."""
    LAUNCH = "launch"
    RUNTIME = "runtime"
    NFC = "nfc"
    QR = "qr"
    TEXT = "text"


class StepStatus(str, Enum):
    """Outcome of one step in either interpreter."""
    OK = "ok"
    FAILED = "failed"
    INCOMPATIBLE = "incompatible"
    PERMISSION_DENIED = "permission_denied"
    SKIPPED = "skipped"


class ExecutionVia(str, Enum):
    """Which executor ran the automation."""
    ENGINE = "engine"
    FALLBACK = "fallback"
