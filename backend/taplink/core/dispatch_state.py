"""Dispatch State — per-cycle state machine and the single confirmation slot.

Invariants:
    - Transitions follow TRANSITIONS exactly; anything else raises InvalidTransitionError
    - Terminal states (Succeeded, Failed, Presented, Ignored) have no outgoing transitions
    - Executing is reachable only from Confirming: no side effect without one acceptance
    - ConfirmationSlot holds at most one cycle; only its owner can release it
    - A cycle releases the slot on every terminal transition
    - Every state between Idle and Executing can reach Failed and Ignored, so a fault or a
      cancel always has a terminal edge

Design Decisions:
    - Pure dataclasses, no asyncio: the dispatcher (shell) owns waiting and locking,
      this module only decides what is legal
    - Slot as an ownership token scoped to one dispatcher instance, not a module global:
      a stale confirmation can never reappear after an unrelated scan
    - Cancel during Executing is not a transition: side effects already started, the run
      finishes and reports
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from taplink.core.automation import AutomationSummary
from taplink.core.domain_types import (
    DispatchState, ExecutionVia, TERMINAL_STATES, TransportSource,
)
from taplink.core.errors import InvalidTransitionError
from taplink.core.execution import ExecutionReport
from taplink.core.link_codec import LinkIntent


S = DispatchState

TRANSITIONS: dict[DispatchState, frozenset[DispatchState]] = {
    S.IDLE: frozenset({S.CLASSIFYING}),
    # Confirming directly: emergency intent with an embedded payload (no resolve).
    # Failed from Classifying and Confirming only for internal faults.
    S.CLASSIFYING: frozenset({S.RESOLVING, S.CONFIRMING, S.PRESENTED, S.IGNORED, S.FAILED}),
    S.RESOLVING: frozenset({S.CONFIRMING, S.FAILED, S.IGNORED}),
    S.CONFIRMING: frozenset({S.EXECUTING, S.IGNORED, S.FAILED}),
    S.EXECUTING: frozenset({S.SUCCEEDED, S.FAILED}),
    S.SUCCEEDED: frozenset(),
    S.FAILED: frozenset(),
    S.PRESENTED: frozenset(),
    S.IGNORED: frozenset(),
}


def can_transition(current: DispatchState, target: DispatchState) -> bool:
    return target in TRANSITIONS[current]


@dataclass
class DispatchCycle:
    """Everything one transport event accumulates on its way to a terminal state."""
    url: str
    source: TransportSource = TransportSource.RUNTIME
    cycle_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: DispatchState = DispatchState.IDLE
    history: list[DispatchState] = field(
        default_factory=lambda: [DispatchState.IDLE],
    )
    intent: LinkIntent | None = None
    automation: AutomationSummary | None = None
    error_code: str | None = None
    message: str | None = None
    report: ExecutionReport | None = None
    via: ExecutionVia | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, target: DispatchState) -> None:
        """Move to target or raise InvalidTransitionError."""
        if not can_transition(self.state, target):
            raise InvalidTransitionError(self.state.value, target.value)
        self.state = target
        self.history.append(target)

    def to_dict(self) -> dict:
        return {
            "cycle_id": self.cycle_id,
            "url": self.url,
            "source": self.source.value,
            "state": self.state.value,
            "history": [s.value for s in self.history],
            "intent": self.intent.to_dict() if self.intent else None,
            "automation_id": self.automation.id if self.automation else None,
            "error_code": self.error_code,
            "message": self.message,
            "report": self.report.to_dict() if self.report else None,
            "via": self.via.value if self.via else None,
        }


class ConfirmationSlot:
    """Single-slot ownership token for the cycle awaiting user confirmation."""

    def __init__(self) -> None:
        self._owner: DispatchCycle | None = None

    @property
    def owner(self) -> DispatchCycle | None:
        return self._owner

    @property
    def occupied(self) -> bool:
        return self._owner is not None

    def claim(self, cycle: DispatchCycle) -> None:
        if self._owner is not None and self._owner is not cycle:
            raise InvalidTransitionError(
                f"confirming:{self._owner.cycle_id}",
                f"confirming:{cycle.cycle_id}",
            )
        self._owner = cycle

    def release(self, cycle: DispatchCycle) -> bool:
        """Release if cycle owns the slot. Returns whether anything was released."""
        if self._owner is cycle:
            self._owner = None
            return True
        return False
