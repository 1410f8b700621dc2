"""Boundary Protocols — contracts between the dispatch core and its collaborators.

Invariants:
    - Core NEVER imports from shell — dependency arrows point inward only
    - All IO (store, engine, tag, device capabilities, user prompt) goes through these Protocols
    - Implementations provided by the host application via dependency injection

Design Decisions:
    - Protocol over ABC: structural subtyping, hosts and test doubles need no inheritance
    - Async in Protocol: boundary methods do IO; the pure core never awaits them itself,
      services/ orchestrates the awaits around the pure logic
    - AutomationStore.get_by_id may return a list: a consistency violation (two records,
      one id) must reach the resolver instead of being hidden by the store
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from taplink.core.automation import AutomationSummary, Step
from taplink.core.format_messages import ConfirmationPrompt


StepStartCallback = Callable[[int, Step], Any]
StepCompleteCallback = Callable[[int, Any], Any]
StepErrorCallback = Callable[[int, str], Any]


@dataclass
class StepCallbacks:
    """Per-step hooks handed to whichever executor runs the automation."""
    on_step_start: StepStartCallback | None = None
    on_step_complete: StepCompleteCallback | None = None
    on_step_error: StepErrorCallback | None = None


class AutomationStore(Protocol):
    """Read side of automation persistence — implemented by shell."""
    async def get_by_id(self, automation_id: str) -> dict | list[dict] | None: ...


class AutomationEngine(Protocol):
    """Native executor with the full step catalog — implemented by the host app.

    Returns {success, steps_completed, total_steps, execution_time, error?}
    (camelCase keys accepted as well). Callbacks handed in by the dispatcher are
    coroutine functions and must be awaited.
    """
    async def execute(
        self,
        automation: AutomationSummary,
        context: dict,
        callbacks: StepCallbacks,
    ) -> dict: ...


class TagIO(Protocol):
    """Physical NFC tag access, reduced to strings."""
    async def write(self, payload: str) -> bool: ...
    async def read(self) -> str: ...


class HostCapabilities(Protocol):
    """User-visible intents available without the native bridge.

    open_uri covers dialer (tel:), messenger (sms:), mail composer (mailto:)
    and browser (https:). get_location raises PermissionDeniedError when refused.
    """
    async def open_uri(self, uri: str) -> bool: ...
    async def show_message(self, title: str, message: str) -> None: ...
    async def get_location(self) -> tuple[float, float]: ...


class ConfirmationPort(Protocol):
    """Asks the user once. Returns True only on explicit acceptance."""
    async def confirm(self, prompt: ConfirmationPrompt) -> bool: ...
