"""User Message Formatting — pure functions that word every dispatch outcome.

Invariants:
    - All functions are pure (no IO, no async, no DB)
    - Each resolution error code has its own wording; no generic "something went wrong"
    - Confirmation prompts always name the automation and its step count
    - Emergency prompts are worded as emergencies but still ask for one explicit tap

Design Decisions:
    - Wording lives in core so the dispatcher and the HTTP surface say the same thing
    - Error wording keyed by error code, not exception class: codes are the public contract
"""

from dataclasses import dataclass

from taplink.core.automation import AutomationSummary
from taplink.core.domain_types import IntentKind
from taplink.core.errors import TapLinkError
from taplink.core.execution import ExecutionReport


@dataclass(frozen=True)
class UserMessage:
    title: str
    body: str

    def __str__(self) -> str:
        return f"{self.title}: {self.body}"


@dataclass(frozen=True)
class ConfirmationPrompt:
    """What the presentation layer shows before any side effect."""
    automation_id: str
    title: str
    body: str
    accept_label: str
    decline_label: str
    step_count: int
    emergency: bool = False
    warning: str | None = None


_RESOLVE_MESSAGES: dict[str, tuple[str, str]] = {
    "MALFORMED_ID": (
        "Invalid Automation Link",
        "This tag or code contains an invalid automation id ({id}). It was "
        "likely created by an older version of the app. Write the automation "
        "to it again.",
    ),
    "NOT_FOUND": (
        "Automation Not Found",
        "No automation with id {id} exists. It may have been deleted, or it was "
        "never saved.",
    ),
    "AMBIGUOUS": (
        "Multiple Automations Found",
        "More than one automation uses id {id}. The first one will be used.",
    ),
    "TRANSIENT_ERROR": (
        "Connection Problem",
        "Could not load automation {id}. Check your connection and try again.",
    ),
    "STORE_ERROR": (
        "Automation Unavailable",
        "Automation {id} could not be loaded right now. Try again later.",
    ),
    "INVALID_RECORD": (
        "Damaged Automation",
        "Automation {id} is saved in a format this app cannot read. Open it in "
        "the editor and save it again.",
    ),
}


def format_resolve_error(error: TapLinkError, automation_id: str) -> UserMessage:
    """Distinct wording per resolution failure."""
    title, body = _RESOLVE_MESSAGES.get(
        error.code, ("Automation Unavailable", "Automation {id} could not be loaded."),
    )
    return UserMessage(title=title, body=body.format(id=automation_id))


def format_confirmation(
    automation: AutomationSummary,
    kind: IntentKind,
    *,
    warning: TapLinkError | None = None,
) -> ConfirmationPrompt:
    """Build the one-tap confirmation prompt."""
    step_count = len(automation.enabled_steps)
    emergency = kind == IntentKind.EMERGENCY
    description = automation.description or "No description"
    if emergency:
        title = "Emergency Automation"
        body = (
            f"{automation.title}\n\n{description}\n\n"
            f"This emergency automation has {step_count} steps. Run it now?"
        )
        accept = "Run Now"
    else:
        title = "Run Automation"
        body = (
            f"{automation.title}\n\n{description}\n\n"
            f"This automation has {step_count} steps. Would you like to run it?"
        )
        accept = "Run"
    warning_text = None
    if warning is not None:
        warning_text = format_resolve_error(warning, automation.id).body
    return ConfirmationPrompt(
        automation_id=automation.id,
        title=title,
        body=body,
        accept_label=accept,
        decline_label="Cancel",
        step_count=step_count,
        emergency=emergency,
        warning=warning_text,
    )


def format_result(automation_title: str, report: ExecutionReport) -> UserMessage:
    """Terminal message with step counts. Failed runs include the first error."""
    counts = f"Steps completed: {report.steps_completed}/{report.total_steps}"
    if report.success:
        seconds = round(report.execution_time_ms / 1000, 1)
        body = f'"{automation_title}" executed successfully. {counts}. Execution time: {seconds}s.'
        if report.incompatible_kinds:
            body += f" Skipped (needs the app): {', '.join(report.incompatible_kinds)}."
        return UserMessage(title="Automation Complete", body=body)
    body = f'"{automation_title}" failed. Error: {report.error or "Unknown error"}. {counts}.'
    return UserMessage(title="Automation Failed", body=body)


def format_execution_crash(automation_title: str, error: str) -> UserMessage:
    return UserMessage(
        title="Execution Error",
        body=f'Failed to run "{automation_title}". Error: {error}',
    )


def format_presented(automation_id: str) -> UserMessage:
    return UserMessage(
        title="Shared Automation",
        body=f"Opening automation {automation_id} for viewing.",
    )


def format_ignored(reason: str) -> UserMessage:
    reasons = {
        "unrecognized": "This link is not an automation link.",
        "declined": "Automation was not run.",
        "cancelled": "Automation request was dismissed.",
        "closed": "Session ended before the automation ran.",
    }
    return UserMessage(title="Nothing Run", body=reasons.get(reason, reason))


def format_dispatch_fault(automation_id: str | None) -> UserMessage:
    """Wording for a cycle that ended on an unexpected internal error."""
    subject = f"automation {automation_id}" if automation_id else "this link"
    return UserMessage(
        title="Automation Unavailable",
        body=f"The request for {subject} could not be completed. Try scanning it again.",
    )
