"""Embedded Payload — reduced, self-contained projection of an automation for offline links.

Invariants:
    - reduce_automation keeps only enabled steps whose kind is in FALLBACK_KINDS
    - Only whitelisted config keys are carried (tag/QR capacity is the constraint)
    - Lossless: EmbeddedPayload.from_dict(p.to_dict()) == p for every payload
    - from_dict never raises on foreign input; it returns None instead

Design Decisions:
    - Wire shape is flat {"type": ..., **config} per step: matches emergency QR codes
      already printed by older releases, which also used "display" for notifications
    - An "app" step that targets the phone dialer is projected to "call": it is the
      only app launch the fallback path can honor
"""

from dataclasses import dataclass, field
from typing import Any

from taplink.core.automation import AutomationSummary, Step
from taplink.core.domain_types import FALLBACK_KINDS, StepKind


# Config keys each fallback kind needs. Anything else stays behind.
_CARRIED_KEYS: dict[StepKind, tuple[str, ...]] = {
    StepKind.NOTIFICATION: ("title", "message"),
    StepKind.SMS: ("phoneNumber", "message"),
    StepKind.CALL: ("phoneNumber",),
    StepKind.EMAIL: ("email", "subject", "message"),
    StepKind.OPEN_URL: ("url",),
    StepKind.DELAY: ("delay", "duration"),
    StepKind.TEXT: ("action", "text", "text1", "text2", "separator"),
    StepKind.LOCATION: (
        "action", "phoneNumber", "message", "latitude", "longitude", "label",
    ),
}


@dataclass(frozen=True)
class EmbeddedStep:
    """One step inside an embedded payload. type is the wire spelling."""
    type: str
    config: dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> StepKind:
        return StepKind.from_wire(self.type)

    def to_dict(self) -> dict:
        return {"type": self.type, **self.config}

    def to_step(self, index: int) -> Step:
        return Step(
            kind=self.kind,
            config=dict(self.config),
            enabled=True,
            id=f"emergency-step-{index}",
            title=f"Emergency {self.type}",
            raw_kind=self.type,
        )


@dataclass(frozen=True)
class EmbeddedPayload:
    """Title, description, and fallback-interpretable steps. Nothing else."""
    title: str
    description: str = ""
    steps: tuple[EmbeddedStep, ...] = ()

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "description": self.description,
            "steps": [s.to_dict() for s in self.steps],
        }

    @classmethod
    def from_dict(cls, data: object) -> "EmbeddedPayload | None":
        if not isinstance(data, dict):
            return None
        raw_steps = data.get("steps", [])
        if not isinstance(raw_steps, list):
            return None
        steps = []
        for raw in raw_steps:
            if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
                return None
            config = {k: v for k, v in raw.items() if k != "type"}
            steps.append(EmbeddedStep(type=raw["type"], config=config))
        title = data.get("title")
        description = data.get("description")
        return cls(
            title=title if isinstance(title, str) else "Emergency Automation",
            description=description if isinstance(description, str) else "",
            steps=tuple(steps),
        )

    def to_summary(self, automation_id: str) -> AutomationSummary:
        """Rebuild an AutomationSummary for confirmation prompts and the interpreter."""
        return AutomationSummary(
            id=automation_id,
            title=self.title,
            description=self.description,
            steps=tuple(s.to_step(i) for i, s in enumerate(self.steps)),
            category="emergency",
            tags=("emergency",),
            created_by="emergency",
        )


def _project_app_step(step: Step) -> EmbeddedStep | None:
    """App launches survive only when they dial a number."""
    app_name = str(step.config.get("appName", "")).lower()
    url = str(step.config.get("url") or "")
    if app_name != "phone" and not url.startswith("tel:"):
        return None
    number = url.removeprefix("tel:") or step.config.get("phoneNumber")
    if not number:
        return None
    return EmbeddedStep(type=StepKind.CALL.value, config={"phoneNumber": number})


def project_step(step: Step) -> EmbeddedStep | None:
    """Project one step, or None when it cannot run in the fallback path."""
    if not step.enabled:
        return None
    if step.kind == StepKind.APP:
        return _project_app_step(step)
    if step.kind not in FALLBACK_KINDS:
        return None
    keys = _CARRIED_KEYS[step.kind]
    config = {
        k: step.config[k] for k in keys
        if k in step.config and step.config[k] is not None
    }
    return EmbeddedStep(type=step.kind.value, config=config)


def reduce_automation(summary: AutomationSummary) -> EmbeddedPayload:
    """Reduce a full summary to its embeddable projection."""
    projected = (project_step(s) for s in summary.steps)
    return EmbeddedPayload(
        title=summary.title,
        description=summary.description,
        steps=tuple(p for p in projected if p is not None),
    )
