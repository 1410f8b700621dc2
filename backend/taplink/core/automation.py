"""Automation Model — immutable summary of an automation as seen by link dispatch.

Invariants:
    - AutomationSummary and Step are frozen; a summary owns its steps in declared order
    - from_record never drops a step: unknown kinds become StepKind.UNKNOWN with raw_kind kept
    - id is carried verbatim; UUID validation happens in the resolver, not here

Design Decisions:
    - Dataclasses in core, ORM rows in models/: the store adapter converts rows to plain
      records so core never imports SQLAlchemy
    - Records use the store's wire keys (is_public, created_by) so any store can feed from_record
"""

from dataclasses import dataclass, field
from typing import Any

from taplink.core.domain_types import StepKind


@dataclass(frozen=True)
class Step:
    """One step, tagged by kind. config is kind-specific."""
    kind: StepKind
    config: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    id: str | None = None
    title: str | None = None
    raw_kind: str | None = None

    @property
    def wire_kind(self) -> str:
        """Kind as it appeared on the wire (kept for UNKNOWN kinds)."""
        if self.kind == StepKind.UNKNOWN and self.raw_kind:
            return self.raw_kind
        return self.kind.value

    @classmethod
    def from_record(cls, record: dict, index: int = 0) -> "Step":
        raw = record.get("type", record.get("kind"))
        config = record.get("config")
        return cls(
            kind=StepKind.from_wire(raw),
            config=dict(config) if isinstance(config, dict) else {},
            enabled=bool(record.get("enabled", True)),
            id=record.get("id") or f"step-{index}",
            title=record.get("title"),
            raw_kind=raw if isinstance(raw, str) else None,
        )

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "type": self.wire_kind,
            "title": self.title,
            "config": dict(self.config),
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class AutomationSummary:
    """What the dispatcher needs to confirm and execute an automation."""
    id: str
    title: str
    description: str = ""
    steps: tuple[Step, ...] = ()
    is_public: bool = False
    category: str = ""
    tags: tuple[str, ...] = ()
    created_by: str | None = None

    @property
    def enabled_steps(self) -> tuple[Step, ...]:
        return tuple(s for s in self.steps if s.enabled)

    @classmethod
    def from_record(cls, record: dict) -> "AutomationSummary":
        """Build from a store record. Missing optional fields get safe defaults."""
        raw_steps = record.get("steps") or []
        return cls(
            id=str(record["id"]),
            title=record.get("title") or "Untitled automation",
            description=record.get("description") or "",
            steps=tuple(
                Step.from_record(s, i)
                for i, s in enumerate(raw_steps) if isinstance(s, dict)
            ),
            is_public=bool(record.get("is_public", False)),
            category=record.get("category") or "",
            tags=tuple(record.get("tags") or ()),
            created_by=record.get("created_by"),
        )

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "steps": [s.to_record() for s in self.steps],
            "is_public": self.is_public,
            "category": self.category,
            "tags": list(self.tags),
            "created_by": self.created_by,
        }
