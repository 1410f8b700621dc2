"""Link Schemas — Pydantic models for classification, artifacts and web fallback pages.

Invariants:
    - ClassifyRequest.url: 1-4096 chars, stripped, non-empty
    - Enum fields reuse core domain types so REST and links share one vocabulary
    - Response models are built from core values, never from ORM rows

Design Decisions:
    - from_* classmethods on responses: routes stay thin and core stays pydantic-free
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from taplink.core.automation import AutomationSummary
from taplink.core.domain_types import IntentKind, TransportSource
from taplink.core.link_codec import LinkIntent


class ClassifyRequest(BaseModel):
    """A raw transport string to classify."""
    url: str = Field(min_length=1, max_length=4096)
    source: TransportSource = TransportSource.TEXT

    @field_validator("url")
    @classmethod
    def strip_url(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("url cannot be empty or whitespace")
        return v


class IntentResponse(BaseModel):
    kind: IntentKind
    automation_id: str
    action: str | None = None
    embedded_payload: dict[str, Any] | None = None

    @classmethod
    def from_intent(cls, intent: LinkIntent) -> "IntentResponse":
        return cls(**intent.to_dict())


class ClassifyResponse(BaseModel):
    """intent is null when the URL is not one of ours."""
    intent: IntentResponse | None = None
    actionable_domain: bool = False


class LinkArtifactsResponse(BaseModel):
    automation_id: str
    app_link: str
    universal_link: str
    web_fallback_link: str
    qr_payload: str
    nfc_payload: str
    share_text: str
    emergency: bool = False
    share: bool = False
    embedded: bool = False


class StepPreview(BaseModel):
    """One step as shown on the web fallback page."""
    index: int
    kind: str
    title: str | None = None
    enabled: bool = True
    web_compatible: bool = False


class WebFallbackResponse(BaseModel):
    """What the browser shows when the app is not installed."""
    automation_id: str
    title: str
    description: str = ""
    emergency: bool = False
    offline: bool = False
    steps: list[StepPreview] = []
    incompatible_kinds: list[str] = []
    app_link: str

    @classmethod
    def from_summary(
        cls,
        summary: AutomationSummary,
        *,
        compatible: list[bool],
        app_link: str,
        emergency: bool = False,
        offline: bool = False,
    ) -> "WebFallbackResponse":
        steps = [
            StepPreview(
                index=i, kind=s.wire_kind, title=s.title,
                enabled=s.enabled, web_compatible=ok,
            )
            for i, (s, ok) in enumerate(zip(summary.steps, compatible))
        ]
        incompatible: list[str] = []
        for p in steps:
            if p.enabled and not p.web_compatible and p.kind not in incompatible:
                incompatible.append(p.kind)
        return cls(
            automation_id=summary.id,
            title=summary.title,
            description=summary.description,
            emergency=emergency,
            offline=offline,
            steps=steps,
            incompatible_kinds=incompatible,
            app_link=app_link,
        )
