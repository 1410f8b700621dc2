"""Link Routes — classify transport strings and generate link artifacts.

Invariants:
    - Classification never fails for a well-formed request: unknown links return intent=null
    - Every classification writes exactly one LinkEvent row
    - Artifact generation resolves through AutomationResolver, so errors carry the same
      codes (MALFORMED_ID, NOT_FOUND, TRANSIENT_ERROR) as the dispatcher sees

Design Decisions:
    - Resolver and generator built from settings per request via Depends: tests override
      them like get_db
    - Resolve failures raised as TapLinkError and mapped by the global handler
"""

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.exceptions import RequestValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from taplink.config import get_settings
from taplink.core import link_codec
from taplink.core.domain_types import TransportSource
from taplink.core.link_codec import LinkIntent
from taplink.infrastructure.automation_store import SqlAutomationStore
from taplink.infrastructure.database import get_db
from taplink.models.link_event import LinkEvent
from taplink.schemas.links import (
    ClassifyRequest, ClassifyResponse, IntentResponse, LinkArtifactsResponse,
)
from taplink.services.automation_resolver import AutomationResolver, ResolveResult
from taplink.services.link_generator import LinkGenerator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["links"])


def get_resolver() -> AutomationResolver:
    settings = get_settings()
    return AutomationResolver(
        SqlAutomationStore(),
        timeout_seconds=settings.resolver_timeout_seconds,
        max_retries=settings.resolver_max_retries,
        base_delay_ms=settings.resolver_base_delay_ms,
        max_delay_ms=settings.resolver_max_delay_ms,
    )


def get_link_generator() -> LinkGenerator:
    settings = get_settings()
    return LinkGenerator(
        settings.link_config(),
        qr_max_chars=settings.qr_max_chars,
        nfc_max_bytes=settings.nfc_max_bytes,
    )


async def resolve_or_raise(resolver: AutomationResolver, automation_id: str) -> ResolveResult:
    """Resolve; a failed result is raised so the error handler can map it."""
    result = await resolver.resolve(automation_id)
    if not result.ok:
        raise result.error
    return result


async def record_link_event(
    db: AsyncSession,
    url: str,
    source: TransportSource,
    outcome: str,
    intent: LinkIntent | None = None,
    automation_id: str | None = None,
    error_code: str | None = None,
) -> None:
    db.add(LinkEvent(
        url=url,
        source=source.value,
        intent_kind=intent.kind.value if intent else None,
        automation_id=intent.automation_id if intent else automation_id,
        outcome=outcome,
        error_code=error_code,
    ))
    await db.commit()


@router.post("/links/classify", response_model=ClassifyResponse)
async def classify_link(
    body: ClassifyRequest, db: AsyncSession = Depends(get_db),
):
    """Classify a URL the way the dispatcher would."""
    config = get_settings().link_config()
    intent = link_codec.parse(body.url, config)
    actionable = link_codec.is_actionable_domain(body.url, config)
    if intent is None and actionable:
        logger.warning(
            "Link on our domain did not classify",
            extra={"source": body.source.value},
        )
    await record_link_event(
        db, body.url, body.source,
        outcome="classified" if intent else "ignored",
        intent=intent,
    )
    return ClassifyResponse(
        intent=IntentResponse.from_intent(intent) if intent else None,
        actionable_domain=actionable,
    )


@router.get(
    "/automations/{automation_id}/links",
    response_model=LinkArtifactsResponse,
)
async def get_link_artifacts(
    automation_id: str,
    emergency: bool = Query(False),
    share: bool = Query(False),
    embed: bool = Query(False),
    resolver: AutomationResolver = Depends(get_resolver),
    generator: LinkGenerator = Depends(get_link_generator),
):
    """App, universal, web-fallback, QR and NFC payloads for one automation."""
    if share and emergency:
        raise RequestValidationError([{
            "loc": ("query", "share"),
            "msg": "share and emergency cannot both be set",
            "type": "value_error",
        }])
    result = await resolve_or_raise(resolver, automation_id)
    artifacts = generator.generate(
        result.automation, emergency=emergency, share=share, embed=embed,
    )
    return LinkArtifactsResponse(**artifacts.to_dict())
