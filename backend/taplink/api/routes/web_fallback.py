"""Web Fallback Routes — what universal links serve when the app is not installed.

Invariants:
    - /emergency/{id}?data=... is answered from the embedded payload alone (store not consulted)
    - Without usable data every route resolves the id like the dispatcher does
    - Each step is flagged web_compatible by the Fallback Interpreter's handler table
    - Every request writes one LinkEvent row

Design Decisions:
    - No prefix: these paths are the universal links themselves (<web_domain>/link/<id>)
    - Invalid data falls back to a resolve instead of erroring: a damaged QR code
      still leads somewhere useful when the network is up
"""

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from taplink.config import get_settings
from taplink.core import link_codec
from taplink.core.automation import AutomationSummary
from taplink.core.domain_types import IntentKind, TransportSource
from taplink.core.errors import TapLinkError
from taplink.infrastructure.database import get_db
from taplink.schemas.links import WebFallbackResponse
from taplink.services.automation_resolver import AutomationResolver
from taplink.services.fallback_interpreter import handler_for
from taplink.api.routes.links import get_resolver, record_link_event, resolve_or_raise

logger = logging.getLogger(__name__)
router = APIRouter(tags=["web-fallback"])


def _render(
    summary: AutomationSummary,
    kind: IntentKind,
    *,
    emergency: bool = False,
    offline: bool = False,
) -> WebFallbackResponse:
    links = link_codec.build(summary.id, kind, config=get_settings().link_config())
    compatible = [s.enabled and handler_for(s.kind) is not None for s in summary.steps]
    return WebFallbackResponse.from_summary(
        summary, compatible=compatible, app_link=links.app_link,
        emergency=emergency, offline=offline,
    )


async def _resolve_and_render(
    request: Request,
    automation_id: str,
    kind: IntentKind,
    resolver: AutomationResolver,
    db: AsyncSession,
) -> WebFallbackResponse:
    url = str(request.url)
    try:
        result = await resolve_or_raise(resolver, automation_id)
    except TapLinkError as e:
        await record_link_event(
            db, url, TransportSource.RUNTIME, outcome="failed",
            automation_id=automation_id, error_code=e.code,
        )
        raise
    await record_link_event(
        db, url, TransportSource.RUNTIME, outcome="presented",
        automation_id=automation_id,
        error_code=result.error.code if result.error else None,
    )
    return _render(result.automation, kind, emergency=kind == IntentKind.EMERGENCY)


@router.get("/link/{automation_id}", response_model=WebFallbackResponse)
async def universal_link(
    automation_id: str,
    request: Request,
    resolver: AutomationResolver = Depends(get_resolver),
    db: AsyncSession = Depends(get_db),
):
    return await _resolve_and_render(
        request, automation_id, IntentKind.AUTOMATION, resolver, db,
    )


@router.get("/run/{automation_id}", response_model=WebFallbackResponse)
async def run_link(
    automation_id: str,
    request: Request,
    resolver: AutomationResolver = Depends(get_resolver),
    db: AsyncSession = Depends(get_db),
):
    return await _resolve_and_render(
        request, automation_id, IntentKind.AUTOMATION, resolver, db,
    )


@router.get("/emergency/{automation_id}", response_model=WebFallbackResponse)
async def emergency_link(
    automation_id: str,
    request: Request,
    data: str | None = Query(None),
    resolver: AutomationResolver = Depends(get_resolver),
    db: AsyncSession = Depends(get_db),
):
    """Serve the embedded payload offline; resolve only when there is none."""
    payload = link_codec.load_payload(data)
    if payload is None:
        if data:
            logger.info(
                "Emergency link data undecodable, resolving instead",
                extra={"automation_id": automation_id},
            )
        return await _resolve_and_render(
            request, automation_id, IntentKind.EMERGENCY, resolver, db,
        )
    await record_link_event(
        db, str(request.url), TransportSource.QR, outcome="presented",
        automation_id=automation_id,
    )
    return _render(
        payload.to_summary(automation_id), IntentKind.EMERGENCY,
        emergency=True, offline=True,
    )
