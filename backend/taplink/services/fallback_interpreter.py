"""Fallback Interpreter — runs a closed subset of step kinds without the native Engine.

Invariants:
    - Handler table is total over StepKind; import fails if a kind is missing
    - Supported kinds are exactly FALLBACK_KINDS; every other kind maps to None (incompatible)
    - Steps run strictly in declared order, one StepResult per declared step
    - A failing step never aborts its siblings (fail-open, partial success)
    - Only HostCapabilities is touched: user-visible intents, no scheduling, no device config
    - delay suspends this coroutine only, capped at max_delay_seconds

Design Decisions:
    - Module-level dict of plain async functions over a class hierarchy: every
      kind -> handler mapping visible in one place, totality checked once at import
    - PermissionDeniedError is its own status, not "failed": the user can fix it
      and rescan, which is not true for a broken step
    - "copy" text action shows the text instead: the host offers no clipboard access
"""

import asyncio
import inspect
import logging
import math
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

from taplink.core.automation import AutomationSummary, Step
from taplink.core.domain_types import FALLBACK_KINDS, StepKind, StepStatus
from taplink.core.embedded_payload import EmbeddedPayload
from taplink.core.errors import IncompatibleStepError, PermissionDeniedError
from taplink.core.execution import ExecutionReport, StepResult
from taplink.core.repository_protocols import HostCapabilities, StepCallbacks

logger = logging.getLogger(__name__)

_VARIABLE_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")
MAPS_URL = "https://maps.google.com/?q={lat},{lng}"
DEFAULT_DELAY_MS = 1000


# ─── Run context ─────────────────────────────────────────────────

@dataclass
class _RunContext:
    host: HostCapabilities
    max_delay_seconds: float
    location_timeout_seconds: float
    variables: dict[str, Any] = field(default_factory=dict)


async def invoke_callback(callback: Callable | None, *args: Any) -> None:
    """Call a sync or async hook. Hook errors are logged, never propagated."""
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning(f"Step hook {getattr(callback, '__name__', callback)!r} raised: {e}")


def substitute_variables(value: Any, variables: dict[str, Any]) -> Any:
    """Replace {{name}} references in strings. Unknown names stay as written."""
    if not isinstance(value, str) or "{{" not in value:
        return value

    def repl(match: re.Match) -> str:
        name = match.group(1)
        if name in variables:
            return str(variables[name])
        return match.group(0)

    return _VARIABLE_RE.sub(repl, value)


def _require(config: dict, key: str, kind: str) -> str:
    value = config.get(key)
    if value is None or str(value).strip() == "":
        raise ValueError(f"{kind} step needs a {key}")
    return str(value).strip()


async def _open(ctx: _RunContext, uri: str) -> None:
    if not await ctx.host.open_uri(uri):
        raise RuntimeError(f"Host could not open {uri.split(':', 1)[0]}: URI")


# ─── Handlers ────────────────────────────────────────────────────

async def _run_notification(ctx: _RunContext, config: dict) -> dict:
    title = config.get("title") or "Automation"
    message = config.get("message") or ""
    await ctx.host.show_message(str(title), str(message))
    return {"action": "notification_shown", "title": title, "message": message}


async def _run_sms(ctx: _RunContext, config: dict) -> dict:
    number = _require(config, "phoneNumber", "SMS")
    message = str(config.get("message") or "")
    await _open(ctx, f"sms:{number}?body={quote(message, safe='')}")
    return {"action": "sms_composed", "phoneNumber": number}


async def _run_call(ctx: _RunContext, config: dict) -> dict:
    number = _require(config, "phoneNumber", "Call")
    await _open(ctx, f"tel:{number}")
    return {"action": "call_started", "phoneNumber": number}


async def _run_email(ctx: _RunContext, config: dict) -> dict:
    address = _require(config, "email", "Email")
    subject = quote(str(config.get("subject") or ""), safe="")
    body = quote(str(config.get("message") or ""), safe="")
    await _open(ctx, f"mailto:{address}?subject={subject}&body={body}")
    return {"action": "email_composed", "email": address}


async def _run_open_url(ctx: _RunContext, config: dict) -> dict:
    url = _require(config, "url", "Open URL")
    await _open(ctx, url)
    return {"action": "url_opened", "url": url}


async def _run_delay(ctx: _RunContext, config: dict) -> dict:
    raw = config.get("delay", config.get("duration", DEFAULT_DELAY_MS))
    try:
        delay_ms = float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Delay step has a non-numeric duration: {raw!r}")
    if not math.isfinite(delay_ms):
        raise ValueError(f"Delay step has a non-finite duration: {raw!r}")
    delay_ms = max(delay_ms, 0.0)
    seconds = min(delay_ms / 1000, ctx.max_delay_seconds)
    await asyncio.sleep(seconds)
    return {"action": "delay_completed", "delayed_ms": int(seconds * 1000)}


async def _run_text(ctx: _RunContext, config: dict) -> dict:
    action = str(config.get("action") or "display")
    text1 = config.get("text1")
    if text1 is None:
        text1 = config.get("text")
    text1 = str(text1 or "")
    text2 = str(config.get("text2") or "")
    separator = config.get("separator")

    if action == "combine":
        result = f"{text1}{separator if separator is not None else ' '}{text2}"
    elif action == "replace":
        result = text1.replace(text2, str(separator or ""), 1) if text2 else text1
    elif action == "format":
        result = text1.upper()
    elif action in ("display", "copy"):
        await ctx.host.show_message("Text", text1)
        result = text1
    else:
        raise ValueError(f"Unsupported text action: {action}")

    ctx.variables["text_result"] = result
    if config.get("variable"):
        ctx.variables[str(config["variable"])] = result
    return {"action": action, "result": result}


async def _run_location(ctx: _RunContext, config: dict) -> dict:
    action = str(config.get("action") or "get_current")

    if action == "open_maps" and config.get("latitude") is not None and config.get("longitude") is not None:
        lat, lng = float(config["latitude"]), float(config["longitude"])
    else:
        try:
            lat, lng = await asyncio.wait_for(
                ctx.host.get_location(), timeout=ctx.location_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise TimeoutError(
                f"Location not available within {ctx.location_timeout_seconds}s"
            )

    maps_url = MAPS_URL.format(lat=lat, lng=lng)
    ctx.variables["latitude"], ctx.variables["longitude"] = lat, lng

    if action == "share_location":
        number = _require(config, "phoneNumber", "Share location")
        message = f"{config.get('message') or 'My location'}: {maps_url}"
        await _open(ctx, f"sms:{number}?body={quote(message, safe='')}")
        return {"action": "location_shared", "latitude": lat, "longitude": lng}
    if action == "open_maps":
        await _open(ctx, maps_url)
        return {"action": "maps_opened", "latitude": lat, "longitude": lng}
    if action == "get_current":
        return {"action": "location_obtained", "latitude": lat, "longitude": lng}
    raise ValueError(f"Unsupported location action: {action}")


StepHandler = Callable[[_RunContext, dict], Awaitable[dict]]

# None = needs the native Engine. Adding a kind to StepKind requires an entry here.
_HANDLERS: dict[StepKind, StepHandler | None] = {
    StepKind.NOTIFICATION: _run_notification,
    StepKind.SMS: _run_sms,
    StepKind.CALL: _run_call,
    StepKind.EMAIL: _run_email,
    StepKind.OPEN_URL: _run_open_url,
    StepKind.DELAY: _run_delay,
    StepKind.TEXT: _run_text,
    StepKind.LOCATION: _run_location,
    StepKind.WEBHOOK: None,
    StepKind.CONDITION: None,
    StepKind.VARIABLE: None,
    StepKind.GET_VARIABLE: None,
    StepKind.CLIPBOARD: None,
    StepKind.SHARE_TEXT: None,
    StepKind.LOOP: None,
    StepKind.MATH: None,
    StepKind.PHOTO: None,
    StepKind.APP: None,
    StepKind.PROMPT_INPUT: None,
    StepKind.UNKNOWN: None,
}

_missing = set(StepKind) - set(_HANDLERS)
if _missing:
    raise RuntimeError(
        f"Fallback handler table is missing kinds: {sorted(k.value for k in _missing)}"
    )
if {k for k, h in _HANDLERS.items() if h is not None} != FALLBACK_KINDS:
    raise RuntimeError("Fallback handler table disagrees with FALLBACK_KINDS")


def handler_for(kind: StepKind) -> StepHandler | None:
    return _HANDLERS[kind]


# ─── Interpreter ─────────────────────────────────────────────────

class FallbackInterpreter:
    """Executes embedded payloads or summaries through HostCapabilities only."""

    def __init__(
        self,
        host: HostCapabilities,
        max_delay_seconds: float = 30.0,
        location_timeout_seconds: float = 10.0,
    ):
        self._host = host
        self.max_delay_seconds = max_delay_seconds
        self.location_timeout_seconds = location_timeout_seconds

    def incompatible_steps(self, automation: AutomationSummary) -> list[Step]:
        """Enabled steps this interpreter would record as incompatible."""
        return [s for s in automation.enabled_steps if _HANDLERS[s.kind] is None]

    async def execute(
        self,
        target: EmbeddedPayload | AutomationSummary,
        variables: dict[str, Any] | None = None,
        callbacks: StepCallbacks | None = None,
    ) -> ExecutionReport:
        """Run every step in order and aggregate the results."""
        if isinstance(target, EmbeddedPayload):
            steps = tuple(s.to_step(i) for i, s in enumerate(target.steps))
        else:
            steps = target.steps
        callbacks = callbacks or StepCallbacks()
        ctx = _RunContext(
            host=self._host,
            max_delay_seconds=self.max_delay_seconds,
            location_timeout_seconds=self.location_timeout_seconds,
            variables=dict(variables or {}),
        )

        logger.info(
            f"Fallback run of {target.title!r}: {len(steps)} steps",
        )
        started = time.monotonic()
        results = []
        for index, step in enumerate(steps):
            results.append(await self._run_step(ctx, index, step, callbacks))

        report = ExecutionReport.from_results(
            results, execution_time_ms=int((time.monotonic() - started) * 1000),
        )
        logger.info(
            f"Fallback run finished: success={report.success} "
            f"{report.steps_completed}/{report.total_steps}",
        )
        return report

    async def _run_step(
        self,
        ctx: _RunContext,
        index: int,
        step: Step,
        callbacks: StepCallbacks,
    ) -> StepResult:
        kind = step.wire_kind
        log_extra = {"step_index": index, "step_kind": kind}

        if not step.enabled:
            return StepResult(index=index, kind=kind, status=StepStatus.SKIPPED, step_id=step.id)

        handler = _HANDLERS[step.kind]
        if handler is None:
            logger.info("Step needs the app, skipping", extra=log_extra)
            incompatible = IncompatibleStepError(kind)
            return StepResult(
                index=index, kind=kind, status=StepStatus.INCOMPATIBLE, step_id=step.id,
                error=incompatible.message, error_code=incompatible.code,
            )

        await invoke_callback(callbacks.on_step_start, index, step)
        config = {k: substitute_variables(v, ctx.variables) for k, v in step.config.items()}
        try:
            detail = await handler(ctx, config)
        except PermissionDeniedError as e:
            logger.info(f"Permission denied: {e.message}", extra=log_extra)
            await invoke_callback(callbacks.on_step_error, index, e.message)
            return StepResult(
                index=index, kind=kind, status=StepStatus.PERMISSION_DENIED,
                step_id=step.id, error=e.message, error_code=e.code,
            )
        except Exception as e:
            logger.warning(f"Step failed: {e}", extra=log_extra)
            await invoke_callback(callbacks.on_step_error, index, str(e))
            return StepResult(
                index=index, kind=kind, status=StepStatus.FAILED,
                step_id=step.id, error=str(e) or type(e).__name__,
                error_code="STEP_FAILED",
            )

        await invoke_callback(callbacks.on_step_complete, index, detail)
        return StepResult(
            index=index, kind=kind, status=StepStatus.OK, step_id=step.id, detail=detail,
        )
