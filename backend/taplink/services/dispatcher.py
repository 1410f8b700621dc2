"""Link Dispatcher — drives one transport event from URL to a terminal outcome.

Invariants:
    - At most one cycle in flight per dispatcher: dispatch() and submit() serialize FIFO
    - Every side effect is preceded by exactly one explicit confirmation
    - Share intents end in Presented without touching Resolver, Engine or Interpreter
    - Emergency intents with an embedded payload never call the Resolver
    - Every cycle ends terminal and is reported through on_result, never swallowed.
      An unexpected exception ends it Failed with DISPATCH_ERROR
    - cancel() and close() before Executing end the cycle Ignored with no side effect
    - The confirmation slot is released on every terminal transition

Design Decisions:
    - asyncio.Lock as the queue: waiters are woken in arrival order, so a second scan
      during a confirmation waits its turn instead of stacking a second prompt
    - The resolve and the confirmation wait each run as their own task so cancel()/close()
      can abort them without cancelling the dispatch coroutine that owns the cycle
    - The cancel reason is checked again after every wait: a cancel that lands between
      the wait finishing and the cycle moving on is still honored
    - cancel() during Executing is a no-op: side effects already started, the run reports
    - Hook exceptions are logged and dropped, the cycle outcome never depends on a hook
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from taplink.config import Settings, get_settings
from taplink.core import link_codec
from taplink.core.automation import AutomationSummary, Step
from taplink.core.dispatch_state import ConfirmationSlot, DispatchCycle, can_transition
from taplink.core.domain_types import (
    DispatchState, ExecutionVia, IntentKind, StepStatus, TransportSource,
)
from taplink.core.errors import ExecutionFailureError, TapLinkError
from taplink.core.execution import ExecutionReport, StepResult
from taplink.core.format_messages import (
    UserMessage,
    format_confirmation,
    format_dispatch_fault,
    format_execution_crash,
    format_ignored,
    format_presented,
    format_resolve_error,
    format_result,
)
from taplink.core.link_codec import DEFAULT_LINK_CONFIG, LinkConfig, LinkIntent
from taplink.core.repository_protocols import (
    AutomationEngine, AutomationStore, ConfirmationPort, HostCapabilities, StepCallbacks,
)
from taplink.infrastructure.automation_store import SqlAutomationStore
from taplink.services.automation_resolver import AutomationResolver
from taplink.services.fallback_interpreter import FallbackInterpreter, invoke_callback

logger = logging.getLogger(__name__)

S = DispatchState


@dataclass
class DispatchHooks:
    """Presentation-layer callbacks. Sync or async; exceptions are logged only."""
    on_step_start: Callable[[int, Step], Any] | None = None
    on_step_complete: Callable[[int, Any], Any] | None = None
    on_step_error: Callable[[int, str], Any] | None = None
    on_result: Callable[[DispatchCycle, UserMessage], Any] | None = None


class LinkDispatcher:
    """Classify → resolve → confirm → execute, one transport event at a time."""

    def __init__(
        self,
        resolver: AutomationResolver,
        confirmation: ConfirmationPort,
        interpreter: FallbackInterpreter,
        engine: AutomationEngine | None = None,
        config: LinkConfig = DEFAULT_LINK_CONFIG,
        hooks: DispatchHooks | None = None,
    ):
        self._resolver = resolver
        self._confirmation = confirmation
        self._interpreter = interpreter
        self._engine = engine
        self._config = config
        self.hooks = hooks or DispatchHooks()

        self._lock = asyncio.Lock()
        self._slot = ConfirmationSlot()
        self._active: DispatchCycle | None = None
        self._wait_task: asyncio.Future | None = None
        self._cancel_reason: str | None = None
        self._closed = False
        self._tasks: set[asyncio.Task] = set()

    # ─── Public API ──────────────────────────────────────────────

    @property
    def active_cycle(self) -> DispatchCycle | None:
        return self._active

    @property
    def confirming(self) -> DispatchCycle | None:
        """The cycle currently awaiting confirmation, if any."""
        return self._slot.owner

    @property
    def closed(self) -> bool:
        return self._closed

    async def dispatch(
        self, url: str, source: TransportSource = TransportSource.RUNTIME,
    ) -> DispatchCycle:
        """Run one cycle to a terminal state. Waits behind any cycle in flight."""
        cycle = DispatchCycle(url=url, source=source)
        async with self._lock:
            self._active = cycle
            self._cancel_reason = None
            try:
                await self._run(cycle)
            except asyncio.CancelledError:
                if can_transition(cycle.state, S.IGNORED):
                    await self._finish(cycle, S.IGNORED, format_ignored("closed"))
                raise
            except Exception as e:
                await self._fault(cycle, e)
            finally:
                self._active = None
                self._cancel_reason = None
                self._slot.release(cycle)
        return cycle

    def submit(
        self, url: str, source: TransportSource = TransportSource.RUNTIME,
    ) -> asyncio.Task:
        """Fire-and-forget dispatch for transport callbacks. Order is preserved."""
        task = asyncio.get_running_loop().create_task(self.dispatch(url, source))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def cancel(self, reason: str = "cancelled") -> bool:
        """Abort the cycle in flight unless it is already executing.

        Returns False when there is no cycle, or when side effects have started.
        """
        cycle = self._active
        if cycle is None or cycle.is_terminal or cycle.state == S.EXECUTING:
            return False
        self._cancel_reason = reason
        if self._wait_task is not None and not self._wait_task.done():
            self._wait_task.cancel()
        return True

    async def close(self) -> None:
        """End the session: the cycle in flight and queued events end Ignored."""
        self._closed = True
        self.cancel("closed")
        pending = [t for t in self._tasks if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ─── Cycle ───────────────────────────────────────────────────

    async def _run(self, cycle: DispatchCycle) -> None:
        cycle.transition(S.CLASSIFYING)
        if self._closed:
            await self._finish(cycle, S.IGNORED, format_ignored("closed"))
            return

        intent = link_codec.parse(cycle.url, self._config)
        if intent is None:
            if link_codec.is_actionable_domain(cycle.url, self._config):
                logger.warning(
                    "Link on our domain did not classify",
                    extra={"source": cycle.source.value},
                )
            await self._finish(cycle, S.IGNORED, format_ignored("unrecognized"), log=False)
            return
        cycle.intent = intent

        if intent.kind == IntentKind.SHARE:
            await self._finish(cycle, S.PRESENTED, format_presented(intent.automation_id))
            return

        warning: TapLinkError | None = None
        if intent.kind == IntentKind.EMERGENCY and intent.embedded_payload is not None:
            cycle.automation = intent.embedded_payload.to_summary(intent.automation_id)
        else:
            cycle.transition(S.RESOLVING)
            result = await self._wait(self._resolver.resolve(intent.automation_id))
            if await self._honor_cancel(cycle):
                return
            if not result.ok:
                error = result.error
                cycle.error_code = error.code
                await self._finish(
                    cycle, S.FAILED, format_resolve_error(error, intent.automation_id),
                )
                return
            cycle.automation = result.automation
            warning = result.error

        cycle.transition(S.CONFIRMING)
        accepted = await self._confirm(cycle, intent, warning)
        if await self._honor_cancel(cycle):
            return
        if not accepted:
            await self._finish(cycle, S.IGNORED, format_ignored("declined"))
            return

        cycle.transition(S.EXECUTING)
        await self._execute(cycle, intent)

    async def _wait(self, awaitable: Any) -> Any:
        """Await one suspension point that cancel() may abort. None when aborted."""
        self._wait_task = asyncio.ensure_future(awaitable)
        try:
            return await self._wait_task
        except asyncio.CancelledError:
            if self._cancel_reason is None:
                raise
            return None
        finally:
            self._wait_task = None

    async def _honor_cancel(self, cycle: DispatchCycle) -> bool:
        if self._cancel_reason is None:
            return False
        await self._finish(cycle, S.IGNORED, format_ignored(self._cancel_reason))
        return True

    async def _confirm(
        self,
        cycle: DispatchCycle,
        intent: LinkIntent,
        warning: TapLinkError | None,
    ) -> bool:
        self._slot.claim(cycle)
        prompt = format_confirmation(cycle.automation, intent.kind, warning=warning)
        try:
            return bool(await self._wait(self._confirmation.confirm(prompt)))
        except Exception as e:
            logger.error(
                f"Confirmation prompt failed: {e}",
                extra=self._log_extra(cycle),
            )
            return False

    async def _fault(self, cycle: DispatchCycle, error: Exception) -> None:
        """End a cycle that raised unexpectedly. Already-terminal cycles are left as is."""
        logger.error(
            f"Dispatch raised {type(error).__name__}: {error}",
            exc_info=error,
            extra=self._log_extra(cycle),
        )
        if not can_transition(cycle.state, S.FAILED):
            return
        cycle.error_code = "DISPATCH_ERROR"
        automation_id = cycle.intent.automation_id if cycle.intent else None
        await self._finish(cycle, S.FAILED, format_dispatch_fault(automation_id))

    async def _execute(self, cycle: DispatchCycle, intent: LinkIntent) -> None:
        automation = cycle.automation
        use_fallback = self._engine is None or intent.embedded_payload is not None
        cycle.via = ExecutionVia.FALLBACK if use_fallback else ExecutionVia.ENGINE
        logger.info(
            f"Executing via {cycle.via.value}",
            extra=self._log_extra(cycle),
        )

        if use_fallback:
            target = intent.embedded_payload or automation
            report = await self._interpreter.execute(
                target, callbacks=self._hook_callbacks(),
            )
            crashed = None
        else:
            report, crashed = await self._run_engine(cycle, automation, intent)

        cycle.report = report
        if report.success:
            await self._finish(cycle, S.SUCCEEDED, format_result(automation.title, report))
            return

        failure = ExecutionFailureError(
            report.error or "Execution failed", report.steps_completed, report.total_steps,
        )
        cycle.error_code = failure.code
        message = (
            format_execution_crash(automation.title, crashed)
            if crashed else format_result(automation.title, report)
        )
        await self._finish(cycle, S.FAILED, message)

    async def _run_engine(
        self,
        cycle: DispatchCycle,
        automation: AutomationSummary,
        intent: LinkIntent,
    ) -> tuple[ExecutionReport, str | None]:
        """Run the native Engine. Returns (report, crash message or None)."""
        results: list[StepResult] = []

        def kind_at(index: int) -> str:
            if 0 <= index < len(automation.steps):
                return automation.steps[index].wire_kind
            return "unknown"

        async def on_start(index: int, step: Step) -> None:
            await invoke_callback(self.hooks.on_step_start, index, step)

        async def on_complete(index: int, detail: Any) -> None:
            results.append(StepResult(
                index=index, kind=kind_at(index), status=StepStatus.OK,
                detail=detail if isinstance(detail, dict) else {"result": detail},
            ))
            await invoke_callback(self.hooks.on_step_complete, index, detail)

        async def on_error(index: int, error: str) -> None:
            results.append(StepResult(
                index=index, kind=kind_at(index), status=StepStatus.FAILED,
                error=error, error_code="STEP_FAILED",
            ))
            await invoke_callback(self.hooks.on_step_error, index, error)

        context = {
            "source": cycle.source.value,
            "intent_kind": intent.kind.value,
            "action": intent.action,
            "variables": {},
        }
        callbacks = StepCallbacks(on_start, on_complete, on_error)
        try:
            raw = await self._engine.execute(automation, context, callbacks)
        except Exception as e:
            logger.error(f"Engine raised: {e}", extra=self._log_extra(cycle))
            report = ExecutionReport(
                success=False,
                per_step_results=tuple(results),
                steps_completed=sum(1 for r in results if r.status == StepStatus.OK),
                total_steps=len(automation.enabled_steps),
                error=str(e) or type(e).__name__,
            )
            return report, report.error
        return ExecutionReport.from_engine(raw or {}, results), None

    # ─── Helpers ─────────────────────────────────────────────────

    def _hook_callbacks(self) -> StepCallbacks:
        return StepCallbacks(
            on_step_start=self.hooks.on_step_start,
            on_step_complete=self.hooks.on_step_complete,
            on_step_error=self.hooks.on_step_error,
        )

    async def _finish(
        self,
        cycle: DispatchCycle,
        state: DispatchState,
        message: UserMessage,
        log: bool = True,
    ) -> None:
        cycle.transition(state)
        cycle.message = str(message)
        self._slot.release(cycle)
        if log:
            level = logging.WARNING if state == S.FAILED else logging.INFO
            logger.log(level, f"Dispatch ended {state.value}", extra=self._log_extra(cycle))
        await invoke_callback(self.hooks.on_result, cycle, message)

    @staticmethod
    def _log_extra(cycle: DispatchCycle) -> dict:
        return {
            "automation_id": cycle.intent.automation_id if cycle.intent else None,
            "intent_kind": cycle.intent.kind.value if cycle.intent else None,
            "dispatch_state": cycle.state.value,
            "error_code": cycle.error_code,
            "source": cycle.source.value,
        }


def build_dispatcher(
    confirmation: ConfirmationPort,
    host: HostCapabilities,
    *,
    store: AutomationStore | None = None,
    engine: AutomationEngine | None = None,
    hooks: DispatchHooks | None = None,
    settings: Settings | None = None,
) -> LinkDispatcher:
    """Wire a dispatcher from Settings. store defaults to the SQL store."""
    settings = settings or get_settings()
    resolver = AutomationResolver(
        store if store is not None else SqlAutomationStore(),
        timeout_seconds=settings.resolver_timeout_seconds,
        max_retries=settings.resolver_max_retries,
        base_delay_ms=settings.resolver_base_delay_ms,
        max_delay_ms=settings.resolver_max_delay_ms,
    )
    interpreter = FallbackInterpreter(
        host,
        max_delay_seconds=settings.fallback_max_delay_seconds,
        location_timeout_seconds=settings.fallback_location_timeout_seconds,
    )
    return LinkDispatcher(
        resolver, confirmation, interpreter,
        engine=engine, config=settings.link_config(), hooks=hooks,
    )
