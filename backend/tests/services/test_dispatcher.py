"""Link Dispatcher — end-to-end dispatch cycles with doubles at every boundary.

Tests cover:
    - NFC happy path: universal link → Confirming with title → accept → Engine 2/2 → Succeeded
    - Legacy scheme with bad id: MalformedId before any store call, no prompt
    - NotFound / Transient: Failed with distinct codes and wording
    - Emergency offline: embedded payload runs through the interpreter, resolver never called
    - Share: Presented without resolver, prompt or execution
    - Decline, cancel() and close() end Ignored with no side effects, both while
      Confirming and while Resolving; cancel() is refused once Executing
    - A store that raises anything, or returns an unreadable record, ends Failed with
      a typed code; a resolver crash ends Failed with DISPATCH_ERROR and reaches on_result
    - Race: two events in one tick never produce two simultaneous confirmations
    - Engine failure and Engine crash both end Failed and reach on_result
    - Foreign URLs are dropped silently; misses on our domain are logged
    - build_dispatcher wires link config and limits from Settings
"""

import asyncio
from unittest.mock import AsyncMock

from taplink.config import Settings
from taplink.core import link_codec
from taplink.core.domain_types import DispatchState, ExecutionVia, TransportSource
from taplink.core.embedded_payload import EmbeddedPayload, EmbeddedStep
from taplink.services.automation_resolver import AutomationResolver
from taplink.services.dispatcher import DispatchHooks, LinkDispatcher, build_dispatcher
from taplink.services.fallback_interpreter import FallbackInterpreter
from tests.services.fakes import FakeConfirmation, FakeEngine, GatedStore

S = DispatchState
AID = "3f2b8c1e-9d4a-4e6b-8a7c-1b2d3e4f5a6b"
OTHER = "9a8b7c6d-5e4f-4a3b-9c2d-1e0f9a8b7c6d"


def _record(automation_id=AID, title="Leaving Work"):
    return {
        "id": automation_id,
        "title": title,
        "steps": [
            {"type": "sms", "config": {"phoneNumber": "+15550100", "message": "On my way"}},
            {"type": "notification", "config": {"message": "Sent"}},
        ],
    }


def _store(records=None):
    records = records if records is not None else {AID: _record(), OTHER: _record(OTHER, "Other")}
    store = AsyncMock()
    store.get_by_id.side_effect = lambda automation_id: records.get(automation_id)
    return store


def _dispatcher(host, store=None, confirmation=None, engine=None, hooks=None):
    store = store if store is not None else _store()
    return LinkDispatcher(
        resolver=AutomationResolver(store, max_retries=0),
        confirmation=confirmation or FakeConfirmation(),
        interpreter=FallbackInterpreter(host),
        engine=engine,
        hooks=hooks,
    )


async def _wait_for(predicate, rounds: int = 200):
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never met")


# ─── Automation intents ─────────────────────────────────────────

async def test_nfc_happy_path(host):
    confirmation = FakeConfirmation()
    engine = FakeEngine()
    results = []
    hooks = DispatchHooks(on_result=lambda cycle, message: results.append(message))
    dispatcher = _dispatcher(host, confirmation=confirmation, engine=engine, hooks=hooks)

    cycle = await dispatcher.dispatch(f"https://zaptap.cloud/link/{AID}", TransportSource.NFC)

    assert cycle.history == [
        S.IDLE, S.CLASSIFYING, S.RESOLVING, S.CONFIRMING, S.EXECUTING, S.SUCCEEDED,
    ]
    assert confirmation.prompts[0].automation_id == AID
    assert "Leaving Work" in confirmation.prompts[0].body
    assert cycle.via == ExecutionVia.ENGINE
    assert (cycle.report.steps_completed, cycle.report.total_steps) == (2, 2)
    assert len(cycle.report.per_step_results) == 2
    assert results[0].title == "Automation Complete"
    assert engine.calls[0][1]["source"] == "nfc"
    assert dispatcher.confirming is None


async def test_legacy_scheme_bad_id_fails_before_store(host):
    store = _store()
    confirmation = FakeConfirmation()
    dispatcher = _dispatcher(host, store=store, confirmation=confirmation)

    cycle = await dispatcher.dispatch("shortcuts-like://automation/abc123")

    assert cycle.intent.automation_id == "abc123"
    assert cycle.state == S.FAILED
    assert cycle.error_code == "MALFORMED_ID"
    assert "Invalid Automation Link" in cycle.message
    store.get_by_id.assert_not_called()
    assert confirmation.prompts == []


async def test_not_found_and_transient_are_distinct(host):
    missing = "00000000-0000-4000-8000-000000000000"
    store = _store()
    dispatcher = _dispatcher(host, store=store)
    not_found = await dispatcher.dispatch(f"zaptap://automation/{missing}")

    broken = AsyncMock()
    broken.get_by_id.side_effect = ConnectionError("offline")
    transient = await _dispatcher(host, store=broken).dispatch(f"zaptap://automation/{AID}")

    assert not_found.error_code == "NOT_FOUND"
    assert transient.error_code == "TRANSIENT_ERROR"
    assert not_found.state == transient.state == S.FAILED
    assert not_found.message != transient.message


async def test_ambiguous_proceeds_with_warning(host):
    store = AsyncMock()
    store.get_by_id.return_value = [_record(title="First"), _record(title="Second")]
    confirmation = FakeConfirmation()
    cycle = await _dispatcher(host, store=store, confirmation=confirmation).dispatch(
        f"zaptap://automation/{AID}",
    )
    assert cycle.state == S.SUCCEEDED
    assert "First" in confirmation.prompts[0].body
    assert confirmation.prompts[0].warning is not None


async def test_without_engine_uses_fallback(host):
    cycle = await _dispatcher(host).dispatch(f"zaptap://automation/{AID}")
    assert cycle.via == ExecutionVia.FALLBACK
    assert cycle.state == S.SUCCEEDED
    assert host.opened[0].startswith("sms:+15550100")


async def test_decline_runs_nothing(host):
    engine = FakeEngine()
    cycle = await _dispatcher(
        host, confirmation=FakeConfirmation(answer=False), engine=engine,
    ).dispatch(f"zaptap://automation/{AID}")
    assert cycle.state == S.IGNORED
    assert engine.calls == []
    assert host.opened == []


# ─── Emergency and share ────────────────────────────────────────

async def test_emergency_offline_never_resolves(host):
    payload = EmbeddedPayload(
        title="Help",
        steps=(
            EmbeddedStep("sms", {"phoneNumber": "911", "message": "Help"}),
            EmbeddedStep("call", {"phoneNumber": "911"}),
        ),
    )
    url = link_codec.build(AID, emergency=True, embed=True, payload=payload).qr_payload
    store = _store()
    engine = FakeEngine()
    confirmation = FakeConfirmation()
    dispatcher = _dispatcher(host, store=store, confirmation=confirmation, engine=engine)

    cycle = await dispatcher.dispatch(url, TransportSource.QR)

    store.get_by_id.assert_not_called()
    assert engine.calls == []
    assert cycle.history == [S.IDLE, S.CLASSIFYING, S.CONFIRMING, S.EXECUTING, S.SUCCEEDED]
    assert cycle.via == ExecutionVia.FALLBACK
    assert confirmation.prompts[0].emergency
    assert host.opened == ["sms:911?body=Help", "tel:911"]


async def test_emergency_without_payload_resolves(host):
    store = _store()
    cycle = await _dispatcher(host, store=store).dispatch(f"https://zaptap.cloud/emergency/{AID}")
    store.get_by_id.assert_awaited_once_with(AID)
    assert cycle.state == S.SUCCEEDED


async def test_share_is_presented_only(host):
    store = _store()
    confirmation = FakeConfirmation()
    engine = FakeEngine()
    cycle = await _dispatcher(
        host, store=store, confirmation=confirmation, engine=engine,
    ).dispatch(f"zaptap://share/{AID}")
    assert cycle.history == [S.IDLE, S.CLASSIFYING, S.PRESENTED]
    store.get_by_id.assert_not_called()
    assert confirmation.prompts == []
    assert engine.calls == []


# ─── Ignored URLs ───────────────────────────────────────────────

async def test_foreign_url_ignored_silently(host, caplog):
    with caplog.at_level("DEBUG", logger="taplink.services.dispatcher"):
        cycle = await _dispatcher(host).dispatch("https://example.com/link/" + AID)
    assert cycle.state == S.IGNORED
    assert [r for r in caplog.records if r.name == "taplink.services.dispatcher"] == []


async def test_our_domain_miss_is_logged(host, caplog):
    with caplog.at_level("WARNING", logger="taplink.services.dispatcher"):
        cycle = await _dispatcher(host).dispatch("https://zaptap.cloud/pricing")
    assert cycle.state == S.IGNORED
    assert any("did not classify" in r.message for r in caplog.records)


# ─── Concurrency and cancellation ───────────────────────────────

async def test_two_events_in_one_tick_never_confirm_together(host):
    confirmation = FakeConfirmation(gated=True)
    dispatcher = _dispatcher(host, confirmation=confirmation, engine=FakeEngine())

    first = dispatcher.submit(f"zaptap://automation/{AID}", TransportSource.NFC)
    second = dispatcher.submit(f"zaptap://automation/{OTHER}", TransportSource.QR)
    await _wait_for(lambda: len(confirmation.prompts) == 1)
    for _ in range(20):
        await asyncio.sleep(0)

    assert len(confirmation.prompts) == 1
    assert dispatcher.confirming is dispatcher.active_cycle

    confirmation.gate.set()
    c1, c2 = await asyncio.gather(first, second)

    assert confirmation.max_active == 1
    assert [p.automation_id for p in confirmation.prompts] == [AID, OTHER]
    assert c1.state == c2.state == S.SUCCEEDED


async def test_cancel_during_confirmation(host):
    confirmation = FakeConfirmation(gated=True)
    engine = FakeEngine()
    dispatcher = _dispatcher(host, confirmation=confirmation, engine=engine)

    assert dispatcher.cancel() is False
    task = dispatcher.submit(f"zaptap://automation/{AID}")
    await _wait_for(lambda: dispatcher.confirming is not None)
    assert dispatcher.cancel() is True
    cycle = await task

    assert cycle.state == S.IGNORED
    assert "dismissed" in cycle.message
    assert engine.calls == []
    assert dispatcher.confirming is None


async def test_close_ignores_pending_and_queued(host):
    confirmation = FakeConfirmation(gated=True)
    engine = FakeEngine()
    dispatcher = _dispatcher(host, confirmation=confirmation, engine=engine)

    first = dispatcher.submit(f"zaptap://automation/{AID}")
    second = dispatcher.submit(f"zaptap://automation/{OTHER}")
    await _wait_for(lambda: dispatcher.confirming is not None)
    await dispatcher.close()

    assert first.result().state == S.IGNORED
    assert "Session ended" in first.result().message
    assert second.result().state == S.IGNORED
    assert len(confirmation.prompts) == 1
    assert engine.calls == []

    late = await dispatcher.dispatch(f"zaptap://automation/{AID}")
    assert late.state == S.IGNORED


# ─── Cancellation while resolving ───────────────────────────────

async def test_close_during_resolve_never_prompts(host):
    store = GatedStore({AID: _record()})
    confirmation = FakeConfirmation()
    engine = FakeEngine()
    reported = []
    hooks = DispatchHooks(on_result=lambda cycle, message: reported.append(cycle.state))
    dispatcher = _dispatcher(
        host, store=store, confirmation=confirmation, engine=engine, hooks=hooks,
    )

    task = dispatcher.submit(f"https://zaptap.cloud/link/{AID}", TransportSource.NFC)
    await _wait_for(lambda: store.calls)
    assert dispatcher.active_cycle.state == S.RESOLVING
    await asyncio.wait_for(dispatcher.close(), timeout=1)

    cycle = task.result()
    assert cycle.state == S.IGNORED
    assert cycle.history[-2:] == [S.RESOLVING, S.IGNORED]
    assert "Session ended" in cycle.message
    assert store.cancelled == 1
    assert confirmation.prompts == []
    assert engine.calls == []
    assert reported == [S.IGNORED]


async def test_cancel_during_resolve_runs_nothing(host):
    store = GatedStore({AID: _record()})
    confirmation = FakeConfirmation()
    engine = FakeEngine()
    dispatcher = _dispatcher(host, store=store, confirmation=confirmation, engine=engine)

    task = dispatcher.submit(f"zaptap://automation/{AID}")
    await _wait_for(lambda: store.calls)
    assert dispatcher.cancel() is True
    store.gate.set()
    cycle = await asyncio.wait_for(task, timeout=1)

    assert cycle.state == S.IGNORED
    assert "dismissed" in cycle.message
    assert confirmation.prompts == []
    assert engine.calls == []
    assert dispatcher.cancel() is False


async def test_cancel_while_executing_is_refused(host):
    answers = []
    hooks = DispatchHooks(on_step_start=lambda index, step: answers.append(dispatcher.cancel()))
    dispatcher = _dispatcher(host, engine=FakeEngine(), hooks=hooks)

    cycle = await dispatcher.dispatch(f"zaptap://automation/{AID}")

    assert answers == [False, False]
    assert cycle.state == S.SUCCEEDED


# ─── Unexpected faults ──────────────────────────────────────────

async def test_store_runtime_error_ends_failed(host):
    store = AsyncMock()
    store.get_by_id.side_effect = RuntimeError("Database not initialized")
    confirmation = FakeConfirmation()
    results = []
    hooks = DispatchHooks(on_result=lambda cycle, message: results.append(message))
    dispatcher = _dispatcher(host, store=store, confirmation=confirmation, hooks=hooks)

    cycle = await dispatcher.dispatch(f"zaptap://automation/{AID}")

    assert cycle.state == S.FAILED
    assert cycle.error_code == "STORE_ERROR"
    assert [m.title for m in results] == ["Automation Unavailable"]
    assert confirmation.prompts == []
    assert store.get_by_id.await_count == 1


async def test_unreadable_record_ends_failed(host):
    record = _record()
    record["tags"] = 5
    confirmation = FakeConfirmation()
    dispatcher = _dispatcher(host, store=_store({AID: record}), confirmation=confirmation)

    cycle = await dispatcher.dispatch(f"zaptap://automation/{AID}")

    assert cycle.state == S.FAILED
    assert cycle.error_code == "INVALID_RECORD"
    assert cycle.message.startswith("Damaged Automation")
    assert confirmation.prompts == []


async def test_resolver_crash_still_reaches_on_result(host):
    resolver = AsyncMock()
    resolver.resolve.side_effect = RuntimeError("boom")
    results = []
    dispatcher = LinkDispatcher(
        resolver=resolver,
        confirmation=FakeConfirmation(),
        interpreter=FallbackInterpreter(host),
        hooks=DispatchHooks(on_result=lambda cycle, message: results.append(message)),
    )

    cycle = await dispatcher.dispatch(f"zaptap://automation/{AID}")

    assert cycle.state == S.FAILED
    assert cycle.error_code == "DISPATCH_ERROR"
    assert len(results) == 1
    assert AID in results[0].body
    assert dispatcher.active_cycle is None
    assert dispatcher.confirming is None

    resolver.resolve.side_effect = None
    resolver.resolve.return_value = await AutomationResolver(_store(), max_retries=0).resolve(AID)
    follow_up = await dispatcher.dispatch(f"zaptap://automation/{AID}")
    assert follow_up.state == S.SUCCEEDED


# ─── Execution outcomes ─────────────────────────────────────────

async def test_engine_partial_completion_fails(host):
    engine = FakeEngine(result={
        "success": False, "stepsCompleted": 1, "totalSteps": 2, "error": "SMS not sent",
    })
    results = []
    hooks = DispatchHooks(on_result=lambda cycle, message: results.append(message))
    cycle = await _dispatcher(host, engine=engine, hooks=hooks).dispatch(
        f"zaptap://automation/{AID}",
    )
    assert cycle.state == S.FAILED
    assert cycle.error_code == "EXECUTION_FAILURE"
    assert cycle.report.steps_completed == 1
    assert results[0].title == "Automation Failed"
    assert "SMS not sent" in results[0].body


async def test_engine_crash_is_surfaced(host):
    engine = FakeEngine(error=RuntimeError("bridge down"))
    cycle = await _dispatcher(host, engine=engine).dispatch(f"zaptap://automation/{AID}")
    assert cycle.state == S.FAILED
    assert cycle.error_code == "EXECUTION_FAILURE"
    assert cycle.message.startswith("Execution Error")
    assert cycle.report.error == "bridge down"


async def test_raising_hooks_do_not_change_outcome(host):
    def boom(*args):
        raise RuntimeError("ui crashed")

    hooks = DispatchHooks(
        on_step_start=boom, on_step_complete=boom, on_step_error=boom, on_result=boom,
    )
    cycle = await _dispatcher(host, engine=FakeEngine(), hooks=hooks).dispatch(
        f"zaptap://automation/{AID}",
    )
    assert cycle.state == S.SUCCEEDED


async def test_step_hooks_receive_engine_progress(host):
    started, completed = [], []
    hooks = DispatchHooks(
        on_step_start=lambda i, step: started.append(i),
        on_step_complete=lambda i, detail: completed.append(detail),
    )
    await _dispatcher(host, engine=FakeEngine(), hooks=hooks).dispatch(
        f"zaptap://automation/{AID}",
    )
    assert started == [0, 1]
    assert completed == [{"ran": "sms"}, {"ran": "notification"}]


# ─── Wiring ─────────────────────────────────────────────────────

async def test_build_dispatcher_from_settings(host):
    settings = Settings(
        web_domain="https://tap.example",
        fallback_max_delay_seconds=1.5,
        resolver_max_retries=0,
    )
    dispatcher = build_dispatcher(
        FakeConfirmation(), host, store=_store(), engine=FakeEngine(), settings=settings,
    )

    assert dispatcher._interpreter.max_delay_seconds == 1.5
    ours = await dispatcher.dispatch(f"https://tap.example/link/{AID}")
    default_domain = await dispatcher.dispatch(f"https://zaptap.cloud/link/{AID}")

    assert ours.state == S.SUCCEEDED
    assert default_domain.state == S.IGNORED
