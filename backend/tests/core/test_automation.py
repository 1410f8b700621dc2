"""Automation Model — record conversion for summaries and steps.

Tests:
    - from_record keeps declared order and unknown kinds (raw spelling preserved)
    - Missing optional fields get defaults
    - enabled_steps filters disabled steps
"""

from taplink.core.automation import AutomationSummary, Step
from taplink.core.domain_types import StepKind


def _record() -> dict:
    return {
        "id": "3f2b8c1e-9d4a-4e6b-8a7c-1b2d3e4f5a6b",
        "title": "Morning",
        "steps": [
            {"id": "a", "type": "notification", "config": {"message": "hi"}},
            {"type": "teleport", "config": {"to": "mars"}},
            {"id": "c", "type": "sms", "enabled": False, "config": {}},
        ],
    }


def test_from_record_keeps_order_and_unknown_kinds():
    summary = AutomationSummary.from_record(_record())
    assert [s.kind for s in summary.steps] == [
        StepKind.NOTIFICATION, StepKind.UNKNOWN, StepKind.SMS,
    ]
    assert summary.steps[1].wire_kind == "teleport"
    assert summary.steps[1].id == "step-1"


def test_from_record_defaults():
    summary = AutomationSummary.from_record({"id": "x"})
    assert summary.title == "Untitled automation"
    assert summary.steps == ()
    assert summary.is_public is False


def test_enabled_steps_filters_disabled():
    summary = AutomationSummary.from_record(_record())
    assert [s.id for s in summary.enabled_steps] == ["a", "step-1"]


def test_step_accepts_kind_key():
    step = Step.from_record({"kind": "open-url", "config": {"url": "https://x.org"}})
    assert step.kind == StepKind.OPEN_URL
    assert step.to_record()["type"] == "open_url"


def test_to_record_round_trip():
    summary = AutomationSummary.from_record(_record())
    assert AutomationSummary.from_record(summary.to_record()) == summary
