"""Execution Report — aggregation of per-step results.

Tests:
    - All OK → success with counts
    - One failure → success False, error names the first failing step
    - Only incompatible/skipped → success False ("needs the app")
    - Incompatible kinds deduplicated in declared order
    - from_engine accepts snake_case and camelCase
"""

from taplink.core.domain_types import StepStatus
from taplink.core.execution import ExecutionReport, StepResult


def _r(index, kind, status, error=None):
    return StepResult(index=index, kind=kind, status=status, error=error)


def test_all_ok_is_success():
    report = ExecutionReport.from_results(
        [_r(0, "sms", StepStatus.OK), _r(1, "call", StepStatus.OK)], 12,
    )
    assert report.success
    assert report.steps_completed == 2
    assert report.total_steps == 2
    assert report.error is None


def test_failure_keeps_sibling_results():
    report = ExecutionReport.from_results([
        _r(0, "sms", StepStatus.OK),
        _r(1, "call", StepStatus.FAILED, "no dialer"),
        _r(2, "notification", StepStatus.OK),
    ], 5)
    assert report.success is False
    assert len(report.per_step_results) == 3
    assert report.steps_completed == 2
    assert report.error == "Step 2 (call) failed: no dialer"


def test_permission_denied_counts_as_failure():
    report = ExecutionReport.from_results([
        _r(0, "location", StepStatus.PERMISSION_DENIED, "denied"),
    ], 0)
    assert report.success is False


def test_nothing_attempted_is_not_success():
    report = ExecutionReport.from_results([
        _r(0, "webhook", StepStatus.INCOMPATIBLE),
        _r(1, "sms", StepStatus.SKIPPED),
    ], 0)
    assert report.success is False
    assert report.error == "No steps could run without the app"


def test_incompatible_kinds_deduplicated():
    report = ExecutionReport.from_results([
        _r(0, "webhook", StepStatus.INCOMPATIBLE),
        _r(1, "sms", StepStatus.OK),
        _r(2, "photo", StepStatus.INCOMPATIBLE),
        _r(3, "webhook", StepStatus.INCOMPATIBLE),
    ], 0)
    assert report.success
    assert report.incompatible_kinds == ("webhook", "photo")


def test_from_engine_camel_case():
    report = ExecutionReport.from_engine(
        {"success": True, "stepsCompleted": 2, "totalSteps": 2, "executionTime": 40}, [],
    )
    assert report.success
    assert (report.steps_completed, report.total_steps) == (2, 2)
    assert report.execution_time_ms == 40


def test_from_engine_failure_keeps_error():
    report = ExecutionReport.from_engine(
        {"success": False, "steps_completed": 1, "total_steps": 3, "error": "boom"}, [],
    )
    assert report.success is False
    assert report.error == "boom"
    assert report.to_dict()["steps_completed"] == 1
