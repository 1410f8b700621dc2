"""Execution Report — per-step results and the run summary shared by both executors.

Invariants:
    - One StepResult per declared step, in declared order (skipped and incompatible included)
    - success is True only if every attempted compatible step ended OK
    - steps_completed counts OK steps; total_steps counts declared steps
    - Reports are values: building one never raises

Design Decisions:
    - Explicit result type per step instead of exceptions: no step's failure unwinds the run
    - Same ExecutionReport for native Engine and Fallback Interpreter so the dispatcher
      and presentation layer handle one shape (from_engine adapts the Engine's dict)
"""

from dataclasses import dataclass, field
from typing import Any

from taplink.core.domain_types import StepStatus


@dataclass(frozen=True)
class StepResult:
    """Outcome of one step."""
    index: int
    kind: str
    status: StepStatus
    step_id: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_code: str | None = None

    @property
    def attempted(self) -> bool:
        return self.status in (
            StepStatus.OK, StepStatus.FAILED, StepStatus.PERMISSION_DENIED,
        )

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "kind": self.kind,
            "status": self.status.value,
            "step_id": self.step_id,
            "detail": self.detail,
            "error": self.error,
            "error_code": self.error_code,
        }


@dataclass(frozen=True)
class ExecutionReport:
    """Aggregated outcome of one run."""
    success: bool
    per_step_results: tuple[StepResult, ...] = ()
    incompatible_kinds: tuple[str, ...] = ()
    steps_completed: int = 0
    total_steps: int = 0
    execution_time_ms: int = 0
    error: str | None = None

    @classmethod
    def from_results(
        cls, results: list[StepResult], execution_time_ms: int,
    ) -> "ExecutionReport":
        """Aggregate per-step results after the loop."""
        attempted = [r for r in results if r.attempted]
        failures = [r for r in attempted if r.status != StepStatus.OK]
        incompatible: list[str] = []
        for r in results:
            if r.status == StepStatus.INCOMPATIBLE and r.kind not in incompatible:
                incompatible.append(r.kind)
        error = None
        if failures:
            first = failures[0]
            error = f"Step {first.index + 1} ({first.kind}) failed: {first.error}"
        elif not attempted:
            error = "No steps could run without the app"
        return cls(
            success=bool(attempted) and not failures,
            per_step_results=tuple(results),
            incompatible_kinds=tuple(incompatible),
            steps_completed=sum(1 for r in results if r.status == StepStatus.OK),
            total_steps=len(results),
            execution_time_ms=execution_time_ms,
            error=error,
        )

    @classmethod
    def from_engine(
        cls, result: dict, per_step_results: list[StepResult],
    ) -> "ExecutionReport":
        """Adapt the native Engine's {success, stepsCompleted, ...} dict."""
        def pick(*keys: str, default: Any = None) -> Any:
            for k in keys:
                if k in result:
                    return result[k]
            return default

        return cls(
            success=bool(pick("success", default=False)),
            per_step_results=tuple(per_step_results),
            steps_completed=int(pick("steps_completed", "stepsCompleted", default=0)),
            total_steps=int(pick("total_steps", "totalSteps", default=0)),
            execution_time_ms=int(pick("execution_time", "executionTime", default=0)),
            error=pick("error"),
        )

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "per_step_results": [r.to_dict() for r in self.per_step_results],
            "incompatible_kinds": list(self.incompatible_kinds),
            "steps_completed": self.steps_completed,
            "total_steps": self.total_steps,
            "execution_time_ms": self.execution_time_ms,
            "error": self.error,
        }
