"""Automation Resolver — turns an automation id into a summary or a typed failure.

Invariants:
    - UUID grammar checked first: a malformed id never reaches the store
    - MalformedId, NotFound, Ambiguous, Transient are distinct results, never coalesced
    - Ambiguous (more than one match) is logged and resolved to the first record
    - Store timeouts and connection failures become TransientResolveError, the only retryable class
    - Any other store exception becomes StoreFailureError; a record that cannot be read
      becomes InvalidRecordError. Neither is retried
    - Classified failures are returned as values, never raised

Design Decisions:
    - Result object over exceptions: the dispatcher branches on error.code, and each code
      maps to different wording and a different corrective action
    - Bounded retry with exponential backoff and ±25% jitter for transient failures only,
      same policy the shell applies to every external call
    - Store may return None, one record, or a list; only a list can reveal ambiguity
"""

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass

from taplink.core.automation import AutomationSummary
from taplink.core.domain_types import is_valid_automation_id
from taplink.core.errors import (
    AmbiguousAutomationError,
    AutomationNotFoundError,
    DatabaseError,
    InvalidRecordError,
    MalformedIdError,
    ResolveError,
    StoreFailureError,
    TransientResolveError,
)
from taplink.core.repository_protocols import AutomationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolveResult:
    """Summary on success; error set on failure. Ambiguous carries both."""
    automation: AutomationSummary | None = None
    error: ResolveError | None = None

    @property
    def ok(self) -> bool:
        return self.automation is not None


def _as_matches(raw: dict | list[dict] | None) -> list[dict]:
    if raw is None:
        return []
    if isinstance(raw, dict):
        return [raw]
    return [r for r in raw if isinstance(r, dict)]


class AutomationResolver:
    """Resolves ids through an AutomationStore with timeout and transient retry."""

    def __init__(
        self,
        store: AutomationStore,
        timeout_seconds: float = 10.0,
        max_retries: int = 2,
        base_delay_ms: int = 500,
        max_delay_ms: int = 5_000,
    ):
        self._store = store
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms

    async def resolve(self, automation_id: str) -> ResolveResult:
        """Validate, look up, and classify. Retries only transient failures."""
        if not is_valid_automation_id(automation_id):
            logger.info(
                "Malformed automation id, skipping store lookup",
                extra={"automation_id": automation_id, "error_code": "MALFORMED_ID"},
            )
            return ResolveResult(error=MalformedIdError(str(automation_id)))

        canonical = str(uuid.UUID(automation_id))
        result = ResolveResult()
        for attempt in range(self.max_retries + 1):
            result = await self._resolve_once(canonical)
            if result.error is None or not result.error.retryable:
                return result
            if attempt < self.max_retries:
                delay = self._backoff_seconds(attempt)
                logger.warning(
                    f"Transient resolve failure, retrying in {delay:.2f}s",
                    extra={"automation_id": canonical, "attempt": attempt + 1},
                )
                await asyncio.sleep(delay)
        return result

    async def _resolve_once(self, automation_id: str) -> ResolveResult:
        try:
            raw = await asyncio.wait_for(
                self._store.get_by_id(automation_id),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return ResolveResult(error=TransientResolveError(
                automation_id, f"timed out after {self.timeout_seconds}s",
            ))
        except (DatabaseError, ConnectionError, OSError) as e:
            logger.warning(
                f"Automation store unreachable: {e}",
                extra={"automation_id": automation_id, "error_code": "TRANSIENT_ERROR"},
            )
            return ResolveResult(error=TransientResolveError(automation_id, str(e)))
        except Exception as e:
            logger.error(
                f"Automation store raised {type(e).__name__}: {e}",
                exc_info=True,
                extra={"automation_id": automation_id, "error_code": "STORE_ERROR"},
            )
            return ResolveResult(error=StoreFailureError(
                automation_id, str(e) or type(e).__name__,
            ))

        matches = _as_matches(raw)
        if not matches:
            return ResolveResult(error=AutomationNotFoundError(automation_id))

        try:
            summary = AutomationSummary.from_record({"id": automation_id, **matches[0]})
        except (TypeError, ValueError, AttributeError) as e:
            logger.error(
                f"Unreadable automation record: {e}",
                extra={"automation_id": automation_id, "error_code": "INVALID_RECORD"},
            )
            return ResolveResult(error=InvalidRecordError(automation_id, str(e)))
        if len(matches) > 1:
            logger.warning(
                f"Store returned {len(matches)} automations for one id; using the first",
                extra={"automation_id": automation_id, "error_code": "AMBIGUOUS"},
            )
            return ResolveResult(
                automation=summary,
                error=AmbiguousAutomationError(automation_id, len(matches)),
            )
        return ResolveResult(automation=summary)

    def _backoff_seconds(self, attempt: int) -> float:
        """Exponential backoff with ±25% jitter, capped at max_delay_ms."""
        delay_ms = min(self.base_delay_ms * (2 ** attempt), self.max_delay_ms)
        return delay_ms * random.uniform(0.75, 1.25) / 1000
