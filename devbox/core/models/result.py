"""
StepResult and RunReport — the run log.

A StepResult is created by the executor right after a step reaches
a terminal state and is never modified afterwards. The RunReport
collects them in completion order; it is append-only and written by
a single owner (the executor's scheduling loop).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Outcome(str, Enum):
    """Terminal outcome of one step."""

    ALREADY_SATISFIED = "already_satisfied"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"
    WOULD_APPLY = "would_apply"  # dry runs only


class StepResult(BaseModel):
    """Outcome of a single step. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    outcome: Outcome
    detail: str = ""
    duration_ms: int = 0
    attempts: int = 0
    error_kind: str | None = None
    fallback_level: int | None = None
    remediation: str = ""
    started_at: str = Field(default_factory=_now_iso)

    @property
    def succeeded(self) -> bool:
        return self.outcome in (Outcome.ALREADY_SATISFIED, Outcome.APPLIED)


@dataclass
class RunReport:
    """All results of one provisioning run."""

    operation_id: str = ""
    dry_run: bool = False
    cancelled: bool = False
    started_at: str = field(default_factory=_now_iso)
    ended_at: str = ""
    _results: list[StepResult] = field(default_factory=list, repr=False)

    def append(self, result: StepResult) -> None:
        """Record a terminal step result. Each step is recorded once."""
        if any(r.step_id == result.step_id for r in self._results):
            raise ValueError(f"Result for step '{result.step_id}' already recorded")
        self._results.append(result)

    def close(self) -> None:
        self.ended_at = _now_iso()

    @property
    def results(self) -> tuple[StepResult, ...]:
        return tuple(self._results)

    def get(self, step_id: str) -> StepResult | None:
        for result in self._results:
            if result.step_id == step_id:
                return result
        return None

    def outcome_of(self, step_id: str) -> Outcome | None:
        result = self.get(step_id)
        return result.outcome if result else None

    def count(self, outcome: Outcome) -> int:
        return sum(1 for r in self._results if r.outcome == outcome)

    @property
    def total(self) -> int:
        return len(self._results)

    @property
    def failed(self) -> int:
        return self.count(Outcome.FAILED)

    def failed_results(self) -> list[StepResult]:
        return [r for r in self._results if r.outcome == Outcome.FAILED]

    @property
    def success(self) -> bool:
        """A run succeeds iff no step failed."""
        return self.failed == 0

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    @property
    def status(self) -> str:
        if self.success:
            return "ok"
        if any(r.succeeded for r in self._results):
            return "partial"
        return "failed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "dry_run": self.dry_run,
            "cancelled": self.cancelled,
            "status": self.status,
            "success": self.success,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "counts": {o.value: self.count(o) for o in Outcome},
            "results": [r.model_dump(mode="json") for r in self._results],
        }
