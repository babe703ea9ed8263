"""
Executor — walks a Plan in dependency order and produces a RunReport.

Per step:

    pending → probing → satisfied
                      → applying → applied | failed
    pending → skipped   (excluded, dependency did not succeed, cancelled,
                         privileged step declined)

A failed step never aborts the run: its dependents are skipped and
independent branches carry on. Transient failures of retryable steps
are retried with backoff. Nothing raised by a probe or an action
escapes the executor; it becomes a failed (or unknown) result.

With ``max_workers > 1`` ready steps run on a thread pool, except
that two steps with the same resource tag never run at once. Results
are only appended by the scheduling thread.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
import uuid
from datetime import UTC, datetime
from typing import Callable

from devbox.core.context import StepContext
from devbox.core.engine.dag import enforce_resource_exclusion, ready_steps
from devbox.core.engine.plan import Plan
from devbox.core.models.action import Receipt
from devbox.core.models.result import Outcome, RunReport, StepResult
from devbox.core.models.step import ProbeStatus, Step, StepState
from devbox.core.reliability.backoff import RetryPolicy

logger = logging.getLogger(__name__)

# (step, new state, human-readable detail)
Listener = Callable[[Step, StepState, str], None]
# Asked before applying a privileged step; False means "skip it".
# Without one (and without assume_yes) privileged steps are skipped.
Confirm = Callable[[Step], bool]


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"


class Executor:
    """Runs plans against one machine context."""

    def __init__(
        self,
        ctx: StepContext,
        *,
        retry_policy: RetryPolicy | None = None,
        listener: Listener | None = None,
        confirm: Confirm | None = None,
        assume_yes: bool = False,
        max_workers: int = 1,
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ctx = ctx
        self.retry_policy = retry_policy or RetryPolicy.from_config(ctx.config)
        self.listener = listener
        self.confirm = confirm
        self.assume_yes = assume_yes
        self.max_workers = max(1, max_workers)
        self.cancel_event = cancel_event or threading.Event()
        self._sleep = sleep
        self._emit_lock = threading.Lock()
        self._confirm_lock = threading.Lock()

    @property
    def dry_run(self) -> bool:
        return self.ctx.dry_run

    def cancel(self) -> None:
        """Stop at the next step boundary."""
        self.cancel_event.set()

    # ── Public entry point ──────────────────────────────────────────

    def run(self, plan: Plan, operation_id: str | None = None) -> RunReport:
        """Execute every step of ``plan`` and return the report."""
        report = RunReport(
            operation_id=operation_id or generate_operation_id(),
            dry_run=self.dry_run,
        )
        logger.info(
            "Run %s: %d step(s)%s, %d worker(s)",
            report.operation_id, len(plan),
            " (dry run)" if self.dry_run else "", self.max_workers,
        )

        if self.max_workers == 1:
            self._run_sequential(plan, report)
        else:
            self._run_concurrent(plan, report)

        report.cancelled = self.cancel_event.is_set()
        report.close()
        logger.info(
            "Run %s finished: %s (%d failed of %d)",
            report.operation_id, report.status, report.failed, report.total,
        )
        return report

    # ── Scheduling ──────────────────────────────────────────────────

    def _run_sequential(self, plan: Plan, report: RunReport) -> None:
        for step in plan:
            result = self._blocked(step, plan, report) or self._execute(step)
            report.append(result)

    def _run_concurrent(self, plan: Plan, report: RunReport) -> None:
        pending: list[Step] = list(plan)
        running: dict[concurrent.futures.Future, Step] = {}
        busy: set[str] = set()

        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="devbox-step",
        ) as pool:
            while pending or running:
                # Resolve everything that can be decided without running it
                for step in list(pending):
                    if not all(report.get(dep) for dep in step.depends_on):
                        continue
                    blocked = self._blocked(step, plan, report)
                    if blocked is not None:
                        report.append(blocked)
                        pending.remove(step)

                succeeded = {r.step_id for r in report.results if self._dependency_ok(r.outcome)}
                ready = enforce_resource_exclusion(ready_steps(pending, succeeded, set()), busy)
                for step in ready[: self.max_workers - len(running)]:
                    pending.remove(step)
                    if step.resource:
                        busy.add(step.resource)
                    running[pool.submit(self._execute, step)] = step

                if not running:
                    if pending:
                        # Unreachable for a validated plan; never spin
                        logger.error("No runnable steps left: %s", [s.id for s in pending])
                    break

                done, _ = concurrent.futures.wait(
                    running, return_when=concurrent.futures.FIRST_COMPLETED,
                )
                for future in done:
                    step = running.pop(future)
                    busy.discard(step.resource)
                    report.append(future.result())

    def _dependency_ok(self, outcome: Outcome | None) -> bool:
        if outcome in (Outcome.ALREADY_SATISFIED, Outcome.APPLIED):
            return True
        # A dry run reports what would happen if the dependency were applied
        return self.dry_run and outcome == Outcome.WOULD_APPLY

    def _blocked(self, step: Step, plan: Plan, report: RunReport) -> StepResult | None:
        """A skipped result if ``step`` must not run, else None."""
        reason = ""
        if step.id in plan.excluded:
            reason = "excluded by --skip"
        elif self.cancel_event.is_set():
            reason = "run cancelled"
        else:
            for dep in sorted(step.depends_on):
                if not self._dependency_ok(report.outcome_of(dep)):
                    reason = f"dependency {dep} did not succeed"
                    break
        if not reason:
            return None
        self._emit(step, StepState.SKIPPED, reason)
        return StepResult(step_id=step.id, outcome=Outcome.SKIPPED, detail=reason)

    # ── One step ────────────────────────────────────────────────────

    def _execute(self, step: Step) -> StepResult:
        """Probe and (if needed) apply one step. Never raises."""
        start = time.monotonic()
        try:
            result = self._execute_step(step)
        except Exception as e:
            logger.exception("Step %s raised", step.id)
            detail = f"unexpected error: {e}"
            self._emit(step, StepState.FAILED, detail)
            result = StepResult(
                step_id=step.id,
                outcome=Outcome.FAILED,
                detail=detail,
                error_kind="unexpected",
                remediation=step.remediation,
            )
        duration_ms = int((time.monotonic() - start) * 1000)
        return result.model_copy(update={"duration_ms": duration_ms})

    def _execute_step(self, step: Step) -> StepResult:
        self._emit(step, StepState.PROBING, step.probe.describe())
        status = self._probe(step)

        if status is ProbeStatus.SATISFIED:
            self._emit(step, StepState.SATISFIED, "already satisfied")
            return StepResult(
                step_id=step.id, outcome=Outcome.ALREADY_SATISFIED, detail="already satisfied",
            )

        if self.dry_run:
            detail = f"would {step.action.describe()}"
            if status is ProbeStatus.UNKNOWN:
                detail += " (current state unknown)"
            self._emit(step, StepState.WOULD_APPLY, detail)
            return StepResult(step_id=step.id, outcome=Outcome.WOULD_APPLY, detail=detail)

        if step.privileged and not self._confirmed(step):
            if self.confirm is None:
                detail = "needs administrator rights; rerun with --yes to allow"
            else:
                detail = "declined by operator"
            self._emit(step, StepState.SKIPPED, detail)
            return StepResult(step_id=step.id, outcome=Outcome.SKIPPED, detail=detail)

        self._emit(step, StepState.APPLYING, step.action.describe())
        receipt, attempts = self._apply_with_retry(step)

        if receipt.ok and status is ProbeStatus.UNKNOWN:
            if self._probe(step) is ProbeStatus.UNSATISFIED:
                receipt = Receipt.failure(
                    receipt.action,
                    f"applied, but '{step.probe.describe()}' still does not hold",
                    kind="unexpected",
                )

        if receipt.ok:
            detail = receipt.output or "applied"
            if receipt.fallback_level:
                detail += f" (fallback level {receipt.fallback_level})"
            self._emit(step, StepState.APPLIED, detail)
            return StepResult(
                step_id=step.id,
                outcome=Outcome.APPLIED,
                detail=detail,
                attempts=attempts,
                fallback_level=receipt.fallback_level,
            )

        error = receipt.error or "action failed"
        if step.optional:
            detail = f"optional step failed: {error}"
            logger.warning("%s: %s", step.id, detail)
            self._emit(step, StepState.SKIPPED, detail)
            return StepResult(
                step_id=step.id,
                outcome=Outcome.SKIPPED,
                detail=detail,
                attempts=attempts,
                error_kind=receipt.error_kind,
            )

        self._emit(step, StepState.FAILED, error)
        return StepResult(
            step_id=step.id,
            outcome=Outcome.FAILED,
            detail=error,
            attempts=attempts,
            error_kind=receipt.error_kind,
            remediation=step.remediation,
        )

    def _probe(self, step: Step) -> ProbeStatus:
        try:
            return step.probe.evaluate(self.ctx)
        except Exception as e:
            logger.warning("Probe for %s raised, treating as unknown: %s", step.id, e)
            return ProbeStatus.UNKNOWN

    def _apply_with_retry(self, step: Step) -> tuple[Receipt, int]:
        policy = self.retry_policy
        attempt = 0
        while True:
            attempt += 1
            receipt = step.action.apply(self.ctx)
            if receipt.ok or not (step.retryable and receipt.retryable):
                return receipt, attempt
            if attempt >= policy.attempts or self.cancel_event.is_set():
                return receipt, attempt

            delay = policy.delay_before(attempt + 1)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                step.id, attempt, policy.attempts, receipt.error, delay,
            )
            self._emit(
                step, StepState.APPLYING,
                f"retrying in {delay:.1f}s (attempt {attempt + 1}/{policy.attempts}): {receipt.error}",
            )
            self._sleep(delay)

    def _confirmed(self, step: Step) -> bool:
        if self.assume_yes:
            return True
        # nobody to ask: privileged work needs an explicit --yes
        if self.confirm is None:
            return False
        with self._confirm_lock:
            return bool(self.confirm(step))

    def _emit(self, step: Step, state: StepState, detail: str = "") -> None:
        logger.debug("%s → %s %s", step.id, state.value, detail)
        if self.listener is None:
            return
        with self._emit_lock:
            try:
                self.listener(step, state, detail)
            except Exception:
                logger.exception("Listener failed for %s", step.id)
