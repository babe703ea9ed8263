"""
Reporter — operator-facing progress lines and the end-of-run summary.

Every step transition becomes one tagged line:

    [INFO]  install-zsh: install package(s) zsh
    [OK]    install-zsh: installed zsh
    [WARN]  install-nvchad: skipped (dependency install-neovim did not succeed)
    [ERROR] install-neovim: No asset named 'nvim-linux-x86_64.tar.gz' ...

The executor serialises calls to ``on_transition``, so lines from
concurrent steps never interleave.
"""

from __future__ import annotations

import click

from devbox.core.engine.plan import Plan
from devbox.core.models.result import Outcome, RunReport
from devbox.core.models.step import Step, StepState

_TAGS = {
    "info": ("[INFO] ", "blue"),
    "warn": ("[WARN] ", "yellow"),
    "error": ("[ERROR]", "red"),
    "ok": ("[OK]   ", "green"),
}

_OUTCOME_COLORS = {
    Outcome.ALREADY_SATISFIED: "green",
    Outcome.APPLIED: "green",
    Outcome.WOULD_APPLY: "cyan",
    Outcome.SKIPPED: "yellow",
    Outcome.FAILED: "red",
}

_OUTCOME_LABELS = {
    Outcome.ALREADY_SATISFIED: "already satisfied",
    Outcome.APPLIED: "applied",
    Outcome.WOULD_APPLY: "would apply",
    Outcome.SKIPPED: "skipped",
    Outcome.FAILED: "failed",
}


def format_duration(ms: int) -> str:
    if ms < 1000:
        return f"{ms}ms"
    return f"{ms / 1000:.1f}s"


class Reporter:
    """Prints run progress with click."""

    def __init__(self, *, verbose: bool = False, quiet: bool = False):
        self.verbose = verbose
        self.quiet = quiet

    # ── Tagged lines ────────────────────────────────────────────

    def _line(self, kind: str, message: str) -> None:
        tag, color = _TAGS[kind]
        err = kind == "error"
        click.secho(tag, fg=color, bold=True, nl=False, err=err)
        click.echo(f" {message}", err=err)

    def info(self, message: str) -> None:
        if not self.quiet:
            self._line("info", message)

    def ok(self, message: str) -> None:
        if not self.quiet:
            self._line("ok", message)

    def warn(self, message: str) -> None:
        self._line("warn", message)

    def error(self, message: str) -> None:
        self._line("error", message)

    # ── Run lifecycle ───────────────────────────────────────────

    def start(self, plan: Plan, *, dry_run: bool = False) -> None:
        if self.quiet:
            return
        mode = " (dry run: nothing will be changed)" if dry_run else ""
        click.secho(f"\n🛠  Provisioning {len(plan)} step(s){mode}", fg="cyan", bold=True)
        if plan.excluded:
            click.echo(f"   Skipping: {', '.join(sorted(plan.excluded))}")
        click.echo()

    def on_transition(self, step: Step, state: StepState, detail: str) -> None:
        """Executor listener: one line per state change."""
        if state is StepState.PROBING:
            # the probe description only with --verbose
            self.info(f"{step.id}: checking {detail}" if self.verbose else f"{step.id}: checking")
        elif state is StepState.SATISFIED:
            self.ok(f"{step.id}: {detail or 'already satisfied'}")
        elif state is StepState.APPLYING:
            if detail.startswith("retrying"):
                self.warn(f"{step.id}: {detail}")
            else:
                self.info(f"{step.id}: {detail}")
        elif state is StepState.APPLIED:
            self.ok(f"{step.id}: {detail}")
        elif state is StepState.WOULD_APPLY:
            self.info(f"{step.id}: {detail}")
        elif state is StepState.SKIPPED:
            self.warn(f"{step.id}: skipped ({detail})")
        elif state is StepState.FAILED:
            self.error(f"{step.id}: {detail}")

    def summary(self, report: RunReport) -> None:
        """Table of step id → outcome (duration)."""
        if not report.results:
            return
        width = max(len(r.step_id) for r in report.results)
        click.echo()
        click.secho(f"Summary ({report.operation_id})", bold=True)
        for r in report.results:
            label = _OUTCOME_LABELS[r.outcome]
            click.echo(f"  {r.step_id.ljust(width)}  ", nl=False)
            click.secho(label.ljust(18), fg=_OUTCOME_COLORS[r.outcome], nl=False)
            extra = f"({format_duration(r.duration_ms)})"
            if r.attempts > 1:
                extra += f" after {r.attempts} attempts"
            if r.fallback_level:
                extra += f" via fallback {r.fallback_level}"
            click.echo(extra)

        counts = [
            f"{report.count(o)} {_OUTCOME_LABELS[o]}" for o in Outcome if report.count(o)
        ]
        click.echo(f"\n  {report.total} step(s): {', '.join(counts)}")

    def remediation(self, report: RunReport) -> None:
        """Manual commands for failed steps that define one."""
        manual = [r for r in report.failed_results() if r.remediation]
        if not manual:
            return
        click.echo()
        click.secho("Manual remediation:", fg="yellow", bold=True)
        for r in manual:
            click.echo(f"  {r.step_id}: ", nl=False)
            click.secho(r.remediation, bold=True)

    def finish(self, report: RunReport) -> None:
        self.summary(report)
        self.remediation(report)
        click.echo()
        if report.cancelled:
            self.warn("Run cancelled; remaining steps were skipped.")
        if report.dry_run:
            pending = report.count(Outcome.WOULD_APPLY)
            self.info(f"Dry run complete: {pending} step(s) would be applied.")
        elif report.success:
            self.ok("Workstation is provisioned. Restart your terminal or run 'exec zsh'.")
        else:
            self.error(f"{report.failed} step(s) failed. Fix the causes above and re-run.")
