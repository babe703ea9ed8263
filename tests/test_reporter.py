"""
Tests for the CLI reporter — progress lines and the run summary.
"""

from devbox.core.engine.plan import Plan
from devbox.core.models.result import Outcome, RunReport, StepResult
from devbox.core.models.step import StepState
from devbox.ui.cli.reporter import Reporter, format_duration
from tests.fakes import step


def _report(*results: StepResult, dry_run: bool = False) -> RunReport:
    report = RunReport(operation_id="op-test", dry_run=dry_run)
    for r in results:
        report.append(r)
    report.close()
    return report


class TestFormatDuration:
    def test_formats(self):
        assert format_duration(250) == "250ms"
        assert format_duration(1500) == "1.5s"


class TestTransitions:
    def test_tagged_lines(self, capsys):
        reporter = Reporter()
        s = step("install-zsh")
        reporter.on_transition(s, StepState.APPLYING, "install package(s) zsh")
        reporter.on_transition(s, StepState.APPLIED, "installed zsh")
        reporter.on_transition(step("install-nvchad"), StepState.SKIPPED,
                               "dependency install-neovim did not succeed")
        reporter.on_transition(step("install-neovim"), StepState.FAILED, "no asset")

        out, err = capsys.readouterr()
        assert "[INFO]  install-zsh: install package(s) zsh" in out
        assert "[OK]    install-zsh: installed zsh" in out
        assert "[WARN]  install-nvchad: skipped (dependency install-neovim did not succeed)" in out
        assert "[ERROR] install-neovim: no asset" in err

    def test_probing_line_always_printed(self, capsys):
        Reporter().on_transition(step("a"), StepState.PROBING, "'zsh' on PATH")
        assert capsys.readouterr().out == "[INFO]  a: checking\n"
        Reporter(verbose=True).on_transition(step("a"), StepState.PROBING, "'zsh' on PATH")
        assert "[INFO]  a: checking 'zsh' on PATH" in capsys.readouterr().out
        Reporter(quiet=True).on_transition(step("a"), StepState.PROBING, "'zsh' on PATH")
        assert capsys.readouterr().out == ""

    def test_retry_is_a_warning(self, capsys):
        Reporter().on_transition(step("a"), StepState.APPLYING,
                                 "retrying in 2.0s (attempt 2/3): timed out")
        assert "[WARN]  a: retrying in 2.0s" in capsys.readouterr().out

    def test_quiet_keeps_warnings_and_errors(self, capsys):
        reporter = Reporter(quiet=True)
        reporter.on_transition(step("a"), StepState.APPLIED, "done")
        reporter.on_transition(step("b"), StepState.SKIPPED, "declined by operator")
        reporter.on_transition(step("c"), StepState.FAILED, "boom")
        out, err = capsys.readouterr()
        assert "done" not in out
        assert "declined by operator" in out
        assert "boom" in err


class TestSummary:
    def test_summary_table(self, capsys):
        report = _report(
            StepResult(step_id="install-zsh", outcome=Outcome.APPLIED, duration_ms=1500,
                       attempts=2),
            StepResult(step_id="change-login-shell", outcome=Outcome.APPLIED, fallback_level=2),
            StepResult(step_id="install-git", outcome=Outcome.ALREADY_SATISFIED),
        )
        Reporter().summary(report)
        out = capsys.readouterr().out
        assert "Summary (op-test)" in out
        assert "(1.5s) after 2 attempts" in out
        assert "via fallback 2" in out
        assert "3 step(s): 1 already satisfied, 2 applied" in out

    def test_remediation_section(self, capsys):
        report = _report(
            StepResult(step_id="change-login-shell", outcome=Outcome.FAILED,
                       remediation="sudo chsh -s /usr/bin/zsh dev"),
            StepResult(step_id="install-neovim", outcome=Outcome.FAILED),
        )
        Reporter().remediation(report)
        out = capsys.readouterr().out
        assert "Manual remediation:" in out
        assert "change-login-shell: sudo chsh -s /usr/bin/zsh dev" in out
        assert "install-neovim" not in out

    def test_finish_success(self, capsys):
        Reporter().finish(_report(StepResult(step_id="a", outcome=Outcome.APPLIED)))
        assert "Workstation is provisioned" in capsys.readouterr().out

    def test_finish_failure(self, capsys):
        Reporter().finish(_report(StepResult(step_id="a", outcome=Outcome.FAILED)))
        assert "1 step(s) failed" in capsys.readouterr().err

    def test_finish_dry_run(self, capsys):
        Reporter().finish(_report(
            StepResult(step_id="a", outcome=Outcome.WOULD_APPLY),
            StepResult(step_id="b", outcome=Outcome.ALREADY_SATISFIED),
            dry_run=True,
        ))
        assert "Dry run complete: 1 step(s) would be applied." in capsys.readouterr().out

    def test_finish_cancelled(self, capsys):
        report = _report(StepResult(step_id="a", outcome=Outcome.SKIPPED, detail="run cancelled"))
        report.cancelled = True
        Reporter().finish(report)
        assert "Run cancelled" in capsys.readouterr().out

    def test_start_lists_skipped(self, capsys):
        plan = Plan([step("a"), step("b")], excluded=["b"])
        Reporter().start(plan, dry_run=True)
        out = capsys.readouterr().out
        assert "2 step(s) (dry run" in out
        assert "Skipping: b" in out
