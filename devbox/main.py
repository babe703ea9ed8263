"""
devbox — CLI entrypoint.

Usage:
    devbox --help
    devbox provision [--dry-run] [--only a,b] [--skip c] [--yes]
    devbox plan
    devbox config check

Exit codes: 0 success, 1 some step failed, 2 invalid plan or config.
"""

from __future__ import annotations

import json
import signal
import sys
import threading
from pathlib import Path

import click

from devbox import __version__
from devbox.core.observability.logging_config import setup_from_environment
from devbox.ui.cli.history import history

EXIT_CONFIG = 2


def _split_ids(values: tuple[str, ...]) -> list[str]:
    """Accept both ``--only a,b`` and ``--only a --only b``."""
    return [part.strip() for value in values for part in value.split(",") if part.strip()]


def _load_config(ctx: click.Context, as_json: bool = False):
    from devbox.core.config.loader import load_config
    from devbox.core.errors import ConfigurationError

    try:
        return load_config(ctx.obj.get("config_path"))
    except ConfigurationError as e:
        if as_json:
            click.echo(json.dumps({"error": str(e), "exit_code": EXIT_CONFIG}, indent=2))
        else:
            click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(EXIT_CONFIG)


@click.group()
@click.version_option(version=__version__, prog_name="devbox")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to devbox.yml (default: ./devbox.yml, then ~/.config/devbox/).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """devbox — idempotent developer workstation provisioning."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_from_environment(debug=debug, verbose=verbose, quiet=quiet)


@cli.command()
@click.option("--dry-run", is_flag=True, help="Probe only; show what would change.")
@click.option("--only", "only", multiple=True, help="Run only these steps (and their dependencies).")
@click.option("--skip", "skip", multiple=True, help="Leave these steps out.")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Don't ask before privileged steps.")
@click.option("--jobs", "-j", type=click.IntRange(min=1), default=1, show_default=True,
              help="Run up to N independent steps at once.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output the run report as JSON.")
@click.pass_context
def provision(
    ctx: click.Context,
    dry_run: bool,
    only: tuple[str, ...],
    skip: tuple[str, ...],
    assume_yes: bool,
    jobs: int,
    as_json: bool,
) -> None:
    """Bring this machine to the configured state.

    Examples:

        devbox provision --dry-run

        devbox provision --only install-neovim,install-nvchad

        devbox provision --skip change-login-shell --yes
    """
    from devbox.core.engine.plan import Plan
    from devbox.core.models.step import Step
    from devbox.core.use_cases.provision import prepare_plan, provision as run_provision
    from devbox.core.errors import ConfigurationError
    from devbox.ui.cli.reporter import Reporter

    config = _load_config(ctx, as_json)
    only_ids, skip_ids = _split_ids(only), _split_ids(skip)
    reporter = Reporter(verbose=ctx.obj.get("verbose", False), quiet=ctx.obj.get("quiet", False))

    # Validate the plan before touching anything
    try:
        plan: Plan = prepare_plan(config, only=only_ids, skip=skip_ids)
    except ConfigurationError as e:
        if as_json:
            click.echo(json.dumps({"error": str(e), "exit_code": EXIT_CONFIG}, indent=2))
        else:
            reporter.error(str(e))
        sys.exit(EXIT_CONFIG)

    def confirm(step: Step) -> bool:
        what = step.description or step.action.describe()
        try:
            return click.confirm(f"{step.id} needs administrator rights ({what}). Continue?",
                                 default=True)
        except click.Abort:
            return False

    cancel = threading.Event()

    def _on_sigint(signum, frame) -> None:
        if cancel.is_set():
            raise KeyboardInterrupt
        cancel.set()
        reporter.warn("Interrupted: finishing the current step, then stopping. "
                      "Press Ctrl-C again to abort immediately.")

    previous = None
    if threading.current_thread() is threading.main_thread():
        previous = signal.signal(signal.SIGINT, _on_sigint)

    if not as_json:
        reporter.start(plan, dry_run=dry_run)
    try:
        result = run_provision(
            config,
            dry_run=dry_run,
            only=only_ids,
            skip=skip_ids,
            assume_yes=assume_yes or dry_run,
            jobs=jobs,
            listener=None if as_json else reporter.on_transition,
            # no prompts in JSON mode; privileged steps there need --yes
            confirm=None if as_json else confirm,
            cancel_event=cancel,
        )
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        reporter.error(result.error)
    elif result.report is not None:
        reporter.finish(result.report)
    sys.exit(result.exit_code)


@cli.command("plan")
@click.option("--only", "only", multiple=True, help="Show only these steps (and their dependencies).")
@click.option("--skip", "skip", multiple=True, help="Mark these steps as skipped.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan_cmd(ctx: click.Context, only: tuple[str, ...], skip: tuple[str, ...], as_json: bool) -> None:
    """Show the steps in execution order, without probing anything."""
    from devbox.core.errors import ConfigurationError
    from devbox.core.use_cases.provision import prepare_plan

    config = _load_config(ctx, as_json)
    try:
        plan = prepare_plan(config, only=_split_ids(only), skip=_split_ids(skip))
    except ConfigurationError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(EXIT_CONFIG)

    if as_json:
        click.echo(json.dumps([
            {
                "id": step.id,
                "depends_on": sorted(step.depends_on),
                "resource": step.resource,
                "retryable": step.retryable,
                "privileged": step.privileged,
                "network_bound": step.network_bound,
                "optional": step.optional,
                "excluded": step.id in plan.excluded,
                "probe": step.probe.describe(),
                "action": step.action.describe(),
                "description": step.description,
            }
            for step in plan
        ], indent=2))
        return

    click.secho(f"\n📋 Plan for {config.user}@{config.platform} ({config.arch})", fg="cyan", bold=True)
    width = max(len(s.id) for s in plan)
    for n, step in enumerate(plan, start=1):
        flags = [f for f, on in (
            ("privileged", step.privileged),
            ("retryable", step.retryable),
            ("network", step.network_bound),
            ("optional", step.optional),
        ) if on]
        marker = click.style(" [skip]", fg="yellow") if step.id in plan.excluded else ""
        resource = f"[{step.resource}]" if step.resource else ""
        click.echo(f"   {n:>2}. {step.id.ljust(width)}  {resource:<14}{marker} {step.description}")
        if ctx.obj.get("verbose"):
            if step.depends_on:
                click.echo(f"       after: {', '.join(sorted(step.depends_on))}")
            if flags:
                click.echo(f"       flags: {', '.join(flags)}")
    click.echo()


@cli.group()
def config() -> None:
    """Configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate devbox.yml and the plan it produces."""
    from devbox.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else EXIT_CONFIG)

    if result.valid:
        assert result.config is not None  # guaranteed when valid
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        click.echo(f"   Source: {result.config_path or 'built-in defaults'}")
        click.echo(f"   User: {result.config.user} ({result.config.home_dir})")
        click.echo(f"   Platform: {result.config.platform} / {result.config.arch}")
        click.echo(f"   Steps: {result.step_count}")
    else:
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    click.echo()
    if not result.valid:
        sys.exit(EXIT_CONFIG)


cli.add_command(history)


if __name__ == "__main__":
    cli()
