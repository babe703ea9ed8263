"""
CLI command for the audit ledger.

Usage::

    devbox history
    devbox history -n 5 --json
"""

from __future__ import annotations

import json
import sys

import click


@click.command()
@click.option("-n", "limit", type=int, default=10, show_default=True, help="Entries to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, limit: int, as_json: bool) -> None:
    """Show recent provisioning runs on this machine."""
    from devbox.core.config.loader import load_config
    from devbox.core.errors import ConfigurationError
    from devbox.core.persistence.audit import AuditWriter

    try:
        config = load_config(ctx.obj.get("config_path"))
    except ConfigurationError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(2)

    writer = AuditWriter(state_dir=config.state_dir)
    entries = writer.read_recent(limit)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo(f"No runs recorded yet ({writer.path}).")
        return

    click.secho(f"\n📜 Last {len(entries)} run(s)", fg="cyan", bold=True)
    for entry in reversed(entries):
        color = {"ok": "green", "partial": "yellow", "failed": "red"}.get(entry.status, "white")
        mode = " [dry-run]" if entry.dry_run else ""
        click.echo(f"   {entry.timestamp[:19]}  {entry.operation_id}{mode}  ", nl=False)
        click.secho(entry.status, fg=color)
        if entry.steps_applied:
            click.echo(f"     applied: {', '.join(entry.steps_applied)}")
        for err in entry.errors:
            click.echo(f"     ✗ {err}")
    click.echo()
