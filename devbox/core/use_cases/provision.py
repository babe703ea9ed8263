"""
Provision use case — plan, execute and audit one run.

This is the top-level orchestrator behind ``devbox provision``: it
declares the workstation plan, narrows it with --only/--skip, runs it
through the executor, and appends the outcome to the audit ledger.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

from devbox.adapters.registry import AdapterRegistry
from devbox.core.context import StepContext
from devbox.core.engine.executor import (
    Confirm,
    Executor,
    Listener,
    generate_operation_id,
)
from devbox.core.engine.plan import Plan
from devbox.core.errors import ConfigurationError
from devbox.core.models.config import ProvisionConfig
from devbox.core.models.result import RunReport
from devbox.core.persistence.audit import AuditEntry, AuditWriter
from devbox.core.reliability.backoff import RetryPolicy
from devbox.core.steps.catalog import build_workstation_plan

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


@dataclass
class ProvisionResult:
    """Result of one provisioning invocation."""

    report: RunReport | None = None
    plan: Plan | None = None
    config: ProvisionConfig | None = None
    audit_path: Path | None = None
    error: str | None = None

    @property
    def exit_code(self) -> int:
        if self.error is not None or self.report is None:
            return EXIT_CONFIG
        return self.report.exit_code

    def to_dict(self) -> dict:
        result: dict = {"exit_code": self.exit_code}
        if self.error:
            result["error"] = self.error
            return result
        if self.report:
            result["report"] = self.report.to_dict()
        if self.audit_path:
            result["audit_path"] = str(self.audit_path)
        return result


def prepare_plan(
    config: ProvisionConfig,
    only: Iterable[str] | None = None,
    skip: Iterable[str] | None = None,
) -> Plan:
    """Declare the plan and apply --only/--skip.

    Raises:
        ConfigurationError: Invalid graph or unknown step ids.
    """
    plan = build_workstation_plan(config)
    if only or skip:
        plan = plan.restrict(only=only, skip=skip)
    return plan


def provision(
    config: ProvisionConfig,
    *,
    dry_run: bool = False,
    only: Iterable[str] | None = None,
    skip: Iterable[str] | None = None,
    assume_yes: bool = False,
    jobs: int = 1,
    listener: Listener | None = None,
    confirm: Confirm | None = None,
    cancel_event: threading.Event | None = None,
    adapters: AdapterRegistry | None = None,
    sleep: Callable[[float], None] = time.sleep,
    audit: bool = True,
) -> ProvisionResult:
    """Bring the machine to the desired state described by ``config``.

    Args:
        config: Resolved run configuration.
        dry_run: Probe only; report what would be applied.
        only: Restrict the run to these steps and their dependencies.
        skip: Steps to leave out (their dependents are skipped).
        assume_yes: Do not ask before privileged steps.
        jobs: Worker threads for independent steps.
        listener: Receives every step state transition.
        confirm: Asked before privileged steps unless ``assume_yes``.
        cancel_event: Set to stop at the next step boundary.
        adapters: Pre-built adapters (tests); default: real ones.
        sleep: Backoff sleep function (tests pass a no-op).
        audit: Append the outcome to the audit ledger.

    Returns:
        ProvisionResult; ``error`` is set for configuration problems.
    """
    result = ProvisionResult(config=config)

    # ── Plan ─────────────────────────────────────────────────────
    try:
        plan = prepare_plan(config, only=only, skip=skip)
    except ConfigurationError as e:
        result.error = str(e)
        return result
    result.plan = plan

    # ── Execute ──────────────────────────────────────────────────
    if adapters is None:
        adapters = AdapterRegistry.for_config(config)
    ctx = StepContext(config=config, adapters=adapters, dry_run=dry_run)
    executor = Executor(
        ctx,
        retry_policy=RetryPolicy.from_config(config),
        listener=listener,
        confirm=confirm,
        assume_yes=assume_yes,
        max_workers=jobs,
        cancel_event=cancel_event,
        sleep=sleep,
    )
    report = executor.run(plan, operation_id=generate_operation_id())
    result.report = report

    # ── Write audit log ──────────────────────────────────────────
    if audit:
        writer = AuditWriter(state_dir=config.state_dir)
        entry = AuditEntry.from_report(
            report,
            platform=config.platform,
            user=config.user,
            context={
                "only": sorted(only or []),
                "skip": sorted(skip or []),
                "jobs": jobs,
            },
        )
        if writer.write(entry):
            result.audit_path = writer.path

    return result
