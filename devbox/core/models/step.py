"""
Step model — a named (probe, action, dependencies) triple.

Steps are declared statically by the plan catalog and never change
while a run is in progress.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from devbox.core.steps.actions import Action
    from devbox.core.steps.probes import Probe


class ProbeStatus(str, Enum):
    """What a probe observed about the machine."""

    SATISFIED = "satisfied"
    UNSATISFIED = "unsatisfied"
    UNKNOWN = "unknown"


class StepState(str, Enum):
    """Per-step lifecycle inside the executor.

    pending → probing → satisfied
                      → applying → applied | failed
    Any pending step may become skipped (unmet dependency, cancellation,
    excluded by the operator). Dry runs end in would_apply instead of
    applying.
    """

    PENDING = "pending"
    PROBING = "probing"
    APPLYING = "applying"
    SATISFIED = "satisfied"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"
    WOULD_APPLY = "would_apply"

    @property
    def terminal(self) -> bool:
        return self not in (StepState.PENDING, StepState.PROBING, StepState.APPLYING)

    @property
    def succeeded(self) -> bool:
        return self in (StepState.SATISFIED, StepState.APPLIED)


@dataclass(frozen=True)
class Step:
    """One unit of desired machine state.

    Attributes:
        id: Unique name, e.g. ``install-zsh``.
        probe: Side-effect-free check of the current state.
        action: The change to make when the probe is not satisfied.
        depends_on: Step ids that must end satisfied or applied first.
        resource: Mutual-exclusion tag (``package-db``, ``shell-db``, ...).
        retryable: Retry transient failures with backoff.
        network_bound: The action reaches the network. Informational:
            downloads and clones are bounded by ``config.network_timeout``
            whatever the flag says, and ``plan`` lists it.
        privileged: The action needs root; the operator is asked to
            confirm unless ``--yes`` was given.
        optional: A failure does not fail the run.
        description: One-line summary for plan listings.
        remediation: Manual command to print when the step fails.
    """

    id: str
    probe: Probe
    action: Action
    depends_on: frozenset[str] = field(default_factory=frozenset)
    resource: str = ""
    retryable: bool = False
    network_bound: bool = False
    privileged: bool = False
    optional: bool = False
    description: str = ""
    remediation: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.depends_on, frozenset):
            object.__setattr__(self, "depends_on", frozenset(self.depends_on))

    def with_dependencies(self, extra: Iterable[str]) -> Step:
        """Return a copy of this step with additional dependencies."""
        return replace(self, depends_on=self.depends_on | frozenset(extra))
