"""
Plan — an immutable, validated, topologically ordered set of steps.

Created once per run from the static catalog. Invalid graphs never
reach the executor: construction raises ``ConfigurationError``.
"""

from __future__ import annotations

from typing import Iterable, Iterator

from devbox.core.engine.dag import (
    dependency_closure,
    dependents_closure,
    topological_order,
    validate_steps,
)
from devbox.core.errors import ConfigurationError
from devbox.core.models.step import Step


class Plan:
    """Ordered steps plus the ids the operator excluded with ``--skip``."""

    def __init__(self, steps: Iterable[Step], excluded: Iterable[str] = ()):
        steps = tuple(steps)
        errors = validate_steps(steps)
        if errors:
            raise ConfigurationError("Invalid plan: " + "; ".join(errors))

        by_id = {s.id: s for s in steps}
        self._steps = tuple(by_id[sid] for sid in topological_order(steps))
        self._by_id = by_id

        excluded = frozenset(excluded)
        unknown = sorted(excluded - by_id.keys())
        if unknown:
            raise ConfigurationError(f"Unknown step id(s): {', '.join(unknown)}")
        self._excluded = excluded

    def __iter__(self) -> Iterator[Step]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._by_id

    def __repr__(self) -> str:
        return f"<Plan steps={len(self)} excluded={sorted(self._excluded)}>"

    @property
    def steps(self) -> tuple[Step, ...]:
        return self._steps

    @property
    def ids(self) -> list[str]:
        return [s.id for s in self._steps]

    @property
    def excluded(self) -> frozenset[str]:
        return self._excluded

    def order(self) -> list[Step]:
        """Steps in execution order (dependencies first)."""
        return list(self._steps)

    def get(self, step_id: str) -> Step:
        try:
            return self._by_id[step_id]
        except KeyError:
            raise ConfigurationError(f"Unknown step id: {step_id}") from None

    def dependents(self, step_id: str) -> set[str]:
        """Ids of every step that (transitively) depends on ``step_id``."""
        self.get(step_id)
        return dependents_closure(self._steps, step_id)

    def restrict(
        self,
        only: Iterable[str] | None = None,
        skip: Iterable[str] | None = None,
    ) -> Plan:
        """Derive a plan for ``--only`` / ``--skip``.

        ``only`` keeps the named steps plus everything they depend on.
        ``skip`` marks steps as excluded: they stay in the plan (so the
        graph remains closed) but the executor records them as skipped,
        and steps depending on them are skipped as unmet.

        Raises:
            ConfigurationError: An id is not part of this plan.
        """
        only = list(only or [])
        skip = list(skip or [])
        unknown = sorted({sid for sid in [*only, *skip] if sid not in self._by_id})
        if unknown:
            raise ConfigurationError(f"Unknown step id(s): {', '.join(unknown)}")

        keep = dependency_closure(self._steps, only) if only else set(self._by_id)
        steps = [s for s in self._steps if s.id in keep]
        excluded = (self._excluded | set(skip)) & keep
        return Plan(steps, excluded=excluded)
