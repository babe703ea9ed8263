"""
DAG utilities (pure) — dependency validation and scheduling helpers.

Functions for step dependency management, cycle detection, subset
selection and resource-safe concurrency. No I/O.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from devbox.core.models.step import Step


def validate_steps(steps: Sequence[Step]) -> list[str]:
    """Validate the step dependency graph.

    Checks for:
    - Duplicate step IDs
    - References to non-existent step IDs
    - Cycles (Kahn's algorithm)

    Returns:
        List of error strings (empty = valid).
    """
    errors: list[str] = []
    ids = {s.id for s in steps}

    seen: set[str] = set()
    for s in steps:
        if s.id in seen:
            errors.append(f"Duplicate step ID: {s.id}")
        seen.add(s.id)

    for s in steps:
        for dep in sorted(s.depends_on):
            if dep not in ids:
                errors.append(f"Step '{s.id}' depends on unknown step '{dep}'")
            elif dep == s.id:
                errors.append(f"Step '{s.id}' depends on itself")

    if errors:
        return errors

    try:
        topological_order(steps)
    except ValueError as e:
        errors.append(str(e))
    return errors


def topological_order(steps: Sequence[Step]) -> list[str]:
    """Kahn's algorithm, stable with respect to declaration order.

    Among the steps that are ready at any point, the one declared
    first comes first, so a plan already written in a sensible order
    runs in exactly that order.

    Raises:
        ValueError: The graph has a cycle.
    """
    position = {s.id: i for i, s in enumerate(steps)}
    in_degree = {s.id: len(s.depends_on) for s in steps}
    # dep → steps that depend on it
    adj: dict[str, list[str]] = {s.id: [] for s in steps}
    for s in steps:
        for dep in s.depends_on:
            adj[dep].append(s.id)

    ready = sorted((sid for sid, deg in in_degree.items() if deg == 0), key=position.get)
    order: list[str] = []
    while ready:
        node = ready.pop(0)
        order.append(node)
        for successor in adj[node]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                ready.append(successor)
        ready.sort(key=position.get)

    if len(order) < len(steps):
        stuck = sorted((sid for sid, deg in in_degree.items() if deg > 0), key=position.get)
        raise ValueError(f"Dependency cycle detected among steps: {', '.join(stuck)}")
    return order


def dependency_closure(steps: Sequence[Step], roots: Iterable[str]) -> set[str]:
    """``roots`` plus everything they depend on, transitively."""
    by_id = {s.id: s for s in steps}
    closure: set[str] = set()
    stack = list(roots)
    while stack:
        sid = stack.pop()
        if sid in closure:
            continue
        closure.add(sid)
        stack.extend(by_id[sid].depends_on)
    return closure


def dependents_closure(steps: Sequence[Step], root: str) -> set[str]:
    """Every step that depends on ``root``, directly or transitively."""
    found: set[str] = set()
    frontier = {root}
    while frontier:
        nxt = {s.id for s in steps if s.depends_on & frontier and s.id not in found}
        found |= nxt
        frontier = nxt
    return found


def ready_steps(
    steps: Sequence[Step],
    succeeded: set[str],
    started: set[str],
) -> list[Step]:
    """Steps not yet started whose dependencies all succeeded."""
    return [
        s for s in steps
        if s.id not in started and s.depends_on <= succeeded
    ]


def enforce_resource_exclusion(candidates: Sequence[Step], busy: set[str]) -> list[Step]:
    """Filter candidates so no two steps share a resource tag.

    Steps whose resource is already ``busy`` (held by a running step)
    are dropped, and among the candidates only the first step per
    resource is kept. Steps without a resource tag always pass.
    """
    taken = set(busy)
    safe: list[Step] = []
    for step in candidates:
        if step.resource:
            if step.resource in taken:
                continue
            taken.add(step.resource)
        safe.append(step)
    return safe
