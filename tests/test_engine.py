"""
Tests for the engine graph layer — DAG helpers and the Plan.
"""

import pytest

from devbox.core.engine.dag import (
    dependency_closure,
    dependents_closure,
    enforce_resource_exclusion,
    ready_steps,
    topological_order,
    validate_steps,
)
from devbox.core.engine.plan import Plan
from devbox.core.errors import ConfigurationError
from tests.fakes import step


# ── DAG helpers ──────────────────────────────────────────────────────


class TestValidateSteps:
    def test_valid_graph(self):
        assert validate_steps([step("a"), step("b", "a"), step("c", "a", "b")]) == []

    def test_duplicate_ids(self):
        errors = validate_steps([step("a"), step("a")])
        assert any("Duplicate step ID: a" in e for e in errors)

    def test_unknown_dependency(self):
        errors = validate_steps([step("a", "ghost")])
        assert errors == ["Step 'a' depends on unknown step 'ghost'"]

    def test_self_dependency(self):
        errors = validate_steps([step("a", "a")])
        assert errors == ["Step 'a' depends on itself"]

    def test_cycle(self):
        errors = validate_steps([step("a", "c"), step("b", "a"), step("c", "b"), step("d")])
        assert len(errors) == 1
        assert "cycle" in errors[0]
        assert "d" not in errors[0].split(":")[1]


class TestTopologicalOrder:
    def test_keeps_declaration_order_when_possible(self):
        steps = [step("x"), step("y"), step("z")]
        assert topological_order(steps) == ["x", "y", "z"]

    def test_dependencies_first(self):
        steps = [step("late", "early"), step("other"), step("early")]
        order = topological_order(steps)
        assert order.index("early") < order.index("late")
        assert order == ["other", "early", "late"]

    def test_diamond(self):
        steps = [step("a"), step("b", "a"), step("c", "a"), step("d", "b", "c")]
        assert topological_order(steps) == ["a", "b", "c", "d"]

    def test_cycle_raises(self):
        with pytest.raises(ValueError, match="cycle"):
            topological_order([step("a", "b"), step("b", "a")])


class TestClosures:
    def test_dependency_closure(self):
        steps = [step("a"), step("b", "a"), step("c", "b"), step("d")]
        assert dependency_closure(steps, ["c"]) == {"a", "b", "c"}

    def test_dependents_closure(self):
        steps = [step("a"), step("b", "a"), step("c", "b"), step("d")]
        assert dependents_closure(steps, "a") == {"b", "c"}
        assert dependents_closure(steps, "d") == set()


class TestScheduling:
    def test_ready_steps(self):
        steps = [step("a"), step("b", "a"), step("c")]
        ready = ready_steps(steps, succeeded=set(), started=set())
        assert [s.id for s in ready] == ["a", "c"]
        ready = ready_steps(steps, succeeded={"a"}, started={"a", "c"})
        assert [s.id for s in ready] == ["b"]

    def test_resource_exclusion_keeps_first_per_tag(self):
        steps = [
            step("zsh", resource="package-db"),
            step("git", resource="package-db"),
            step("clone", resource="git-network"),
            step("free"),
        ]
        safe = enforce_resource_exclusion(steps, busy=set())
        assert [s.id for s in safe] == ["zsh", "clone", "free"]

    def test_resource_exclusion_respects_busy(self):
        steps = [step("git", resource="package-db"), step("free")]
        safe = enforce_resource_exclusion(steps, busy={"package-db"})
        assert [s.id for s in safe] == ["free"]


# ── Plan ─────────────────────────────────────────────────────────────


class TestPlan:
    def _plan(self) -> Plan:
        return Plan([
            step("install-zsh"),
            step("install-git"),
            step("install-oh-my-zsh", "install-zsh", "install-git"),
            step("zshrc-theme", "install-oh-my-zsh"),
            step("install-neovim"),
            step("install-nvchad", "install-neovim", "install-git"),
        ])

    def test_order_and_lookup(self):
        plan = self._plan()
        assert len(plan) == 6
        assert plan.ids[0] == "install-zsh"
        assert [s.id for s in plan.order()] == plan.ids
        assert "install-neovim" in plan
        assert plan.get("install-git").id == "install-git"

    def test_unknown_id(self):
        with pytest.raises(ConfigurationError, match="Unknown step id"):
            self._plan().get("install-emacs")

    def test_cycle_is_configuration_error(self):
        with pytest.raises(ConfigurationError, match="cycle"):
            Plan([step("a", "b"), step("b", "a")])

    def test_duplicate_is_configuration_error(self):
        with pytest.raises(ConfigurationError, match="Duplicate"):
            Plan([step("a"), step("a")])

    def test_dependents(self):
        assert self._plan().dependents("install-git") == {
            "install-oh-my-zsh", "zshrc-theme", "install-nvchad",
        }

    def test_restrict_only_pulls_in_dependencies(self):
        plan = self._plan().restrict(only=["zshrc-theme"])
        assert plan.ids == ["install-zsh", "install-git", "install-oh-my-zsh", "zshrc-theme"]
        assert plan.excluded == frozenset()

    def test_restrict_skip_keeps_step_but_excludes_it(self):
        plan = self._plan().restrict(skip=["install-neovim"])
        assert "install-neovim" in plan
        assert plan.excluded == {"install-neovim"}
        assert len(plan) == 6

    def test_restrict_only_and_skip(self):
        plan = self._plan().restrict(only=["install-nvchad"], skip=["install-git", "zshrc-theme"])
        assert plan.ids == ["install-git", "install-neovim", "install-nvchad"]
        # zshrc-theme is not part of the restricted plan
        assert plan.excluded == {"install-git"}

    def test_restrict_unknown_ids(self):
        with pytest.raises(ConfigurationError, match="install-emacs"):
            self._plan().restrict(only=["install-emacs"])
        with pytest.raises(ConfigurationError, match="nope"):
            self._plan().restrict(skip=["nope"])

    def test_plan_is_immutable(self):
        plan = self._plan()
        with pytest.raises(AttributeError):
            plan.steps.append(step("x"))
