"""
Recording runner — test double for the command runner.

Records every command instead of executing it. Responses are
scripted per argv prefix, and an optional ``effect`` callback lets a
simulated machine change state when a command "runs" (an apt install
putting a binary on PATH, a git clone creating a directory).
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from typing import Callable

from devbox.adapters.shell.command import CommandResult, CommandRunner
from devbox.adapters.shell.privilege import Escalator


@dataclass
class RecordedCall:
    """One command the runner was asked to execute."""

    argv: list[str]
    privileged: bool = False
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    timeout: float | None = None


@dataclass
class _Rule:
    prefix: tuple[str, ...]
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    permission_denied: bool = False
    effect: Callable[[list[str]], None] | None = None


class RecordingRunner(CommandRunner):
    """CommandRunner that records calls and returns scripted results.

    Unmatched commands succeed with empty output. Later rules win over
    earlier ones with the same prefix.
    """

    def __init__(self, binaries: dict[str, str] | None = None):
        super().__init__(escalator=Escalator(euid=0))
        self.binaries: dict[str, str] = dict(binaries or {})
        self._rules: list[_Rule] = []
        self._calls: list[RecordedCall] = []

    @property
    def calls(self) -> list[RecordedCall]:
        return self._calls

    @property
    def call_count(self) -> int:
        return len(self._calls)

    def which(self, binary: str) -> str | None:
        if binary in self.binaries:
            return self.binaries[binary]
        if not self.search_dirs:
            return None
        # extra dirs only: the host's PATH is not part of the simulated machine
        return shutil.which(binary, path=os.pathsep.join(self.search_dirs))

    def on(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        permission_denied: bool = False,
        effect: Callable[[list[str]], None] | None = None,
    ) -> None:
        """Script the result for commands starting with ``prefix``."""
        self._rules.append(_Rule(
            prefix=tuple(prefix),
            returncode=returncode,
            stdout=stdout,
            stderr=stderr,
            permission_denied=permission_denied,
            effect=effect,
        ))

    def ran(self, *prefix: str) -> bool:
        """Whether any recorded command starts with ``prefix``."""
        return bool(self.commands(*prefix))

    def commands(self, *prefix: str) -> list[RecordedCall]:
        return [c for c in self._calls if tuple(c.argv[:len(prefix)]) == prefix]

    def run(
        self,
        argv: list[str],
        *,
        privileged: bool = False,
        timeout: float = 300,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        capture: bool = True,
    ) -> CommandResult:
        argv = [str(a) for a in argv]
        self._calls.append(RecordedCall(argv=argv, privileged=privileged,
                                        env=dict(env or {}), cwd=cwd, timeout=timeout))

        rule = next(
            (r for r in reversed(self._rules) if tuple(argv[:len(r.prefix)]) == r.prefix),
            None,
        )
        if rule is None:
            return CommandResult(argv=argv, returncode=0)
        if rule.effect is not None and rule.returncode == 0:
            rule.effect(argv)
        return CommandResult(
            argv=argv,
            returncode=rule.returncode,
            stdout=rule.stdout,
            stderr=rule.stderr,
            permission_denied=rule.permission_denied,
        )

    def reset(self) -> None:
        """Clear recorded calls and scripted rules."""
        self._calls.clear()
        self._rules.clear()
