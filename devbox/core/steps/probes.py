"""
Probes — side-effect-free checks of machine state.

A probe answers one question (is zsh on PATH? does ~/.oh-my-zsh exist?
is the login shell zsh?) from observable state only. It must not
assume any earlier step ran in this process: the provisioner is
re-run after partial failures and on half-configured machines.

``UNKNOWN`` means the probe could not tell; the executor then applies
the action and checks again.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Literal

from devbox.core.context import StepContext
from devbox.core.errors import ProvisionError
from devbox.core.models.step import ProbeStatus

logger = logging.getLogger(__name__)

SATISFIED = ProbeStatus.SATISFIED
UNSATISFIED = ProbeStatus.UNSATISFIED
UNKNOWN = ProbeStatus.UNKNOWN


def _from_bool(value: bool) -> ProbeStatus:
    return SATISFIED if value else UNSATISFIED


class Probe(ABC):
    """Determines whether a step's desired state already holds."""

    @abstractmethod
    def evaluate(self, ctx: StepContext) -> ProbeStatus:
        """Inspect the machine. Must not change anything."""

    @abstractmethod
    def describe(self) -> str:
        """Short description for logs and plan listings."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.describe()}>"


class CommandOnPath(Probe):
    """A binary is resolvable on the runner's search path (PATH plus extra bin dirs)."""

    def __init__(self, binary: str):
        self.binary = binary

    def evaluate(self, ctx: StepContext) -> ProbeStatus:
        return _from_bool(ctx.adapters.runner.which(self.binary) is not None)

    def describe(self) -> str:
        return f"'{self.binary}' on PATH"


class PathExists(Probe):
    """A file or directory exists."""

    def __init__(self, path: Path, kind: Literal["dir", "file", "any"] = "any"):
        self.path = path
        self.kind = kind

    def evaluate(self, ctx: StepContext) -> ProbeStatus:
        try:
            if self.kind == "dir":
                return _from_bool(self.path.is_dir())
            if self.kind == "file":
                return _from_bool(self.path.is_file())
            return _from_bool(self.path.exists())
        except OSError as e:
            logger.debug("Cannot stat %s: %s", self.path, e)
            return UNKNOWN

    def describe(self) -> str:
        return f"{self.kind if self.kind != 'any' else 'path'} {self.path} exists"


class FileContainsLine(Probe):
    """A text file has a line matching ``pattern``.

    With ``expected`` set, the probe is satisfied only when exactly one
    line matches and it equals ``expected``, which is the state
    ``EnsureLine`` produces.
    """

    def __init__(self, path: Path, pattern: str, expected: str | None = None):
        self.path = path
        self.pattern = pattern
        self.expected = expected

    def evaluate(self, ctx: StepContext) -> ProbeStatus:
        if not self.path.exists():
            return UNSATISFIED
        try:
            lines = ctx.adapters.files.read_lines(self.path)
        except ProvisionError:
            return UNKNOWN
        regex = re.compile(self.pattern)
        matches = [line for line in lines if regex.search(line)]
        if self.expected is None:
            return _from_bool(bool(matches))
        return _from_bool(matches == [self.expected])

    def describe(self) -> str:
        if self.expected is not None:
            return f"{self.path.name} has '{self.expected}'"
        return f"{self.path.name} matches /{self.pattern}/"


class BlockPresent(Probe):
    """A managed block with exactly this content exists once in a file."""

    def __init__(self, path: Path, marker: str, content: str):
        self.path = path
        self.marker = marker
        self.content = content

    def evaluate(self, ctx: StepContext) -> ProbeStatus:
        try:
            return _from_bool(ctx.adapters.files.has_block(self.path, self.marker, self.content))
        except ProvisionError:
            return UNKNOWN

    def describe(self) -> str:
        return f"{self.path.name} has block '{self.marker}'"


class LoginShellIs(Probe):
    """The user's registered login shell is ``shell``."""

    def __init__(self, shell: str):
        self.shell = shell

    def evaluate(self, ctx: StepContext) -> ProbeStatus:
        current = ctx.adapters.accounts.login_shell(ctx.config.user)
        if current is None:
            return UNKNOWN
        return _from_bool(current == self.shell)

    def describe(self) -> str:
        return f"login shell is {self.shell}"


class AllOf(Probe):
    """Satisfied when every probe is; UNKNOWN beats UNSATISFIED."""

    def __init__(self, *probes: Probe):
        self.probes = probes

    def evaluate(self, ctx: StepContext) -> ProbeStatus:
        statuses = [p.evaluate(ctx) for p in self.probes]
        if all(s is SATISFIED for s in statuses):
            return SATISFIED
        return UNKNOWN if UNKNOWN in statuses else UNSATISFIED

    def describe(self) -> str:
        return " and ".join(p.describe() for p in self.probes)


class AnyOf(Probe):
    """Satisfied when at least one probe is."""

    def __init__(self, *probes: Probe):
        self.probes = probes

    def evaluate(self, ctx: StepContext) -> ProbeStatus:
        statuses = [p.evaluate(ctx) for p in self.probes]
        if SATISFIED in statuses:
            return SATISFIED
        return UNKNOWN if UNKNOWN in statuses else UNSATISFIED

    def describe(self) -> str:
        return " or ".join(p.describe() for p in self.probes)
