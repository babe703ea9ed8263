"""
Command runner — the single place where ``subprocess.run`` is called.

Every package-manager call, git invocation, installer script and
privileged file move goes through ``CommandRunner.run``. It never
raises for a failing command: the outcome comes back as a
``CommandResult`` that callers translate with ``check()``.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, Field

from devbox.adapters.base import Adapter
from devbox.adapters.shell.privilege import Escalator
from devbox.core.errors import (
    PermissionDeniedError,
    PreconditionError,
    ProvisionError,
    TransientError,
)

logger = logging.getLogger(__name__)

# Output tails kept in results (enough for an error message, bounded)
_TAIL = 2000


class CommandResult(BaseModel):
    """Outcome of one external command."""

    argv: list[str] = Field(default_factory=list)
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0
    error: str | None = None          # could not launch, or timed out
    missing: bool = False             # executable not found
    timed_out: bool = False
    permission_denied: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and self.error is None

    def summary(self) -> str:
        """Short human-readable reason for a failure."""
        if self.error:
            return self.error
        if self.stderr.strip():
            return self.stderr.strip().splitlines()[-1]
        return f"exit status {self.returncode}"

    def check(self, what: str, *, transient: bool = False) -> CommandResult:
        """Raise the matching provisioning error if the command failed.

        Args:
            what: Description used in the error message.
            transient: Treat a plain non-zero exit as retryable
                (network-backed commands like ``git clone``).
        """
        if self.ok:
            return self
        message = f"{what} failed: {self.summary()}"
        if self.missing:
            raise PreconditionError(message)
        if self.permission_denied:
            raise PermissionDeniedError(message)
        if self.timed_out or transient:
            raise TransientError(message)
        raise ProvisionError(message)


class CommandRunner(Adapter):
    """Run external commands, optionally escalated through sudo."""

    def __init__(self, escalator: Escalator | None = None, search_dirs: Iterable[Path | str] = ()):
        self._escalator = escalator or Escalator()
        self._search_dirs: list[str] = []
        self.add_search_dirs(search_dirs)

    @property
    def name(self) -> str:
        return "shell"

    @property
    def escalator(self) -> Escalator:
        return self._escalator

    def is_available(self) -> bool:
        return shutil.which("sh") is not None

    @property
    def search_dirs(self) -> list[str]:
        return list(self._search_dirs)

    def add_search_dirs(self, dirs: Iterable[Path | str]) -> None:
        """Look in ``dirs`` after $PATH, for lookups and for child processes."""
        for d in map(str, dirs):
            if d not in self._search_dirs:
                self._search_dirs.append(d)

    def search_path(self) -> str:
        """$PATH followed by the extra search dirs."""
        entries = [p for p in os.environ.get("PATH", os.defpath).split(os.pathsep) if p]
        entries += [d for d in self._search_dirs if d not in entries]
        return os.pathsep.join(entries)

    def which(self, binary: str) -> str | None:
        """Resolve a binary on the search path (absolute paths are checked directly)."""
        if os.path.isabs(binary):
            return binary if os.access(binary, os.X_OK) else None
        return shutil.which(binary, path=self.search_path())

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
        """Run a command and capture its outcome.

        Args:
            argv: Command and arguments.
            privileged: Run as root (sudo unless already root).
            timeout: Seconds before the command is killed.
            env: Extra environment variables.
            cwd: Working directory.
            capture: Capture stdout/stderr. Interactive commands (chsh
                asking for a password) run with the terminal attached.
        """
        argv = [str(a) for a in argv]
        if privileged:
            try:
                argv = self._escalator.wrap(argv)
            except PermissionDeniedError as e:
                return CommandResult(argv=argv, error=str(e), permission_denied=True)

        run_env = None
        if env or self._search_dirs:
            run_env = os.environ.copy()
            run_env.update(env or {})
            if self._search_dirs:
                run_env["PATH"] = self.search_path()

        logger.debug("Executing: %s (cwd=%s)", " ".join(argv), cwd)
        start = time.monotonic()
        try:
            proc = subprocess.run(
                argv,
                capture_output=capture,
                text=True,
                timeout=timeout,
                env=run_env,
                cwd=cwd,
            )
        except FileNotFoundError:
            return CommandResult(
                argv=argv, error=f"'{argv[0]}' not found", missing=True,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                argv=argv, error=f"'{argv[0]}' timed out after {timeout:g}s", timed_out=True,
            )
        except OSError as e:
            return CommandResult(argv=argv, error=f"cannot run '{argv[0]}': {e}")

        elapsed_ms = int((time.monotonic() - start) * 1000)
        stderr = (proc.stderr or "")[-_TAIL:]
        result = CommandResult(
            argv=argv,
            returncode=proc.returncode,
            stdout=(proc.stdout or "")[-_TAIL:],
            stderr=stderr,
            elapsed_ms=elapsed_ms,
            permission_denied=(
                privileged and proc.returncode != 0 and Escalator.looks_denied(stderr)
            ),
        )
        if not result.ok:
            logger.info("Command failed (%s): %s", result.summary(), " ".join(argv))
        return result
