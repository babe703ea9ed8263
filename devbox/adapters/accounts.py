"""
Login-shell registry — read and change a user's login shell.

Reads go to the password database (``pwd``) and ``/etc/shells``;
changes go through ``chsh``, which may prompt for a password and
therefore runs with the terminal attached.
"""

from __future__ import annotations

import logging
import pwd
from pathlib import Path

from devbox.adapters.base import Adapter
from devbox.adapters.shell.command import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

SHELLS_FILE = Path("/etc/shells")


class LoginShellRegistry(Adapter):
    """The system's record of which shell each user logs in with."""

    def __init__(self, runner: CommandRunner, shells_file: Path = SHELLS_FILE):
        self._runner = runner
        self._shells_file = shells_file

    @property
    def name(self) -> str:
        return "chsh"

    def is_available(self) -> bool:
        return self._runner.which("chsh") is not None

    def login_shell(self, user: str) -> str | None:
        """Current login shell of ``user``, or None if it cannot be read."""
        try:
            return pwd.getpwnam(user).pw_shell
        except KeyError:
            logger.debug("No passwd entry for %s", user)
            return None

    def registered_shells(self) -> list[str] | None:
        """Shells listed in /etc/shells, or None if the file is unreadable."""
        try:
            text = self._shells_file.read_text(encoding="utf-8")
        except OSError:
            return None
        return [
            line.strip() for line in text.splitlines()
            if line.strip() and not line.lstrip().startswith("#")
        ]

    def change(
        self, user: str, shell: str, *, privileged: bool = False, timeout: float = 120,
    ) -> CommandResult:
        """Run ``chsh -s SHELL`` (as root, naming the user, when privileged)."""
        argv = ["chsh", "-s", shell]
        if privileged:
            argv.append(user)
        return self._runner.run(argv, privileged=privileged, timeout=timeout, capture=False)
