"""
Privilege escalation — prefix commands with sudo when not already root.

sudo prompts on the controlling terminal, so the escalator never
handles passwords itself.
"""

from __future__ import annotations

import os
import shutil

from devbox.core.errors import PermissionDeniedError

# stderr fragments sudo prints when it refuses to run a command
_DENIED_MARKERS = (
    "a password is required",
    "incorrect password",
    "is not in the sudoers file",
    "not allowed to execute",
    "sorry, try again",
    "authentication failure",
)


class Escalator:
    """Wraps argv lists so they run as root."""

    def __init__(self, euid: int | None = None, sudo: str = "sudo"):
        self._euid = os.geteuid() if euid is None else euid
        self._sudo = sudo

    @property
    def is_root(self) -> bool:
        return self._euid == 0

    def wrap(self, argv: list[str]) -> list[str]:
        """Return ``argv`` prefixed for privileged execution.

        Raises:
            PermissionDeniedError: Not root and sudo is not installed.
        """
        if self.is_root:
            return list(argv)
        sudo = shutil.which(self._sudo)
        if sudo is None:
            raise PermissionDeniedError(
                f"'{argv[0]}' needs root privileges and {self._sudo} is not available"
            )
        return [sudo, *argv]

    @staticmethod
    def looks_denied(stderr: str) -> bool:
        """Whether command output indicates sudo refused the request."""
        lowered = stderr.lower()
        return any(marker in lowered for marker in _DENIED_MARKERS)
