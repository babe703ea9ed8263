"""
Package manager adapters — apt on Linux, Homebrew on macOS.

One interface, ``install(names) -> Receipt``, with the strategy picked
by the configured platform tag.
"""

from __future__ import annotations

import logging
from abc import abstractmethod

from devbox.adapters.base import Adapter
from devbox.adapters.shell.command import CommandRunner
from devbox.core.errors import PreconditionError, ProvisionError
from devbox.core.models.action import Receipt

logger = logging.getLogger(__name__)


class PackageManager(Adapter):
    """Base class for OS package managers."""

    binary: str = ""
    privileged: bool = False

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def name(self) -> str:
        return self.binary

    def is_available(self) -> bool:
        return self._runner.which(self.binary) is not None

    @abstractmethod
    def install_commands(self, names: list[str]) -> list[list[str]]:
        """Commands that install ``names``, in order."""

    def install(self, names: list[str], *, timeout: float = 900) -> Receipt:
        """Install packages. Never raises."""
        action = f"{self.binary} install {' '.join(names)}"
        try:
            if not self.is_available():
                raise PreconditionError(f"Package manager '{self.binary}' not found on PATH")
            outputs = []
            for argv in self.install_commands(names):
                result = self._runner.run(argv, privileged=self.privileged, timeout=timeout)
                # mirrors failures are the usual cause, so a failed install is retryable
                result.check(" ".join(argv), transient=True)
                outputs.append(result.stdout)
        except ProvisionError as e:
            return Receipt.from_error(action, e)

        logger.info("Installed via %s: %s", self.binary, ", ".join(names))
        return Receipt.success(
            action,
            output=f"installed {', '.join(names)}",
            metadata={"manager": self.binary, "packages": names},
        )


class AptPackageManager(PackageManager):
    binary = "apt-get"
    privileged = True

    def install_commands(self, names: list[str]) -> list[list[str]]:
        return [
            ["apt-get", "update", "-y"],
            ["apt-get", "install", "-y", *names],
        ]


class BrewPackageManager(PackageManager):
    binary = "brew"
    privileged = False

    def install_commands(self, names: list[str]) -> list[list[str]]:
        return [["brew", "install", *names]]


def package_manager_for(platform: str, runner: CommandRunner) -> PackageManager:
    """Select the package manager strategy for a platform tag."""
    if platform == "macos":
        return BrewPackageManager(runner)
    return AptPackageManager(runner)
