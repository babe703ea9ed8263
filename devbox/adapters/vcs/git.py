"""
Git adapter — clone-or-update of plugin and config repositories.

Uses the git CLI through the command runner. A directory that
already exists is left alone unless an update was requested, in
which case it is fast-forwarded.
"""

from __future__ import annotations

import logging
from pathlib import Path

from devbox.adapters.base import Adapter
from devbox.adapters.shell.command import CommandRunner
from devbox.core.errors import PreconditionError, ProvisionError
from devbox.core.models.action import Receipt

logger = logging.getLogger(__name__)


class GitAdapter(Adapter):
    """Version-control fetch/update operations."""

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def name(self) -> str:
        return "git"

    def is_available(self) -> bool:
        return self._runner.which("git") is not None

    @staticmethod
    def is_repository(path: Path) -> bool:
        return (path / ".git").exists()

    def clone_or_update(
        self,
        url: str,
        dest: Path,
        *,
        update: bool = False,
        depth: int | None = None,
        timeout: float = 60,
    ) -> Receipt:
        """Clone ``url`` into ``dest``, or fast-forward it if present.

        Returns a failure receipt (never raises) when git is missing,
        ``dest`` is in the way, or the network operation fails.
        """
        action = f"git clone {url}"
        try:
            if not self.is_available():
                raise PreconditionError("git not found on PATH")

            if dest.exists():
                if not self.is_repository(dest):
                    raise PreconditionError(
                        f"{dest} exists and is not a git repository"
                    )
                if not update:
                    return Receipt.success(action, output=f"{dest} already cloned")
                self._runner.run(
                    ["git", "-C", str(dest), "pull", "--ff-only"], timeout=timeout,
                ).check(f"git pull in {dest}", transient=True)
                logger.info("Updated %s", dest)
                return Receipt.success(action, output=f"updated {dest}",
                                       metadata={"dest": str(dest), "updated": True})

            dest.parent.mkdir(parents=True, exist_ok=True)
            argv = ["git", "clone"]
            if depth:
                argv += ["--depth", str(depth)]
            argv += [url, str(dest)]
            self._runner.run(argv, timeout=timeout).check(f"git clone {url}", transient=True)
        except ProvisionError as e:
            return Receipt.from_error(action, e)
        except OSError as e:
            return Receipt.failure(action, f"Cannot prepare {dest.parent}: {e}", kind="precondition")

        logger.info("Cloned %s → %s", url, dest)
        return Receipt.success(action, output=f"cloned into {dest}",
                               metadata={"dest": str(dest), "updated": False})
