"""
Adapter registry — the set of external capabilities a run may use.

Built once per run from the resolved configuration. Probes and
actions reach every external tool through this object, so tests (and
a future remote executor) can swap any of them out.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from devbox.adapters.accounts import LoginShellRegistry
from devbox.adapters.archive import ArchiveExtractor
from devbox.adapters.base import Adapter
from devbox.adapters.net.releases import ReleaseFetcher
from devbox.adapters.packages import PackageManager, package_manager_for
from devbox.adapters.shell.command import CommandRunner
from devbox.adapters.shell.filesystem import TextFileEditor
from devbox.adapters.vcs.git import GitAdapter
from devbox.core.models.config import ProvisionConfig

logger = logging.getLogger(__name__)


@dataclass
class AdapterRegistry:
    """Central registry of adapters for one run."""

    runner: CommandRunner
    packages: PackageManager
    git: GitAdapter
    releases: ReleaseFetcher
    archives: ArchiveExtractor
    accounts: LoginShellRegistry
    files: TextFileEditor

    @classmethod
    def for_config(
        cls,
        config: ProvisionConfig,
        *,
        runner: CommandRunner | None = None,
        releases: ReleaseFetcher | None = None,
        accounts: LoginShellRegistry | None = None,
        files: TextFileEditor | None = None,
    ) -> AdapterRegistry:
        """Build the default adapters, with optional replacements."""
        runner = runner or CommandRunner()
        runner.add_search_dirs(config.extra_bin_dirs)
        return cls(
            runner=runner,
            packages=package_manager_for(config.platform, runner),
            git=GitAdapter(runner),
            releases=releases or ReleaseFetcher(),
            archives=ArchiveExtractor(),
            accounts=accounts or LoginShellRegistry(runner),
            files=files or TextFileEditor(),
        )

    def all(self) -> list[Adapter]:
        return [
            self.runner, self.packages, self.git, self.releases,
            self.archives, self.accounts, self.files,
        ]

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Availability of every adapter's underlying tool."""
        status = {}
        for adapter in self.all():
            try:
                available = adapter.is_available()
            except Exception:
                logger.debug("Availability check failed for %s", adapter.name, exc_info=True)
                available = False
            status[adapter.name] = {
                "name": adapter.name,
                "available": available,
                "type": adapter.__class__.__name__,
            }
        return status
