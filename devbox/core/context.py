"""
Step context — what a probe or action gets to see.

Replaces ambient globals: the resolved configuration and the adapter
registry are handed to every probe and action explicitly, so nothing
reads ``$HOME`` or shells out on its own.
"""

from __future__ import annotations

from dataclasses import dataclass

from devbox.adapters.registry import AdapterRegistry
from devbox.core.models.config import ProvisionConfig


@dataclass(frozen=True)
class StepContext:
    """Everything a step needs at execution time."""

    config: ProvisionConfig
    adapters: AdapterRegistry
    dry_run: bool = False

    @property
    def network_timeout(self) -> float:
        return self.config.network_timeout

    @property
    def package_timeout(self) -> float:
        return self.config.package_timeout
