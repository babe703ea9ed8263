"""
Config check use case — validate devbox.yml and the plan it produces.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from devbox.core.config.loader import find_config_file, load_config
from devbox.core.errors import ConfigurationError
from devbox.core.models.config import ProvisionConfig
from devbox.core.steps.catalog import build_workstation_plan


@dataclass
class ConfigCheckResult:
    """Result of configuration validation."""

    valid: bool = False
    config: ProvisionConfig | None = None
    config_path: Path | None = None
    step_count: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "user": self.config.user if self.config else None,
            "platform": self.config.platform if self.config else None,
            "step_count": self.step_count,
        }


def check_config(
    config_path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    cwd: Path | None = None,
) -> ConfigCheckResult:
    """Validate configuration and report issues.

    Args:
        config_path: Optional explicit path to devbox.yml.
        environ: Environment to resolve against (default: ``os.environ``).
        cwd: Directory searched for devbox.yml.

    Returns:
        ConfigCheckResult with validation status and any issues.
    """
    env = os.environ if environ is None else environ
    result = ConfigCheckResult()

    if config_path is None:
        home = env.get("HOME")
        config_path = find_config_file(cwd, Path(home) if home else Path.home())
    result.config_path = config_path

    try:
        config = load_config(config_path, environ=env, cwd=cwd)
    except ConfigurationError as e:
        result.errors.append(str(e))
        return result
    result.config = config

    try:
        plan = build_workstation_plan(config)
    except ConfigurationError as e:
        result.errors.append(str(e))
        return result
    result.step_count = len(plan)

    # Semantic checks
    if config_path is None:
        result.warnings.append("No devbox.yml found; using built-in defaults.")

    if config.platform == "linux" and config.neovim_asset is None:
        result.warnings.append(
            f"No Neovim release build for architecture '{config.arch}'; "
            "install-neovim will fail."
        )

    enabled = set(config.zsh_plugins)
    for plugin in config.plugins:
        if plugin.name not in enabled:
            result.warnings.append(
                f"Plugin '{plugin.name}' is cloned but not listed in zsh_plugins."
            )

    if not config.target_shell_path.startswith("/"):
        result.errors.append(
            f"target_shell_path must be absolute, got '{config.target_shell_path}'"
        )

    result.valid = len(result.errors) == 0
    return result
