"""
Configuration loader — resolves ProvisionConfig once at startup.

Layers, lowest precedence first:

1. Detected from the machine: ``$HOME``, ``$USER``, ``$ZSH_CUSTOM``,
   ``platform.system()`` / ``platform.machine()``, the zsh on PATH.
2. ``devbox.yml`` (``--config``, else ``./devbox.yml``, else
   ``~/.config/devbox/devbox.yml``), flat or wrapped in ``devbox:``.
3. ``DEVBOX_*`` environment overrides.

The result is validated with pydantic. Anything wrong raises
``ConfigurationError``, which the CLI turns into exit code 2.
"""

from __future__ import annotations

import getpass
import logging
import os
import platform
import shutil
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import ValidationError

from devbox.core.errors import ConfigurationError
from devbox.core.models.config import ProvisionConfig

logger = logging.getLogger(__name__)

CONFIG_FILE = "devbox.yml"

# DEVBOX_* variable → config field
ENV_OVERRIDES = {
    "DEVBOX_PLATFORM": "platform",
    "DEVBOX_ARCH": "arch",
    "DEVBOX_NETWORK_TIMEOUT": "network_timeout",
    "DEVBOX_STATE_DIR": "state_dir",
    "DEVBOX_SHELL": "target_shell_path",
}

_DEFAULT_ZSH = {"linux": "/usr/bin/zsh", "macos": "/bin/zsh"}


def detect_platform(system: str | None = None) -> str | None:
    """Map ``uname -s`` to a supported platform name, or None."""
    system = system if system is not None else platform.system()
    return {"Linux": "linux", "Darwin": "macos"}.get(system)


def find_config_file(
    cwd: Path | None = None, home: Path | None = None,
) -> Path | None:
    """Return the first existing config file, or None."""
    candidates = [(cwd or Path.cwd()) / CONFIG_FILE]
    if home is not None:
        candidates.append(home / ".config" / "devbox" / CONFIG_FILE)
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def read_config_file(path: Path) -> dict[str, Any]:
    """Parse a YAML config file into a mapping.

    Raises:
        ConfigurationError: Unreadable file, invalid YAML, or not a mapping.
    """
    if not path.is_file():
        raise ConfigurationError(f"Config file not found: {path}")

    logger.debug("Loading config from %s", path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The YAML may wrap everything under a "devbox" key or be flat
    if "devbox" in data:
        data = data["devbox"] or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"'devbox' in {path} must be a mapping")
    return data


def detected_defaults(
    environ: Mapping[str, str],
    *,
    system: str | None = None,
    machine: str | None = None,
) -> dict[str, Any]:
    """Values read from the running machine (lowest precedence)."""
    defaults: dict[str, Any] = {}

    home = environ.get("HOME")
    defaults["home_dir"] = Path(home) if home else Path.home()
    defaults["user"] = environ.get("USER") or environ.get("LOGNAME") or getpass.getuser()

    plat = detect_platform(system)
    if plat is not None:
        defaults["platform"] = plat
    defaults["arch"] = machine if machine is not None else platform.machine()

    if environ.get("ZSH_CUSTOM"):
        defaults["custom_plugin_dir"] = Path(environ["ZSH_CUSTOM"])

    zsh = shutil.which("zsh")
    if zsh:
        defaults["target_shell_path"] = zsh
    return defaults


def environment_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """``DEVBOX_*`` overrides (highest precedence)."""
    return {
        field: environ[var]
        for var, field in ENV_OVERRIDES.items()
        if environ.get(var)
    }


def load_config(
    path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    cwd: Path | None = None,
    system: str | None = None,
    machine: str | None = None,
) -> ProvisionConfig:
    """Resolve and validate the run configuration.

    Args:
        path: Explicit config file (``--config``). Must exist.
        environ: Environment to read (default: ``os.environ``).
        cwd: Directory searched first for ``devbox.yml``.
        system: ``uname -s`` override, for tests.
        machine: ``uname -m`` override, for tests.

    Raises:
        ConfigurationError: If the file or the merged values are invalid.
    """
    env = os.environ if environ is None else environ
    data = detected_defaults(env, system=system, machine=machine)

    if path is None:
        path = find_config_file(cwd, Path(data["home_dir"]))
    if path is not None:
        data.update(read_config_file(Path(path)))

    data.update(environment_overrides(env))

    if "platform" not in data:
        raise ConfigurationError(
            f"Unsupported operating system '{system or platform.system()}'; "
            "set 'platform' in devbox.yml or DEVBOX_PLATFORM"
        )
    data.setdefault("target_shell_path", _DEFAULT_ZSH.get(str(data["platform"]), "/usr/bin/zsh"))

    try:
        config = ProvisionConfig.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from e

    logger.info(
        "Config: user=%s platform=%s arch=%s shell=%s%s",
        config.user, config.platform, config.arch, config.target_shell_path,
        f" (from {path})" if path else "",
    )
    return config
