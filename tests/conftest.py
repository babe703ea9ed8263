"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from devbox.core.models.config import ProvisionConfig
from tests.fakes import FakeMachine, fresh_machine, make_config, make_tarball


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def config(tmp_path: Path) -> ProvisionConfig:
    """Linux x86_64 config with every path under tmp_path."""
    return make_config(tmp_path)


@pytest.fixture
def tarball(tmp_path: Path) -> Path:
    """A Neovim-style release tarball."""
    return make_tarball(tmp_path / "assets" / "nvim-linux-x86_64.tar.gz")


@pytest.fixture
def machine(config: ProvisionConfig, tarball: Path) -> FakeMachine:
    """A fresh simulated machine: nothing installed yet."""
    return fresh_machine(config, tarball)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove environment variables that change config resolution."""
    for var in (
        "ZSH_CUSTOM", "DEVBOX_PLATFORM", "DEVBOX_ARCH", "DEVBOX_NETWORK_TIMEOUT",
        "DEVBOX_STATE_DIR", "DEVBOX_SHELL", "DEVBOX_LOG_LEVEL", "DEVBOX_LOG_FILE",
        "DEVBOX_LOG_FILE_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
    return monkeypatch
