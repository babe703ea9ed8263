"""
ProvisionConfig — everything a run needs to know about the machine.

Resolved once at startup by ``devbox.core.config.loader`` from the
environment, an optional YAML file and ``DEVBOX_*`` overrides. Plan
construction and every step read from this object; nothing reads
``$HOME``, ``$ZSH_CUSTOM`` or ``$USER`` mid-run.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Platform = Literal["linux", "macos"]

# Apple Silicon, then Intel
HOMEBREW_BIN_DIRS = (Path("/opt/homebrew/bin"), Path("/usr/local/bin"))

# uname -m spellings → the suffix used in Neovim release asset names
_NEOVIM_ARCH = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "aarch64": "arm64",
    "arm64": "arm64",
}

DEFAULT_ZSHRC_EXTRAS = """\
autoload -U compinit
compinit
alias ll="ls -lF"
ZSH_AUTOSUGGEST_HIGHLIGHT_STYLE='fg=cyan'
bindkey '^I' expand-or-complete
zstyle ':completion:*' menu select"""


class PluginSpec(BaseModel):
    """An Oh My Zsh custom plugin cloned from a git repository."""

    name: str
    url: str


def _default_plugins() -> list[PluginSpec]:
    return [
        PluginSpec(
            name="zsh-autosuggestions",
            url="https://github.com/zsh-users/zsh-autosuggestions.git",
        ),
        PluginSpec(
            name="zsh-syntax-highlighting",
            url="https://github.com/zsh-users/zsh-syntax-highlighting.git",
        ),
    ]


class ProvisionConfig(BaseModel):
    """Resolved, immutable run configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # ── Identity ─────────────────────────────────────────────────
    user: str
    home_dir: Path
    platform: Platform = "linux"
    arch: str = "x86_64"

    # ── Shell ────────────────────────────────────────────────────
    target_shell_path: str = "/usr/bin/zsh"
    oh_my_zsh_dir: Path
    custom_plugin_dir: Path
    oh_my_zsh_installer_url: str = (
        "https://raw.githubusercontent.com/ohmyzsh/ohmyzsh/master/tools/install.sh"
    )
    zsh_theme: str = "agnoster"
    zsh_plugins: list[str] = Field(
        default_factory=lambda: [
            "git", "z", "zsh-autosuggestions", "zsh-syntax-highlighting", "docker",
        ]
    )
    plugins: list[PluginSpec] = Field(default_factory=_default_plugins)
    zshrc_extras: str = DEFAULT_ZSHRC_EXTRAS
    rc_fallback: bool = True        # append an exec stanza to ~/.bashrc if chsh fails

    # ── Editor ───────────────────────────────────────────────────
    neovim_repo: str = "neovim/neovim"
    install_prefix: Path = Path("/usr/local")
    nvim_config_dir: Path
    nvchad_repo: str = "https://github.com/NvChad/starter"

    # ── macOS ────────────────────────────────────────────────────
    homebrew_installer_url: str = (
        "https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh"
    )
    # searched after $PATH; Homebrew's bin dir is not on PATH until the
    # user's shell profile runs `brew shellenv`
    extra_bin_dirs: list[Path] = Field(default_factory=list)

    # ── Execution ────────────────────────────────────────────────
    network_timeout: float = Field(default=60.0, gt=0)
    package_timeout: float = Field(default=900.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_factor: float = Field(default=2.0, ge=1)
    retry_max_delay: float = Field(default=30.0, ge=0)
    state_dir: Path

    @model_validator(mode="before")
    @classmethod
    def _derive_paths(cls, data: Any) -> Any:
        """Fill home-relative defaults that depend on ``home_dir``."""
        if not isinstance(data, dict) or not data.get("home_dir"):
            return data
        data = {k: v for k, v in data.items() if v is not None}
        home = Path(data["home_dir"]).expanduser()
        data.setdefault("oh_my_zsh_dir", home / ".oh-my-zsh")
        data.setdefault("custom_plugin_dir", Path(data["oh_my_zsh_dir"]) / "custom")
        data.setdefault("nvim_config_dir", home / ".config" / "nvim")
        data.setdefault("state_dir", home / ".local" / "state" / "devbox")
        if data.get("platform") == "macos":
            data.setdefault("extra_bin_dirs", list(HOMEBREW_BIN_DIRS))
        return data

    @field_validator(
        "home_dir", "oh_my_zsh_dir", "custom_plugin_dir", "nvim_config_dir",
        "install_prefix", "state_dir",
    )
    @classmethod
    def _expand(cls, value: Path) -> Path:
        return Path(value).expanduser()

    @field_validator("plugins")
    @classmethod
    def _unique_plugins(cls, value: list[PluginSpec]) -> list[PluginSpec]:
        names = [p.name for p in value]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"duplicate plugin names: {', '.join(dupes)}")
        return value

    # ── Derived paths ────────────────────────────────────────────

    @property
    def zshrc_path(self) -> Path:
        return self.home_dir / ".zshrc"

    @property
    def bashrc_path(self) -> Path:
        return self.home_dir / ".bashrc"

    @property
    def plugin_dir(self) -> Path:
        return self.custom_plugin_dir / "plugins"

    @property
    def neovim_asset(self) -> str | None:
        """Exact release asset filename for this architecture, if supported."""
        suffix = _NEOVIM_ARCH.get(self.arch.lower())
        if suffix is None:
            return None
        return f"nvim-linux-{suffix}.tar.gz"
