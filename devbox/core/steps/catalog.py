"""
Workstation plan — the static declaration of every provisioning step.

Steps are listed in the order an operator would expect to see them
run; the Plan keeps that order wherever dependencies allow. Platform
differences (apt vs Homebrew, release tarball vs ``brew install``)
are chosen here, once, from ``config.platform``.
"""

from __future__ import annotations

import logging

from devbox.core.engine.plan import Plan
from devbox.core.models.config import ProvisionConfig
from devbox.core.models.step import Step
from devbox.core.steps.actions import (
    Action,
    ChangeLoginShell,
    CloneOrUpdate,
    EnsureBlock,
    EnsureLine,
    FallbackChain,
    InstallPackages,
    InstallReleaseArchive,
    ReplaceDirectoryWithClone,
    RunRemoteInstaller,
)
from devbox.core.steps.probes import (
    AnyOf,
    BlockPresent,
    CommandOnPath,
    FileContainsLine,
    LoginShellIs,
    PathExists,
    Probe,
)

logger = logging.getLogger(__name__)

# Resource tags — steps sharing one never run at the same time
PACKAGE_DB = "package-db"
GIT_NETWORK = "git-network"
SHELL_RC = "shell-rc"
SHELL_DB = "shell-db"

LOGIN_SHELL_MARKER = "login-shell"
ZSH_EXTRAS_MARKER = "zsh-extras"


def login_shell_stanza(shell: str) -> str:
    """Lines appended to ~/.bashrc when the login shell cannot be changed."""
    return f'if [ -t 1 ] && [ -x "{shell}" ]; then\n  exec "{shell}"\nfi'


def plugins_line(config: ProvisionConfig) -> str:
    return f"plugins=({' '.join(config.zsh_plugins)})"


def theme_line(config: ProvisionConfig) -> str:
    return f'ZSH_THEME="{config.zsh_theme}"'


def build_workstation_plan(config: ProvisionConfig) -> Plan:
    """Declare the full workstation plan for ``config``.

    Raises:
        ConfigurationError: The declaration does not form a valid DAG.
    """
    macos = config.platform == "macos"
    # apt needs root, brew refuses to run as root
    pkg_privileged = not macos
    pkg_deps = {"install-homebrew"} if macos else set()
    shell = config.target_shell_path
    steps: list[Step] = []

    if macos:
        steps.append(Step(
            id="install-homebrew",
            probe=CommandOnPath("brew"),
            action=RunRemoteInstaller(
                config.homebrew_installer_url,
                env={"NONINTERACTIVE": "1"},
                shell="bash",
                label="Homebrew",
            ),
            retryable=True,
            network_bound=True,
            description="Install the Homebrew package manager",
        ))

    steps += [
        Step(
            id="install-zsh",
            probe=CommandOnPath("zsh"),
            action=InstallPackages("zsh"),
            depends_on=pkg_deps,
            resource=PACKAGE_DB,
            retryable=True,
            privileged=pkg_privileged,
            description="Install the Z shell",
        ),
        Step(
            id="install-git",
            probe=CommandOnPath("git"),
            action=InstallPackages("git"),
            depends_on=pkg_deps,
            resource=PACKAGE_DB,
            retryable=True,
            privileged=pkg_privileged,
            description="Install git",
        ),
        Step(
            id="install-oh-my-zsh",
            probe=PathExists(config.oh_my_zsh_dir, "dir"),
            action=RunRemoteInstaller(
                config.oh_my_zsh_installer_url,
                args=("--unattended",),
                env={
                    "RUNZSH": "no",
                    "KEEP_ZSHRC": "yes",
                    "CHSH": "no",
                    "ZSH": str(config.oh_my_zsh_dir),
                },
                label="Oh My Zsh",
            ),
            depends_on={"install-zsh", "install-git"},
            resource=GIT_NETWORK,
            retryable=True,
            network_bound=True,
            description=f"Install Oh My Zsh into {config.oh_my_zsh_dir}",
        ),
    ]

    plugin_ids = []
    for plugin in config.plugins:
        step_id = f"plugin-{plugin.name}"
        plugin_ids.append(step_id)
        dest = config.plugin_dir / plugin.name
        steps.append(Step(
            id=step_id,
            probe=PathExists(dest, "dir"),
            action=CloneOrUpdate(plugin.url, dest, depth=1),
            depends_on={"install-oh-my-zsh", "install-git"},
            resource=GIT_NETWORK,
            retryable=True,
            network_bound=True,
            description=f"Clone the {plugin.name} plugin",
        ))

    zshrc = config.zshrc_path
    steps += [
        _line_step(
            "zshrc-plugins", zshrc, r"^plugins=", plugins_line(config),
            depends_on={"install-oh-my-zsh", *plugin_ids},
            description="Enable Oh My Zsh plugins in ~/.zshrc",
        ),
        _line_step(
            "zshrc-theme", zshrc, r"^ZSH_THEME=", theme_line(config),
            depends_on={"install-oh-my-zsh"},
            description=f"Set the {config.zsh_theme} theme in ~/.zshrc",
        ),
        Step(
            id="zshrc-extras",
            probe=BlockPresent(zshrc, ZSH_EXTRAS_MARKER, config.zshrc_extras),
            action=EnsureBlock(zshrc, ZSH_EXTRAS_MARKER, config.zshrc_extras),
            depends_on={"install-oh-my-zsh"},
            resource=SHELL_RC,
            description="Add completion and alias settings to ~/.zshrc",
        ),
        _neovim_step(config, pkg_deps, pkg_privileged),
        Step(
            id="install-nvchad",
            probe=PathExists(config.nvim_config_dir / "lua" / "chadrc.lua", "file"),
            action=ReplaceDirectoryWithClone(config.nvchad_repo, config.nvim_config_dir),
            depends_on={"install-neovim", "install-git"},
            resource=GIT_NETWORK,
            retryable=True,
            network_bound=True,
            description="Install the NvChad starter config",
        ),
        _login_shell_step(config, shell),
    ]

    plan = Plan(steps)
    logger.debug("Declared %d steps for %s/%s", len(plan), config.platform, config.arch)
    return plan


def _line_step(
    step_id: str, path, pattern: str, line: str, *, depends_on: set[str], description: str,
) -> Step:
    return Step(
        id=step_id,
        probe=FileContainsLine(path, pattern, expected=line),
        action=EnsureLine(path, pattern, line),
        depends_on=depends_on,
        resource=SHELL_RC,
        description=description,
    )


def _neovim_step(config: ProvisionConfig, pkg_deps: set[str], privileged: bool) -> Step:
    if config.platform == "macos":
        probe: Probe = CommandOnPath("nvim")
        action: Action = InstallPackages("neovim")
        description = "Install Neovim with Homebrew"
    else:
        link = config.install_prefix / "bin" / "nvim"
        probe = AnyOf(CommandOnPath("nvim"), PathExists(link, "file"))
        action = InstallReleaseArchive(
            config.neovim_repo, config.neovim_asset, config.install_prefix, "nvim",
        )
        description = f"Install the latest Neovim release into {config.install_prefix}"
    return Step(
        id="install-neovim",
        probe=probe,
        action=action,
        depends_on=pkg_deps,
        resource=PACKAGE_DB,
        retryable=True,
        network_bound=True,
        privileged=privileged,
        description=description,
    )


def _login_shell_step(config: ProvisionConfig, shell: str) -> Step:
    levels: list[Action] = [
        ChangeLoginShell(shell),
        ChangeLoginShell(shell, privileged=True),
    ]
    probe: Probe = LoginShellIs(shell)
    if config.rc_fallback:
        stanza = login_shell_stanza(shell)
        levels.append(EnsureBlock(config.bashrc_path, LOGIN_SHELL_MARKER, stanza))
        probe = AnyOf(probe, BlockPresent(config.bashrc_path, LOGIN_SHELL_MARKER, stanza))
    return Step(
        id="change-login-shell",
        probe=probe,
        action=FallbackChain(*levels),
        depends_on={"install-zsh"},
        resource=SHELL_DB,
        privileged=True,
        description=f"Make {shell} the login shell of {config.user}",
        remediation=f"sudo chsh -s {shell} {config.user}",
    )
