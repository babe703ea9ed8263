"""
Actions — the changes a step makes when its probe is not satisfied.

Each action wraps one logical change and reports it as a Receipt.
Subclasses implement ``run()`` and may raise the typed errors from
``devbox.core.errors``; ``apply()`` converts those into failure
receipts tagged with the error kind. The executor only calls
``apply()`` after the paired probe reported UNSATISFIED or UNKNOWN,
so actions do not re-check.
"""

from __future__ import annotations

import logging
import tempfile
import time
from abc import ABC, abstractmethod
from pathlib import Path

from devbox.adapters.net.releases import select_asset
from devbox.adapters.shell.filesystem import FileEdit
from devbox.core.context import StepContext
from devbox.core.errors import (
    PermissionDeniedError,
    PreconditionError,
    ProvisionError,
)
from devbox.core.models.action import Receipt

logger = logging.getLogger(__name__)


class Action(ABC):
    """One logical change to the machine."""

    def apply(self, ctx: StepContext) -> Receipt:
        """Perform the change. Never raises for provisioning errors."""
        start = time.monotonic()
        try:
            receipt = self.run(ctx)
        except ProvisionError as e:
            receipt = Receipt.from_error(self.describe(), e)
        receipt.duration_ms = int((time.monotonic() - start) * 1000)
        return receipt

    @abstractmethod
    def run(self, ctx: StepContext) -> Receipt:
        """Do the work; raise a ProvisionError subclass on failure."""

    @abstractmethod
    def describe(self) -> str:
        """Short description for logs and plan listings."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.describe()}>"


# ── Packages & installers ───────────────────────────────────────────


class InstallPackages(Action):
    """Install OS packages with the platform's package manager."""

    def __init__(self, *names: str):
        self.names = list(names)

    def run(self, ctx: StepContext) -> Receipt:
        return ctx.adapters.packages.install(self.names, timeout=ctx.package_timeout)

    def describe(self) -> str:
        return f"install package(s) {', '.join(self.names)}"


class RunRemoteInstaller(Action):
    """Download an installer script and run it with a shell.

    Used for Oh My Zsh (``sh install.sh --unattended``) and Homebrew.
    """

    def __init__(
        self,
        url: str,
        *,
        args: tuple[str, ...] = (),
        env: dict[str, str] | None = None,
        shell: str = "sh",
        label: str = "",
    ):
        self.url = url
        self.args = args
        self.env = dict(env or {})
        self.shell = shell
        self.label = label or url

    def run(self, ctx: StepContext) -> Receipt:
        adapters = ctx.adapters
        if adapters.runner.which(self.shell) is None:
            raise PreconditionError(f"'{self.shell}' not found on PATH")
        with tempfile.TemporaryDirectory(prefix="devbox-") as tmp:
            script = adapters.releases.download(
                self.url, Path(tmp) / "install.sh", timeout=ctx.network_timeout,
            )
            adapters.runner.run(
                [self.shell, str(script), *self.args],
                env=self.env,
                timeout=ctx.package_timeout,
            ).check(f"{self.label} installer", transient=True)
        return Receipt.success(self.describe(), output=f"ran {self.label} installer")

    def describe(self) -> str:
        return f"run {self.label} installer"


class InstallReleaseArchive(Action):
    """Install a binary tarball from the latest GitHub release.

    Flow: release JSON → exact asset match → download into a temp dir →
    find the archive's top-level directory → extract → move into the
    prefix (replacing an older copy) → symlink the binary into
    ``<prefix>/bin``. The asset lookup happens before anything is
    downloaded, so a missing asset leaves the machine untouched.
    """

    def __init__(self, repo: str, asset_name: str | None, prefix: Path, binary: str):
        self.repo = repo
        self.asset_name = asset_name
        self.prefix = prefix
        self.binary = binary

    def run(self, ctx: StepContext) -> Receipt:
        if not self.asset_name:
            raise PreconditionError(
                f"No {self.repo} release asset for architecture '{ctx.config.arch}'"
            )
        adapters = ctx.adapters
        timeout = ctx.network_timeout

        release = adapters.releases.latest_release(self.repo, timeout=timeout)
        asset = select_asset(release, self.asset_name)
        tag = release.get("tag_name", "")

        with tempfile.TemporaryDirectory(prefix="devbox-") as tmp:
            tmp_dir = Path(tmp)
            archive = adapters.releases.download(
                asset["browser_download_url"], tmp_dir / self.asset_name, timeout=timeout,
            )
            extracted = adapters.archives.extract(archive, tmp_dir / "extract")
            target = self.prefix / extracted.name
            link = self.prefix / "bin" / self.binary

            if not (extracted / "bin" / self.binary).exists():
                raise PreconditionError(f"Archive has no bin/{self.binary}")

            runner = adapters.runner
            steps = [
                (["mkdir", "-p", str(self.prefix / "bin")], "create bin directory"),
                (["rm", "-rf", str(target)], f"remove old {target}"),
                (["mv", str(extracted), str(self.prefix)], f"move into {self.prefix}"),
                (["ln", "-sf", str(target / "bin" / self.binary), str(link)], "link binary"),
            ]
            for argv, what in steps:
                runner.run(argv, privileged=True, timeout=timeout).check(what)

        logger.info("Installed %s %s into %s", self.repo, tag, target)
        return Receipt.success(
            self.describe(),
            output=f"installed {self.asset_name} {tag}".strip(),
            metadata={"tag": tag, "asset": self.asset_name, "target": str(target)},
        )

    def describe(self) -> str:
        return f"install {self.asset_name or self.repo} release into {self.prefix}"


# ── Repositories ────────────────────────────────────────────────────


class CloneOrUpdate(Action):
    """Clone a repository if absent; fast-forward it if ``update`` is set."""

    def __init__(self, url: str, dest: Path, *, update: bool = False, depth: int | None = None):
        self.url = url
        self.dest = dest
        self.update = update
        self.depth = depth

    def run(self, ctx: StepContext) -> Receipt:
        return ctx.adapters.git.clone_or_update(
            self.url, self.dest,
            update=self.update, depth=self.depth, timeout=ctx.network_timeout,
        )

    def describe(self) -> str:
        return f"clone {self.url} into {self.dest}"


class ReplaceDirectoryWithClone(Action):
    """Set an existing directory aside (timestamped) and clone in its place.

    Used for the NvChad starter: a pre-existing ``~/.config/nvim`` is
    preserved as ``nvim.bak.TIMESTAMP``. If the clone fails the old
    directory is moved back, so a retry starts from the same state.
    """

    def __init__(self, url: str, dest: Path):
        self.url = url
        self.dest = dest

    def run(self, ctx: StepContext) -> Receipt:
        adapters = ctx.adapters
        if not adapters.git.is_available():
            raise PreconditionError("git not found on PATH")
        backup = None
        if self.dest.exists() or self.dest.is_symlink():
            backup = adapters.files.backup(self.dest, move=True)
        receipt = adapters.git.clone_or_update(self.url, self.dest, timeout=ctx.network_timeout)
        if backup is None:
            return receipt
        if receipt.ok:
            receipt.metadata["backup"] = str(backup)
            receipt.output += f" (previous config saved as {backup.name})"
            return receipt

        try:
            adapters.files.restore(backup, self.dest)
        except ProvisionError as e:
            receipt.metadata["backup"] = str(backup)
            receipt.error = f"{receipt.error}; {e}"
        return receipt

    def describe(self) -> str:
        return f"replace {self.dest} with {self.url}"


# ── Files ───────────────────────────────────────────────────────────


def _edit_receipt(action: Action, edit: FileEdit) -> Receipt:
    if not edit.changed:
        return Receipt.success(action.describe(), output=f"{edit.path.name} already up to date")
    output = f"updated {edit.path}"
    if edit.backup is not None:
        output += f" (backup: {edit.backup.name})"
    return Receipt.success(
        action.describe(),
        output=output,
        metadata={"backup": str(edit.backup) if edit.backup else None},
    )


class EnsureLine(Action):
    """Replace the line matching ``pattern`` with ``line``, or append it."""

    def __init__(self, path: Path, pattern: str, line: str):
        self.path = path
        self.pattern = pattern
        self.line = line

    def run(self, ctx: StepContext) -> Receipt:
        return _edit_receipt(self, ctx.adapters.files.replace_line(self.path, self.pattern, self.line))

    def describe(self) -> str:
        return f"set '{self.line}' in {self.path.name}"


class EnsureBlock(Action):
    """Keep exactly one marker-delimited block with ``content`` in a file."""

    def __init__(self, path: Path, marker: str, content: str):
        self.path = path
        self.marker = marker
        self.content = content

    def run(self, ctx: StepContext) -> Receipt:
        return _edit_receipt(self, ctx.adapters.files.ensure_block(self.path, self.marker, self.content))

    def describe(self) -> str:
        return f"write '{self.marker}' block in {self.path.name}"


# ── Login shell ─────────────────────────────────────────────────────


class ChangeLoginShell(Action):
    """Run chsh for the configured user, optionally through sudo."""

    def __init__(self, shell: str, *, privileged: bool = False):
        self.shell = shell
        self.privileged = privileged

    def run(self, ctx: StepContext) -> Receipt:
        accounts = ctx.adapters.accounts
        if not accounts.is_available():
            raise PreconditionError("chsh not found on PATH")

        registered = accounts.registered_shells()
        if registered is not None and self.shell not in registered:
            logger.warning("%s is not listed in /etc/shells; chsh may refuse it", self.shell)

        result = accounts.change(ctx.config.user, self.shell, privileged=self.privileged)
        if not result.ok:
            raise PermissionDeniedError(f"{self.describe()} refused: {result.summary()}")
        return Receipt.success(self.describe(), output=f"login shell set to {self.shell}")

    def describe(self) -> str:
        prefix = "sudo " if self.privileged else ""
        return f"{prefix}chsh -s {self.shell}"


class FallbackChain(Action):
    """Try actions in order until one succeeds.

    The receipt records which level succeeded in ``fallback_level``
    (0 = first choice). When every level fails the last error kind is
    reported, and the message lists each attempt.
    """

    def __init__(self, *actions: Action):
        if not actions:
            raise ValueError("FallbackChain needs at least one action")
        self.actions = actions

    def run(self, ctx: StepContext) -> Receipt:
        errors: list[str] = []
        kind = "unexpected"
        for level, action in enumerate(self.actions):
            receipt = action.apply(ctx)
            if receipt.ok:
                if level:
                    logger.info("Fallback level %d succeeded: %s", level, action.describe())
                return receipt.model_copy(update={"fallback_level": level})
            logger.info("Level %d (%s) failed: %s", level, action.describe(), receipt.error)
            errors.append(f"{action.describe()}: {receipt.error}")
            kind = receipt.error_kind or "unexpected"

        return Receipt.failure(self.describe(), "; ".join(errors), kind=kind)

    def describe(self) -> str:
        return " → ".join(a.describe() for a in self.actions)
