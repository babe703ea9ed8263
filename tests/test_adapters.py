"""
Tests for adapters — command runner, escalation, package managers,
git, releases, archives, login shells and the registry.
"""

import io
import json
import shutil
import tarfile
from pathlib import Path

import pytest

from devbox.adapters.accounts import LoginShellRegistry
from devbox.adapters.archive import ArchiveExtractor
from devbox.adapters.mock import RecordingRunner
from devbox.adapters.net.releases import ReleaseFetcher, select_asset
from devbox.adapters.packages import (
    AptPackageManager,
    BrewPackageManager,
    package_manager_for,
)
from devbox.adapters.registry import AdapterRegistry
from devbox.adapters.shell.command import CommandResult, CommandRunner
from devbox.adapters.shell.privilege import Escalator
from devbox.adapters.vcs.git import GitAdapter
from devbox.core.errors import (
    PermissionDeniedError,
    PreconditionError,
    ProvisionError,
    TransientError,
)
from tests.fakes import make_config, make_tarball, release_json


# ── CommandResult / CommandRunner ────────────────────────────────────


class TestCommandResult:
    def test_ok(self):
        result = CommandResult(argv=["true"], returncode=0)
        assert result.ok
        assert result.check("noop") is result

    def test_summary_prefers_last_stderr_line(self):
        result = CommandResult(returncode=1, stderr="warning\nE: broken\n")
        assert result.summary() == "E: broken"
        assert CommandResult(returncode=3).summary() == "exit status 3"

    @pytest.mark.parametrize("fields,error", [
        ({"missing": True, "error": "'x' not found"}, PreconditionError),
        ({"permission_denied": True, "returncode": 1}, PermissionDeniedError),
        ({"timed_out": True, "error": "timed out"}, TransientError),
        ({"returncode": 1}, ProvisionError),
    ])
    def test_check_maps_to_error_kind(self, fields, error):
        with pytest.raises(error) as exc:
            CommandResult(argv=["x"], **fields).check("thing")
        assert type(exc.value) is error
        assert str(exc.value).startswith("thing failed:")

    def test_transient_flag(self):
        with pytest.raises(TransientError):
            CommandResult(returncode=128).check("git clone", transient=True)


@pytest.mark.skipif(shutil.which("true") is None, reason="needs coreutils")
class TestCommandRunner:
    def test_success_and_failure(self):
        runner = CommandRunner(escalator=Escalator(euid=0))
        assert runner.run(["true"]).ok
        result = runner.run(["false"])
        assert not result.ok
        assert result.returncode == 1

    def test_captures_output(self):
        runner = CommandRunner()
        result = runner.run(["sh", "-c", "echo out; echo err >&2; exit 3"])
        assert result.stdout.strip() == "out"
        assert result.summary() == "err"
        assert result.returncode == 3

    def test_missing_binary(self):
        result = CommandRunner().run(["definitely-not-a-real-binary-xyz"])
        assert result.missing
        with pytest.raises(PreconditionError):
            result.check("run it")

    def test_timeout(self):
        result = CommandRunner().run(["sh", "-c", "sleep 5"], timeout=0.2)
        assert result.timed_out
        assert not result.ok

    def test_extra_env(self):
        result = CommandRunner().run(["sh", "-c", "echo $DEVBOX_TEST_VAR"],
                                     env={"DEVBOX_TEST_VAR": "hello"})
        assert result.stdout.strip() == "hello"

    def test_which_absolute_path(self, tmp_path: Path):
        runner = CommandRunner()
        script = tmp_path / "tool"
        script.write_text("#!/bin/sh\n")
        assert runner.which(str(script)) is None
        script.chmod(0o755)
        assert runner.which(str(script)) == str(script)

    def test_search_dirs_reach_which_and_children(self, tmp_path: Path):
        bin_dir = tmp_path / "homebrew" / "bin"
        bin_dir.mkdir(parents=True)
        tool = bin_dir / "devbox-brewed-tool"
        tool.write_text("#!/bin/sh\necho brewed\n")
        tool.chmod(0o755)

        runner = CommandRunner()
        assert runner.which(tool.name) is None
        runner.add_search_dirs([bin_dir])

        assert runner.which(tool.name) == str(tool)
        assert runner.run([tool.name]).stdout.strip() == "brewed"
        assert runner.run(["sh", "-c", tool.name]).stdout.strip() == "brewed"


class TestEscalator:
    def test_root_runs_directly(self):
        assert Escalator(euid=0).wrap(["apt-get", "install"]) == ["apt-get", "install"]

    def test_sudo_prefix(self, monkeypatch):
        monkeypatch.setattr(shutil, "which", lambda name: f"/usr/bin/{name}")
        assert Escalator(euid=1000).wrap(["chsh", "-s", "/bin/zsh"]) == [
            "/usr/bin/sudo", "chsh", "-s", "/bin/zsh",
        ]

    def test_no_sudo(self, monkeypatch):
        monkeypatch.setattr(shutil, "which", lambda name: None)
        with pytest.raises(PermissionDeniedError, match="needs root"):
            Escalator(euid=1000).wrap(["apt-get"])

    def test_runner_reports_missing_sudo_as_denied(self, monkeypatch):
        monkeypatch.setattr(shutil, "which", lambda name: None)
        result = CommandRunner(escalator=Escalator(euid=1000)).run(["apt-get"], privileged=True)
        assert result.permission_denied
        with pytest.raises(PermissionDeniedError):
            result.check("apt-get")

    @pytest.mark.parametrize("stderr,denied", [
        ("sudo: a password is required", True),
        ("dev is not in the sudoers file.  This incident will be reported.", True),
        ("E: Unable to locate package zsh", False),
    ])
    def test_looks_denied(self, stderr, denied):
        assert Escalator.looks_denied(stderr) is denied


# ── Recording runner ─────────────────────────────────────────────────


class TestRecordingRunner:
    def test_records_and_scripts(self):
        runner = RecordingRunner(binaries={"git": "/usr/bin/git"})
        runner.on("git", returncode=1, stderr="fatal: nope")
        runner.on("git", "status")

        assert not runner.run(["git", "clone", "x"]).ok
        assert runner.run(["git", "status"]).ok
        assert runner.run(["ls"]).ok
        assert runner.call_count == 3
        assert runner.ran("git", "clone")
        assert not runner.ran("git", "pull")
        assert runner.which("git") == "/usr/bin/git"
        assert runner.which("zsh") is None

    def test_effect_only_on_success(self):
        seen = []
        runner = RecordingRunner()
        runner.on("touch", effect=seen.append)
        runner.run(["touch", "a"])
        runner.on("touch", returncode=1, effect=seen.append)
        runner.run(["touch", "b"])
        assert seen == [["touch", "a"]]

    def test_reset(self):
        runner = RecordingRunner()
        runner.on("x", returncode=1)
        runner.run(["x"])
        runner.reset()
        assert runner.call_count == 0
        assert runner.run(["x"]).ok


# ── Package managers ─────────────────────────────────────────────────


class TestPackageManagers:
    def test_strategy_by_platform(self):
        runner = RecordingRunner()
        assert isinstance(package_manager_for("linux", runner), AptPackageManager)
        assert isinstance(package_manager_for("macos", runner), BrewPackageManager)

    def test_brew_is_unprivileged(self):
        runner = RecordingRunner(binaries={"brew": "/opt/homebrew/bin/brew"})
        receipt = BrewPackageManager(runner).install(["neovim"])
        assert receipt.ok
        [call] = runner.calls
        assert call.argv == ["brew", "install", "neovim"]
        assert not call.privileged

    def test_apt_update_failure_stops_install(self):
        runner = RecordingRunner(binaries={"apt-get": "/usr/bin/apt-get"})
        runner.on("apt-get", "update", returncode=100, stderr="E: Failed to fetch")
        receipt = AptPackageManager(runner).install(["zsh"])
        assert receipt.error_kind == "transient"
        assert not runner.ran("apt-get", "install")

    def test_install_metadata(self):
        runner = RecordingRunner(binaries={"apt-get": "/usr/bin/apt-get"})
        receipt = AptPackageManager(runner).install(["zsh", "git"])
        assert receipt.metadata == {"manager": "apt-get", "packages": ["zsh", "git"]}


# ── Git ──────────────────────────────────────────────────────────────


class TestGitAdapter:
    def _git(self) -> tuple[GitAdapter, RecordingRunner]:
        runner = RecordingRunner(binaries={"git": "/usr/bin/git"})
        return GitAdapter(runner), runner

    def test_clone_with_depth(self, tmp_path: Path):
        git, runner = self._git()
        dest = tmp_path / "plugins" / "zsh-autosuggestions"
        receipt = git.clone_or_update("https://example.invalid/a.git", dest, depth=1)
        assert receipt.ok
        assert runner.calls[0].argv == [
            "git", "clone", "--depth", "1", "https://example.invalid/a.git", str(dest),
        ]
        assert dest.parent.is_dir()

    def test_existing_repo_left_alone(self, tmp_path: Path):
        git, runner = self._git()
        (tmp_path / "repo" / ".git").mkdir(parents=True)
        receipt = git.clone_or_update("https://example.invalid/a.git", tmp_path / "repo")
        assert receipt.ok
        assert "already cloned" in receipt.output
        assert runner.call_count == 0

    def test_existing_repo_updated(self, tmp_path: Path):
        git, runner = self._git()
        (tmp_path / "repo" / ".git").mkdir(parents=True)
        receipt = git.clone_or_update("https://example.invalid/a.git", tmp_path / "repo",
                                      update=True)
        assert receipt.metadata["updated"] is True
        assert runner.calls[0].argv == ["git", "-C", str(tmp_path / "repo"), "pull", "--ff-only"]

    def test_non_repo_in_the_way(self, tmp_path: Path):
        git, _ = self._git()
        (tmp_path / "repo").mkdir()
        receipt = git.clone_or_update("https://example.invalid/a.git", tmp_path / "repo")
        assert receipt.error_kind == "precondition"

    def test_clone_failure_is_transient(self, tmp_path: Path):
        git, runner = self._git()
        runner.on("git", "clone", returncode=128, stderr="fatal: unable to access")
        receipt = git.clone_or_update("https://example.invalid/a.git", tmp_path / "repo")
        assert receipt.retryable

    def test_git_missing(self, tmp_path: Path):
        git = GitAdapter(RecordingRunner())
        receipt = git.clone_or_update("https://example.invalid/a.git", tmp_path / "repo")
        assert receipt.error_kind == "precondition"


# ── Releases ─────────────────────────────────────────────────────────


class _FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class TestReleases:
    def test_select_asset_exact_match(self):
        release = release_json("nvim-linux-x86_64.tar.gz.sha256sum", "nvim-linux-x86_64.tar.gz")
        assert select_asset(release, "nvim-linux-x86_64.tar.gz")["name"] == "nvim-linux-x86_64.tar.gz"

    def test_select_asset_missing(self):
        with pytest.raises(PreconditionError, match="No asset named"):
            select_asset(release_json("nvim-macos-arm64.tar.gz"), "nvim-linux-x86_64.tar.gz")

    def test_select_asset_without_url(self):
        release = {"assets": [{"name": "a.tar.gz"}]}
        with pytest.raises(PreconditionError, match="browser_download_url"):
            select_asset(release, "a.tar.gz")

    def test_select_asset_malformed(self):
        with pytest.raises(PreconditionError, match="assets"):
            select_asset({"tag_name": "v1"}, "a.tar.gz")

    def test_fetch_json(self, monkeypatch):
        payload = json.dumps(release_json("nvim-linux-x86_64.tar.gz")).encode()
        seen = []

        def urlopen(req, timeout):
            seen.append((req.full_url, req.get_header("User-agent"), timeout))
            return _FakeResponse(payload)

        monkeypatch.setattr("urllib.request.urlopen", urlopen)
        release = ReleaseFetcher().latest_release("neovim/neovim", timeout=5)
        assert release["tag_name"] == "v0.11.0"
        assert seen[0][0] == "https://api.github.com/repos/neovim/neovim/releases/latest"
        assert seen[0][1].startswith("devbox/")
        assert seen[0][2] == 5

    def test_invalid_json_is_transient(self, monkeypatch):
        monkeypatch.setattr("urllib.request.urlopen", lambda req, timeout: _FakeResponse(b"<html>"))
        with pytest.raises(TransientError):
            ReleaseFetcher().fetch_json("https://example.invalid/x")

    def test_http_errors(self, monkeypatch):
        import urllib.error

        def not_found(req, timeout):
            raise urllib.error.HTTPError(req.full_url, 404, "Not Found", {}, None)

        def unreachable(req, timeout):
            raise urllib.error.URLError("Name or service not known")

        monkeypatch.setattr("urllib.request.urlopen", not_found)
        with pytest.raises(PreconditionError):
            ReleaseFetcher().fetch_json("https://example.invalid/x")

        monkeypatch.setattr("urllib.request.urlopen", unreachable)
        with pytest.raises(TransientError):
            ReleaseFetcher().fetch_json("https://example.invalid/x")

    def test_download(self, monkeypatch, tmp_path: Path):
        monkeypatch.setattr("urllib.request.urlopen",
                            lambda req, timeout: _FakeResponse(b"archive-bytes"))
        dest = ReleaseFetcher().download("https://example.invalid/a.tar.gz", tmp_path / "a.tar.gz")
        assert dest.read_bytes() == b"archive-bytes"


# ── Archives ─────────────────────────────────────────────────────────


def _tar_with(path: Path, *names: str) -> Path:
    with tarfile.open(path, "w:gz") as tar:
        for name in names:
            info = tarfile.TarInfo(name)
            info.size = 1
            tar.addfile(info, io.BytesIO(b"x"))
    return path


class TestArchiveExtractor:
    def test_extract(self, tmp_path: Path):
        archive = make_tarball(tmp_path / "nvim.tar.gz")
        extracted = ArchiveExtractor().extract(archive, tmp_path / "out")
        assert extracted == tmp_path / "out" / "nvim-linux-x86_64"
        assert (extracted / "bin" / "nvim").is_file()

    def test_several_top_level_dirs(self, tmp_path: Path):
        archive = _tar_with(tmp_path / "a.tar.gz", "one/bin/x", "two/bin/y")
        with pytest.raises(PreconditionError, match="one top-level directory"):
            ArchiveExtractor().top_level_dir(archive)

    @pytest.mark.parametrize("member", ["../evil", "/etc/passwd", "top/../../evil"])
    def test_unsafe_members_rejected(self, tmp_path: Path, member: str):
        archive = _tar_with(tmp_path / "a.tar.gz", member)
        with pytest.raises(PreconditionError, match="Unsafe"):
            ArchiveExtractor().extract(archive, tmp_path / "out")
        assert not (tmp_path / "evil").exists()

    def test_empty_archive(self, tmp_path: Path):
        archive = _tar_with(tmp_path / "a.tar.gz")
        with pytest.raises(PreconditionError, match="empty"):
            ArchiveExtractor().top_level_dir(archive)

    def test_not_an_archive_is_transient(self, tmp_path: Path):
        archive = tmp_path / "a.tar.gz"
        archive.write_bytes(b"truncated")
        with pytest.raises(TransientError):
            ArchiveExtractor().top_level_dir(archive)


# ── Login shells ─────────────────────────────────────────────────────


class TestLoginShellRegistry:
    def test_registered_shells(self, tmp_path: Path):
        shells = tmp_path / "shells"
        shells.write_text("# /etc/shells: valid login shells\n/bin/sh\n/bin/bash\n\n/usr/bin/zsh\n")
        registry = LoginShellRegistry(RecordingRunner(), shells_file=shells)
        assert registry.registered_shells() == ["/bin/sh", "/bin/bash", "/usr/bin/zsh"]

    def test_missing_shells_file(self, tmp_path: Path):
        registry = LoginShellRegistry(RecordingRunner(), shells_file=tmp_path / "nope")
        assert registry.registered_shells() is None

    def test_unknown_user(self):
        registry = LoginShellRegistry(RecordingRunner())
        assert registry.login_shell("no-such-user-devbox-test") is None

    def test_change_runs_attached_to_terminal(self):
        runner = RecordingRunner(binaries={"chsh": "/usr/bin/chsh"})
        registry = LoginShellRegistry(runner)
        assert registry.is_available()
        registry.change("dev", "/usr/bin/zsh", privileged=True)
        assert runner.calls[0].argv == ["chsh", "-s", "/usr/bin/zsh", "dev"]
        assert runner.calls[0].privileged


# ── Registry ─────────────────────────────────────────────────────────


class TestAdapterRegistry:
    def test_for_config_defaults(self, tmp_path: Path):
        registry = AdapterRegistry.for_config(make_config(tmp_path, platform="macos"))
        assert isinstance(registry.runner, CommandRunner)
        assert isinstance(registry.packages, BrewPackageManager)
        assert isinstance(registry.releases, ReleaseFetcher)

    def test_replacements_share_runner(self, tmp_path: Path):
        runner = RecordingRunner()
        registry = AdapterRegistry.for_config(make_config(tmp_path), runner=runner)
        registry.packages.install(["zsh"])
        assert registry.runner is runner
        # apt-get is not on the fake PATH, so nothing ran
        assert runner.call_count == 0

    def test_adapter_status(self, tmp_path: Path):
        runner = RecordingRunner(binaries={"git": "/usr/bin/git"})
        status = AdapterRegistry.for_config(make_config(tmp_path), runner=runner).adapter_status()
        assert status["git"]["available"] is True
        assert status["apt-get"]["available"] is False
        assert status["chsh"]["available"] is False
        assert status["filesystem"]["type"] == "TextFileEditor"
