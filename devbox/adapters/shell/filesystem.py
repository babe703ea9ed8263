"""
Text-file editor — idempotent edits of shell startup files.

Two edit primitives cover everything the provisioner writes:

    replace_line   set the single line matching a pattern, appending
                   it if no line matches
    ensure_block   keep exactly one marker-delimited block with the
                   given content

Every mutation is preceded by a timestamped backup
(``FILE.bak.YYYYMMDD_HHMMSS``) and performed as write-to-temp-then-
rename. An edit that would not change the file writes nothing and
creates no backup.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from devbox.adapters.base import Adapter
from devbox.core.errors import PreconditionError, ProvisionError

logger = logging.getLogger(__name__)

BACKUP_TIMESTAMP = "%Y%m%d_%H%M%S"

_BLOCK_BEGIN = "# >>> devbox: {marker} >>>"
_BLOCK_END = "# <<< devbox: {marker} <<<"


@dataclass(frozen=True)
class FileEdit:
    """What an edit did to a file."""

    path: Path
    changed: bool
    backup: Path | None = None


def backup_path_for(path: Path, now: datetime) -> Path:
    """Pick a free ``PATH.bak.TIMESTAMP`` name (``-N`` suffix on collision)."""
    base = path.with_name(f"{path.name}.bak.{now.strftime(BACKUP_TIMESTAMP)}")
    candidate = base
    n = 1
    while candidate.exists():
        candidate = base.with_name(f"{base.name}-{n}")
        n += 1
    return candidate


def block_lines(marker: str, content: str) -> list[str]:
    """The lines of a managed block, markers included."""
    return [
        _BLOCK_BEGIN.format(marker=marker),
        *content.rstrip("\n").splitlines(),
        _BLOCK_END.format(marker=marker),
    ]


class TextFileEditor(Adapter):
    """Backup-first, idempotent edits of text files."""

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or datetime.now

    @property
    def name(self) -> str:
        return "filesystem"

    def is_available(self) -> bool:
        return True

    # ── Reading ─────────────────────────────────────────────────

    def read_lines(self, path: Path) -> list[str]:
        """Lines of ``path`` without newlines; empty if it does not exist."""
        if not path.exists():
            return []
        try:
            return path.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError) as e:
            raise PreconditionError(f"Cannot read {path}: {e}") from e

    def find_blocks(self, lines: list[str], marker: str) -> list[tuple[int, int]]:
        """Index ranges ``(begin, end)`` of every managed block for ``marker``."""
        begin = _BLOCK_BEGIN.format(marker=marker)
        end = _BLOCK_END.format(marker=marker)
        spans: list[tuple[int, int]] = []
        i = 0
        while i < len(lines):
            if lines[i] == begin:
                try:
                    j = lines.index(end, i + 1)
                except ValueError:
                    raise PreconditionError(
                        f"Unterminated devbox block '{marker}' (missing '{end}')"
                    ) from None
                spans.append((i, j))
                i = j + 1
            else:
                i += 1
        return spans

    def has_block(self, path: Path, marker: str, content: str) -> bool:
        """Whether ``path`` holds exactly one block for ``marker`` with ``content``."""
        lines = self.read_lines(path)
        spans = self.find_blocks(lines, marker)
        if len(spans) != 1:
            return False
        begin, end = spans[0]
        return lines[begin:end + 1] == block_lines(marker, content)

    # ── Editing ─────────────────────────────────────────────────

    def replace_line(self, path: Path, pattern: str, line: str) -> FileEdit:
        """Make ``line`` the only line in ``path`` matching ``pattern``.

        The first matching line is replaced in place and any later
        matches are removed; with no match the line is appended.
        """
        regex = re.compile(pattern)
        lines = self.read_lines(path)
        matches = [i for i, text in enumerate(lines) if regex.search(text)]

        if not matches:
            new_lines = [*lines, line]
        else:
            first = matches[0]
            drop = set(matches[1:])
            new_lines = [
                line if i == first else text
                for i, text in enumerate(lines)
                if i not in drop
            ]
        return self._commit(path, lines, new_lines)

    def ensure_block(self, path: Path, marker: str, content: str) -> FileEdit:
        """Keep exactly one managed block for ``marker`` holding ``content``."""
        lines = self.read_lines(path)
        spans = self.find_blocks(lines, marker)
        wanted = block_lines(marker, content)

        if not spans:
            separator = [""] if lines and lines[-1].strip() else []
            new_lines = [*lines, *separator, *wanted]
        else:
            first_begin, first_end = spans[0]
            new_lines = lines[:first_begin] + wanted
            cursor = first_end + 1
            for begin, end in spans[1:]:
                new_lines += lines[cursor:begin]
                cursor = end + 1
            new_lines += lines[cursor:]
        return self._commit(path, lines, new_lines)

    def backup(self, path: Path, *, move: bool = False) -> Path | None:
        """Create a timestamped backup of ``path``.

        Files are copied (metadata preserved). With ``move=True`` the
        path itself is renamed out of the way, which is how directories
        are set aside before being replaced.

        Returns:
            The backup path, or None if ``path`` does not exist.
        """
        if not path.exists() and not path.is_symlink():
            return None
        dest = backup_path_for(path, self._clock())
        try:
            if move:
                path.rename(dest)
            elif path.is_dir():
                shutil.copytree(path, dest, symlinks=True)
            else:
                shutil.copy2(path, dest)
        except OSError as e:
            raise ProvisionError(f"Cannot back up {path}: {e}") from e
        logger.info("Backed up %s → %s", path, dest)
        return dest

    def restore(self, backup: Path, path: Path) -> None:
        """Move a ``backup(move=True)`` copy back to ``path``.

        Whatever is at ``path`` now (a half-finished clone) is removed.
        """
        try:
            if path.is_symlink() or path.is_file():
                path.unlink()
            elif path.is_dir():
                shutil.rmtree(path)
            backup.rename(path)
        except OSError as e:
            raise ProvisionError(f"Cannot restore {path} from {backup}: {e}") from e
        logger.info("Restored %s from %s", path, backup)

    def _commit(self, path: Path, old: list[str], new: list[str]) -> FileEdit:
        if new == old and path.exists():
            return FileEdit(path=path, changed=False)

        backup = self.backup(path)
        content = "\n".join(new) + "\n"
        path.parent.mkdir(parents=True, exist_ok=True)

        # Atomic write: temp file in same directory, then rename
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            if path.exists():
                shutil.copymode(path, tmp)
            tmp.replace(path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise ProvisionError(f"Cannot write {path}: {e}") from e

        logger.debug("Wrote %s (%d lines)", path, len(new))
        return FileEdit(path=path, changed=True, backup=backup)
