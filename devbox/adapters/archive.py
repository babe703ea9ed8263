"""
Archive extractor — tarballs from release downloads.

Archives are inspected before anything is written: every member must
stay under one top-level directory and resolve inside the extraction
root. Extraction itself uses tarfile's ``data`` filter.
"""

from __future__ import annotations

import logging
import tarfile
from pathlib import Path, PurePosixPath

from devbox.adapters.base import Adapter
from devbox.core.errors import PreconditionError, TransientError

logger = logging.getLogger(__name__)


class ArchiveExtractor(Adapter):
    """Inspect and unpack ``.tar.gz`` archives."""

    @property
    def name(self) -> str:
        return "archive"

    def is_available(self) -> bool:
        return True

    def _open(self, archive: Path) -> tarfile.TarFile:
        try:
            return tarfile.open(archive, "r:*")
        except (tarfile.TarError, OSError) as e:
            # most likely a truncated download, worth fetching again
            raise TransientError(f"Cannot open archive {archive.name}: {e}") from e

    def top_level_dir(self, archive: Path) -> str:
        """Name of the single top-level directory inside ``archive``.

        Raises:
            PreconditionError: Empty archive, several top-level entries,
                or members with absolute / parent-relative paths.
        """
        with self._open(archive) as tar:
            names = tar.getnames()
        if not names:
            raise PreconditionError(f"Archive {archive.name} is empty")

        roots: set[str] = set()
        for name in names:
            path = PurePosixPath(name)
            if path.is_absolute() or ".." in path.parts:
                raise PreconditionError(f"Unsafe member path in {archive.name}: {name}")
            parts = [p for p in path.parts if p != "."]
            if parts:
                roots.add(parts[0])
        if len(roots) != 1:
            raise PreconditionError(
                f"Expected one top-level directory in {archive.name}, found {sorted(roots)}"
            )
        return roots.pop()

    def extract(self, archive: Path, dest: Path) -> Path:
        """Unpack ``archive`` into ``dest`` and return its top-level directory."""
        top = self.top_level_dir(archive)
        dest.mkdir(parents=True, exist_ok=True)
        with self._open(archive) as tar:
            try:
                tar.extractall(dest, filter="data")
            except tarfile.FilterError as e:
                raise PreconditionError(f"Refusing to extract {archive.name}: {e}") from e
            except (tarfile.TarError, OSError) as e:
                raise TransientError(f"Extracting {archive.name} failed: {e}") from e

        extracted = dest / top
        if not extracted.is_dir():
            raise PreconditionError(f"Expected directory '{top}' not found after extraction")
        logger.debug("Extracted %s → %s", archive.name, extracted)
        return extracted
