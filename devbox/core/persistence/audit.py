"""
Audit ledger — append-only provisioning history.

Every run (dry runs included) adds one JSON line to
``<state_dir>/audit.ndjson``, so an operator can see what devbox changed
on this machine and when. Lines are only ever appended.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterator

from pydantic import BaseModel, Field, ValidationError

from devbox.core.models.result import Outcome, RunReport

logger = logging.getLogger(__name__)

LEDGER_FILENAME = "audit.ndjson"


class AuditEntry(BaseModel):
    """One provisioning run as recorded in the ledger."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    operation_id: str = ""
    operation_type: str = "provision"

    dry_run: bool = False
    cancelled: bool = False
    platform: str = ""
    user: str = ""

    status: str = ""               # ok, partial, failed
    steps_total: int = 0
    steps_applied: list[str] = Field(default_factory=list)
    steps_failed: int = 0
    steps_skipped: int = 0
    duration_ms: int = 0
    errors: list[str] = Field(default_factory=list)

    # CLI selection (--only/--skip/--jobs)
    context: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_report(cls, report: RunReport, **fields: Any) -> AuditEntry:
        """Summarise a finished run."""
        return cls(
            operation_id=report.operation_id,
            dry_run=report.dry_run,
            cancelled=report.cancelled,
            steps_applied=[r.step_id for r in report.results if r.outcome == Outcome.APPLIED],
            status=report.status,
            steps_total=report.total,
            steps_failed=report.failed,
            steps_skipped=report.count(Outcome.SKIPPED),
            duration_ms=sum(r.duration_ms for r in report.results),
            errors=[f"{r.step_id}: {r.detail}" for r in report.failed_results()],
            **fields,
        )


class AuditWriter:
    """Reads and appends ``AuditEntry`` lines.

    Ledger problems never fail a run: ``write`` reports them by returning
    False, and readers skip lines they cannot parse.
    """

    def __init__(self, path: Path | None = None, state_dir: Path | None = None):
        if path is None and state_dir is None:
            raise ValueError("AuditWriter needs a path or a state_dir")
        self._path = path if path is not None else state_dir / LEDGER_FILENAME

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> bool:
        """Append ``entry``; False when the ledger is not writable."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as ledger:
                ledger.write(entry.model_dump_json() + "\n")
        except OSError as e:
            logger.error("Cannot append to audit ledger %s: %s", self._path, e)
            return False
        logger.debug("Recorded %s in %s", entry.operation_id, self._path)
        return True

    def read_all(self) -> list[AuditEntry]:
        """Every readable entry, oldest first."""
        return list(self._entries())

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        """The last ``n`` entries, oldest first."""
        if n <= 0:
            return []
        return list(deque(self._entries(), maxlen=n))

    def entry_count(self) -> int:
        return sum(1 for _ in self._lines())

    def _entries(self) -> Iterator[AuditEntry]:
        for lineno, line in self._lines():
            try:
                yield AuditEntry.model_validate(json.loads(line))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning("%s:%d: unreadable audit entry skipped (%s)", self._path, lineno, e)

    def _lines(self) -> Iterator[tuple[int, str]]:
        if not self._path.is_file():
            return
        try:
            with self._path.open(encoding="utf-8") as ledger:
                for lineno, raw in enumerate(ledger, start=1):
                    if raw.strip():
                        yield lineno, raw.strip()
        except OSError as e:
            logger.error("Cannot read audit ledger %s: %s", self._path, e)
