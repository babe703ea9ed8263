"""
Receipt model — what an Action hands back to the engine.

Actions and adapters never let ordinary tool failures escape as
exceptions: the outcome of a change, successful or not, is captured
in a Receipt. The ``error_kind`` tag carries the error taxonomy
(precondition, transient, permission, configuration) across that
boundary so the executor can decide on retries.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from devbox.core.errors import ProvisionError

ErrorKind = Literal[
    "precondition",
    "transient",
    "permission",
    "configuration",
    "unexpected",
]


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Receipt(BaseModel):
    """Result of applying one Action (or one adapter call)."""

    action: str                         # human-readable description of the change
    status: Literal["ok", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    error_kind: ErrorKind | None = None
    fallback_level: int | None = None   # index of the fallback that succeeded

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the change succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the change failed."""
        return self.status == "failed"

    @property
    def retryable(self) -> bool:
        """Whether another attempt could plausibly succeed."""
        return self.failed and self.error_kind == "transient"

    @classmethod
    def success(cls, action: str, output: str = "", **kwargs: Any) -> Receipt:
        """Create a success receipt."""
        return cls(action=action, status="ok", output=output, **kwargs)

    @classmethod
    def failure(
        cls,
        action: str,
        error: str,
        kind: ErrorKind = "unexpected",
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(action=action, status="failed", error=error, error_kind=kind, **kwargs)

    @classmethod
    def from_error(cls, action: str, exc: ProvisionError, **kwargs: Any) -> Receipt:
        """Convert a typed provisioning error into a failure receipt."""
        return cls.failure(action, str(exc) or exc.__class__.__name__, kind=exc.kind, **kwargs)
