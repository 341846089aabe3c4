"""
Receipt model — the result of one backend call.

Adapters never raise: every command outcome, success or failure, comes
back as a Receipt. Services decide what a failure means and turn it
into a typed error naming the operation.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from dptk.core.errors import BackendError


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Receipt(BaseModel):
    """Outcome of a backend operation."""

    backend: str
    operation: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    def require_ok(self) -> str:
        """Return the output, or raise BackendError if the call failed."""
        if self.failed:
            raise BackendError(self.operation, self.error or "unknown error")
        return self.output

    @classmethod
    def success(
        cls,
        backend: str,
        operation: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(backend=backend, operation=operation, status="ok", output=output, **kwargs)

    @classmethod
    def failure(
        cls,
        backend: str,
        operation: str,
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(backend=backend, operation=operation, status="failed", error=error, **kwargs)
