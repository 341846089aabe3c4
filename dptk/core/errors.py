"""
Error taxonomy for planning and applying a project.

Every failure the deployer can surface derives from ``DeployError`` so
entrypoints catch one type. Messages always name the offending resource,
cluster or step: operators fix the config and re-run, every step is
idempotent.
"""

from __future__ import annotations


class DeployError(Exception):
    """Base class for all deployer failures."""


# ── Configuration errors ────────────────────────────────────────


class ConfigError(DeployError):
    """Raised when project configuration is invalid or missing."""


class UnsupportedResourceError(DeployError):
    """A resource category with no known mapping."""

    def __init__(self, category: str):
        self.category = category
        super().__init__(f"unsupported resource type: {category}")


class PlanValidationError(DeployError):
    """A resource property bag or generated graph is malformed."""


class ClusterConfigError(DeployError):
    """A GKE cluster or workload reference cannot be resolved."""


# ── Backend and lookup errors ───────────────────────────────────


class BackendError(DeployError):
    """A backend command failed."""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed: {detail}")


class LookupFailedError(DeployError):
    """A backend lookup returned an unexpected shape."""


# ── Orchestration ───────────────────────────────────────────────


class ApplyError(DeployError):
    """An orchestration step failed; remaining steps were not run."""

    def __init__(self, step: str, cause: Exception):
        self.step = step
        self.cause = cause
        super().__init__(f"step {step!r} failed: {cause}")
