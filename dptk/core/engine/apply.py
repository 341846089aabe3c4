"""
Apply engine — the fixed sequence that brings one project to its declared state.

Flow:
    plan → prerequisites → resources → audit → terraform
         → gke-workloads → binauthz → remove-owner-user

Every graph and the GKE workload plan are built in the ``plan`` step,
before any backend is touched, so configuration errors never leave a
project half-applied. The audit graph is the exception: it needs the
writer identity of the log sink created by ``resources``, so it is built
only once that sink exists.

Each step is fatal. The first failure is recorded in the report and all
remaining steps are skipped; every step is idempotent, so the operator
fixes the cause and re-runs.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from dptk.adapters.registry import Backends, default_backends
from dptk.core.data.baseline import BASELINE, LOG_SINK_NAME
from dptk.core.errors import ApplyError, DeployError
from dptk.core.models.project import Config, Project
from dptk.core.persistence.audit import AuditEntry, AuditWriter
from dptk.core.services.binauthz_ops import import_binauthz
from dptk.core.services.deployment_ops import (
    get_log_sink_identity,
    remove_owner_user,
    upsert_deployment,
)
from dptk.core.services.deployment_plan import (
    AUDIT,
    PREREQUISITES,
    RESOURCES,
    DeploymentPlan,
    build_audit,
    build_prerequisites,
    build_resources,
    deployment_names,
)
from dptk.core.services.gke_ops import ClusterWorkloads, deploy_gke_workloads, plan_gke_workloads
from dptk.core.services.terraform_ops import deploy_terraform

logger = logging.getLogger(__name__)

STEP_PLAN = "plan"
STEP_PREREQUISITES = "prerequisites"
STEP_RESOURCES = "resources"
STEP_AUDIT = "audit"
STEP_TERRAFORM = "terraform"
STEP_GKE_WORKLOADS = "gke-workloads"
STEP_BINAUTHZ = "binauthz"
STEP_REMOVE_OWNER = "remove-owner-user"

STEPS = (
    STEP_PLAN,
    STEP_PREREQUISITES,
    STEP_RESOURCES,
    STEP_AUDIT,
    STEP_TERRAFORM,
    STEP_GKE_WORKLOADS,
    STEP_BINAUTHZ,
    STEP_REMOVE_OWNER,
)


@dataclass
class ApplyOptions:
    """Knobs for one apply run."""

    templates_dir: Path = Path("deploy")
    enable_terraform: bool = True
    terraform_workdir: Path | None = None
    remove_owner_user: bool = True
    dry_run: bool = False


@dataclass
class StepResult:
    """Outcome of one step."""

    name: str
    status: str = "ok"  # ok, skipped, failed
    duration_ms: int = 0
    detail: str = ""
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "status": self.status,
            "duration_ms": self.duration_ms,
        }
        if self.detail:
            data["detail"] = self.detail
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class ApplyReport:
    """Result of an apply run."""

    operation_id: str = ""
    project_id: str = ""
    dry_run: bool = False
    steps: list[StepResult] = field(default_factory=list)
    plan: DeploymentPlan | None = None
    error: ApplyError | None = None
    duration_ms: int = 0

    @property
    def succeeded(self) -> int:
        return sum(1 for s in self.steps if s.status == "ok")

    @property
    def failed_step(self) -> str | None:
        for step in self.steps:
            if step.status == "failed":
                return step.name
        return None

    @property
    def status(self) -> str:
        if self.error is not None:
            return "failed"
        if self.dry_run:
            return "dry-run"
        return "ok"

    def step(self, name: str) -> StepResult | None:
        for result in self.steps:
            if result.name == name:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "project_id": self.project_id,
            "status": self.status,
            "failed_step": self.failed_step,
            "duration_ms": self.duration_ms,
            "steps": [s.to_dict() for s in self.steps],
            "error": str(self.error) if self.error else None,
        }


# ═══════════════════════════════════════════════════════════════════
#  Step runner
# ═══════════════════════════════════════════════════════════════════


# A step returns a detail string, or None when it had nothing to do.
StepFn = Callable[[], str | None]


def _run_step(report: ApplyReport, name: str, fn: StepFn) -> bool:
    """Run one step, recording its result. Returns False if it failed."""
    start = time.monotonic()
    try:
        detail = fn()
    except DeployError as e:
        elapsed = int((time.monotonic() - start) * 1000)
        report.steps.append(StepResult(name, "failed", elapsed, error=str(e)))
        error = ApplyError(name, e)
        error.__cause__ = e
        report.error = error
        logger.error("✗ %s: %s", name, e)
        return False

    elapsed = int((time.monotonic() - start) * 1000)
    if detail is None:
        report.steps.append(StepResult(name, "skipped", elapsed))
        logger.info("⊘ %s", name)
    else:
        report.steps.append(StepResult(name, "ok", elapsed, detail=detail))
        logger.info("✓ %s (%s)", name, detail)
    return True


def _skip_remaining(report: ApplyReport, reason: str) -> None:
    done = {s.name for s in report.steps}
    for name in STEPS:
        if name not in done:
            report.steps.append(StepResult(name, "skipped", detail=reason))


# ═══════════════════════════════════════════════════════════════════
#  Orchestration
# ═══════════════════════════════════════════════════════════════════


def execute(
    config: Config,
    project: Project,
    options: ApplyOptions | None = None,
    backends: Backends | None = None,
) -> ApplyReport:
    """Run the apply sequence and report on it. Failures are recorded, not raised."""
    options = options or ApplyOptions()
    report = ApplyReport(
        operation_id=generate_operation_id(),
        project_id=project.id,
        dry_run=options.dry_run,
    )
    start = time.monotonic()
    audit_project_id = config.audit_project_id(project)
    names = deployment_names(project)
    workloads: list[ClusterWorkloads] = []

    def plan() -> str:
        nonlocal workloads
        report.plan = DeploymentPlan(
            prerequisites=build_prerequisites(options.templates_dir),
            resources=build_resources(
                project, options.templates_dir, audit_project_id=audit_project_id,
            ),
        )
        workloads = plan_gke_workloads(project)
        return (
            f"{len(report.plan.resources.resources)} resources, "
            f"{sum(len(w.workloads) for w in workloads)} workloads"
        )

    if not _run_step(report, STEP_PLAN, plan):
        _finish(report, start)
        return report
    if options.dry_run:
        _skip_remaining(report, "dry run")
        _finish(report, start)
        return report

    assert report.plan is not None
    backends = backends or default_backends()
    deployment = backends.deployment

    def prerequisites() -> str:
        receipt = upsert_deployment(
            deployment, names[PREREQUISITES], report.plan.prerequisites, project.id,
        )
        return f"{names[PREREQUISITES]} {receipt.metadata.get('action', 'applied')}"

    def resources() -> str:
        receipt = upsert_deployment(
            deployment, names[RESOURCES], report.plan.resources, project.id,
        )
        return f"{names[RESOURCES]} {receipt.metadata.get('action', 'applied')}"

    def audit() -> str:
        sink = get_log_sink_identity(deployment, project.id, LOG_SINK_NAME)
        report.plan.audit = build_audit(project, sink, options.templates_dir)
        receipt = upsert_deployment(deployment, names[AUDIT], report.plan.audit, audit_project_id)
        return f"{names[AUDIT]} {receipt.metadata.get('action', 'applied')} in {audit_project_id}"

    def terraform() -> str | None:
        if not options.enable_terraform:
            return None
        receipt = deploy_terraform(backends.terraform, project, options.terraform_workdir)
        imported = receipt.metadata.get("imported", [])
        return f"state bucket applied, {len(imported)} imported"

    def gke() -> str | None:
        if not workloads:
            return None
        return f"{deploy_gke_workloads(backends.cluster, project)} workloads applied"

    def binauthz() -> str | None:
        if not import_binauthz(backends.policy, project.id, project.binauthz):
            return None
        return "policy imported"

    def remove_owner() -> str | None:
        if not options.remove_owner_user:
            return None
        removed = remove_owner_user(deployment, project)
        return "owner binding removed" if removed else "no owner binding"

    sequence: list[tuple[str, StepFn]] = [
        (STEP_PREREQUISITES, prerequisites),
        (STEP_RESOURCES, resources),
        (STEP_AUDIT, audit),
        (STEP_TERRAFORM, terraform),
        (STEP_GKE_WORKLOADS, gke),
        (STEP_BINAUTHZ, binauthz),
        (STEP_REMOVE_OWNER, remove_owner),
    ]
    for name, fn in sequence:
        if not _run_step(report, name, fn):
            _skip_remaining(report, f"aborted after {name}")
            break

    _finish(report, start)
    return report


def apply(
    config: Config,
    project: Project,
    options: ApplyOptions | None = None,
    backends: Backends | None = None,
) -> ApplyReport:
    """Apply ``project`` end to end.

    Raises:
        ApplyError: Naming the first step that failed, chained to its cause.
    """
    report = execute(config, project, options, backends)
    if report.error is not None:
        raise report.error
    return report


def _finish(report: ApplyReport, start: float) -> None:
    report.duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        "Apply %s for %s: %s (%d/%d steps ok, %dms)",
        report.operation_id, report.project_id, report.status,
        report.succeeded, len(report.steps), report.duration_ms,
    )


# ═══════════════════════════════════════════════════════════════════
#  Ledger
# ═══════════════════════════════════════════════════════════════════


def write_audit_entry(report: ApplyReport, audit_writer: AuditWriter) -> None:
    """Append the run to the apply ledger."""
    entry = AuditEntry(
        operation_id=report.operation_id,
        project_id=report.project_id,
        baseline_version=BASELINE.version,
        status=report.status,
        steps_total=len(report.steps),
        steps_succeeded=report.succeeded,
        failed_step=report.failed_step,
        duration_ms=report.duration_ms,
        errors=[str(report.error)] if report.error else [],
        context={"steps": {s.name: s.status for s in report.steps}},
    )
    audit_writer.write(entry)


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"
