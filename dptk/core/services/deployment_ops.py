"""
Deployment Manager operations — upsert graphs, read back live state.

Thin, typed layer over a ``DeploymentBackend``: failed receipts become
``BackendError``, unexpected lookup shapes become ``LookupFailedError``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from dptk.adapters.base import DeploymentBackend
from dptk.core.data.baseline import LOG_SINK_NAME
from dptk.core.errors import LookupFailedError
from dptk.core.models.deployment import Deployment
from dptk.core.models.project import Project
from dptk.core.models.receipt import Receipt
from dptk.core.services.deployment_plan import LogSinkIdentity

logger = logging.getLogger(__name__)

OWNER_ROLE = "roles/owner"


def upsert_deployment(
    backend: DeploymentBackend,
    name: str,
    deployment: Deployment,
    project_id: str,
) -> Receipt:
    """Create or update deployment ``name``. Safe to repeat with the same graph.

    Raises:
        PlanValidationError: If the graph breaks its invariants.
        BackendError: If the backend call fails.
    """
    deployment.validate_graph()
    receipt = backend.upsert(name, deployment, project_id)
    receipt.require_ok()
    logger.info(
        "Deployment %s %s in %s (%d resources)",
        name, receipt.metadata.get("action", "applied"), project_id, len(deployment.resources),
    )
    return receipt


def _parse_json(output: str, what: str) -> Any:
    try:
        return json.loads(output)
    except json.JSONDecodeError as e:
        raise LookupFailedError(f"{what}: invalid JSON: {e}") from e


def get_log_sink_identity(
    backend: DeploymentBackend,
    project_id: str,
    sink_name: str = LOG_SINK_NAME,
) -> LogSinkIdentity:
    """Read the writer identity generated for an existing log sink.

    Raises:
        BackendError: If the sink cannot be described.
        LookupFailedError: If the response has no usable writerIdentity.
    """
    output = backend.describe_log_sink(sink_name, project_id).require_ok()
    what = f"log sink {sink_name!r} in {project_id}"
    sink = _parse_json(output, what)
    if not isinstance(sink, dict):
        raise LookupFailedError(f"{what}: expected a JSON object, got {type(sink).__name__}")

    identity = sink.get("writerIdentity")
    if not isinstance(identity, str) or not identity:
        raise LookupFailedError(f"{what}: missing writerIdentity")

    account = identity.removeprefix("serviceAccount:")
    if not account:
        raise LookupFailedError(f"{what}: empty writerIdentity")
    return LogSinkIdentity(sink_name=sink_name, service_account=account)


def get_iam_policy(backend: DeploymentBackend, project_id: str) -> dict[str, Any]:
    output = backend.get_iam_policy(project_id).require_ok()
    policy = _parse_json(output or "{}", f"IAM policy of {project_id}")
    if not isinstance(policy, dict):
        raise LookupFailedError(f"IAM policy of {project_id}: expected a JSON object")
    return policy


def has_binding(policy: dict[str, Any], role: str, member: str) -> bool:
    for binding in policy.get("bindings") or []:
        if binding.get("role") == role and member in (binding.get("members") or []):
            return True
    return False


def remove_owner_user(backend: DeploymentBackend, project: Project) -> bool:
    """Drop the deploying user's direct owner binding.

    Projects are bootstrapped by a user account; once the owners group is
    bound, that user must not stay owner. Returns True if a binding was
    removed.
    """
    output = backend.get_active_account().require_ok()
    account = _parse_json(output, "active account") if output else ""
    if not account or not isinstance(account, str):
        logger.debug("No active account, nothing to remove")
        return False

    member = f"user:{account}"
    if not has_binding(get_iam_policy(backend, project.id), OWNER_ROLE, member):
        return False

    backend.remove_iam_binding(project.id, member, OWNER_ROLE).require_ok()
    logger.info("Removed %s from %s on %s", member, OWNER_ROLE, project.id)
    return True
