"""
gcloud backends — Deployment Manager, project IAM and Binary Authorization.

All calls go through ``run_command``; output is requested as JSON where
the caller needs to parse it.
"""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
from pathlib import Path

from dptk.adapters.base import DeploymentBackend, PolicyBackend
from dptk.adapters.command import run_command
from dptk.core.models.deployment import Deployment
from dptk.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

# Deployment Manager can take a while on large graphs.
_DEPLOY_TIMEOUT = 1800


def _gcloud(*args: str) -> list[str]:
    return ["gcloud", *args]


class GCloudDeploymentBackend(DeploymentBackend):
    """Deployment Manager deployments and project IAM through gcloud."""

    @property
    def name(self) -> str:
        return "gcloud"

    def is_available(self) -> bool:
        return shutil.which("gcloud") is not None

    def _existing_deployments(self, project_id: str) -> tuple[set[str] | None, Receipt]:
        receipt = run_command(
            self.name,
            "list deployments",
            _gcloud("deployment-manager", "deployments", "list",
                    "--format", "json", "--project", project_id),
        )
        if receipt.failed:
            return None, receipt
        try:
            listing = json.loads(receipt.output or "[]")
        except json.JSONDecodeError as e:
            return None, Receipt.failure(
                backend=self.name,
                operation="list deployments",
                error=f"unparseable deployment list: {e}",
            )
        return {d.get("name", "") for d in listing}, receipt

    def upsert(self, name: str, deployment: Deployment, project_id: str) -> Receipt:
        existing, listing = self._existing_deployments(project_id)
        if existing is None:
            return listing

        action = "update" if name in existing else "create"
        logger.info("Deployment %s: %s in %s", name, action, project_id)

        try:
            with tempfile.TemporaryDirectory(prefix="dptk-dm-") as tmp:
                config_path = Path(tmp) / "config.yaml"
                config_path.write_text(deployment.to_yaml(), encoding="utf-8")

                args = _gcloud("deployment-manager", "deployments", action, name,
                               "--config", str(config_path), "--project", project_id)
                if action == "update":
                    # Resources dropped from the config are left in place, not deleted.
                    args.append("--delete-policy=ABANDON")
                receipt = run_command(
                    self.name, f"{action} deployment {name}", args, timeout=_DEPLOY_TIMEOUT,
                )
        except OSError as e:
            return Receipt.failure(
                backend=self.name,
                operation=f"{action} deployment {name}",
                error=f"cannot write deployment config: {e}",
            )

        receipt.metadata["action"] = action
        return receipt

    def describe_log_sink(self, sink_name: str, project_id: str) -> Receipt:
        return run_command(
            self.name,
            f"describe log sink {sink_name}",
            _gcloud("logging", "sinks", "describe", sink_name,
                    "--format", "json", "--project", project_id),
        )

    def get_iam_policy(self, project_id: str) -> Receipt:
        return run_command(
            self.name,
            "get IAM policy",
            _gcloud("projects", "get-iam-policy", project_id, "--format", "json"),
        )

    def get_active_account(self) -> Receipt:
        return run_command(
            self.name,
            "get active account",
            _gcloud("config", "get-value", "account", "--format", "json"),
        )

    def remove_iam_binding(self, project_id: str, member: str, role: str) -> Receipt:
        return run_command(
            self.name,
            f"remove {role} from {member}",
            _gcloud("projects", "remove-iam-policy-binding", project_id,
                    "--member", member, "--role", role),
        )


class GCloudPolicyBackend(PolicyBackend):
    """Binary Authorization policy import through gcloud beta."""

    @property
    def name(self) -> str:
        return "gcloud"

    def is_available(self) -> bool:
        return shutil.which("gcloud") is not None

    def import_policy(self, project_id: str, policy_path: Path) -> Receipt:
        return run_command(
            self.name,
            "import binauthz policy",
            _gcloud("beta", "container", "binauthz", "policy", "import",
                    str(policy_path), "--project", project_id),
        )
