"""
GKE cluster backend — credentials via gcloud, manifests via kubectl.

``get-credentials`` rewrites the local kubeconfig and switches the
current context, so ``apply_manifest`` always targets the cluster most
recently authenticated.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from dptk.adapters.base import ClusterBackend
from dptk.adapters.command import run_command
from dptk.core.models.receipt import Receipt


class GKEClusterBackend(ClusterBackend):

    @property
    def name(self) -> str:
        return "kubectl"

    def is_available(self) -> bool:
        return shutil.which("kubectl") is not None and shutil.which("gcloud") is not None

    def get_credentials(
        self,
        cluster_name: str,
        location_flag: str,
        location_value: str,
        project_id: str,
    ) -> Receipt:
        return run_command(
            self.name,
            f"get credentials for cluster {cluster_name}",
            ["gcloud", "container", "clusters", "get-credentials", cluster_name,
             location_flag, location_value, "--project", project_id],
            timeout=120,
        )

    def apply_manifest(self, path: Path) -> Receipt:
        return run_command(
            self.name,
            f"apply manifest {path.name}",
            ["kubectl", "apply", "-f", str(path)],
            timeout=120,
        )
