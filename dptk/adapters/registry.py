"""
Backend registry — the bundle of capabilities an apply run talks to.

The orchestrator receives a ``Backends`` value instead of reaching for
module-level clients, so a run against live infrastructure and a run in
tests differ only in which bundle is passed in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from dptk.adapters.base import (
    Backend,
    ClusterBackend,
    DeploymentBackend,
    PolicyBackend,
    TerraformBackend,
)

logger = logging.getLogger(__name__)


@dataclass
class Backends:
    deployment: DeploymentBackend
    terraform: TerraformBackend
    cluster: ClusterBackend
    policy: PolicyBackend
    journal: list[str] = field(default_factory=list)

    def all(self) -> dict[str, Backend]:
        return {
            "deployment": self.deployment,
            "terraform": self.terraform,
            "cluster": self.cluster,
            "policy": self.policy,
        }

    def status(self) -> dict[str, dict[str, Any]]:
        """Availability of each backend's underlying tool."""
        status = {}
        for role, backend in self.all().items():
            try:
                available = backend.is_available()
            except Exception:
                available = False
            status[role] = {
                "name": backend.name,
                "available": available,
                "type": backend.__class__.__name__,
            }
        return status


def default_backends() -> Backends:
    """Backends that shell out to gcloud, terraform and kubectl."""
    from dptk.adapters.gcloud import GCloudDeploymentBackend, GCloudPolicyBackend
    from dptk.adapters.kubectl import GKEClusterBackend
    from dptk.adapters.terraform import TerraformCLIBackend

    return Backends(
        deployment=GCloudDeploymentBackend(),
        terraform=TerraformCLIBackend(),
        cluster=GKEClusterBackend(),
        policy=GCloudPolicyBackend(),
    )


def mock_backends(**deployment_kwargs: Any) -> Backends:
    """Recording doubles sharing one call journal."""
    from dptk.adapters.mock import (
        MockClusterBackend,
        MockDeploymentBackend,
        MockPolicyBackend,
        MockTerraformBackend,
    )

    journal: list[str] = []
    return Backends(
        deployment=MockDeploymentBackend(journal, **deployment_kwargs),
        terraform=MockTerraformBackend(journal),
        cluster=MockClusterBackend(journal),
        policy=MockPolicyBackend(journal),
        journal=journal,
    )
