"""
Backend base — the contract between the apply services and the outside world.

Services never touch gcloud, terraform or kubectl directly; they call
one of these capabilities. Each operation returns a Receipt and never
raises, so the same service code runs against the real CLIs or the
recording doubles in ``dptk.adapters.mock``.

To add a backend implementation:
    1. Subclass the capability ABC
    2. Implement name, is_available and the operations
    3. Wire it into ``Backends`` in the registry
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from dptk.core.models.deployment import Deployment
from dptk.core.models.receipt import Receipt
from dptk.core.models.terraform import TerraformConfig, TerraformOptions


class Backend(ABC):
    """Common surface of every backend."""

    @property
    @abstractmethod
    def name(self) -> str:
        """The backend identifier (e.g., 'gcloud', 'terraform')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check whether the underlying tool is installed. Never raises."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class DeploymentBackend(Backend):
    """The declarative resource backend (Deployment Manager) plus project IAM."""

    @abstractmethod
    def upsert(self, name: str, deployment: Deployment, project_id: str) -> Receipt:
        """Create the deployment if missing, otherwise update it in place."""

    @abstractmethod
    def describe_log_sink(self, sink_name: str, project_id: str) -> Receipt:
        """Describe a log sink; output is the sink as JSON."""

    @abstractmethod
    def get_iam_policy(self, project_id: str) -> Receipt:
        """Project IAM policy as JSON."""

    @abstractmethod
    def get_active_account(self) -> Receipt:
        """The account the backend is authenticated as, JSON-encoded."""

    @abstractmethod
    def remove_iam_binding(self, project_id: str, member: str, role: str) -> Receipt:
        """Remove one member from one role on the project."""


class TerraformBackend(Backend):
    """The infrastructure-as-code backend."""

    @abstractmethod
    def apply(
        self,
        config: TerraformConfig,
        workdir: Path,
        options: TerraformOptions | None = None,
    ) -> Receipt:
        """Write ``config`` into ``workdir``, adopt ``options.imports``, then apply."""


class ClusterBackend(Backend):
    """Cluster credentials and manifest application."""

    @abstractmethod
    def get_credentials(
        self,
        cluster_name: str,
        location_flag: str,
        location_value: str,
        project_id: str,
    ) -> Receipt:
        """Fetch credentials and make the cluster the current context."""

    @abstractmethod
    def apply_manifest(self, path: Path) -> Receipt:
        """Apply a manifest file to the current cluster context."""


class PolicyBackend(Backend):
    """Binary Authorization policy import."""

    @abstractmethod
    def import_policy(self, project_id: str, policy_path: Path) -> Receipt:
        """Import the policy document at ``policy_path`` into the project."""
