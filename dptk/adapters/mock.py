"""
Mock backends — recording test doubles for every backend capability.

Used by the test suite and by ``dptk apply --mock`` to exercise the
apply services without touching gcloud, terraform or kubectl. Every
call is recorded; any operation can be configured to fail.

Backends built by ``mock_backends()`` share one ``journal`` so tests can
assert the global call order across backends.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from dptk.adapters.base import (
    ClusterBackend,
    DeploymentBackend,
    PolicyBackend,
    TerraformBackend,
)
from dptk.core.models.deployment import Deployment
from dptk.core.models.receipt import Receipt
from dptk.core.models.terraform import TerraformConfig, TerraformOptions

DEFAULT_WRITER_IDENTITY = "serviceAccount:p12345-999999@gcp-sa-logging.iam.gserviceaccount.com"
DEFAULT_ACCOUNT = "foo-user@my-domain.com"


class _Recorder:
    """Call recording and failure injection shared by all mocks."""

    def __init__(self, backend_name: str, journal: list[str] | None = None):
        self._name = backend_name
        self._failures: dict[str, str] = {}
        self.call_log: list[tuple[str, tuple[Any, ...]]] = []
        self.journal = journal if journal is not None else []

    @property
    def name(self) -> str:
        return self._name

    def is_available(self) -> bool:
        return True

    @property
    def call_count(self) -> int:
        return len(self.call_log)

    def set_failure(self, operation: str, error: str = "Mock failure") -> None:
        """Make every call to ``operation`` (a method name) fail."""
        self._failures[operation] = error

    def reset(self) -> None:
        self.call_log.clear()
        self._failures.clear()

    def _record(self, operation: str, *args: Any, output: str = "") -> Receipt:
        self.call_log.append((operation, args))
        self.journal.append(f"{self._name}.{operation}")
        if operation in self._failures:
            return Receipt.failure(
                backend=self._name, operation=operation, error=self._failures[operation],
            )
        return Receipt.success(
            backend=self._name, operation=operation, output=output, metadata={"mock": True},
        )


class MockDeploymentBackend(_Recorder, DeploymentBackend):

    def __init__(
        self,
        journal: list[str] | None = None,
        *,
        writer_identity: str = DEFAULT_WRITER_IDENTITY,
        iam_policy: dict[str, Any] | None = None,
        account: str = DEFAULT_ACCOUNT,
    ):
        super().__init__("mock-deployment", journal)
        self.writer_identity = writer_identity
        self.iam_policy = iam_policy if iam_policy is not None else {}
        self.account = account
        self.upserts: list[tuple[str, Deployment, str]] = []
        self.removed_bindings: list[tuple[str, str, str]] = []

    def upsert(self, name: str, deployment: Deployment, project_id: str) -> Receipt:
        receipt = self._record("upsert", name, project_id)
        if receipt.ok:
            self.upserts.append((name, deployment.model_copy(deep=True), project_id))
        return receipt

    def describe_log_sink(self, sink_name: str, project_id: str) -> Receipt:
        sink = {
            "name": sink_name,
            "destination": f"bigquery.googleapis.com/projects/{project_id}/datasets/audit_logs",
            "writerIdentity": self.writer_identity,
        }
        return self._record("describe_log_sink", sink_name, project_id, output=json.dumps(sink))

    def get_iam_policy(self, project_id: str) -> Receipt:
        return self._record("get_iam_policy", project_id, output=json.dumps(self.iam_policy))

    def get_active_account(self) -> Receipt:
        return self._record("get_active_account", output=json.dumps(self.account))

    def remove_iam_binding(self, project_id: str, member: str, role: str) -> Receipt:
        receipt = self._record("remove_iam_binding", project_id, member, role)
        if receipt.ok:
            self.removed_bindings.append((project_id, member, role))
        return receipt


class MockTerraformBackend(_Recorder, TerraformBackend):

    def __init__(self, journal: list[str] | None = None):
        super().__init__("mock-terraform", journal)
        self.applies: list[tuple[TerraformConfig, Path, TerraformOptions | None]] = []

    def apply(
        self,
        config: TerraformConfig,
        workdir: Path,
        options: TerraformOptions | None = None,
    ) -> Receipt:
        receipt = self._record("apply", workdir)
        if receipt.ok:
            self.applies.append((config, workdir, options))
        return receipt


class MockClusterBackend(_Recorder, ClusterBackend):

    def __init__(self, journal: list[str] | None = None):
        super().__init__("mock-cluster", journal)
        self.credentials: list[tuple[str, str, str, str]] = []
        # Manifest files are temporary; keep their content.
        self.manifests: list[str] = []

    def get_credentials(
        self,
        cluster_name: str,
        location_flag: str,
        location_value: str,
        project_id: str,
    ) -> Receipt:
        args = (cluster_name, location_flag, location_value, project_id)
        receipt = self._record("get_credentials", *args)
        if receipt.ok:
            self.credentials.append(args)
        return receipt

    def apply_manifest(self, path: Path) -> Receipt:
        receipt = self._record("apply_manifest", path)
        if receipt.ok:
            self.manifests.append(path.read_text(encoding="utf-8"))
        return receipt


class MockPolicyBackend(_Recorder, PolicyBackend):

    def __init__(self, journal: list[str] | None = None):
        super().__init__("mock-policy", journal)
        self.imports: list[tuple[str, dict[str, Any]]] = []

    def import_policy(self, project_id: str, policy_path: Path) -> Receipt:
        receipt = self._record("import_policy", project_id, policy_path)
        if receipt.ok:
            self.imports.append((project_id, json.loads(policy_path.read_text(encoding="utf-8"))))
        return receipt
