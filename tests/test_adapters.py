"""
Unit tests for the CLI backends (mocked subprocess).

Every test mocks subprocess.run so no real gcloud, terraform or
kubectl is needed. The assertions pin the exact command lines.
"""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from unittest.mock import patch

import yaml

from dptk.adapters.command import run_command
from dptk.adapters.gcloud import GCloudDeploymentBackend, GCloudPolicyBackend
from dptk.adapters.kubectl import GKEClusterBackend
from dptk.adapters.registry import default_backends, mock_backends
from dptk.adapters.terraform import TerraformCLIBackend
from dptk.core.models.deployment import Deployment, Resource
from dptk.core.models.terraform import TerraformConfig, TerraformImport, TerraformOptions, TerraformResource

RUN = "dptk.adapters.command.subprocess.run"


# ═══════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════


def _mock_result(stdout: str = "", stderr: str = "", rc: int = 0):
    """Create a mock subprocess.CompletedProcess."""
    return subprocess.CompletedProcess(
        args=["cmd"], returncode=rc, stdout=stdout, stderr=stderr,
    )


def _argvs(mock_run) -> list[list[str]]:
    return [c.args[0] for c in mock_run.call_args_list]


# ═══════════════════════════════════════════════════════════════════
#  run_command
# ═══════════════════════════════════════════════════════════════════


class TestRunCommand:
    def test_success(self, tmp_path: Path):
        with patch(RUN, return_value=_mock_result(stdout="hello\n")) as mock_run:
            receipt = run_command("gcloud", "op", ["gcloud", "version"], cwd=tmp_path)
        assert receipt.ok
        assert receipt.output == "hello"
        assert receipt.metadata["command"] == "gcloud version"
        assert mock_run.call_args.kwargs["cwd"] == str(tmp_path)

    def test_non_zero_exit(self):
        with patch(RUN, return_value=_mock_result(stderr="ERROR: denied\n", rc=1)):
            receipt = run_command("gcloud", "op", ["gcloud", "x"])
        assert receipt.failed
        assert receipt.error == "ERROR: denied"
        assert receipt.metadata["return_code"] == 1

    def test_non_zero_exit_without_stderr(self):
        with patch(RUN, return_value=_mock_result(rc=2)):
            receipt = run_command("gcloud", "op", ["gcloud", "x"])
        assert receipt.error == "Command exited with code 2"

    def test_missing_binary(self):
        with patch(RUN, side_effect=FileNotFoundError):
            receipt = run_command("kubectl", "op", ["kubectl", "apply"])
        assert receipt.failed
        assert receipt.error == "kubectl CLI not available"

    def test_timeout(self):
        with patch(RUN, side_effect=subprocess.TimeoutExpired(cmd="terraform", timeout=5)):
            receipt = run_command("terraform", "op", ["terraform", "apply"], timeout=5)
        assert receipt.failed
        assert "timed out after 5s" in receipt.error


# ═══════════════════════════════════════════════════════════════════
#  gcloud
# ═══════════════════════════════════════════════════════════════════


class TestGCloudDeploymentBackend:
    def _graph(self) -> Deployment:
        deployment = Deployment()
        deployment.add_resource(Resource(name="m", type="logging.v2.metric", properties={"metric": "m"}))
        return deployment

    def _upsert(self, existing: list[str], rc: int = 0):
        sent: list[dict] = []

        def fake_run(argv, **kwargs):
            if argv[3] == "list":
                return _mock_result(stdout=json.dumps([{"name": n} for n in existing]))
            config = Path(argv[argv.index("--config") + 1])
            sent.append(yaml.safe_load(config.read_text()))
            return _mock_result(stderr="" if rc == 0 else "boom", rc=rc)

        with patch(RUN, side_effect=fake_run) as mock_run:
            receipt = GCloudDeploymentBackend().upsert("my-deployment", self._graph(), "my-project")
        return receipt, _argvs(mock_run), sent

    def test_create_when_absent(self):
        receipt, argvs, sent = self._upsert(existing=["other"])
        assert receipt.ok
        assert receipt.metadata["action"] == "create"
        assert argvs[0] == [
            "gcloud", "deployment-manager", "deployments", "list",
            "--format", "json", "--project", "my-project",
        ]
        assert argvs[1][:5] == ["gcloud", "deployment-manager", "deployments", "create", "my-deployment"]
        assert argvs[1][-2:] == ["--project", "my-project"]
        assert sent == [self._graph().to_dict()]

    def test_update_when_present(self):
        receipt, argvs, _ = self._upsert(existing=["my-deployment"])
        assert receipt.metadata["action"] == "update"
        assert argvs[1][3] == "update"
        assert argvs[1][-1] == "--delete-policy=ABANDON"

    def test_upsert_failure(self):
        receipt, _, _ = self._upsert(existing=[], rc=1)
        assert receipt.failed
        assert receipt.error == "boom"

    def test_list_failure_stops(self):
        with patch(RUN, return_value=_mock_result(stderr="no auth", rc=1)) as mock_run:
            receipt = GCloudDeploymentBackend().upsert("d", self._graph(), "my-project")
        assert receipt.failed
        assert mock_run.call_count == 1

    def test_config_write_failure(self):
        listing = _mock_result(stdout="[]")
        with patch(RUN, return_value=listing) as mock_run, patch(
            "dptk.adapters.gcloud.tempfile.TemporaryDirectory",
            side_effect=OSError(28, "No space left on device"),
        ):
            receipt = GCloudDeploymentBackend().upsert("d", self._graph(), "my-project")
        assert receipt.failed
        assert receipt.operation == "create deployment d"
        assert "No space left on device" in receipt.error
        assert mock_run.call_count == 1

    def test_describe_log_sink(self):
        with patch(RUN, return_value=_mock_result(stdout="{}")) as mock_run:
            GCloudDeploymentBackend().describe_log_sink("audit-logs-to-bigquery", "my-project")
        assert _argvs(mock_run) == [[
            "gcloud", "logging", "sinks", "describe", "audit-logs-to-bigquery",
            "--format", "json", "--project", "my-project",
        ]]

    def test_iam_commands(self):
        backend = GCloudDeploymentBackend()
        with patch(RUN, return_value=_mock_result(stdout="{}")) as mock_run:
            backend.get_active_account()
            backend.get_iam_policy("my-project")
            backend.remove_iam_binding("my-project", "user:a@x.com", "roles/owner")
        assert _argvs(mock_run) == [
            ["gcloud", "config", "get-value", "account", "--format", "json"],
            ["gcloud", "projects", "get-iam-policy", "my-project", "--format", "json"],
            ["gcloud", "projects", "remove-iam-policy-binding", "my-project",
             "--member", "user:a@x.com", "--role", "roles/owner"],
        ]


class TestGCloudPolicyBackend:
    def test_import_policy(self, tmp_path: Path):
        path = tmp_path / "policy.json"
        with patch(RUN, return_value=_mock_result()) as mock_run:
            GCloudPolicyBackend().import_policy("my-project", path)
        assert _argvs(mock_run) == [[
            "gcloud", "beta", "container", "binauthz", "policy", "import",
            str(path), "--project", "my-project",
        ]]


# ═══════════════════════════════════════════════════════════════════
#  kubectl
# ═══════════════════════════════════════════════════════════════════


class TestGKEClusterBackend:
    def test_get_credentials(self):
        with patch(RUN, return_value=_mock_result()) as mock_run:
            GKEClusterBackend().get_credentials("foo-cluster", "--region", "us-central1", "my-project")
        assert _argvs(mock_run) == [[
            "gcloud", "container", "clusters", "get-credentials", "foo-cluster",
            "--region", "us-central1", "--project", "my-project",
        ]]

    def test_apply_manifest(self, tmp_path: Path):
        path = tmp_path / "workload.yaml"
        with patch(RUN, return_value=_mock_result()) as mock_run:
            GKEClusterBackend().apply_manifest(path)
        assert _argvs(mock_run) == [["kubectl", "apply", "-f", str(path)]]


# ═══════════════════════════════════════════════════════════════════
#  terraform
# ═══════════════════════════════════════════════════════════════════


class TestTerraformCLIBackend:
    ADDRESS = "google_storage_bucket.my-project-state"

    def _config(self) -> TerraformConfig:
        return TerraformConfig(resources=[TerraformResource(
            type="google_storage_bucket", name="my-project-state", properties={"name": "my-project-state"},
        )])

    def _options(self) -> TerraformOptions:
        return TerraformOptions(imports=[
            TerraformImport(address=self.ADDRESS, id="my-project/my-project-state"),
        ])

    def _apply(self, tmp_path: Path, responses: dict[str, subprocess.CompletedProcess]):
        def fake_run(argv, **kwargs):
            key = " ".join(argv[1:3]) if argv[1] == "state" else argv[1]
            return responses.get(key, _mock_result())

        with patch(RUN, side_effect=fake_run) as mock_run:
            receipt = TerraformCLIBackend().apply(self._config(), tmp_path, self._options())
        return receipt, _argvs(mock_run)

    def test_imports_untracked_then_applies(self, tmp_path: Path):
        receipt, argvs = self._apply(tmp_path, {"state list": _mock_result(stdout="")})
        assert receipt.ok
        assert receipt.metadata["imported"] == [self.ADDRESS]
        assert argvs == [
            ["terraform", "init", "-no-color", "-input=false"],
            ["terraform", "state", "list"],
            ["terraform", "import", "-no-color", "-input=false",
             self.ADDRESS, "my-project/my-project-state"],
            ["terraform", "apply", "-no-color", "-input=false", "-auto-approve"],
        ]
        written = json.loads((tmp_path / "main.tf.json").read_text())
        assert written == self._config().to_dict()

    def test_tracked_address_not_reimported(self, tmp_path: Path):
        receipt, argvs = self._apply(tmp_path, {"state list": _mock_result(stdout=self.ADDRESS + "\n")})
        assert receipt.metadata["imported"] == []
        assert [a[1] for a in argvs] == ["init", "state", "apply"]

    def test_missing_remote_object_left_for_apply(self, tmp_path: Path):
        receipt, argvs = self._apply(tmp_path, {
            "import": _mock_result(stderr="Error: Cannot import non-existent remote object", rc=1),
        })
        assert receipt.ok
        assert receipt.metadata["imported"] == []
        assert argvs[-1][1] == "apply"

    def test_import_failure(self, tmp_path: Path):
        receipt, argvs = self._apply(tmp_path, {"import": _mock_result(stderr="Error: 403", rc=1)})
        assert receipt.failed
        assert [a[1] for a in argvs] == ["init", "state", "import"]

    def test_init_failure(self, tmp_path: Path):
        receipt, argvs = self._apply(tmp_path, {"init": _mock_result(stderr="no provider", rc=1)})
        assert receipt.failed
        assert len(argvs) == 1

    def test_commands_run_in_workdir(self, tmp_path: Path):
        with patch(RUN, return_value=_mock_result()) as mock_run:
            TerraformCLIBackend().apply(self._config(), tmp_path)
        assert all(c.kwargs["cwd"] == str(tmp_path) for c in mock_run.call_args_list)

    def test_unwritable_workdir(self, tmp_path: Path):
        workdir = tmp_path / "not-a-dir"
        workdir.write_text("")
        with patch(RUN) as mock_run:
            receipt = TerraformCLIBackend().apply(self._config(), workdir, self._options())
        assert receipt.failed
        assert "cannot write" in receipt.error
        assert mock_run.call_count == 0


# ═══════════════════════════════════════════════════════════════════
#  Registry
# ═══════════════════════════════════════════════════════════════════


class TestRegistry:
    def test_default_backends(self):
        backends = default_backends()
        assert {role: b.name for role, b in backends.all().items()} == {
            "deployment": "gcloud",
            "terraform": "terraform",
            "cluster": "kubectl",
            "policy": "gcloud",
        }

    def test_status_reports_missing_tools(self):
        with patch("shutil.which", return_value=None):
            status = default_backends().status()
        assert not any(info["available"] for info in status.values())

    def test_mocks_share_journal(self):
        backends = mock_backends()
        backends.deployment.get_active_account()
        backends.cluster.get_credentials("c", "--zone", "z", "p")
        assert backends.journal == ["mock-deployment.get_active_account", "mock-cluster.get_credentials"]
