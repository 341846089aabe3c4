"""
Tests for the apply engine — step order, abort on failure, options, ledger.
"""

from unittest.mock import patch

import pytest

from dptk.adapters.registry import mock_backends
from dptk.core.engine.apply import (
    STEPS,
    ApplyOptions,
    apply,
    execute,
    generate_operation_id,
    write_audit_entry,
)
from dptk.core.errors import ApplyError, BackendError, ClusterConfigError, PlanValidationError
from dptk.core.models.project import Config
from dptk.core.persistence.audit import AuditWriter

SINK_SA = "p12345-999999@gcp-sa-logging.iam.gserviceaccount.com"
OWNER_POLICY = {"bindings": [{"role": "roles/owner", "members": ["user:foo-user@my-domain.com"]}]}


@pytest.fixture
def full_project(make):
    return make(
        resources={
            "gcs_buckets": [{"properties": {"name": "foo-bucket"}, "expected_users": ["a@x.com"]}],
            "gke_clusters": [{"properties": {
                "clusterLocationType": "Zonal",
                "zone": "us-east1-a",
                "cluster": {"name": "foo-cluster"},
            }}],
            "gke_workloads": [{
                "cluster_name": "foo-cluster",
                "properties": {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": "ns"}},
            }],
        },
        binauthz={"properties": {"defaultAdmissionRule": {"evaluationMode": "ALWAYS_ALLOW"}}},
    )


def _options(templates_dir, **kwargs) -> ApplyOptions:
    return ApplyOptions(templates_dir=templates_dir, **kwargs)


class TestSequence:
    def test_fixed_order(self, full_project, templates_dir):
        backends = mock_backends(iam_policy=OWNER_POLICY)
        report = apply(Config(projects=[full_project]), full_project, _options(templates_dir), backends)

        assert report.status == "ok"
        assert [s.name for s in report.steps] == list(STEPS)
        assert all(s.status == "ok" for s in report.steps)
        assert backends.journal == [
            "mock-deployment.upsert",
            "mock-deployment.upsert",
            "mock-deployment.describe_log_sink",
            "mock-deployment.upsert",
            "mock-terraform.apply",
            "mock-cluster.get_credentials",
            "mock-cluster.apply_manifest",
            "mock-policy.import_policy",
            "mock-deployment.get_active_account",
            "mock-deployment.get_iam_policy",
            "mock-deployment.remove_iam_binding",
        ]

    def test_deployments(self, full_project, templates_dir):
        backends = mock_backends()
        apply(Config(projects=[full_project]), full_project, _options(templates_dir), backends)

        upserts = backends.deployment.upserts
        assert [(name, pid) for name, _, pid in upserts] == [
            ("data-protect-toolkit-prerequisites", "my-project"),
            ("data-protect-toolkit-resources", "my-project"),
            ("data-protect-toolkit-audit-my-project", "my-project"),
        ]
        resources = upserts[1][1]
        assert resources.get_resource("unexpected-access-foo-bucket") is not None
        audit = upserts[2][1]
        assert {"userByEmail": SINK_SA, "role": "WRITER"} in audit.get_resource("audit_logs").properties["access"]

    def test_audit_in_remote_project(self, make, templates_dir):
        project = make(audit_logs={"logs_project_id": "my-audit-project"})
        backends = mock_backends()
        apply(Config(projects=[project]), project, _options(templates_dir), backends)

        name, resources, _ = backends.deployment.upserts[1]
        assert resources.get_resource("audit-logs-to-bigquery").properties["destination"] == (
            "bigquery.googleapis.com/projects/my-audit-project/datasets/audit_logs"
        )
        assert backends.deployment.upserts[2][2] == "my-audit-project"
        # The sink lives in the project itself.
        assert backends.deployment.call_log[2] == (
            "describe_log_sink", ("audit-logs-to-bigquery", "my-project"),
        )

    def test_rerun_sends_identical_graphs(self, full_project, templates_dir):
        config = Config(projects=[full_project])
        first, second = mock_backends(), mock_backends()
        apply(config, full_project, _options(templates_dir), first)
        apply(config, full_project, _options(templates_dir), second)
        assert first.deployment.upserts == second.deployment.upserts
        assert first.journal == second.journal


class TestOptions:
    def test_terraform_disabled(self, config, project, templates_dir):
        backends = mock_backends()
        report = apply(config, project, _options(templates_dir, enable_terraform=False), backends)
        assert report.step("terraform").status == "skipped"
        assert backends.terraform.call_count == 0
        assert report.status == "ok"

    def test_nothing_optional_declared(self, config, project, templates_dir):
        backends = mock_backends()
        report = apply(config, project, _options(templates_dir), backends)
        assert report.step("gke-workloads").status == "skipped"
        assert report.step("binauthz").status == "skipped"
        assert backends.cluster.call_count == 0
        assert backends.policy.call_count == 0

    def test_keep_owner(self, config, project, templates_dir):
        backends = mock_backends(iam_policy=OWNER_POLICY)
        report = apply(config, project, _options(templates_dir, remove_owner_user=False), backends)
        assert report.step("remove-owner-user").status == "skipped"
        assert backends.deployment.removed_bindings == []

    def test_dry_run_touches_nothing(self, full_project, templates_dir):
        backends = mock_backends()
        report = apply(
            Config(projects=[full_project]), full_project, _options(templates_dir, dry_run=True), backends,
        )
        assert report.status == "dry-run"
        assert report.plan is not None
        assert report.plan.audit is None
        assert backends.journal == []
        assert [s.status for s in report.steps] == ["ok"] + ["skipped"] * (len(STEPS) - 1)


class TestFailures:
    def test_failure_aborts_remaining_steps(self, config, project, templates_dir):
        backends = mock_backends()
        backends.deployment.set_failure("upsert", "deployment quota exceeded")

        with pytest.raises(ApplyError) as exc:
            apply(config, project, _options(templates_dir), backends)

        assert exc.value.step == "prerequisites"
        assert isinstance(exc.value.__cause__, BackendError)
        assert "deployment quota exceeded" in str(exc.value)
        assert backends.journal == ["mock-deployment.upsert"]

    def test_execute_records_failure(self, config, project, templates_dir):
        backends = mock_backends()
        backends.terraform.set_failure("apply", "state lock")

        report = execute(config, project, _options(templates_dir), backends)

        assert report.status == "failed"
        assert report.failed_step == "terraform"
        assert report.step("audit").status == "ok"
        assert [report.step(n).status for n in STEPS[5:]] == ["skipped"] * 3
        assert backends.cluster.call_count == 0

    def test_sink_lookup_failure(self, config, project, templates_dir):
        backends = mock_backends(writer_identity="")
        report = execute(config, project, _options(templates_dir), backends)
        assert report.failed_step == "audit"
        assert len(backends.deployment.upserts) == 2

    def test_config_error_before_any_call(self, make, templates_dir):
        project = make(resources={"gke_workloads": [{"cluster_name": "missing", "properties": {}}]})
        backends = mock_backends()

        with pytest.raises(ApplyError) as exc:
            apply(Config(projects=[project]), project, _options(templates_dir), backends)

        assert exc.value.step == "plan"
        assert isinstance(exc.value.cause, ClusterConfigError)
        assert str(exc.value.cause) == "failed to find cluster: missing"
        assert backends.journal == []

    def test_malformed_property_bag_recorded(self, make, templates_dir):
        project = make(resources={"gcs_buckets": [{"properties": {"name": "foo-bucket", "versioning": True}}]})
        backends = mock_backends()

        report = execute(Config(projects=[project]), project, _options(templates_dir), backends)

        assert report.failed_step == "plan"
        assert isinstance(report.error.cause, PlanValidationError)
        assert "'versioning' must be a mapping" in report.step("plan").error
        assert backends.journal == []

    def test_manifest_write_failure_recorded(self, full_project, templates_dir, tmp_path):
        backends = mock_backends()
        with patch(
            "dptk.core.services.gke_ops.tempfile.TemporaryDirectory",
            side_effect=OSError(28, "No space left on device"),
        ):
            report = execute(
                Config(projects=[full_project]), full_project,
                _options(templates_dir, enable_terraform=False), backends,
            )

        assert report.failed_step == "gke-workloads"
        assert "No space left on device" in str(report.error)
        assert report.step("binauthz").status == "skipped"

        writer = AuditWriter(root=tmp_path)
        write_audit_entry(report, writer)
        assert writer.read_all()[0].failed_step == "gke-workloads"


class TestLedger:
    def test_write_audit_entry(self, config, project, templates_dir, tmp_path):
        backends = mock_backends()
        report = execute(config, project, _options(templates_dir, enable_terraform=False), backends)

        writer = AuditWriter(root=tmp_path)
        write_audit_entry(report, writer)

        entries = writer.read_all()
        assert len(entries) == 1
        entry = entries[0]
        assert entry.operation_id == report.operation_id
        assert entry.project_id == "my-project"
        assert entry.status == "ok"
        assert entry.baseline_version == "1"
        assert entry.context["steps"]["terraform"] == "skipped"

    def test_failed_run_recorded(self, config, project, templates_dir, tmp_path):
        backends = mock_backends()
        backends.deployment.set_failure("upsert", "boom")
        report = execute(config, project, _options(templates_dir), backends)

        writer = AuditWriter(root=tmp_path)
        write_audit_entry(report, writer)

        entry = writer.read_all()[0]
        assert entry.status == "failed"
        assert entry.failed_step == "prerequisites"
        assert entry.errors == ["step 'prerequisites' failed: upsert failed: boom"]

    def test_operation_id_format(self):
        op_id = generate_operation_id()
        assert op_id.startswith("op-")
        assert op_id != generate_operation_id()
