"""
Tests for Terraform operations — state bucket config and imports.
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from dptk.adapters.mock import MockTerraformBackend
from dptk.core.errors import BackendError
from dptk.core.services.terraform_ops import build_state_bucket_config, deploy_terraform


class TestStateBucketConfig:
    def test_config(self, project):
        config, imports = build_state_bucket_config(project)
        assert config.to_dict() == {
            "terraform": {"required_version": ">= 0.12.0"},
            "resource": [{
                "google_storage_bucket": {
                    "my-project-state": {
                        "name": "my-project-state",
                        "project": "my-project",
                        "location": "US",
                        "versioning": {"enabled": True},
                    },
                },
            }],
        }
        assert [(i.address, i.id) for i in imports] == [
            ("google_storage_bucket.my-project-state", "my-project/my-project-state"),
        ]

    def test_location_from_project(self, make):
        config, _ = build_state_bucket_config(make(terraform_state_bucket={"location": "EU"}))
        assert config.resources[0].properties["location"] == "EU"


class TestDeployTerraform:
    def test_applies_with_imports(self, project, tmp_path: Path):
        backend = MockTerraformBackend()
        deploy_terraform(backend, project, tmp_path)

        config, workdir, options = backend.applies[0]
        assert workdir == tmp_path
        assert config.addresses() == ["google_storage_bucket.my-project-state"]
        assert [i.address for i in options.imports] == config.addresses()

    def test_temporary_workdir(self, project):
        backend = MockTerraformBackend()
        deploy_terraform(backend, project)
        _, workdir, _ = backend.applies[0]
        assert workdir.name.startswith("dptk-tf-my-project-")
        assert not workdir.exists()

    def test_apply_failure(self, project, tmp_path: Path):
        backend = MockTerraformBackend()
        backend.set_failure("apply", "Error acquiring the state lock")
        with pytest.raises(BackendError, match="state lock"):
            deploy_terraform(backend, project, tmp_path)

    def test_workdir_creation_failure(self, project):
        backend = MockTerraformBackend()
        with patch(
            "dptk.core.services.terraform_ops.tempfile.TemporaryDirectory",
            side_effect=OSError(28, "No space left on device"),
        ):
            with pytest.raises(BackendError, match="terraform workdir for my-project failed"):
                deploy_terraform(backend, project)
        assert backend.applies == []
