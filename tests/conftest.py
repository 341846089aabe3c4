"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from dptk.adapters.registry import Backends, mock_backends
from dptk.core.models.project import Config, Project

PROJECT_DATA = {
    "project_id": "my-project",
    "owners_group": "my-project-owners@my-domain.com",
    "auditors_group": "my-project-auditors@my-domain.com",
    "data_readwrite_groups": ["my-project-readwrite@my-domain.com"],
    "data_readonly_groups": [
        "my-project-readonly@my-domain.com",
        "another-readonly-group@googlegroups.com",
    ],
    "audit_logs": {
        "logs_gcs_bucket": {
            "name": "my-project-logs",
            "location": "US",
            "storage_class": "MULTI_REGIONAL",
            "ttl_days": 365,
        },
        "logs_bq_dataset": {"name": "audit_logs", "location": "US"},
    },
}

SINK_SA = "p12345-999999@gcp-sa-logging.iam.gserviceaccount.com"


def make_project(**overrides) -> Project:
    """Build the sample project, replacing top-level keys."""
    return Project.model_validate({**PROJECT_DATA, **overrides})


@pytest.fixture
def project() -> Project:
    return make_project()


@pytest.fixture
def config(project: Project) -> Config:
    return Config(projects=[project])


@pytest.fixture
def templates_dir(tmp_path: Path) -> Path:
    """Return a templates root; builders only reference paths under it."""
    return tmp_path / "deploy"


@pytest.fixture
def backends() -> Backends:
    return mock_backends()


@pytest.fixture
def make():
    """Factory for variants of the sample project."""
    return make_project
