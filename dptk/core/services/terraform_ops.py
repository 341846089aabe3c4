"""
Terraform operations — resources kept out of Deployment Manager.

Currently that is the project's Terraform state bucket. The bucket may
already exist (created by an earlier run or by hand), so the config is
always paired with an import that adopts it instead of recreating it.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from dptk.adapters.base import TerraformBackend
from dptk.core.errors import BackendError
from dptk.core.models.project import Project
from dptk.core.models.receipt import Receipt
from dptk.core.models.terraform import (
    TerraformConfig,
    TerraformImport,
    TerraformOptions,
    TerraformResource,
)

logger = logging.getLogger(__name__)

STATE_BUCKET_TYPE = "google_storage_bucket"


def state_bucket_name(project: Project) -> str:
    return f"{project.id}-state"


def build_state_bucket_config(project: Project) -> tuple[TerraformConfig, list[TerraformImport]]:
    """Config holding the state bucket, and the import adopting it."""
    name = state_bucket_name(project)
    bucket = TerraformResource(
        type=STATE_BUCKET_TYPE,
        name=name,
        properties={
            "name": name,
            "project": project.id,
            "location": project.terraform_state_bucket.location,
            "versioning": {"enabled": True},
        },
    )
    config = TerraformConfig(resources=[bucket])
    imports = [TerraformImport(address=bucket.address, id=f"{project.id}/{name}")]
    return config, imports


def deploy_terraform(
    backend: TerraformBackend,
    project: Project,
    workdir: Path | None = None,
) -> Receipt:
    """Apply the Terraform-managed resources of ``project``.

    Without ``workdir`` a throwaway directory is used; the imports make
    that safe because existing resources are adopted on every run.

    Raises:
        PlanValidationError: If an import does not match exactly one resource.
        BackendError: If terraform fails.
    """
    config, imports = build_state_bucket_config(project)
    config.check_imports(imports)
    options = TerraformOptions(imports=imports)

    if workdir is not None:
        receipt = backend.apply(config, workdir, options)
    else:
        try:
            with tempfile.TemporaryDirectory(prefix=f"dptk-tf-{project.id}-") as tmp:
                receipt = backend.apply(config, Path(tmp), options)
        except OSError as e:
            raise BackendError(f"terraform workdir for {project.id}", str(e)) from e

    receipt.require_ok()
    logger.info("Terraform applied for %s: %s", project.id, ", ".join(config.addresses()))
    return receipt
