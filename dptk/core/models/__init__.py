"""
Domain models — Pydantic types for the deployer.

All models are re-exported here for convenient access:

    from dptk.core.models import Project, Deployment, TerraformConfig, Receipt
"""

from dptk.core.models.deployment import Deployment, Import, Metadata, Resource
from dptk.core.models.project import (
    AuditLogs,
    BigQueryDatasetSettings,
    BinauthzPolicy,
    Config,
    GCSBucketSettings,
    GKECluster,
    GKEWorkload,
    Overall,
    Project,
    ResourceSpec,
    StateBucketSettings,
)
from dptk.core.models.receipt import Receipt
from dptk.core.models.terraform import (
    TerraformConfig,
    TerraformImport,
    TerraformOptions,
    TerraformResource,
)

__all__ = [
    # deployment.py
    "Deployment",
    "Import",
    "Metadata",
    "Resource",
    # project.py
    "AuditLogs",
    "BigQueryDatasetSettings",
    "BinauthzPolicy",
    "Config",
    "GCSBucketSettings",
    "GKECluster",
    "GKEWorkload",
    "Overall",
    "Project",
    "ResourceSpec",
    "StateBucketSettings",
    # receipt.py
    "Receipt",
    # terraform.py
    "TerraformConfig",
    "TerraformImport",
    "TerraformOptions",
    "TerraformResource",
]
