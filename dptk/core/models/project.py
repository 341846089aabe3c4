"""
Project model — the typed, validated view of one project's config.

Loaded from the ``projects:`` list of dptk.yml. A Project is frozen: the
orchestrator owns it for the duration of an apply run and nothing mutates
it. Property bags stay free-form dicts; the plan builder checks the keys
it needs per resource category.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_PROJECT_ID_RE = re.compile(r"^[a-z][-a-z0-9]{4,28}[a-z0-9]$")

REGIONAL = "Regional"
ZONAL = "Zonal"


class ResourceSpec(BaseModel):
    """One declared resource inside a category list."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    properties: dict[str, Any] = Field(default_factory=dict)
    expected_users: list[str] = Field(default_factory=list)
    cluster_name: str = ""          # gke_workloads only


class BigQueryDatasetSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "audit_logs"
    location: str = "US"


class GCSBucketSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    location: str = "US"
    storage_class: str = "MULTI_REGIONAL"
    ttl_days: int = 365


class AuditLogs(BaseModel):
    """Where audit logs land. An empty logs_project_id means the project itself."""

    model_config = ConfigDict(frozen=True)

    logs_bq_dataset: BigQueryDatasetSettings = Field(default_factory=BigQueryDatasetSettings)
    logs_gcs_bucket: GCSBucketSettings | None = None
    logs_project_id: str = ""


class StateBucketSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    location: str = "US"


class BinauthzPolicy(BaseModel):
    """A Binary Authorization admission policy document."""

    model_config = ConfigDict(frozen=True)

    properties: dict[str, Any] = Field(default_factory=dict)


class GKECluster(BaseModel):
    """Typed view over one ``gke_clusters`` entry."""

    model_config = ConfigDict(frozen=True)

    name: str
    cluster_location_type: str = ""
    region: str = ""
    zone: str = ""

    @classmethod
    def from_spec(cls, spec: ResourceSpec) -> GKECluster:
        props = spec.properties
        cluster = props.get("cluster") or {}
        name = cluster.get("name") or props.get("name") or spec.name
        return cls(
            name=name,
            cluster_location_type=props.get("clusterLocationType", ""),
            region=props.get("region", ""),
            zone=props.get("zone", ""),
        )


class GKEWorkload(BaseModel):
    """A manifest to apply to a named cluster."""

    model_config = ConfigDict(frozen=True)

    cluster_name: str
    properties: dict[str, Any] = Field(default_factory=dict)


class Project(BaseModel):
    """A project to deploy, with its security groups and declared resources."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    organization_id: str = ""
    folder_id: str = ""

    owners_group: str
    auditors_group: str
    data_readwrite_groups: list[str] = Field(default_factory=list)
    data_readonly_groups: list[str] = Field(default_factory=list)

    audit_logs: AuditLogs = Field(default_factory=AuditLogs)
    terraform_state_bucket: StateBucketSettings = Field(default_factory=StateBucketSettings)

    resources: dict[str, list[ResourceSpec]] = Field(default_factory=dict)
    binauthz: BinauthzPolicy | None = None

    @field_validator("project_id")
    @classmethod
    def _check_project_id(cls, value: str) -> str:
        if not _PROJECT_ID_RE.match(value):
            raise ValueError(f"invalid project ID: {value!r}")
        return value

    @field_validator("resources", mode="before")
    @classmethod
    def _drop_empty_categories(cls, value: Any) -> Any:
        # A bare ``gcs_buckets:`` key in YAML loads as None.
        if isinstance(value, dict):
            return {k: v for k, v in value.items() if v is not None}
        return value

    @property
    def id(self) -> str:
        return self.project_id

    def resources_of(self, category: str) -> list[ResourceSpec]:
        return self.resources.get(category, [])

    def gke_clusters(self) -> list[GKECluster]:
        return [GKECluster.from_spec(s) for s in self.resources_of("gke_clusters")]

    def gke_workloads(self) -> list[GKEWorkload]:
        return [
            GKEWorkload(cluster_name=s.cluster_name, properties=s.properties)
            for s in self.resources_of("gke_workloads")
        ]

    def find_cluster(self, name: str) -> GKECluster | None:
        """Look up a declared cluster by name."""
        for cluster in self.gke_clusters():
            if cluster.name == name:
                return cluster
        return None


class Overall(BaseModel):
    """Settings shared by every project in a config file."""

    model_config = ConfigDict(frozen=True)

    organization_id: str = ""
    folder_id: str = ""
    billing_account: str = ""
    domain: str = ""


class Config(BaseModel):
    """Root of dptk.yml."""

    model_config = ConfigDict(frozen=True)

    overall: Overall = Field(default_factory=Overall)
    projects: list[Project] = Field(default_factory=list)

    def get_project(self, project_id: str) -> Project | None:
        for project in self.projects:
            if project.project_id == project_id:
                return project
        return None

    def audit_project_id(self, project: Project) -> str:
        """The project that holds this project's audit resources."""
        return project.audit_logs.logs_project_id or project.project_id
