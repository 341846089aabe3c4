"""
GKE workload operations — resolve clusters, authenticate, apply manifests.

Per cluster the flow is::

    unresolved → location resolved → authenticated → workloads applied

Every workload's cluster is resolved before anything runs, so a typo in
one workload fails the phase without touching any cluster. Credentials
are fetched once per distinct cluster, then that cluster's workloads
are applied in declaration order. The first failure aborts the phase.
"""

from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from dptk.adapters.base import ClusterBackend
from dptk.core.errors import BackendError, ClusterConfigError
from dptk.core.models.project import REGIONAL, ZONAL, GKECluster, GKEWorkload, Project

logger = logging.getLogger(__name__)


@dataclass
class ClusterWorkloads:
    """One cluster, its resolved location and the workloads targeting it."""

    cluster: GKECluster
    location_flag: str
    location_value: str
    workloads: list[GKEWorkload] = field(default_factory=list)


def location_type_and_value(cluster: GKECluster) -> tuple[str, str]:
    """Map a cluster's location descriptor to a gcloud flag and value.

    Raises:
        ClusterConfigError: If the type is unknown or its field is empty.
    """
    if cluster.cluster_location_type == REGIONAL:
        if not cluster.region:
            raise ClusterConfigError(f"failed to get cluster's region: {cluster.name}")
        return "--region", cluster.region
    if cluster.cluster_location_type == ZONAL:
        if not cluster.zone:
            raise ClusterConfigError(f"failed to get cluster's zone: {cluster.name}")
        return "--zone", cluster.zone
    raise ClusterConfigError(f"failed to get cluster's location: {cluster.name}")


def plan_gke_workloads(project: Project) -> list[ClusterWorkloads]:
    """Group workloads by cluster, resolving each cluster once.

    Raises:
        ClusterConfigError: For an undeclared cluster or a bad location.
    """
    planned: dict[str, ClusterWorkloads] = {}
    for workload in project.gke_workloads():
        entry = planned.get(workload.cluster_name)
        if entry is None:
            cluster = project.find_cluster(workload.cluster_name)
            if cluster is None:
                raise ClusterConfigError(f"failed to find cluster: {workload.cluster_name}")
            flag, value = location_type_and_value(cluster)
            entry = planned[workload.cluster_name] = ClusterWorkloads(cluster, flag, value)
        entry.workloads.append(workload)
    return list(planned.values())


def get_cluster_credentials(
    backend: ClusterBackend,
    cluster_name: str,
    location_flag: str,
    location_value: str,
    project_id: str,
) -> None:
    backend.get_credentials(cluster_name, location_flag, location_value, project_id).require_ok()


def apply_cluster_workload(backend: ClusterBackend, manifest_path: Path) -> None:
    backend.apply_manifest(manifest_path).require_ok()


def _apply_workload(backend: ClusterBackend, workload: GKEWorkload) -> None:
    try:
        with tempfile.TemporaryDirectory(prefix="dptk-gke-") as tmp:
            path = Path(tmp) / "workload.yaml"
            path.write_text(yaml.safe_dump(workload.properties, sort_keys=False), encoding="utf-8")
            apply_cluster_workload(backend, path)
    except (OSError, yaml.YAMLError) as e:
        raise BackendError(f"write manifest for cluster {workload.cluster_name}", str(e)) from e


def deploy_gke_workloads(backend: ClusterBackend, project: Project) -> int:
    """Apply every declared workload. Returns the number applied."""
    applied = 0
    for entry in plan_gke_workloads(project):
        name = entry.cluster.name
        get_cluster_credentials(
            backend, name, entry.location_flag, entry.location_value, project.id,
        )
        logger.info("Authenticated to cluster %s (%s %s)", name, entry.location_flag, entry.location_value)
        for workload in entry.workloads:
            _apply_workload(backend, workload)
            applied += 1
        logger.info("Applied %d workloads to cluster %s", len(entry.workloads), name)
    return applied
