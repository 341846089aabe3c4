"""
Resource plan builder — Project → Deployment Manager graphs.

Pure functions, no backend calls. A project is deployed as three
named deployments, applied in order:

    prerequisites   project-independent template providers
    resources       baseline resources + the user's declared resources
    audit           audit dataset + logs bucket (needs the sink identity)

The audit graph grants the log sink's writer identity access to the
audit dataset. That identity only exists once the sink from the
resources graph has been created, so ``build_audit`` takes it as an
explicit ``LogSinkIdentity`` argument resolved between the two upserts.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from dptk.core.data.baseline import (
    BASELINE,
    REQUIRED_BINDINGS_NAME,
    BaselineCatalog,
    user_metric_properties,
)
from dptk.core.errors import PlanValidationError, UnsupportedResourceError
from dptk.core.models.deployment import Deployment, Metadata, Resource
from dptk.core.models.project import Project, ResourceSpec

logger = logging.getLogger(__name__)


DEPLOYMENT_PREFIX = "data-protect-toolkit"
PREREQUISITES = "prerequisites"
RESOURCES = "resources"
AUDIT = "audit"

METRIC_TYPE = "logging.v2.metric"
SINK_TYPE = "logging.v2.sink"
SERVICE_ACCOUNT_TYPE = "iam.v1.serviceAccount"

STORAGE_ANALYTICS_GROUP = "cloud-storage-analytics@google.com"

_BIGQUERY_TEMPLATE = "config/templates/bigquery/bigquery_dataset.py"
_GCS_TEMPLATE = "config/templates/gcs_bucket/gcs_bucket.py"
_IAM_MEMBER_TEMPLATE = "config/templates/iam_member/iam_member.py"

# Categories handled outside Deployment Manager.
_EXTERNAL_CATEGORIES = frozenset({"gke_workloads"})

# Dataset access keys naming a principal.
_ACCESS_MEMBER_KEYS = frozenset({"domain", "groupByEmail", "iamMember", "specialGroup", "userByEmail"})


@dataclass(frozen=True)
class LogSinkIdentity:
    """The writer identity generated for the audit log sink."""

    sink_name: str
    service_account: str


@dataclass
class DeploymentPlan:
    """The three graphs for one project. ``audit`` is None until the sink is known."""

    prerequisites: Deployment
    resources: Deployment
    audit: Deployment | None = None

    def items(self) -> list[tuple[str, Deployment]]:
        graphs = [(PREREQUISITES, self.prerequisites), (RESOURCES, self.resources)]
        if self.audit is not None:
            graphs.append((AUDIT, self.audit))
        return graphs


def deployment_names(project: Project) -> dict[str, str]:
    """Deployment names, keyed by graph."""
    return {
        PREREQUISITES: f"{DEPLOYMENT_PREFIX}-{PREREQUISITES}",
        RESOURCES: f"{DEPLOYMENT_PREFIX}-{RESOURCES}",
        AUDIT: f"{DEPLOYMENT_PREFIX}-{AUDIT}-{project.id}",
    }


# ═══════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════


def _template(templates_dir: Path, relative: str) -> str:
    return str(Path(templates_dir).absolute() / relative)


def _groups(emails: list[str], prefix: str = "group:") -> list[str]:
    return [f"{prefix}{e}" for e in emails]


def _mapping(resource: str, props: dict[str, Any], key: str) -> dict[str, Any]:
    value = props.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise PlanValidationError(f"{resource}: {key!r} must be a mapping")
    return value


def _list(resource: str, props: dict[str, Any], key: str) -> list[Any]:
    value = props.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise PlanValidationError(f"{resource}: {key!r} must be a list")
    return value


def _merge_bindings(
    resource: str,
    baseline: list[tuple[str, list[str]]],
    overrides: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Merge role bindings; overrides add members, never replace them.

    Roles keep their first-seen order, baseline first. Roles with no
    members are dropped.
    """
    merged: dict[str, list[str]] = {}
    for role, members in baseline:
        for member in members:
            bucket = merged.setdefault(role, [])
            if member not in bucket:
                bucket.append(member)

    for binding in overrides:
        if not isinstance(binding, dict) or not binding.get("role"):
            raise PlanValidationError(f"{resource}: binding without a role: {binding!r}")
        members = binding.get("members") or []
        if not isinstance(members, list) or not all(isinstance(m, str) and m for m in members):
            raise PlanValidationError(
                f"{resource}: members of {binding['role']} must be a list of non-empty strings"
            )
        bucket = merged.setdefault(binding["role"], [])
        for member in members:
            if member not in bucket:
                bucket.append(member)

    return [{"role": role, "members": members} for role, members in merged.items() if members]


def _lookup(spec: ResourceSpec, category: str, key: tuple[str, ...]) -> str:
    """Resolve a resource name from a key path like ('properties', 'name')."""
    value: Any = {"name": spec.name, "properties": spec.properties}
    for part in key:
        value = value.get(part) if isinstance(value, dict) else None
    if not value or not isinstance(value, str):
        raise PlanValidationError(
            f"{category}: resource is missing required key {'.'.join(key)!r}"
        )
    return value


def _unexpected_access_metric(
    parent: str,
    expected_users: list[str],
    resource_filter: str,
) -> Resource:
    name = f"unexpected-access-{parent}"
    users = " AND ".join(expected_users)
    filter_ = (
        f"{resource_filter} AND\n"
        "protoPayload.status.code!=7 AND\n"
        f"protoPayload.authenticationInfo.principalEmail!=({users})"
    )
    return Resource(
        name=name,
        type=METRIC_TYPE,
        properties=user_metric_properties(
            name, f"Count of unexpected data access to {parent}", filter_,
        ),
        metadata=Metadata(depends_on=[parent]),
    )


def _data_access_log(project: Project) -> str:
    return f"logName=projects/{project.id}/logs/cloudaudit.googleapis.com%2Fdata_access"


# ═══════════════════════════════════════════════════════════════════
#  Category handlers
# ═══════════════════════════════════════════════════════════════════

# A handler returns the category's resources, the first being the
# declared resource itself, followed by any synthesized companions.
_Handler = Callable[[Project, ResourceSpec, str, str], list[Resource]]


def _plain(project: Project, spec: ResourceSpec, name: str, type_: str) -> list[Resource]:
    return [Resource(name=name, type=type_, properties=copy.deepcopy(spec.properties))]


def _gcs_bucket(project: Project, spec: ResourceSpec, name: str, type_: str) -> list[Resource]:
    props = copy.deepcopy(spec.properties)
    props["bindings"] = _merge_bindings(
        name,
        [
            ("roles/storage.admin", _groups([project.owners_group])),
            ("roles/storage.objectAdmin", _groups(project.data_readwrite_groups)),
            ("roles/storage.objectViewer", _groups(project.data_readonly_groups)),
        ],
        _list(name, props, "bindings"),
    )
    props["versioning"] = {**_mapping(name, props, "versioning"), "enabled": True}
    logs_bucket = project.audit_logs.logs_gcs_bucket
    if logs_bucket is not None:
        props["logging"] = {"logBucket": logs_bucket.name}

    resources = [Resource(name=name, type=type_, properties=props)]
    if spec.expected_users:
        resources.append(_unexpected_access_metric(
            name,
            spec.expected_users,
            "resource.type=gcs_bucket AND\n"
            f"{_data_access_log(project)} AND\n"
            f"protoPayload.resourceName=projects/_/buckets/{name}",
        ))
    return resources


def _bq_dataset(project: Project, spec: ResourceSpec, name: str, type_: str) -> list[Resource]:
    props = copy.deepcopy(spec.properties)
    access: list[dict[str, Any]] = [{"groupByEmail": project.owners_group, "role": "OWNER"}]
    access += [{"groupByEmail": g, "role": "WRITER"} for g in project.data_readwrite_groups]
    access += [{"groupByEmail": g, "role": "READER"} for g in project.data_readonly_groups]
    for entry in _list(name, props, "access"):
        if not isinstance(entry, dict) or not entry.get("role"):
            raise PlanValidationError(f"{name}: access entry without a role: {entry!r}")
        for key in _ACCESS_MEMBER_KEYS.intersection(entry):
            if not isinstance(entry[key], str) or not entry[key]:
                raise PlanValidationError(f"{name}: access {key!r} must be a non-empty string")
        if entry not in access:
            access.append(entry)
    props["access"] = access
    props["setDefaultOwner"] = False

    resources = [Resource(name=name, type=type_, properties=props)]
    if spec.expected_users:
        resources.append(_unexpected_access_metric(
            name,
            spec.expected_users,
            "resource.type=bigquery_resource AND\n"
            f"{_data_access_log(project)} AND\n"
            f"protoPayload.resourceName:projects/{project.id}/datasets/{name}",
        ))
    return resources


def _pubsub(project: Project, spec: ResourceSpec, name: str, type_: str) -> list[Resource]:
    props = copy.deepcopy(spec.properties)
    for sub in _list(name, props, "subscriptions"):
        if not isinstance(sub, dict) or not sub.get("name"):
            raise PlanValidationError(f"{name}: subscription is missing required key 'name'")
        sub["accessControl"] = _merge_bindings(
            f"{name}/{sub['name']}",
            [
                ("roles/pubsub.editor", _groups(project.data_readwrite_groups)),
                ("roles/pubsub.viewer", _groups(project.data_readonly_groups)),
            ],
            _list(f"{name}/{sub['name']}", sub, "accessControl"),
        )
    return [Resource(name=name, type=type_, properties=props)]


@dataclass(frozen=True)
class _Category:
    name_key: tuple[str, ...]
    template: str = ""           # relative template path
    native_type: str = ""        # used when there is no template
    handler: _Handler = _plain


_CATEGORIES: dict[str, _Category] = {
    "bq_datasets": _Category(("properties", "name"), _BIGQUERY_TEMPLATE, handler=_bq_dataset),
    "cloud_routers": _Category(("properties", "name"), "config/templates/cloud_router/cloud_router.py"),
    "gce_firewalls": _Category(("name",), "config/templates/firewall/firewall.py"),
    "gce_instances": _Category(("properties", "name"), "config/templates/instance/instance.py"),
    "gcs_buckets": _Category(("properties", "name"), _GCS_TEMPLATE, handler=_gcs_bucket),
    "gke_clusters": _Category(("properties", "cluster", "name"), "config/templates/gke/gke.py"),
    "iam_custom_roles": _Category(
        ("properties", "roleId"), "config/templates/iam_custom_role/project_custom_role.py",
    ),
    "iam_policies": _Category(("name",), _IAM_MEMBER_TEMPLATE),
    "ip_addresses": _Category(("properties", "name"), "config/templates/ip_reservation/ip_address.py"),
    "pubsubs": _Category(("properties", "topic"), "config/templates/pubsub/pubsub.py", handler=_pubsub),
    "routes": _Category(("properties", "name"), "config/templates/route/single_route.py"),
    "service_accounts": _Category(("properties", "accountId"), native_type=SERVICE_ACCOUNT_TYPE),
    "vpc_networks": _Category(("properties", "name"), "config/templates/network/network.py"),
    "vpns": _Category(("name",), "config/templates/vpn/vpn.py"),
}


# ═══════════════════════════════════════════════════════════════════
#  Builders
# ═══════════════════════════════════════════════════════════════════


def build_prerequisites(
    templates_dir: Path,
    catalog: BaselineCatalog = BASELINE,
) -> Deployment:
    """Template providers every project deployment relies on."""
    deployment = Deployment()
    for spec in catalog.prerequisites:
        deployment.add_resource(
            Resource(name=spec.name, type=_template(templates_dir, spec.template)),
            template=True,
        )
    return deployment


def _add_baseline(
    deployment: Deployment,
    project: Project,
    templates_dir: Path,
    audit_project_id: str,
    catalog: BaselineCatalog,
) -> None:
    deployment.add_resource(Resource(
        name=catalog.sink_name,
        type=SINK_TYPE,
        properties=catalog.sink_properties(
            audit_project_id, project.audit_logs.logs_bq_dataset.name,
        ),
    ))
    for metric in catalog.metrics:
        deployment.add_resource(Resource(
            name=metric.name,
            type=METRIC_TYPE,
            properties=user_metric_properties(metric.name, metric.description, metric.filter),
        ))
    groups = {attr: getattr(project, attr) for _, attr in catalog.required_roles}
    deployment.add_resource(
        Resource(
            name=REQUIRED_BINDINGS_NAME,
            type=_template(templates_dir, _IAM_MEMBER_TEMPLATE),
            properties=catalog.required_bindings(groups),
        ),
        template=True,
    )


def build_resources(
    project: Project,
    templates_dir: Path,
    *,
    audit_project_id: str | None = None,
    catalog: BaselineCatalog = BASELINE,
) -> Deployment:
    """Baseline resources plus every declared Deployment Manager resource.

    Raises:
        UnsupportedResourceError: For an unknown resource category.
        PlanValidationError: For a malformed property bag or a name clash.
    """
    deployment = Deployment()
    _add_baseline(deployment, project, templates_dir, audit_project_id or project.id, catalog)

    for category, specs in project.resources.items():
        if category in _EXTERNAL_CATEGORIES:
            continue
        mapping = _CATEGORIES.get(category)
        if mapping is None:
            raise UnsupportedResourceError(category)

        for spec in specs:
            name = _lookup(spec, category, mapping.name_key)
            if mapping.template:
                type_ = _template(templates_dir, mapping.template)
            else:
                type_ = mapping.native_type
            declared, *companions = mapping.handler(project, spec, name, type_)
            deployment.add_resource(declared, template=bool(mapping.template))
            for extra in companions:
                deployment.add_resource(extra)
            logger.debug("Planned %s %r (+%d companions)", category, name, len(companions))

    deployment.validate_graph()
    logger.info(
        "Built resources graph for %s: %d resources, %d imports (baseline v%s)",
        project.id, len(deployment.resources), len(deployment.imports), catalog.version,
    )
    return deployment


def build_audit(
    project: Project,
    sink: LogSinkIdentity,
    templates_dir: Path,
) -> Deployment:
    """Audit dataset and logs bucket, granting the sink write access.

    Raises:
        PlanValidationError: If the sink identity is empty.
    """
    if not sink.service_account:
        raise PlanValidationError(
            f"audit deployment for {project.id} needs the writer identity of sink {sink.sink_name!r}"
        )

    deployment = Deployment()
    dataset = project.audit_logs.logs_bq_dataset
    deployment.add_resource(
        Resource(
            name=dataset.name,
            type=_template(templates_dir, _BIGQUERY_TEMPLATE),
            properties={
                "name": dataset.name,
                "location": dataset.location,
                "access": [
                    {"groupByEmail": project.owners_group, "role": "OWNER"},
                    {"groupByEmail": project.auditors_group, "role": "READER"},
                    {"userByEmail": sink.service_account, "role": "WRITER"},
                ],
                "setDefaultOwner": False,
            },
        ),
        template=True,
    )

    bucket = project.audit_logs.logs_gcs_bucket
    if bucket is not None:
        deployment.add_resource(
            Resource(
                name=bucket.name,
                type=_template(templates_dir, _GCS_TEMPLATE),
                properties={
                    "name": bucket.name,
                    "location": bucket.location,
                    "storageClass": bucket.storage_class,
                    "bindings": [
                        {"role": "roles/storage.admin",
                         "members": [f"group:{project.owners_group}"]},
                        {"role": "roles/storage.objectCreator",
                         "members": [f"group:{STORAGE_ANALYTICS_GROUP}"]},
                        {"role": "roles/storage.objectViewer",
                         "members": [f"group:{project.auditors_group}"]},
                    ],
                    "versioning": {"enabled": True},
                    "logging": {"logBucket": bucket.name},
                    "lifecycle": {
                        "rule": [{
                            "action": {"type": "Delete"},
                            "condition": {"age": bucket.ttl_days, "isLive": True},
                        }],
                    },
                },
            ),
            template=True,
        )

    deployment.validate_graph()
    return deployment


def build_plan(
    project: Project,
    templates_dir: Path,
    *,
    sink: LogSinkIdentity | None = None,
    audit_project_id: str | None = None,
) -> DeploymentPlan:
    """All graphs for a project; the audit graph only when ``sink`` is given."""
    return DeploymentPlan(
        prerequisites=build_prerequisites(templates_dir),
        resources=build_resources(project, templates_dir, audit_project_id=audit_project_id),
        audit=build_audit(project, sink, templates_dir) if sink is not None else None,
    )
