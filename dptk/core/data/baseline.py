"""
Baseline resource catalog — what every project gets, declared or not.

The catalog is versioned pure data. Its only parameters are the
project's identity, its audit destination and its group emails; the
plan builder merges it into every generated graph. Bump
``BASELINE_VERSION`` when the catalog content changes so that audit
ledger entries show which baseline a run applied.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any

BASELINE_VERSION = "1"

LOG_SINK_NAME = "audit-logs-to-bigquery"
LOG_SINK_FILTER = 'logName:"logs/cloudaudit.googleapis.com"'
REQUIRED_BINDINGS_NAME = "required-project-bindings"

# Shared by every log-based metric that counts events per principal.
_USER_METRIC_DESCRIPTOR: dict[str, Any] = {
    "metricKind": "DELTA",
    "valueType": "INT64",
    "unit": "1",
    "labels": [
        {"key": "user", "description": "Unexpected user", "valueType": "STRING"},
    ],
}
_USER_LABEL_EXTRACTORS = {
    "user": "EXTRACT(protoPayload.authenticationInfo.principalEmail)",
}


@dataclass(frozen=True)
class MetricSpec:
    name: str
    description: str
    filter: str


@dataclass(frozen=True)
class TemplateResourceSpec:
    name: str
    template: str   # relative to the templates root


@dataclass(frozen=True)
class BaselineCatalog:
    """Fixed resources merged into every project's deployments."""

    version: str
    prerequisites: tuple[TemplateResourceSpec, ...]
    metrics: tuple[MetricSpec, ...]
    # (role, Project attribute holding the group email)
    required_roles: tuple[tuple[str, str], ...]
    sink_name: str = LOG_SINK_NAME
    sink_filter: str = LOG_SINK_FILTER

    def sink_properties(self, audit_project_id: str, dataset: str) -> dict[str, Any]:
        return {
            "sink": self.sink_name,
            "destination": f"bigquery.googleapis.com/projects/{audit_project_id}/datasets/{dataset}",
            "filter": self.sink_filter,
            "uniqueWriterIdentity": True,
        }

    def required_bindings(self, groups: dict[str, str]) -> dict[str, Any]:
        """IAM member bindings, given group emails keyed by Project attribute."""
        return {
            "roles": [
                {"role": role, "members": [f"group:{groups[attr]}"]}
                for role, attr in self.required_roles
            ],
        }


def user_metric_properties(name: str, description: str, filter_: str) -> dict[str, Any]:
    """Properties for a ``logging.v2.metric`` labelled by principal email."""
    return {
        "metric": name,
        "description": description,
        "filter": filter_,
        "metricDescriptor": copy.deepcopy(_USER_METRIC_DESCRIPTOR),
        "labelExtractors": dict(_USER_LABEL_EXTRACTORS),
    }


BASELINE = BaselineCatalog(
    version=BASELINE_VERSION,
    prerequisites=(
        TemplateResourceSpec(
            name="enable-all-audit-log-policies",
            template="templates/audit_log_config.py",
        ),
        TemplateResourceSpec(
            name="chc-type-provider",
            template="templates/chc_resource/chc_res_type_provider.jinja",
        ),
    ),
    metrics=(
        MetricSpec(
            name="bigquery-settings-change-count",
            description="Count of bigquery permission changes.",
            filter=(
                'resource.type="bigquery_resource" AND '
                'protoPayload.methodName="datasetservice.update"'
            ),
        ),
        MetricSpec(
            name="iam-policy-change-count",
            description="Count of IAM policy changes.",
            filter=(
                'protoPayload.methodName="SetIamPolicy" OR '
                'protoPayload.methodName:".setIamPolicy"'
            ),
        ),
        MetricSpec(
            name="bucket-permission-change-count",
            description="Count of GCS permissions changes.",
            filter=(
                "resource.type=gcs_bucket AND protoPayload.serviceName=storage.googleapis.com AND\n"
                "(protoPayload.methodName=storage.setIamPermissions OR "
                "protoPayload.methodName=storage.objects.update)"
            ),
        ),
    ),
    required_roles=(
        ("roles/owner", "owners_group"),
        ("roles/iam.securityReviewer", "auditors_group"),
    ),
)
