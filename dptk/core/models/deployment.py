"""
Deployment graph — the desired state handed to Deployment Manager.

A Deployment is an ordered set of template imports plus resources. It
serializes to the Deployment Manager config schema::

    imports:   [{path}]
    resources: [{name, type, properties, metadata: {dependsOn}}]
"""

from __future__ import annotations

from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from dptk.core.errors import PlanValidationError


class Import(BaseModel):
    path: str


class Metadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    depends_on: list[str] = Field(default_factory=list, alias="dependsOn")


class Resource(BaseModel):
    name: str
    type: str
    properties: dict[str, Any] = Field(default_factory=dict)
    metadata: Metadata | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "type": self.type,
            "properties": self.properties,
        }
        if self.metadata is not None:
            data["metadata"] = self.metadata.model_dump(by_alias=True)
        return data


class Deployment(BaseModel):
    """Imports and resources for one named deployment."""

    imports: list[Import] = Field(default_factory=list)
    resources: list[Resource] = Field(default_factory=list)

    def add_import(self, path: str) -> None:
        """Add a template import; paths are deduplicated."""
        if all(imp.path != path for imp in self.imports):
            self.imports.append(Import(path=path))

    def add_resource(self, resource: Resource, *, template: bool = False) -> None:
        """Append a resource, importing its type when it is a template path."""
        if self.get_resource(resource.name) is not None:
            raise PlanValidationError(f"duplicate resource name: {resource.name}")
        if template:
            self.add_import(resource.type)
        self.resources.append(resource)

    def get_resource(self, name: str) -> Resource | None:
        for res in self.resources:
            if res.name == name:
                return res
        return None

    def validate_graph(self) -> None:
        """Check that names are unique and every template type is imported.

        Raises:
            PlanValidationError: On the first violation.
        """
        seen: set[str] = set()
        for res in self.resources:
            if res.name in seen:
                raise PlanValidationError(f"duplicate resource name: {res.name}")
            seen.add(res.name)

        paths = {imp.path for imp in self.imports}
        for res in self.resources:
            if _is_template(res.type) and res.type not in paths:
                raise PlanValidationError(
                    f"resource {res.name!r} uses template {res.type!r} with no matching import"
                )

    def sorted(self) -> Deployment:
        """Copy with imports and resources in name order (for comparisons)."""
        return Deployment(
            imports=sorted(self.imports, key=lambda i: i.path),
            resources=sorted(self.resources, key=lambda r: r.name),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.imports:
            data["imports"] = [{"path": imp.path} for imp in self.imports]
        data["resources"] = [res.to_dict() for res in self.resources]
        return data

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)


def _is_template(type_: str) -> bool:
    # Native types look like ``logging.v2.sink``; templates are file paths.
    return type_.endswith((".py", ".jinja"))
