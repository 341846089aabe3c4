"""
Terraform config and import list.

The config serializes to Terraform's JSON syntax (``main.tf.json``)::

    {"terraform": {"required_version": ...},
     "resource": [{"<type>": {"<name>": {...}}}]}
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, Field

from dptk.core.errors import PlanValidationError

REQUIRED_VERSION = ">= 0.12.0"


class TerraformResource(BaseModel):
    type: str
    name: str
    properties: dict[str, Any] = Field(default_factory=dict)

    @property
    def address(self) -> str:
        return f"{self.type}.{self.name}"


class TerraformImport(BaseModel):
    """An existing real-world resource to adopt at ``address``."""

    address: str
    id: str


class TerraformOptions(BaseModel):
    imports: list[TerraformImport] = Field(default_factory=list)


class TerraformConfig(BaseModel):
    required_version: str = REQUIRED_VERSION
    resources: list[TerraformResource] = Field(default_factory=list)

    def addresses(self) -> list[str]:
        return [r.address for r in self.resources]

    def check_imports(self, imports: list[TerraformImport]) -> None:
        """Every import must target exactly one resource block."""
        addresses = self.addresses()
        for imp in imports:
            count = addresses.count(imp.address)
            if count != 1:
                raise PlanValidationError(
                    f"import {imp.address!r} matches {count} resource blocks, want exactly 1"
                )

    def to_dict(self) -> dict[str, Any]:
        return {
            "terraform": {"required_version": self.required_version},
            "resource": [{r.type: {r.name: r.properties}} for r in self.resources],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)
