"""Binary Authorization — import a project's admission policy."""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path

from dptk.adapters.base import PolicyBackend
from dptk.core.errors import BackendError
from dptk.core.models.project import BinauthzPolicy

logger = logging.getLogger(__name__)


def import_binauthz(
    backend: PolicyBackend,
    project_id: str,
    policy: BinauthzPolicy | None,
) -> bool:
    """Import ``policy`` into the project. No policy is a no-op, not an error.

    Returns:
        True if a policy was imported.
    """
    if policy is None:
        logger.debug("No binauthz policy declared for %s", project_id)
        return False

    try:
        with tempfile.TemporaryDirectory(prefix="dptk-binauthz-") as tmp:
            path = Path(tmp) / "policy.json"
            path.write_text(json.dumps(policy.properties, indent=2), encoding="utf-8")
            backend.import_policy(project_id, path).require_ok()
    except (OSError, TypeError, ValueError) as e:
        raise BackendError(f"write binauthz policy for {project_id}", str(e)) from e

    logger.info("Imported binauthz policy into %s", project_id)
    return True
