"""
Terraform backend — write ``main.tf.json``, init, adopt imports, apply.

Imports are what make a rerun safe: an address already tracked in
state is skipped, and a resource that does not exist yet is left for
apply to create.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from dptk.adapters.base import TerraformBackend
from dptk.adapters.command import run_command
from dptk.core.models.receipt import Receipt
from dptk.core.models.terraform import TerraformConfig, TerraformOptions

logger = logging.getLogger(__name__)

CONFIG_FILE = "main.tf.json"

_MISSING_REMOTE = "non-existent remote object"


class TerraformCLIBackend(TerraformBackend):

    @property
    def name(self) -> str:
        return "terraform"

    def is_available(self) -> bool:
        return shutil.which("terraform") is not None

    def _run(self, operation: str, *args: str, cwd: Path, timeout: int = 300) -> Receipt:
        return run_command(self.name, operation, ["terraform", *args], cwd=cwd, timeout=timeout)

    def _tracked_addresses(self, workdir: Path) -> set[str]:
        receipt = self._run("state list", "state", "list", cwd=workdir, timeout=60)
        if receipt.failed:
            # Older terraform exits non-zero when there is no state yet.
            logger.debug("terraform state list failed, assuming empty state: %s", receipt.error)
            return set()
        return set(receipt.output.split())

    def apply(
        self,
        config: TerraformConfig,
        workdir: Path,
        options: TerraformOptions | None = None,
    ) -> Receipt:
        try:
            workdir.mkdir(parents=True, exist_ok=True)
            (workdir / CONFIG_FILE).write_text(config.to_json(), encoding="utf-8")
        except OSError as e:
            return Receipt.failure(
                backend=self.name,
                operation="write config",
                error=f"cannot write {workdir / CONFIG_FILE}: {e}",
            )

        init = self._run("init", "init", "-no-color", "-input=false", cwd=workdir, timeout=120)
        if init.failed:
            return init

        imported: list[str] = []
        imports = options.imports if options else []
        if imports:
            tracked = self._tracked_addresses(workdir)
            for imp in imports:
                if imp.address in tracked:
                    logger.info("%s already in terraform state, not importing", imp.address)
                    continue
                receipt = self._run(
                    f"import {imp.address}",
                    "import", "-no-color", "-input=false", imp.address, imp.id,
                    cwd=workdir,
                )
                if receipt.failed:
                    if _MISSING_REMOTE in (receipt.error or "").lower():
                        logger.info("%s does not exist yet, apply will create it", imp.id)
                        continue
                    return receipt
                imported.append(imp.address)

        result = self._run(
            "apply", "apply", "-no-color", "-input=false", "-auto-approve",
            cwd=workdir, timeout=600,
        )
        result.metadata["imported"] = imported
        return result
