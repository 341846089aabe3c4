"""
Command runner — execute a backend CLI and capture the outcome.

Every backend (gcloud, kubectl, terraform) is driven through this one
function. It never raises: a non-zero exit, a timeout or a missing
binary all come back as a failed Receipt.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import time
from pathlib import Path

from dptk.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300


def run_command(
    backend: str,
    operation: str,
    argv: list[str],
    *,
    cwd: Path | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> Receipt:
    """Run ``argv`` and wrap the result in a Receipt.

    Args:
        backend: Backend name recorded on the receipt.
        operation: Human-readable operation name, used in error messages.
        argv: Command and arguments (no shell).
        cwd: Working directory.
        timeout: Timeout in seconds.
    """
    command = shlex.join(argv)
    logger.debug("Executing: %s (cwd=%s)", command, cwd or ".")
    start = time.monotonic()

    try:
        result = subprocess.run(
            argv,
            cwd=str(cwd) if cwd else None,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        return Receipt.failure(
            backend=backend,
            operation=operation,
            error=f"{argv[0]} CLI not available",
            metadata={"command": command},
        )
    except subprocess.TimeoutExpired:
        return Receipt.failure(
            backend=backend,
            operation=operation,
            error=f"Command timed out after {timeout}s",
            metadata={"command": command, "timeout": timeout},
        )

    elapsed_ms = int((time.monotonic() - start) * 1000)
    output = result.stdout.strip()
    stderr = result.stderr.strip()

    if result.returncode == 0:
        return Receipt.success(
            backend=backend,
            operation=operation,
            output=output,
            duration_ms=elapsed_ms,
            metadata={"command": command, "return_code": 0, "stderr": stderr},
        )

    return Receipt.failure(
        backend=backend,
        operation=operation,
        error=stderr or f"Command exited with code {result.returncode}",
        duration_ms=elapsed_ms,
        metadata={"command": command, "return_code": result.returncode, "stdout": output},
    )
