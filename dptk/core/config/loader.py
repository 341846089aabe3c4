"""
Configuration loader — reads dptk.yml into domain models.

Reads YAML, validates against the Pydantic schema and returns a typed
``Config``. Nothing downstream ever sees raw YAML.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from dptk.core.errors import ConfigError
from dptk.core.models.project import Config, Project

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "dptk.yml"

# Deployment Manager templates live under <config dir>/deploy by default.
DEFAULT_TEMPLATES_DIR = "deploy"
TEMPLATES_DIR_ENV = "DPTK_TEMPLATES_DIR"


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for dptk.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to dptk.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_config(path: Path | None = None) -> Config:
    """Load and validate a deployer configuration.

    Args:
        path: Explicit path to dptk.yml. If None, searches upward.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if path is None:
        path = find_config_file()

    if path is None:
        raise ConfigError(f"No {CONFIG_FILE} found. Specify one with --config.")

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        config = Config.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.info("Loaded %d projects from %s", len(config.projects), path)
    return config


def select_project(config: Config, project_id: str | None) -> Project:
    """Pick the project to act on. Without an ID the config must hold exactly one.

    Raises:
        ConfigError: If the project is unknown or the choice is ambiguous.
    """
    if project_id:
        project = config.get_project(project_id)
        if project is None:
            known = ", ".join(p.project_id for p in config.projects) or "none"
            raise ConfigError(f"Project {project_id!r} not in config (known: {known})")
        return project

    if len(config.projects) != 1:
        raise ConfigError(
            f"Config holds {len(config.projects)} projects; choose one with --project"
        )
    return config.projects[0]


def resolve_templates_dir(explicit: str | None, config_path: Path | None) -> Path:
    """Templates root: explicit value > DPTK_TEMPLATES_DIR > <config dir>/deploy."""
    value = explicit or os.environ.get(TEMPLATES_DIR_ENV)
    if value:
        return Path(value).absolute()
    base = config_path.parent if config_path else Path.cwd()
    return (base / DEFAULT_TEMPLATES_DIR).absolute()
