"""Centralized path resolution for ThoughtGraph."""

import os
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def get_project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


def get_config_path() -> Path:
    """Return the config file path.

    THOUGHTGRAPH_CONFIG wins; otherwise config/config.toml under the project root.
    """
    env_path = os.getenv("THOUGHTGRAPH_CONFIG", "")
    if env_path:
        return Path(env_path)
    return PROJECT_ROOT / "config" / "config.toml"


def get_work_dir() -> Path:
    """Return the scratch directory that holds one sub-directory per run.

    Checks THOUGHTGRAPH_WORK_DIR first, then falls back to PROJECT_ROOT / "work".
    """
    env_dir = os.getenv("THOUGHTGRAPH_WORK_DIR", "")
    if env_dir:
        return Path(env_dir)
    return PROJECT_ROOT / "work"


def run_work_dir(run_id: str) -> Path:
    """Per-run scratch directory (created on demand by the agents that need it)."""
    return get_work_dir() / run_id
