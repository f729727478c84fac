"""Configuration loading: config.toml plus per-stage execution policies."""

import logging
import tomllib
from pathlib import Path
from typing import Dict, Optional

from lib.paths import get_config_path
from lib.registry import AgentKind, RetryPolicy, StagePolicy, StageRegistry

logger = logging.getLogger("thoughtgraph")


def load_config(path: Optional[Path] = None) -> dict:
    """Load config.toml (THOUGHTGRAPH_CONFIG or the project default)."""
    config_path = Path(path) if path else get_config_path()
    with open(config_path, "rb") as f:
        return tomllib.load(f)


def agent_settings(config: dict, kind: AgentKind) -> dict:
    """Settings for one agent kind: service, model, temperature, max_tokens, extras."""
    return dict(config.get("agents", {}).get(kind.value, {}))


def service_settings(config: dict, service: str) -> dict:
    return dict(config.get("services", {}).get(service, {}))


def stage_policies(config: dict, registry: StageRegistry) -> Dict[str, StagePolicy]:
    """Build the timeout/retry policy of every stage.

    [pipeline].default_timeout_seconds applies unless [stages.<id>] overrides it.
    Retries are off unless a stage sets max_attempts > 1.
    """
    pipeline = config.get("pipeline", {})
    default_timeout = pipeline.get("default_timeout_seconds")
    stages_cfg = config.get("stages", {})

    policies = {}
    for stage in registry.all():
        sc = stages_cfg.get(stage.id, {})
        timeout = sc.get("timeout_seconds", default_timeout)
        retry = None
        max_attempts = int(sc.get("max_attempts", 1))
        if max_attempts > 1:
            retry = RetryPolicy(
                max_attempts=max_attempts,
                backoff_seconds=float(sc.get("backoff_seconds", 1.0)),
                max_backoff_seconds=float(sc.get("max_backoff_seconds", 30.0)),
            )
        policies[stage.id] = StagePolicy(
            timeout_seconds=float(timeout) if timeout else None,
            retry=retry,
        )
    return policies
