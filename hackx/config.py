"""
hackx.config — YAML Configuration Loader
=========================================

Reads ``config.yaml`` for **infrastructure-only** settings (platform
identity, API port, database retry and timeout tuning, sweeper cadence).
Governance tuning values (default APY, proposal threshold, voting window,
quorum) live in the ``settings`` database table so they can be changed
without a redeploy.

Usage::

    from hackx.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.platform_name)     # "HackX"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure only.
# Governance tuning lives in the DB ``settings`` table.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class HackxConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    platform_name: str

    # API
    api_port: int = 8000

    # Storage — transient-failure retries and per-statement bound
    db_retry_attempts: int = 5
    db_retry_base_delay: float = 0.05
    db_statement_timeout_ms: int = 5000

    # Worker
    resolution_interval_seconds: int = 60


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> HackxConfig:
    """Read *path* and return a :class:`HackxConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If a numeric value is out of range.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    cfg = HackxConfig(
        platform_name=raw["platform_name"],
        api_port=int(raw.get("api_port", 8000)),
        db_retry_attempts=int(raw.get("db_retry_attempts", 5)),
        db_retry_base_delay=float(raw.get("db_retry_base_delay", 0.05)),
        db_statement_timeout_ms=int(raw.get("db_statement_timeout_ms", 5000)),
        resolution_interval_seconds=int(raw.get("resolution_interval_seconds", 60)),
    )
    if cfg.db_retry_attempts < 1:
        raise ValueError("db_retry_attempts must be at least 1")
    if cfg.resolution_interval_seconds < 1:
        raise ValueError("resolution_interval_seconds must be at least 1")
    return cfg
