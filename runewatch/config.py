"""
runewatch.config — YAML Configuration Loader
=============================================

Reads ``config.yaml`` for the clan identity, provider endpoints and the
sync tuning knobs (throttle, worker pool, retry budget).  Secrets such as
``DATABASE_URL`` stay in the environment (``.env``).

Usage::

    from runewatch.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.clan_name)         # "Kravy"
    print(cfg.max_concurrency)   # 4
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

HISCORES_URL = "https://secure.runescape.com/m=hiscore/index_lite.ws"
RUNEMETRICS_URL = "https://apps.runescape.com/runemetrics/profile/profile"
CLAN_MEMBERS_URL = "http://services.runescape.com/m=clan-hiscores/members_lite.ws"


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RuneWatchConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Only ``clan_name`` is required; every tunable has a default that is
    conservative enough for the public RuneMetrics endpoints.
    """

    # Identity
    clan_name: str

    # API
    api_port: int = 8000

    # Provider endpoints
    hiscores_url: str = HISCORES_URL
    runemetrics_url: str = RUNEMETRICS_URL
    clan_members_url: str = CLAN_MEMBERS_URL
    request_timeout: float = 10.0
    activities_per_fetch: int = 20

    # Throttle (provider-wide)
    max_concurrency: int = 4
    min_request_interval: float = 0.5
    rate_limit_cooldown: float = 30.0

    # Batch jobs
    job_workers: int = 4
    job_time_budget: float = 1800.0
    max_rate_limit_retries: int = 3
    max_upstream_retries: int = 1
    retry_base_delay: float = 5.0
    retry_max_delay: float = 120.0
    job_ttl: float = 3600.0
    max_jobs: int = 50

    # Background schedule
    enable_scheduler: bool = False
    sync_interval_minutes: int = 0


_FLOAT_KEYS = (
    "request_timeout", "min_request_interval", "rate_limit_cooldown",
    "job_time_budget", "retry_base_delay", "retry_max_delay", "job_ttl",
)
_INT_KEYS = (
    "api_port", "activities_per_fetch", "max_concurrency", "job_workers",
    "max_rate_limit_retries", "max_upstream_retries", "max_jobs",
    "sync_interval_minutes",
)
_STR_KEYS = ("hiscores_url", "runemetrics_url", "clan_members_url")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path | None = None) -> RuneWatchConfig:
    """Read *path* and return a :class:`RuneWatchConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.  Defaults to the
        ``RUNEWATCH_CONFIG`` environment variable, then ``config.yaml`` in
        the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If ``clan_name`` is missing from the YAML file.
    ValueError
        If a tunable is out of range (e.g. ``max_concurrency < 1``).
    """
    config_path = Path(path or os.getenv("RUNEWATCH_CONFIG", "config.yaml"))
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return config_from_dict(raw)


def config_from_dict(raw: dict) -> RuneWatchConfig:
    """Build a :class:`RuneWatchConfig` from an already-parsed mapping."""
    kwargs: dict = {"clan_name": str(raw["clan_name"])}

    for key in _FLOAT_KEYS:
        if raw.get(key) is not None:
            kwargs[key] = float(raw[key])
    for key in _INT_KEYS:
        if raw.get(key) is not None:
            kwargs[key] = int(raw[key])
    for key in _STR_KEYS:
        if raw.get(key):
            kwargs[key] = str(raw[key])
    if raw.get("enable_scheduler") is not None:
        kwargs["enable_scheduler"] = bool(raw["enable_scheduler"])

    cfg = RuneWatchConfig(**kwargs)

    if cfg.max_concurrency < 1 or cfg.job_workers < 1:
        raise ValueError("max_concurrency and job_workers must be >= 1")
    if cfg.max_rate_limit_retries < 0 or cfg.max_upstream_retries < 0:
        raise ValueError("retry limits must be >= 0")
    if cfg.job_time_budget <= 0:
        raise ValueError("job_time_budget must be positive")
    return cfg
