"""Typed configuration objects backed by python-decouple settings."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from decouple import Config as DecoupleConfig, RepositoryEmpty, RepositoryEnv

__all__ = [
    "HTTPSettings",
    "HarvestSettings",
    "Settings",
    "load_config",
    "get_settings",
]


@dataclass(frozen=True, slots=True)
class HTTPSettings:
    """Transport knobs for the shared httpx client."""

    connect_timeout: float
    read_timeout: float
    http2: bool


@dataclass(frozen=True, slots=True)
class HarvestSettings:
    """Pagination and concurrency budget for job harvesting."""

    per_page: int
    job_concurrency: int
    runner_job_concurrency: int


@dataclass(frozen=True, slots=True)
class Settings:
    """Top-level immutable configuration container."""

    env_path: str
    credentials_path: Path
    default_project: str
    http: HTTPSettings
    harvest: HarvestSettings


def load_config(env_path: str = ".env") -> DecoupleConfig:
    """Return a python-decouple config, anchored to ``env_path`` when it exists."""

    if Path(env_path).exists():
        return DecoupleConfig(RepositoryEnv(env_path))
    return DecoupleConfig(RepositoryEmpty())


def _int(cfg: DecoupleConfig, key: str, *, default: int) -> int:
    return cfg(key, cast=int, default=default)


def _float(cfg: DecoupleConfig, key: str, *, default: float) -> float:
    return cfg(key, cast=float, default=default)


def _bool(cfg: DecoupleConfig, key: str, *, default: bool) -> bool:
    return cfg(key, cast=bool, default=default)


@lru_cache(maxsize=1)
def get_settings(env_path: str = ".env") -> Settings:
    """Load and memoize structured settings for the current process."""

    cfg = load_config(env_path)

    harvest = HarvestSettings(
        per_page=_int(cfg, "GLC_PER_PAGE", default=100),
        job_concurrency=_int(cfg, "GLC_JOB_CONCURRENCY", default=30),
        runner_job_concurrency=_int(cfg, "GLC_RUNNER_JOB_CONCURRENCY", default=10),
    )
    if harvest.per_page < 1:
        msg = "GLC_PER_PAGE must be >= 1"
        raise ValueError(msg)
    if harvest.job_concurrency < 1 or harvest.runner_job_concurrency < 1:
        msg = "GLC_JOB_CONCURRENCY and GLC_RUNNER_JOB_CONCURRENCY must be >= 1"
        raise ValueError(msg)

    http = HTTPSettings(
        connect_timeout=_float(cfg, "GLC_CONNECT_TIMEOUT", default=10.0),
        read_timeout=_float(cfg, "GLC_READ_TIMEOUT", default=60.0),
        http2=_bool(cfg, "GLC_HTTP2", default=False),
    )

    return Settings(
        env_path=env_path,
        credentials_path=Path(cfg("GLC_CREDENTIALS_PATH", default=str(Path.home() / ".creds"))).expanduser(),
        default_project=cfg("GLC_PROJECT", default="197"),
        http=http,
        harvest=harvest,
    )
