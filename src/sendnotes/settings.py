from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - SENDNOTES_STORE_BACKEND: 'sqlite' (default) or 'memory' for the local store
    - SENDNOTES_STORE_PATH: path to the local sqlite file. Default './data/sendnotes.db'
    - SENDNOTES_REMOTE_URL: base URL of the remote item service. Default 'http://localhost:8000'
    - SENDNOTES_REMOTE_TIMEOUT: seconds allowed per remote call (default: 10)
    - SENDNOTES_PROBE_INTERVAL: seconds between reachability probes (default: 15)
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins for the item service; '*' by default
    """

    store_backend: str
    store_path: str
    remote_url: str
    remote_timeout: float
    probe_interval: float
    cors_allow_origins: List[str]


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_seconds(value: str, default: float) -> float:
    try:
        seconds = float(value.strip())
    except ValueError:
        return default
    return seconds if seconds > 0 else default


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("SENDNOTES_STORE_BACKEND", "sqlite").strip().lower()
    if backend not in {"memory", "sqlite"}:
        # Fallback to sqlite if unsupported
        backend = "sqlite"

    return Settings(
        store_backend=backend,
        store_path=_get_env("SENDNOTES_STORE_PATH", "./data/sendnotes.db").strip(),
        remote_url=_get_env("SENDNOTES_REMOTE_URL", "http://localhost:8000").strip().rstrip("/"),
        remote_timeout=_parse_seconds(_get_env("SENDNOTES_REMOTE_TIMEOUT", "10"), 10.0),
        probe_interval=_parse_seconds(_get_env("SENDNOTES_PROBE_INTERVAL", "15"), 15.0),
        cors_allow_origins=_parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*")),
    )
