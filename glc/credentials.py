"""Load and persist the API credentials used by every request."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path

import yaml

from glc.errors import CredentialsError

LOGGER = logging.getLogger(__name__)

__all__ = ["Credentials", "load_credentials", "save_credentials"]


@dataclass(frozen=True, slots=True)
class Credentials:
    """Base URL + bearer token; created once and shared by reference."""

    token: str
    url: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "url", str(self.url or "").rstrip("/"))

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def api_url(self, path: str) -> str:
        return f"{self.url}/api/v4/{path.lstrip('/')}"


def load_credentials(path: Path) -> Credentials:
    """Read the YAML credentials file written by :func:`save_credentials`."""

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CredentialsError(f"Failed to open credentials file at {path}") from exc
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise CredentialsError(f"Failed to parse credentials file: {exc}") from exc
    if not isinstance(data, dict) or not data.get("token") or not data.get("url"):
        raise CredentialsError(f"Failed to parse credentials file: {path} must define 'token' and 'url'")
    return Credentials(token=str(data["token"]), url=str(data["url"]))


def save_credentials(credentials: Credentials, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        path.write_text(yaml.safe_dump(asdict(credentials), sort_keys=True), encoding="utf-8")
        os.chmod(path, 0o600)
    except OSError as exc:
        raise CredentialsError(f"Failed to create credentials file at {path}") from exc
    LOGGER.debug("Wrote credentials for %s to %s", credentials.url, path)
    return path
