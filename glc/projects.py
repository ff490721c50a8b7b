"""Project listing."""

from __future__ import annotations

from urllib.parse import quote

import httpx

from glc.credentials import Credentials
from glc.fetcher import client_scope, decode_page, read_page
from glc.models import Project
from glc.settings import Settings, get_settings


def project_ref(project: str | int) -> str:
    """Encode a numeric id or ``group/name`` path for use in a URL segment."""

    return quote(str(project).strip(), safe="")


async def get_projects(
    credentials: Credentials,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> list[Project]:
    cfg = settings or get_settings()
    url = credentials.api_url(f"projects?per_page={cfg.harvest.per_page}&order_by=last_activity_at")
    async with client_scope(client, cfg) as http_client:
        raw = await read_page(http_client, credentials, url)
    return decode_page(raw, Project).records
