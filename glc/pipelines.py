"""Pipeline discovery and per-pipeline test reports."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from urllib.parse import urlencode

import httpx

from glc.credentials import Credentials
from glc.fetcher import client_scope, get_object
from glc.gate import ConcurrencyGate
from glc.harvest import PageCallback, harvest_collection
from glc.models import PipelineSummary, TestReportSummary
from glc.projects import project_ref
from glc.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)


def pipelines_url(
    credentials: Credentials,
    project: str | int,
    *,
    per_page: int,
    updated_after: datetime | None = None,
    source: str | None = None,
    ref: str | None = None,
) -> str:
    params: dict[str, str | int] = {"per_page": per_page}
    if updated_after is not None:
        params["updated_after"] = updated_after.isoformat()
    if source:
        params["source"] = source
    if ref:
        params["ref"] = ref
    return credentials.api_url(f"projects/{project_ref(project)}/pipelines?{urlencode(params)}")


async def get_pipelines(
    credentials: Credentials,
    project: str | int,
    max_age: float | None = None,
    source: str | None = None,
    ref: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    gate: ConcurrencyGate | None = None,
    settings: Settings | None = None,
    on_page: PageCallback | None = None,
) -> list[PipelineSummary]:
    """List pipelines updated within ``max_age`` seconds (all when ``None``).

    The age bound is pushed to the server as ``updated_after``, so every page
    returned is in range and no cutoff is needed.
    """

    cfg = settings or get_settings()
    updated_after = None
    if max_age is not None:
        updated_after = datetime.now(timezone.utc) - timedelta(seconds=max_age)
    url = pipelines_url(
        credentials,
        project,
        per_page=cfg.harvest.per_page,
        updated_after=updated_after,
        source=source,
        ref=ref,
    )
    gate = gate or ConcurrencyGate(cfg.harvest.job_concurrency)
    async with client_scope(client, cfg) as http_client:
        result = await harvest_collection(
            http_client,
            credentials,
            url,
            gate=gate,
            model=PipelineSummary,
            on_page=on_page,
        )
    LOGGER.info("%s pipelines found for project %s", len(result.records), project)
    return result.records


async def get_test_report_summary(
    credentials: Credentials,
    project: str | int,
    pipeline_id: int,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> TestReportSummary:
    url = credentials.api_url(f"projects/{project_ref(project)}/pipelines/{pipeline_id}/test_report_summary")
    async with client_scope(client, settings) as http_client:
        return await get_object(http_client, credentials, url, TestReportSummary)
