"""Job queries: multi-pipeline harvesting, runner feeds, and single-job actions."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import io
import logging
from pathlib import Path, PurePosixPath
import shutil
from typing import Any, Awaitable, Iterable, Sequence, TypeVar
from urllib.parse import urlencode
import zipfile

import httpx

from glc.credentials import Credentials
from glc.errors import AggregationError, ArtifactNotFoundError, GlcError, PageFetchError
from glc.fetcher import client_scope, get_object
from glc.gate import ConcurrencyGate
from glc.harvest import FetchFilter, HarvestResult, PageCallback, harvest_collection
from glc.models import JobRecord
from glc.pipelines import get_pipelines
from glc.projects import project_ref
from glc.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def pipeline_jobs_url(
    credentials: Credentials,
    project: str | int,
    pipeline_id: int,
    *,
    per_page: int,
    status: str | None = None,
    include_retried: bool = False,
) -> str:
    params: dict[str, str | int] = {"per_page": per_page}
    if status:
        params["scope"] = status
    if include_retried:
        params["include_retried"] = "Yes"
    return credentials.api_url(f"projects/{project_ref(project)}/pipelines/{pipeline_id}/jobs?{urlencode(params)}")


def runner_jobs_url(credentials: Credentials, runner_id: int, *, per_page: int) -> str:
    return credentials.api_url(f"runners/{runner_id}/jobs?{urlencode({'order_by': 'id', 'per_page': per_page})}")


async def _gather_fail_fast(awaitables: Iterable[Awaitable[T]]) -> list[T]:
    """Gather concurrently; on the first error cancel the rest and re-raise it."""

    tasks = [asyncio.ensure_future(awaitable) for awaitable in awaitables]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def find_jobs(
    credentials: Credentials,
    project: str | int,
    pipeline_ids: Sequence[int] | None = None,
    name_filter: str | Iterable[str] | None = None,
    max_age: float | None = None,
    status_filter: str | None = None,
    *,
    include_retried: bool = False,
    client: httpx.AsyncClient | None = None,
    gate: ConcurrencyGate | None = None,
    settings: Settings | None = None,
    on_page: PageCallback | None = None,
) -> list[JobRecord]:
    """Collect jobs from every pipeline, filtered by name, status and age.

    Without ``pipeline_ids`` the pipelines updated within ``max_age`` are
    discovered first. All pipelines are harvested concurrently through one
    shared gate. If any pipeline's first page cannot be fetched or decoded the
    whole query raises :class:`~glc.errors.AggregationError` and no partial
    results are returned.
    """

    cfg = settings or get_settings()
    gate = gate or ConcurrencyGate(cfg.harvest.job_concurrency)
    fetch_filter = FetchFilter.build(names=name_filter, status=status_filter, max_age=max_age)
    now = datetime.now(timezone.utc)

    async with client_scope(client, cfg) as http_client:
        if not pipeline_ids:
            try:
                pipelines = await get_pipelines(
                    credentials, project, max_age, client=http_client, gate=gate, settings=cfg
                )
            except PageFetchError as exc:
                raise AggregationError(exc) from exc
            pipeline_ids = [pipeline.id for pipeline in pipelines]
            if not pipeline_ids:
                LOGGER.info("No pipelines in project %s within the requested age", project)
                return []

        urls = [
            pipeline_jobs_url(
                credentials,
                project,
                pipeline_id,
                per_page=cfg.harvest.per_page,
                status=fetch_filter.status,
                include_retried=include_retried,
            )
            for pipeline_id in pipeline_ids
        ]
        try:
            results = await _gather_fail_fast(
                harvest_collection(
                    http_client,
                    credentials,
                    url,
                    gate=gate,
                    model=JobRecord,
                    fetch_filter=fetch_filter,
                    now=now,
                    on_page=on_page,
                )
                for url in urls
            )
        except PageFetchError as exc:
            raise AggregationError(exc) from exc

    jobs = fetch_filter.apply(_merge(results), now)
    LOGGER.info("%s jobs found across %s pipelines", len(jobs), len(urls))
    return jobs


async def get_runner_jobs(
    credentials: Credentials,
    runner_id: int,
    max_age: float | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    gate: ConcurrencyGate | None = None,
    settings: Settings | None = None,
    on_page: PageCallback | None = None,
) -> list[JobRecord]:
    """Harvest one runner's job feed, bounded by ``max_age`` seconds.

    The feed is requested newest first so the age cutoff can prune it; the
    returned jobs are sorted by ascending id.
    """

    cfg = settings or get_settings()
    gate = gate or ConcurrencyGate(cfg.harvest.runner_job_concurrency)
    fetch_filter = FetchFilter.build(max_age=max_age)
    now = datetime.now(timezone.utc)
    url = runner_jobs_url(credentials, runner_id, per_page=cfg.harvest.per_page)
    async with client_scope(client, cfg) as http_client:
        try:
            result = await harvest_collection(
                http_client,
                credentials,
                url,
                gate=gate,
                model=JobRecord,
                fetch_filter=fetch_filter,
                now=now,
                on_page=on_page,
            )
        except PageFetchError as exc:
            raise AggregationError(exc) from exc
    return sorted(fetch_filter.apply(result.records, now), key=lambda job: job.id)


def _merge(results: Iterable[HarvestResult[JobRecord]]) -> list[JobRecord]:
    merged: list[JobRecord] = []
    failed = 0
    for result in results:
        merged.extend(result.records)
        failed += len(result.failed_pages)
    if failed:
        LOGGER.warning("%s page(s) could not be read; results may be incomplete", failed)
    return merged


def _job_url(credentials: Credentials, project: str | int, job_id: int, suffix: str = "") -> str:
    return credentials.api_url(f"projects/{project_ref(project)}/jobs/{job_id}{suffix}")


async def get_job_details(
    credentials: Credentials,
    project: str | int,
    job_id: int,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> JobRecord:
    async with client_scope(client, settings) as http_client:
        return await get_object(http_client, credentials, _job_url(credentials, project, job_id), JobRecord)


async def get_job_trace(
    credentials: Credentials,
    project: str | int,
    job_id: int,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> str:
    async with client_scope(client, settings) as http_client:
        response = await http_client.get(
            _job_url(credentials, project, job_id, "/trace"),
            headers=credentials.auth_headers(),
        )
        response.raise_for_status()
        return response.text


def tail_lines(text: str, count: int | None) -> str:
    if count is None:
        return text
    lines = text.splitlines()
    return "\n".join(lines[-count:]) if count > 0 else ""


@dataclass(frozen=True, slots=True)
class CancelOutcome:
    job_id: int
    status_code: int
    body: str


async def cancel_jobs(
    credentials: Credentials,
    project: str | int,
    job_ids: Sequence[int] | None = None,
    pipeline_id: int | None = None,
    names: Sequence[str] | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> list[CancelOutcome]:
    """Cancel explicit jobs, or the jobs of one pipeline (optionally by name)."""

    if pipeline_id is None and not job_ids:
        raise ValueError("Provide job ids or a pipeline id")
    cfg = settings or get_settings()
    outcomes: list[CancelOutcome] = []
    async with client_scope(client, cfg) as http_client:
        if pipeline_id is not None:
            jobs = await find_jobs(
                credentials, project, [pipeline_id], names or None, client=http_client, settings=cfg
            )
        else:
            jobs = await _gather_fail_fast(
                get_job_details(credentials, project, job_id, client=http_client, settings=cfg)
                for job_id in job_ids or ()
            )
        LOGGER.info("Cancelling %s jobs...", len(jobs))
        for job in jobs:
            response = await http_client.post(
                _job_url(credentials, project, job.id, "/cancel"),
                headers=credentials.auth_headers(),
            )
            outcomes.append(CancelOutcome(job_id=job.id, status_code=response.status_code, body=response.text))
    return outcomes


@dataclass(frozen=True, slots=True)
class ExtractedArtifact:
    member: str
    path: Path
    size: int


async def get_artifact(
    credentials: Credentials,
    project: str | int,
    job_id: int,
    name: str,
    *,
    dest_dir: Path = Path("."),
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> ExtractedArtifact:
    """Download a job's artifact archive and extract the member ``name``."""

    async with client_scope(client, settings) as http_client:
        response = await http_client.get(
            _job_url(credentials, project, job_id, "/artifacts"),
            headers=credentials.auth_headers(),
        )
    if response.status_code != 200:
        raise GlcError(f"Received a non-OK HTTP status: {response.status_code}")
    return extract_member(response.content, name, dest_dir)


def extract_member(archive_bytes: bytes, name: str, dest_dir: Path) -> ExtractedArtifact:
    try:
        archive = zipfile.ZipFile(io.BytesIO(archive_bytes))
    except zipfile.BadZipFile as exc:
        raise GlcError(f"Artifact archive is not a valid zip file: {exc}") from exc
    with archive:
        names = archive.namelist()
        if name not in names:
            raise ArtifactNotFoundError(name, names)
        dest_dir.mkdir(parents=True, exist_ok=True)
        target = dest_dir / PurePosixPath(name).name
        with archive.open(name) as source, target.open("wb") as handle:
            shutil.copyfileobj(source, handle)
    size = target.stat().st_size
    LOGGER.info("Extracted %s bytes to %s", size, target)
    return ExtractedArtifact(member=name, path=target, size=size)


def jobs_to_rows(jobs: Iterable[JobRecord]) -> list[dict[str, Any]]:
    """Plain dicts for JSON output."""

    return [job.model_dump(mode="json") for job in jobs]
