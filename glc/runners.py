"""Runner listing and detail lookups."""

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Sequence

import httpx

from glc.credentials import Credentials
from glc.fetcher import client_scope, decode_page, get_object, read_page
from glc.gate import ConcurrencyGate
from glc.models import JobRecord, RunnerDetail, RunnerSummary
from glc.settings import Settings, get_settings


@dataclass(frozen=True, slots=True)
class RunnerJobCounts:
    success: int = 0
    failed: int = 0
    running: int = 0

    def render(self) -> str:
        return f"{self.success:>4} / {self.failed:>4} / {self.running:>4}"


def runner_job_counts(jobs: Iterable[JobRecord]) -> RunnerJobCounts:
    tally = Counter(job.status for job in jobs)
    return RunnerJobCounts(success=tally["success"], failed=tally["failed"], running=tally["running"])


async def get_runners(
    credentials: Credentials,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> list[RunnerSummary]:
    cfg = settings or get_settings()
    url = credentials.api_url(f"runners/all?per_page={cfg.harvest.per_page}")
    async with client_scope(client, cfg) as http_client:
        raw = await read_page(http_client, credentials, url)
    return decode_page(raw, RunnerSummary).records


async def get_runner_detail(
    credentials: Credentials,
    runner_id: int,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> RunnerDetail:
    url = credentials.api_url(f"runners/{runner_id}")
    async with client_scope(client, settings) as http_client:
        return await get_object(http_client, credentials, url, RunnerDetail)


async def get_runner_details(
    credentials: Credentials,
    runner_ids: Sequence[int],
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> list[RunnerDetail]:
    """Fetch details for many runners, at most ``runner_job_concurrency`` at once."""

    cfg = settings or get_settings()
    gate = ConcurrencyGate(cfg.harvest.runner_job_concurrency)

    async with client_scope(client, cfg) as http_client:

        async def _one(runner_id: int) -> RunnerDetail:
            async with gate.slot():
                return await get_runner_detail(credentials, runner_id, client=http_client, settings=cfg)

        return list(await asyncio.gather(*(_one(runner_id) for runner_id in runner_ids)))
