"""Paginated collection harvesting with age-based early termination.

One harvest covers one parent resource (a pipeline's job list, a runner's job
feed, a project's pipeline list). Page 1 is fetched first to learn the page
count; the remaining pages are fanned out concurrently under the shared
:class:`~glc.gate.ConcurrencyGate`.

The API returns records newest first, so once a page contains a record older
than ``max_age`` every later page is older still. :class:`AgeCutoff` holds the
last page index still worth requesting. Pages already in flight when the
cutoff drops are still decoded and filtered normally, so a late cutoff costs
requests but never drops fresh records.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Generic, Iterable, Sequence

import httpx

from glc.credentials import Credentials
from glc.errors import PageFetchError
from glc.fetcher import RecordT, decode_page, fetch_page, read_page, with_page
from glc.gate import ConcurrencyGate

LOGGER = logging.getLogger(__name__)

PageCallback = Callable[[int, int], None]


@dataclass(frozen=True, slots=True)
class FetchFilter:
    """Name/status/age predicate applied to every candidate record."""

    names: frozenset[str] | None = None
    status: str | None = None
    max_age: float | None = None

    @classmethod
    def build(
        cls,
        names: str | Iterable[str] | None = None,
        status: str | None = None,
        max_age: float | None = None,
    ) -> "FetchFilter":
        if isinstance(names, str):
            name_set: frozenset[str] | None = frozenset({names})
        elif names is None:
            name_set = None
        else:
            name_set = frozenset(names) or None
        normalized_status = status.strip().lower() if status else None
        return cls(names=name_set, status=normalized_status or None, max_age=max_age)

    def is_stale(self, record: Any, now: datetime) -> bool:
        if self.max_age is None:
            return False
        created_at = getattr(record, "created_at", None)
        if created_at is None:
            return False
        return (now - created_at).total_seconds() > self.max_age

    def matches(self, record: Any, now: datetime) -> bool:
        if self.names is not None and getattr(record, "name", None) not in self.names:
            return False
        if self.status is not None and str(getattr(record, "status", "")).lower() != self.status:
            return False
        return not self.is_stale(record, now)

    def apply(self, records: Iterable[RecordT], now: datetime) -> list[RecordT]:
        return [record for record in records if self.matches(record, now)]


class AgeCutoff:
    """Highest page index still allowed to be fetched; only ever lowered."""

    def __init__(self, total_pages: int) -> None:
        self._value = max(1, total_pages)

    @property
    def value(self) -> int:
        return self._value

    def allows(self, page: int) -> bool:
        return page <= self._value

    def lower_to(self, page: int) -> bool:
        if page < self._value:
            self._value = page
            return True
        return False


@dataclass(slots=True)
class HarvestResult(Generic[RecordT]):
    """Records surviving the filter, plus what it took to get them."""

    url: str
    records: list[RecordT] = field(default_factory=list)
    total_pages: int = 1
    fetched_pages: int = 0
    skipped_pages: list[int] = field(default_factory=list)
    failed_pages: list[str] = field(default_factory=list)
    cutoff: int = 1


def _absorb(
    page: int,
    records: Sequence[RecordT],
    *,
    fetch_filter: FetchFilter,
    cutoff: AgeCutoff,
    now: datetime,
) -> list[RecordT]:
    if any(fetch_filter.is_stale(record, now) for record in records):
        if cutoff.lower_to(page):
            LOGGER.debug("Stale records on page %s; cutoff lowered to %s", page, page)
    return fetch_filter.apply(records, now)


async def harvest_collection(
    client: httpx.AsyncClient,
    credentials: Credentials,
    base_url: str,
    *,
    gate: ConcurrencyGate,
    model: type[RecordT],
    fetch_filter: FetchFilter | None = None,
    now: datetime | None = None,
    on_page: PageCallback | None = None,
) -> HarvestResult[RecordT]:
    """Fetch every page of ``base_url`` that may hold records inside the age window.

    A failure on page 1 raises :class:`~glc.errors.PageFetchError`. Failures on
    later pages are logged and recorded in ``failed_pages``; those pages
    contribute nothing.
    """

    fetch_filter = fetch_filter or FetchFilter()
    now = now or datetime.now(timezone.utc)

    first = await fetch_page(client, credentials, with_page(base_url, 1), gate=gate, model=model)
    total_pages = first.total_pages
    cutoff = AgeCutoff(total_pages)
    result: HarvestResult[RecordT] = HarvestResult(url=base_url, total_pages=total_pages, fetched_pages=1)
    by_page: dict[int, list[RecordT]] = {
        1: _absorb(1, first.records, fetch_filter=fetch_filter, cutoff=cutoff, now=now)
    }
    if on_page:
        on_page(1, total_pages)

    async def _harvest_page(page: int) -> None:
        url = with_page(base_url, page)
        if not cutoff.allows(page):
            result.skipped_pages.append(page)
            return
        async with gate.slot():
            # Re-check: the cutoff may have dropped while waiting for a slot.
            if not cutoff.allows(page):
                result.skipped_pages.append(page)
                return
            try:
                raw = await read_page(client, credentials, url)
            except PageFetchError as exc:
                _soft_fail(result, exc)
                return
        result.fetched_pages += 1
        try:
            decoded = decode_page(raw, model)
        except PageFetchError as exc:
            _soft_fail(result, exc)
            return
        by_page[page] = _absorb(page, decoded.records, fetch_filter=fetch_filter, cutoff=cutoff, now=now)
        LOGGER.debug("Page %s/%s: %s records, %s kept", page, total_pages, len(decoded.records), len(by_page[page]))
        if on_page:
            on_page(page, total_pages)

    if total_pages > 1:
        await asyncio.gather(*(_harvest_page(page) for page in range(2, total_pages + 1)))

    for page in sorted(by_page):
        result.records.extend(by_page[page])
    result.skipped_pages.sort()
    result.cutoff = cutoff.value
    if result.skipped_pages:
        LOGGER.info(
            "Skipped %s of %s pages past cutoff %s for %s",
            len(result.skipped_pages),
            total_pages,
            cutoff.value,
            base_url,
        )
    return result


def _soft_fail(result: HarvestResult[Any], exc: PageFetchError) -> None:
    result.failed_pages.append(exc.url)
    LOGGER.warning("Dropping page %s: %s\nraw body:\n%s", exc.url, exc.message, exc.body)
