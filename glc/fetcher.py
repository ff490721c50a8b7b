"""Authenticated page fetches against the CI REST API."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
import json
import logging
from typing import AsyncIterator, Generic, Mapping, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from glc.credentials import Credentials
from glc.errors import PageFetchError
from glc.gate import ConcurrencyGate
from glc.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)
TOTAL_PAGES_HEADER = "x-total-pages"

RecordT = TypeVar("RecordT", bound=BaseModel)


@dataclass(slots=True)
class RawPage:
    """Response body + headers captured while the gate slot was held."""

    url: str
    status_code: int
    headers: Mapping[str, str]
    body: str


@dataclass(slots=True)
class Page(Generic[RecordT]):
    url: str
    records: list[RecordT]
    total_pages: int


def build_client(settings: Settings | None = None) -> httpx.AsyncClient:
    cfg = settings or get_settings()
    timeout = httpx.Timeout(
        connect=cfg.http.connect_timeout,
        read=cfg.http.read_timeout,
        write=30.0,
        pool=None,
    )
    return httpx.AsyncClient(timeout=timeout, http2=cfg.http.http2, follow_redirects=True)


@asynccontextmanager
async def client_scope(
    client: httpx.AsyncClient | None,
    settings: Settings | None = None,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield ``client`` as-is, or a fresh one that is closed on exit."""

    if client is not None:
        yield client
        return
    owned = build_client(settings)
    try:
        yield owned
    finally:
        await owned.aclose()


def with_page(url: str, page: int) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}page={page}"


def parse_total_pages(headers: Mapping[str, str]) -> int:
    """Read the page count header; missing or junk means a single page."""

    raw = headers.get(TOTAL_PAGES_HEADER)
    if raw is None:
        return 1
    try:
        total = int(str(raw).strip())
    except ValueError:
        LOGGER.debug("Ignoring unparseable %s header: %r", TOTAL_PAGES_HEADER, raw)
        return 1
    return max(1, total)


async def read_page(client: httpx.AsyncClient, credentials: Credentials, url: str) -> RawPage:
    """Issue one GET and read the full body. Call this while holding a gate slot."""

    try:
        response = await client.get(url, headers=credentials.auth_headers())
        body = response.text
    except httpx.HTTPError as exc:
        raise PageFetchError(url=url, message=f"Request failed: {exc!r}") from exc
    return RawPage(url=url, status_code=response.status_code, headers=response.headers, body=body)


def decode_page(raw: RawPage, model: type[RecordT]) -> Page[RecordT]:
    try:
        payload = json.loads(raw.body)
    except ValueError as exc:
        raise PageFetchError(url=raw.url, body=raw.body, message=f"Failed parsing JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise PageFetchError(
            url=raw.url,
            body=raw.body,
            message=f"Expected a JSON array (HTTP {raw.status_code})",
        )
    try:
        records = [model.model_validate(item) for item in payload]
    except ValidationError as exc:
        raise PageFetchError(
            url=raw.url,
            body=raw.body,
            message=f"Failed decoding {model.__name__}: {exc}",
        ) from exc
    return Page(url=raw.url, records=records, total_pages=parse_total_pages(raw.headers))


async def fetch_page(
    client: httpx.AsyncClient,
    credentials: Credentials,
    url: str,
    *,
    gate: ConcurrencyGate,
    model: type[RecordT],
) -> Page[RecordT]:
    async with gate.slot():
        raw = await read_page(client, credentials, url)
    return decode_page(raw, model)


async def get_object(
    client: httpx.AsyncClient,
    credentials: Credentials,
    url: str,
    model: type[RecordT],
) -> RecordT:
    """GET a single-object endpoint and decode it into ``model``.

    HTTP errors raise ``httpx.HTTPStatusError``; undecodable bodies raise
    :class:`~glc.errors.PageFetchError` carrying the raw body.
    """

    response = await client.get(url, headers=credentials.auth_headers())
    response.raise_for_status()
    try:
        return model.model_validate_json(response.text)
    except ValidationError as exc:
        raise PageFetchError(
            url=url,
            body=response.text,
            message=f"Failed decoding {model.__name__}: {exc}",
        ) from exc
