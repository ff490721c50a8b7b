"""Error types raised by the glc API layer.

The harvester decides whether a :class:`PageFetchError` is fatal (page 1) or
absorbed (later pages); aggregators convert fatal ones into
:class:`AggregationError` so callers only need to catch one type per query.
"""

from __future__ import annotations

from typing import Sequence

__all__ = [
    "GlcError",
    "PageFetchError",
    "AggregationError",
    "CredentialsError",
    "ArtifactNotFoundError",
]

_BODY_PREVIEW_CHARS = 2000


def _preview(body: str) -> str:
    if len(body) <= _BODY_PREVIEW_CHARS:
        return body
    return body[:_BODY_PREVIEW_CHARS] + f"... ({len(body) - _BODY_PREVIEW_CHARS} more chars)"


class GlcError(Exception):
    """Base class for every error the CLI reports as a clean failure."""


class PageFetchError(GlcError):
    """One page could not be fetched or decoded."""

    def __init__(self, *, url: str, body: str = "", message: str) -> None:
        super().__init__(message)
        self.url = str(url or "")
        self.body = body or ""
        self.message = message

    def __str__(self) -> str:
        text = f"{self.message} (url={self.url})"
        if self.body:
            text += f"\nraw body:\n{_preview(self.body)}"
        return text


class AggregationError(GlcError):
    """A multi-resource query aborted because one harvester failed on page 1."""

    def __init__(self, cause: PageFetchError) -> None:
        super().__init__(str(cause))
        self.cause = cause
        self.url = cause.url
        self.body = cause.body


class CredentialsError(GlcError):
    pass


class ArtifactNotFoundError(GlcError):
    def __init__(self, name: str, available: Sequence[str]) -> None:
        listing = "\n".join(f"    {entry}" for entry in available) or "    (archive is empty)"
        super().__init__(f"File {name} not found. Available files:\n{listing}")
        self.name = name
        self.available = list(available)
