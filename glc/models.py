"""Pydantic records decoded from CI API responses."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _epoch_if_missing(value: Any) -> Any:
    if value is None or value == "":
        return EPOCH
    return value


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class APIRecord(BaseModel):
    """Immutable base for decoded records; unknown fields are dropped."""

    model_config = ConfigDict(frozen=True, extra="ignore")


class Artifact(APIRecord):
    file_type: str
    size: int = 0
    filename: str
    file_format: str | None = None


class PipelineSummary(APIRecord):
    """Pipeline as embedded in job payloads and returned by pipeline listings."""

    id: int
    project_id: int | None = None
    ref: str = ""
    status: str = ""
    sha: str = ""
    source: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    web_url: str = ""


class RunnerSummary(APIRecord):
    id: int
    description: str = ""
    ip_address: str | None = None
    active: bool = True
    paused: bool = False
    is_shared: bool = False
    runner_type: str = ""
    name: str | None = None
    online: bool | None = None
    status: str = ""


class JobRecord(APIRecord):
    """One CI job. ``created_at`` is the aging key for harvesting."""

    id: int
    status: str
    stage: str
    name: str
    ref: str
    tag: bool = False
    created_at: datetime = EPOCH
    started_at: datetime = EPOCH
    finished_at: datetime = EPOCH
    duration: float | None = None
    queued_duration: float | None = None
    failure_reason: str | None = None
    artifacts: tuple[Artifact, ...] = ()
    pipeline: PipelineSummary
    tag_list: tuple[str, ...] = ()
    runner: RunnerSummary | None = None
    web_url: str = ""

    @field_validator("created_at", "started_at", "finished_at", mode="before")
    @classmethod
    def _default_timestamp(cls, value: Any) -> Any:
        return _epoch_if_missing(value)

    @field_validator("created_at", "started_at", "finished_at")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @field_validator("artifacts", "tag_list", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return () if value is None else value

    @computed_field  # type: ignore[prop-decorator]
    @property
    def artifacts_size(self) -> int:
        return sum(artifact.size for artifact in self.artifacts)

    def age_seconds(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()


class RunnerDetail(APIRecord):
    id: int
    description: str = ""
    ip_address: str | None = None
    active: bool = True
    online: bool | None = None
    is_shared: bool = False
    runner_type: str = ""
    version: str | None = None
    revision: str | None = None
    tag_list: tuple[str, ...] = ()
    contacted_at: datetime | None = None

    @field_validator("tag_list", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return () if value is None else value


class Project(APIRecord):
    id: int
    name: str
    path_with_namespace: str = ""
    default_branch: str | None = None
    description: str | None = None
    web_url: str = ""
    star_count: int = 0
    forks_count: int = 0
    last_activity_at: datetime | None = None


class TestSummaryDetail(APIRecord):
    __test__ = False

    time: float = 0.0
    count: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    error: int = 0
    suite_error: str | None = None


class TestSuiteSummary(APIRecord):
    __test__ = False

    name: str
    total_time: float = 0.0
    total_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    build_ids: tuple[int, ...] = ()
    suite_error: str | None = None


class TestReportSummary(APIRecord):
    __test__ = False

    total: TestSummaryDetail = Field(default_factory=TestSummaryDetail)
    test_suites: tuple[TestSuiteSummary, ...] = ()
