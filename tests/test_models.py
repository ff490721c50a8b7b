from __future__ import annotations

from datetime import datetime, timezone

import pydantic
import pytest

from glc.models import EPOCH, JobRecord, TestReportSummary
from tests.fake_gitlab import make_job


def test_missing_timestamps_default_to_epoch():
    payload = make_job(1)
    payload["created_at"] = None
    payload.pop("started_at")

    job = JobRecord.model_validate(payload)

    assert job.created_at == EPOCH
    assert job.started_at == EPOCH
    assert job.finished_at == EPOCH


def test_naive_timestamps_are_treated_as_utc():
    job = JobRecord.model_validate(make_job(1, created_at="2024-05-01T12:00:00"))

    assert job.created_at == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)


def test_artifacts_size_is_summed_and_serialized():
    job = JobRecord.model_validate(
        make_job(
            1,
            artifacts=[
                {"file_type": "archive", "size": 1000, "filename": "artifacts.zip", "file_format": "zip"},
                {"file_type": "trace", "size": 24, "filename": "job.log"},
            ],
        )
    )

    assert job.artifacts_size == 1024
    assert job.model_dump(mode="json")["artifacts_size"] == 1024


def test_null_collections_and_unknown_fields():
    payload = make_job(1)
    payload["artifacts"] = None
    payload["tag_list"] = None
    payload["coverage"] = 87.5

    job = JobRecord.model_validate(payload)

    assert job.artifacts == ()
    assert job.tag_list == ()
    assert not hasattr(job, "coverage")


def test_records_are_frozen():
    job = JobRecord.model_validate(make_job(1))

    with pytest.raises(pydantic.ValidationError):
        job.status = "failed"  # type: ignore[misc]


def test_age_seconds_uses_created_at():
    job = JobRecord.model_validate(make_job(1, created_at="2024-01-01T00:00:00Z"))

    assert job.age_seconds(datetime(2024, 1, 1, 1, tzinfo=timezone.utc)) == 3600


def test_test_report_summary_defaults():
    report = TestReportSummary.model_validate({"test_suites": [{"name": "unit", "total_count": 3, "failed_count": 1}]})

    assert report.total.count == 0
    assert report.test_suites[0].failed_count == 1
