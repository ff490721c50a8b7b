from __future__ import annotations

import pytest

from glc.errors import AggregationError
from glc.gate import ConcurrencyGate
from glc.jobs import find_jobs, get_runner_jobs, pipeline_jobs_url, runner_jobs_url
from tests.fake_gitlab import BASE_URL, CREDENTIALS, FakeGitLab, ago, make_job, make_settings

HOUR = 3600.0


def _jobs_path(pipeline_id: int) -> str:
    return f"projects/197/pipelines/{pipeline_id}/jobs"


def _pipeline(pipeline_id: int) -> dict:
    return {
        "id": pipeline_id,
        "project_id": 197,
        "ref": "main",
        "status": "success",
        "sha": "abc123",
        "source": "push",
        "created_at": ago(minutes=30),
        "updated_at": ago(minutes=10),
        "web_url": f"{BASE_URL}/p/-/pipelines/{pipeline_id}",
    }


def test_pipeline_jobs_url_carries_scope_and_retried_flag():
    url = pipeline_jobs_url(CREDENTIALS, "group/app", 42, per_page=50, status="failed", include_retried=True)

    assert url == (
        f"{BASE_URL}/api/v4/projects/group%2Fapp/pipelines/42/jobs"
        "?per_page=50&scope=failed&include_retried=Yes"
    )
    assert "scope" not in pipeline_jobs_url(CREDENTIALS, 197, 42, per_page=50)


def test_runner_jobs_url_orders_by_id():
    assert runner_jobs_url(CREDENTIALS, 7, per_page=100) == f"{BASE_URL}/api/v4/runners/7/jobs?order_by=id&per_page=100"


@pytest.mark.asyncio
async def test_bad_first_page_on_one_pipeline_fails_whole_query():
    fake = FakeGitLab()
    fake.add_collection(_jobs_path(1), ["{oops", [make_job(2)]])
    fake.add_collection(_jobs_path(2), [[make_job(20, pipeline_id=2)], [make_job(21, pipeline_id=2)]])

    async with fake.client() as client:
        with pytest.raises(AggregationError) as excinfo:
            await find_jobs(CREDENTIALS, 197, [1, 2], client=client, settings=make_settings())

    error = excinfo.value
    assert "pipelines/1/jobs" in error.url
    assert "page=1" in error.url
    assert error.body == "{oops"
    assert "{oops" in str(error)


@pytest.mark.asyncio
async def test_skip_optimization_across_three_pipelines():
    fake = FakeGitLab()
    fake.add_collection(
        _jobs_path(1),
        [
            [make_job(11, pipeline_id=1)],
            [make_job(12, pipeline_id=1)],
        ],
    )
    fake.add_collection(_jobs_path(2), [[make_job(21, pipeline_id=2)]])
    fake.add_collection(
        _jobs_path(3),
        [
            [make_job(31, pipeline_id=3)],
            [make_job(32, pipeline_id=3)],
            [make_job(33, pipeline_id=3, created_at=ago(hours=2))],
            [make_job(34, pipeline_id=3, created_at=ago(hours=3))],
        ],
    )

    async with fake.client() as client:
        jobs = await find_jobs(
            CREDENTIALS,
            197,
            [1, 2, 3],
            max_age=HOUR,
            client=client,
            gate=ConcurrencyGate(1),
            settings=make_settings(),
        )

    assert sorted(job.id for job in jobs) == [11, 12, 21, 31, 32]
    assert len(fake.requests) == 6
    assert fake.pages_requested(_jobs_path(3)) == [1, 2, 3]


@pytest.mark.asyncio
async def test_pipelines_are_discovered_when_none_given():
    fake = FakeGitLab()
    fake.add_collection("projects/197/pipelines", [[_pipeline(5), _pipeline(6)]])
    fake.add_collection(_jobs_path(5), [[make_job(50, pipeline_id=5, name="test")]])
    fake.add_collection(_jobs_path(6), [[make_job(60, pipeline_id=6, name="lint")]])

    async with fake.client() as client:
        jobs = await find_jobs(CREDENTIALS, 197, name_filter="test", max_age=HOUR, client=client, settings=make_settings())

    assert [job.id for job in jobs] == [50]
    discovery = next(request for request in fake.requests if request.url.path.endswith("/pipelines"))
    assert "updated_after" in discovery.url.params


@pytest.mark.asyncio
async def test_no_recent_pipelines_means_no_job_requests():
    fake = FakeGitLab()
    fake.add_collection("projects/197/pipelines", [[]])

    async with fake.client() as client:
        jobs = await find_jobs(CREDENTIALS, 197, max_age=HOUR, client=client, settings=make_settings())

    assert jobs == []
    assert len(fake.requests) == 1


@pytest.mark.asyncio
async def test_status_filter_is_sent_as_scope_and_reapplied():
    fake = FakeGitLab()
    fake.add_collection(
        _jobs_path(1),
        [[make_job(1, status="failed"), make_job(2, status="success")]],
    )

    async with fake.client() as client:
        jobs = await find_jobs(CREDENTIALS, 197, [1], status_filter="FAILED", client=client, settings=make_settings())

    assert [job.id for job in jobs] == [1]
    assert fake.requests[0].url.params["scope"] == "failed"


@pytest.mark.asyncio
async def test_soft_failures_are_logged_by_the_aggregator(caplog):
    fake = FakeGitLab()
    fake.add_collection(_jobs_path(1), [[make_job(1)], "not json", [make_job(3)]])

    with caplog.at_level("WARNING"):
        async with fake.client() as client:
            jobs = await find_jobs(CREDENTIALS, 197, [1], client=client, settings=make_settings())

    assert sorted(job.id for job in jobs) == [1, 3]
    assert "results may be incomplete" in caplog.text


@pytest.mark.asyncio
async def test_runner_jobs_stop_at_first_stale_page():
    fake = FakeGitLab()
    fake.add_collection(
        "runners/7/jobs",
        [
            [make_job(900), make_job(899)],
            [make_job(898, created_at=ago(days=2))],
            [make_job(897, created_at=ago(days=3))],
        ],
    )

    async with fake.client() as client:
        jobs = await get_runner_jobs(
            CREDENTIALS,
            7,
            max_age=HOUR,
            client=client,
            gate=ConcurrencyGate(1),
            settings=make_settings(),
        )

    assert [job.id for job in jobs] == [899, 900]
    assert fake.pages_requested("runners/7/jobs") == [1, 2]
    first = fake.requests[0]
    assert first.url.params["order_by"] == "id"
    assert first.url.params["per_page"] == "100"


@pytest.mark.asyncio
async def test_runner_jobs_bad_first_page_raises_aggregation_error():
    fake = FakeGitLab()
    fake.add_collection("runners/7/jobs", ["<html>oops</html>"])

    async with fake.client() as client:
        with pytest.raises(AggregationError, match="runners/7/jobs"):
            await get_runner_jobs(CREDENTIALS, 7, client=client, settings=make_settings())


@pytest.mark.asyncio
async def test_one_gate_bounds_requests_across_all_pipelines():
    fake = FakeGitLab(latency=0.01)
    expected: set[int] = set()
    for pipeline_id in range(1, 6):
        pages = [[make_job(pipeline_id * 100 + page, pipeline_id=pipeline_id)] for page in range(4)]
        expected.update(job["id"] for page in pages for job in page)
        fake.add_collection(_jobs_path(pipeline_id), pages)
    gate = ConcurrencyGate(3)

    async with fake.client() as client:
        jobs = await find_jobs(CREDENTIALS, 197, [1, 2, 3, 4, 5], client=client, gate=gate, settings=make_settings())

    assert {job.id for job in jobs} == expected
    assert len(fake.requests) == 20
    assert fake.peak_in_flight <= 3
    assert gate.peak <= 3
