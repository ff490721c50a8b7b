#!/usr/bin/env python3
"""glc: reporting CLI for GitLab CI jobs, pipelines and runners."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from pathlib import Path
import re
from typing import Any, Awaitable, Optional, TypeVar

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from glc.credentials import Credentials, load_credentials, save_credentials
from glc.errors import GlcError
from glc.fetcher import client_scope
from glc.formatting import format_bytes, format_seconds, parse_max_age, status_label
from glc.gate import ConcurrencyGate
from glc.jobs import (
    cancel_jobs,
    find_jobs,
    get_artifact,
    get_job_details,
    get_job_trace,
    get_runner_jobs,
    jobs_to_rows,
    tail_lines,
)
from glc.models import JobRecord, PipelineSummary
from glc.pipelines import get_pipelines, get_test_report_summary
from glc.projects import get_projects
from glc.runners import get_runner_details, get_runners, runner_job_counts
from glc.settings import Settings, get_settings

T = TypeVar("T")

console = Console()
cli = typer.Typer(help="gitlab client utility", add_completion=False)

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b[@-_]")


@dataclass
class CLIState:
    project: str
    verbose: bool = False


_state = CLIState(project="197")


def _settings() -> Settings:
    return get_settings()


def _fail(exc: Exception) -> typer.Exit:
    console.print(f"[red]Error:[/] {escape(str(exc))}")
    return typer.Exit(1)


def _credentials() -> Credentials:
    try:
        return load_credentials(_settings().credentials_path)
    except GlcError as exc:
        raise _fail(exc) from exc


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_time=False)],
        force=True,
    )
    # httpx logs every request at INFO; keep it for --verbose only.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _run(awaitable: Awaitable[T]) -> T:
    try:
        return asyncio.run(awaitable)  # type: ignore[arg-type]
    except (GlcError, httpx.HTTPError) as exc:
        raise _fail(exc) from exc


def _max_age_seconds(value: str) -> float:
    try:
        return parse_max_age(value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--max-age") from exc


def _progress(page: int, total: int) -> None:  # noqa: ARG001
    console.print(".", end="", highlight=False)


def _short_sha(sha: str) -> str:
    return sha[:14] if sha else "-"


@cli.callback()
def main(
    project: Optional[str] = typer.Option(None, "--project", "-P", help="The project ID (or group/name path)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """gitlab client utility"""

    _state.project = project or _settings().default_project
    _state.verbose = verbose
    _configure_logging(verbose)


@cli.command("login")
def login(
    url: str = typer.Option(..., "--url", "-u", help="GitLab URL"),
    token: str = typer.Option(..., prompt=True, hide_input=True, help="Personal access token"),
) -> None:
    """Store the GitLab URL and access token for later commands."""

    path = _settings().credentials_path
    try:
        save_credentials(Credentials(token=token, url=url), path)
    except GlcError as exc:
        raise _fail(exc) from exc
    console.print(f"Credentials saved to {path}")


def _print_jobs(jobs: list[JobRecord], *, title: str) -> None:
    table = Table("ID", "Pipeline", "Status", "Reason", "Stage", "Artifacts", "Name", "Time", title=title)
    for job in sorted(jobs, key=lambda j: (j.created_at, j.id)):
        table.add_row(
            str(job.id),
            str(job.pipeline.id),
            status_label(job.status),
            escape(job.failure_reason or ""),
            escape(job.stage),
            format_bytes(job.artifacts_size),
            escape(job.name),
            format_seconds(job.duration),
        )
    console.print(table)


@cli.command("list-jobs")
def list_jobs(
    pipelines: Optional[list[int]] = typer.Option(None, "--pipelines", "-p", help="Pipeline ID(s) to list jobs for."),
    max_age: str = typer.Option("24h", "--max-age", "-m", help='Max history ("1h", "10m", "4d" etc).'),
    status: Optional[str] = typer.Option(None, "--status", "-s", help='Status ("success", "running", "failed", etc).'),
    names: Optional[list[str]] = typer.Option(None, "--name", "-n", help="Only jobs with this name (repeatable)."),
    include_retried: bool = typer.Option(False, "--include-retried", help="Include retried jobs."),
    json_output: bool = typer.Option(False, "--json/--no-json", help="Emit JSON instead of a table."),
) -> None:
    """List jobs from the given (or recently updated) pipelines."""

    age = _max_age_seconds(max_age)
    credentials = _credentials()
    jobs = _run(
        find_jobs(
            credentials,
            _state.project,
            pipelines or [],
            names or None,
            age,
            status,
            include_retried=include_retried,
            settings=_settings(),
            on_page=None if json_output else _progress,
        )
    )
    if json_output:
        console.print_json(data=jobs_to_rows(jobs))
        return
    console.print()
    _print_jobs(jobs, title=f"{len(jobs)} jobs")


@cli.command("job-history")
def job_history(
    name: str = typer.Option(..., "--name", "-n", help="Job name"),
    max_age: str = typer.Option("24h", "--max-age", "-m", help='Max history ("1h", "10m", "4d" etc).'),
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Source (type of pipeline)."),
    ref: Optional[str] = typer.Option(None, "--ref", "-r", help="Reference (branch)."),
    json_output: bool = typer.Option(False, "--json/--no-json", help="Emit JSON instead of a table."),
) -> None:
    """Show historical results for a job (by name)."""

    age = _max_age_seconds(max_age)
    credentials = _credentials()
    settings = _settings()

    async def _history() -> list[JobRecord]:
        gate = ConcurrencyGate(settings.harvest.job_concurrency)
        pipeline_ids: list[int] = []
        if source or ref:
            pipelines = await get_pipelines(
                credentials, _state.project, age, source, ref, gate=gate, settings=settings
            )
            pipeline_ids = [pipeline.id for pipeline in pipelines]
            if not pipeline_ids:
                return []
        return await find_jobs(
            credentials,
            _state.project,
            pipeline_ids,
            [name],
            age,
            gate=gate,
            settings=settings,
            on_page=None if json_output else _progress,
        )

    jobs = _run(_history())
    if json_output:
        console.print_json(data=jobs_to_rows(jobs))
        return
    console.print()
    table = Table(
        "ID", "Pipeline", "Status", "Reason", "Artifacts", "Ref", "SHA", "Source",
        "Created", "Runner", "Elapsed", "Queued",
        title=f"History of {escape(name)}",
    )
    for job in sorted(jobs, key=lambda j: (j.created_at, j.id)):
        table.add_row(
            str(job.id),
            str(job.pipeline.id),
            status_label(job.status),
            escape(job.failure_reason or ""),
            format_bytes(job.artifacts_size),
            escape(job.ref),
            _short_sha(job.pipeline.sha),
            escape(job.pipeline.source),
            job.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            escape(job.runner.description) if job.runner else "unknown",
            format_seconds(job.duration),
            format_seconds(job.queued_duration),
        )
    console.print(table)


@cli.command("list-pipelines")
def list_pipelines(
    max_age: str = typer.Option("24h", "--max-age", "-m", help='Max history ("1h", "10m", "4d" etc).'),
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Source (type of pipeline)."),
    ref: Optional[str] = typer.Option(None, "--ref", "-r", help="Reference (branch)."),
    json_output: bool = typer.Option(False, "--json/--no-json", help="Emit JSON instead of a table."),
) -> None:
    """List pipelines updated within --max-age."""

    age = _max_age_seconds(max_age)
    credentials = _credentials()
    pipelines: list[PipelineSummary] = _run(
        get_pipelines(credentials, _state.project, age, source, ref, settings=_settings())
    )
    if json_output:
        console.print_json(data=[pipeline.model_dump(mode="json") for pipeline in pipelines])
        return
    table = Table("ID", "Status", "Source", "Ref", "SHA", "Updated", title=f"{len(pipelines)} pipelines")
    for pipeline in sorted(pipelines, key=lambda p: p.id):
        updated = pipeline.updated_at.strftime("%Y-%m-%d %H:%M:%S") if pipeline.updated_at else "-"
        table.add_row(
            str(pipeline.id),
            status_label(pipeline.status),
            escape(pipeline.source),
            escape(pipeline.ref),
            _short_sha(pipeline.sha),
            updated,
        )
    console.print(table)


@cli.command("list-runners")
def list_runners(
    max_age: str = typer.Option("24h", "--max-age", "-m", help="Window for the PASS / FAIL / RUN counts."),
) -> None:
    """List runners with recent job outcome counts."""

    age = _max_age_seconds(max_age)
    credentials = _credentials()
    settings = _settings()

    async def _collect() -> list[tuple[Any, Any]]:
        async with client_scope(None, settings) as client:
            runners = await get_runners(credentials, client=client, settings=settings)
            details = await get_runner_details(
                credentials, [runner.id for runner in runners], client=client, settings=settings
            )
            gate = ConcurrencyGate(settings.harvest.runner_job_concurrency)
            jobs = await asyncio.gather(
                *(
                    get_runner_jobs(credentials, detail.id, age, client=client, gate=gate, settings=settings)
                    for detail in details
                )
            )
        return list(zip(details, jobs))

    rows = _run(_collect())
    table = Table(
        "ID", "Version", "Description", "PASS / FAIL /  RUN", "IP", "Tags", "Online", "Active", "Shared", "Type",
        title="Runners",
    )
    for detail, jobs in rows:
        online = "[green]true[/]" if detail.online else "[bright_red]false[/]"
        table.add_row(
            str(detail.id),
            escape(detail.version or "-"),
            escape(detail.description),
            runner_job_counts(jobs).render(),
            escape(detail.ip_address or "-"),
            escape(", ".join(detail.tag_list)),
            online,
            str(detail.active).lower(),
            str(detail.is_shared).lower(),
            escape(detail.runner_type),
        )
    console.print(table)


@cli.command("list-projects")
def list_projects() -> None:
    """List projects visible to the stored token."""

    credentials = _credentials()
    projects = _run(get_projects(credentials, settings=_settings()))
    table = Table("ID", "Path", "Default branch", "Last activity", title="Projects")
    for project in projects:
        last_activity = project.last_activity_at.strftime("%Y-%m-%d %H:%M") if project.last_activity_at else "-"
        table.add_row(
            str(project.id),
            escape(project.path_with_namespace or project.name),
            escape(project.default_branch or "-"),
            last_activity,
        )
    console.print(table)


def _clean_log(text: str, *, plain: bool, prefix: str | None) -> str:
    if plain:
        text = _ANSI_RE.sub("", text)
    if prefix:
        text = "\n".join(f"{prefix}{line}" for line in text.splitlines())
    return text


def _print_job_status(job: JobRecord) -> None:
    table = Table("Field", "Value", title=f"Job {job.id}")
    table.add_row("ID", str(job.id))
    table.add_row("Status", status_label(job.status))
    table.add_row("Stage", escape(job.stage))
    table.add_row("Name", escape(job.name))
    table.add_row("Artifacts", format_bytes(job.artifacts_size))
    table.add_row("Started at", job.started_at.isoformat())
    table.add_row("Finished at", job.finished_at.isoformat())
    table.add_row("Duration", format_seconds(job.duration))
    console.print(table)


@cli.command("show-job")
def show_job(
    job: Optional[int] = typer.Argument(None, help="The ID of the job to show."),
    pipeline: Optional[int] = typer.Option(None, "--pipeline", "-p", help="Pipeline ID to show jobs for."),
    status: bool = typer.Option(True, "--status/--no-status", help="Status summary after output."),
    tail: Optional[int] = typer.Option(None, "--tail", "-t", min=0, help="Number of log lines to show."),
    prefix: bool = typer.Option(False, "--prefix", help="Show job prefix for every line of log."),
    plain: bool = typer.Option(False, "--plain", help="Remove all ANSI control characters."),
) -> None:
    """Print a job's log (or every job log of a pipeline)."""

    if (job is None) == (pipeline is None):
        raise typer.BadParameter("Must specify either job or pipeline.", param_hint="JOB/--pipeline")
    credentials = _credentials()
    settings = _settings()

    async def _load() -> list[tuple[JobRecord, str]]:
        async with client_scope(None, settings) as client:
            if job is not None:
                details, trace = await asyncio.gather(
                    get_job_details(credentials, _state.project, job, client=client, settings=settings),
                    get_job_trace(credentials, _state.project, job, client=client, settings=settings),
                )
                return [(details, trace)]
            jobs = await find_jobs(credentials, _state.project, [pipeline], client=client, settings=settings)
            jobs = sorted(jobs, key=lambda j: j.id)
            traces = await asyncio.gather(
                *(get_job_trace(credentials, _state.project, j.id, client=client, settings=settings) for j in jobs)
            )
            return list(zip(jobs, traces))

    for details, trace in _run(_load()):
        label = f"[{details.name}] " if prefix or pipeline is not None else None
        text = _clean_log(tail_lines(trace, tail), plain=plain, prefix=label)
        heading = "Job Logs" if tail is None else f"Job Logs (last {tail} lines)"
        console.print(f"\n{heading}:", highlight=False)
        console.out(text, highlight=False)
        if status and pipeline is None:
            _print_job_status(details)


@cli.command("get-artifact")
def get_artifact_cmd(
    job: int = typer.Option(..., "--job", "-j", help="Job ID to download from."),
    name: str = typer.Option(..., "--name", "-n", help="Artifact name (path inside the archive)."),
    out_dir: Path = typer.Option(Path("."), "--out-dir", "-o", help="Directory to extract into."),
) -> None:
    """Download one file from a job's artifact archive."""

    credentials = _credentials()
    extracted = _run(get_artifact(credentials, _state.project, job, name, dest_dir=out_dir, settings=_settings()))
    console.print(f"Extracted {extracted.size} bytes to {extracted.path}")


@cli.command("cancel-job")
def cancel_job(
    jobs: Optional[list[int]] = typer.Option(None, "--job", "-j", help="Job ID(s) to cancel."),
    pipeline: Optional[int] = typer.Option(None, "--pipeline", "-p", help="Cancel jobs of this pipeline."),
    names: Optional[list[str]] = typer.Option(None, "--name", "-n", help="With --pipeline, only these job names."),
) -> None:
    """Cancel jobs by id, or by pipeline (optionally filtered by name)."""

    if not jobs and pipeline is None:
        raise typer.BadParameter("Provide --job or --pipeline.", param_hint="--job/--pipeline")
    credentials = _credentials()
    outcomes = _run(
        cancel_jobs(credentials, _state.project, jobs or None, pipeline, names or None, settings=_settings())
    )
    console.print(f"Cancelled {len(outcomes)} jobs")
    for outcome in outcomes:
        console.print(f"Job {outcome.job_id} ret: {escape(outcome.body)}", highlight=False)


@cli.command("test-report")
def test_report(
    pipeline: int = typer.Option(..., "--pipeline", "-p", help="Pipeline ID."),
    json_output: bool = typer.Option(False, "--json/--no-json", help="Emit JSON instead of tables."),
) -> None:
    """Summarize a pipeline's test report."""

    credentials = _credentials()
    report = _run(get_test_report_summary(credentials, _state.project, pipeline, settings=_settings()))
    if json_output:
        console.print_json(data=report.model_dump(mode="json"))
        return
    total = report.total
    summary = Table("Total", "Success", "Failed", "Skipped", "Error", "Time", title=f"Pipeline {pipeline} tests")
    summary.add_row(
        str(total.count),
        str(total.success),
        str(total.failed),
        str(total.skipped),
        str(total.error),
        format_seconds(total.time),
    )
    console.print(summary)
    suites = Table("Suite", "Total", "Success", "Failed", "Skipped", "Error", "Time", title="Suites")
    for suite in report.test_suites:
        suites.add_row(
            escape(suite.name),
            str(suite.total_count),
            str(suite.success_count),
            str(suite.failed_count),
            str(suite.skipped_count),
            str(suite.error_count),
            format_seconds(suite.total_time),
        )
    console.print(suites)


if __name__ == "__main__":
    cli()
