from __future__ import annotations

from pathlib import Path

import pytest

from glc.settings import get_settings


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults_without_env_file(tmp_path, monkeypatch):
    for key in ("GLC_PER_PAGE", "GLC_JOB_CONCURRENCY", "GLC_RUNNER_JOB_CONCURRENCY", "GLC_PROJECT", "GLC_HTTP2"):
        monkeypatch.delenv(key, raising=False)

    settings = get_settings(str(tmp_path / "missing.env"))

    assert settings.harvest.per_page == 100
    assert settings.harvest.job_concurrency == 30
    assert settings.harvest.runner_job_concurrency == 10
    assert settings.default_project == "197"
    assert settings.http.http2 is False


def test_env_file_and_environment(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("GLC_PER_PAGE=20\nGLC_CREDENTIALS_PATH=/tmp/glc-creds\n", encoding="utf-8")
    monkeypatch.delenv("GLC_PER_PAGE", raising=False)
    monkeypatch.delenv("GLC_CREDENTIALS_PATH", raising=False)
    monkeypatch.setenv("GLC_JOB_CONCURRENCY", "4")

    settings = get_settings(str(env_file))

    assert settings.harvest.per_page == 20
    assert settings.harvest.job_concurrency == 4
    assert settings.credentials_path == Path("/tmp/glc-creds")


def test_rejects_zero_concurrency(monkeypatch, tmp_path):
    monkeypatch.setenv("GLC_RUNNER_JOB_CONCURRENCY", "0")

    with pytest.raises(ValueError, match="must be >= 1"):
        get_settings(str(tmp_path / "missing.env"))
