from __future__ import annotations

import stat

import pytest

from glc.credentials import Credentials, load_credentials, save_credentials
from glc.errors import CredentialsError


def test_credentials_round_trip(tmp_path):
    path = tmp_path / "nested" / ".creds"
    save_credentials(Credentials(token="tok", url="https://gitlab.example.com/"), path)

    loaded = load_credentials(path)

    assert loaded == Credentials(token="tok", url="https://gitlab.example.com")
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_api_url_and_auth_header():
    credentials = Credentials(token="tok", url="https://gitlab.example.com/")

    assert credentials.api_url("/runners/1") == "https://gitlab.example.com/api/v4/runners/1"
    assert credentials.auth_headers() == {"Authorization": "Bearer tok"}


def test_missing_file_raises(tmp_path):
    with pytest.raises(CredentialsError, match="Failed to open"):
        load_credentials(tmp_path / "absent")


@pytest.mark.parametrize("content", ["token: [unclosed", "url: https://gitlab.example.com\n", "- just\n- a list\n"])
def test_malformed_file_raises(tmp_path, content):
    path = tmp_path / ".creds"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(CredentialsError, match="Failed to parse"):
        load_credentials(path)
