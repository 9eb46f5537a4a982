"""Tests for starpack/downloader.py -- HTTP downloads via requests."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from starpack.downloader import USER_AGENT, DownloadError, Downloader


def _response(status: int = 200, chunks=(b"abc", b"", b"def"), length: str | None = "6"):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = {} if length is None else {"Content-Length": length}
    resp.iter_content.return_value = iter(chunks)
    ctx = MagicMock()
    ctx.__enter__.return_value = resp
    ctx.__exit__.return_value = False
    return ctx


@patch("starpack.downloader.requests.get")
def test_download_writes_file_and_reports_progress(mock_get, tmp_path):
    mock_get.return_value = _response()
    calls = []

    out = Downloader().download("https://example.org/a.bin", tmp_path / "a.bin", progress=lambda d, t: calls.append((d, t)))

    assert out.read_bytes() == b"abcdef"
    assert calls == [(3, 6), (6, 6)]
    kwargs = mock_get.call_args.kwargs
    assert kwargs["stream"] is True
    assert kwargs["allow_redirects"] is True
    assert kwargs["headers"]["User-Agent"] == USER_AGENT


@patch("starpack.downloader.requests.get")
def test_unknown_length(mock_get, tmp_path):
    mock_get.return_value = _response(length=None)
    calls = []
    Downloader().download("https://example.org/a.bin", tmp_path / "a.bin", progress=lambda d, t: calls.append(t))
    assert calls == [None, None]


@patch("starpack.downloader.requests.get")
def test_http_error_status(mock_get, tmp_path):
    mock_get.return_value = _response(status=404)
    with pytest.raises(DownloadError, match="HTTP 404"):
        Downloader().download("https://example.org/missing", tmp_path / "missing")
    assert not (tmp_path / "missing").exists()


@patch("starpack.downloader.requests.get")
def test_partial_file_removed_on_transport_error(mock_get, tmp_path):
    def broken():
        yield b"partial"
        raise requests.ConnectionError("reset by peer")

    mock_get.return_value = _response(chunks=broken())

    with pytest.raises(DownloadError, match="reset by peer"):
        Downloader().download("https://example.org/a.bin", tmp_path / "a.bin")
    assert not (tmp_path / "a.bin").exists()
