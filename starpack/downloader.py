"""
downloader.py

Responsibility: Isolate all direct HTTP interaction.

This module must be the only place that:
- Sends HTTP requests for remote sources
- Streams response bodies to disk
- Interprets transport / status errors

Source classification and skip-if-present decisions live in `sources.py`.
"""

from __future__ import annotations

import logging
from pathlib import Path

import requests

from starpack.errors import SourceFetchError
from starpack.progress import ProgressSink, null_progress

logger = logging.getLogger(__name__)

USER_AGENT = "create-starpack"
CHUNK_SIZE = 64 * 1024


class DownloadError(SourceFetchError):
    pass


class Downloader:
    def __init__(self, *, timeout: float = 60.0, user_agent: str = USER_AGENT) -> None:
        self._timeout = timeout
        self._user_agent = user_agent

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self._user_agent}

    def download(self, url: str, dest: str | Path, *, progress: ProgressSink | None = None) -> Path:
        """
        Stream `url` into `dest`, following redirects.

        A partially written file is removed before DownloadError is raised.
        """
        sink = progress or null_progress
        dest_path = Path(dest)
        logger.info("Starting download: %s", url)
        try:
            with requests.get(
                url,
                headers=self._headers(),
                stream=True,
                allow_redirects=True,
                timeout=self._timeout,
            ) as r:
                if r.status_code >= 400:
                    raise DownloadError(f"HTTP {r.status_code} while downloading {url}")
                length = r.headers.get("Content-Length")
                total = int(length) if length and length.isdigit() else None
                done = 0
                with dest_path.open("wb") as out:
                    for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                        if not chunk:
                            continue
                        out.write(chunk)
                        done += len(chunk)
                        sink(done, total)
        except (requests.RequestException, OSError) as e:
            dest_path.unlink(missing_ok=True)
            raise DownloadError(f"Could not download {url}: {e}") from e
        except DownloadError:
            dest_path.unlink(missing_ok=True)
            raise

        logger.info("Download completed: %s", dest_path)
        return dest_path
