"""
git_client.py

Responsibility: clone `git+` sources by driving the `git` executable.

Progress is read from `git clone --progress` output (receiving objects and
resolving deltas, weighted half each) and forwarded to a progress sink.
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path

from starpack.errors import SourceFetchError
from starpack.progress import ProgressSink, null_progress

logger = logging.getLogger(__name__)

_PROGRESS = re.compile(r"(Receiving objects|Resolving deltas):\s+(\d+)%")


class GitCloneError(SourceFetchError):
    pass


def is_nonempty_dir(path: Path) -> bool:
    return path.is_dir() and any(path.iterdir())


def clone_progress(line: str) -> int | None:
    """
    Map one line of `git clone --progress` output to an overall 0-100 value.
    Returns None for lines that carry no object counts.
    """
    m = _PROGRESS.search(line)
    if m is None:
        return None
    percent = int(m.group(2))
    if m.group(1) == "Receiving objects":
        return percent // 2
    return 50 + percent // 2


def clone_repo(url: str, dest: str | Path, *, cwd: str | Path | None = None, progress: ProgressSink | None = None) -> Path:
    """
    Clone `url` into `dest`. Skipped when `dest` already exists and is non-empty.
    """
    sink = progress or null_progress
    base = Path(cwd) if cwd is not None else Path.cwd()
    dest_path = base / dest
    if is_nonempty_dir(dest_path):
        logger.info("Directory '%s' already exists; skipping clone...", dest)
        return dest_path

    cmd = ["git", "clone", "--progress", url, str(dest)]
    logger.debug("Running: %s", " ".join(cmd))
    try:
        proc = subprocess.Popen(
            cmd,
            cwd=str(base),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
        )
    except OSError as e:
        raise GitCloneError(f"Could not run git: {e}") from e

    tail: list[str] = []
    assert proc.stderr is not None
    # Text mode turns git's carriage-return progress updates into lines.
    for line in proc.stderr:
        if not line.strip():
            continue
        overall = clone_progress(line)
        if overall is not None:
            sink(overall, 100)
        else:
            tail = (tail + [line.rstrip()])[-10:]
    code = proc.wait()
    if code != 0:
        detail = "\n".join(tail) or "unknown error"
        raise GitCloneError(f"Git clone failed for {url} (exit code {code}):\n{detail}")
    return dest_path
