"""
sources.py

Responsibility: turn the STARBUILD `sources` list into files in the working directory.

Descriptor forms, tested in order:
- `git+<url>[#fragment|?query]`  cloned into a directory named after the repo
- `<name>::<url>`                 downloaded under a custom file name
- `<scheme>://...`                downloaded under the URL's last path segment
- anything else                   a path relative to the STARBUILD directory

Every fetched file that sniffs as an archive is unpacked in place unless the
descriptor contains `NOEXTRACT`. The returned names are what `--clean`
removes afterwards.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from starpack import archives, git_client
from starpack.downloader import Downloader
from starpack.errors import InvalidSourceSyntax, MissingLocalSource, SourceFetchError
from starpack.progress import ProgressSink, TqdmProgress

logger = logging.getLogger(__name__)

NOEXTRACT_MARKER = "NOEXTRACT"
FALLBACK_DOWNLOAD_NAME = "source.tar"


@dataclass(frozen=True)
class SourceSpec:
    """A classified source descriptor."""

    kind: str  # "git", "url" or "local"
    descriptor: str
    location: str
    local_name: str

    @property
    def extract(self) -> bool:
        return NOEXTRACT_MARKER not in self.descriptor


def git_checkout_name(url: str) -> str:
    name = url.rstrip("/").rsplit("/", 1)[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    return name


def classify_source(descriptor: str) -> SourceSpec:
    """
    Classify one descriptor. Raises InvalidSourceSyntax for `name::` forms
    whose right side is not a URL.
    """
    if descriptor.startswith("git+"):
        url = descriptor[len("git+") :]
        for sep in ("#", "?"):
            url = url.split(sep, 1)[0]
        return SourceSpec("git", descriptor, url, git_checkout_name(url))

    sep = descriptor.find("::")
    scheme = descriptor.find("://")
    if sep > 0 and (scheme == -1 or sep < scheme):
        name, url = descriptor[:sep], descriptor[sep + 2 :]
        if "://" not in url:
            raise InvalidSourceSyntax(f"Invalid custom URL syntax: {descriptor}")
        return SourceSpec("url", descriptor, url, name)

    if scheme != -1:
        name = descriptor.rsplit("/", 1)[-1] or FALLBACK_DOWNLOAD_NAME
        return SourceSpec("url", descriptor, descriptor, name)

    return SourceSpec("local", descriptor, descriptor, Path(descriptor).name)


class SourceResolver:
    def __init__(
        self,
        *,
        base_dir: str | Path,
        work_dir: str | Path | None = None,
        downloader: Downloader | None = None,
        clone: Callable[..., Path] = git_client.clone_repo,
        progress_factory: Callable[[str], ProgressSink] = TqdmProgress,
    ) -> None:
        self._base_dir = Path(base_dir)
        self._work_dir = Path(work_dir) if work_dir is not None else Path.cwd()
        self._downloader = downloader or Downloader()
        self._clone = clone
        self._progress_factory = progress_factory

    def resolve_all(self, descriptors: Iterable[str]) -> list[str]:
        """
        Fetch every descriptor in order and return the top-level names created.
        Stops at the first failure.
        """
        # Classify everything first so bad syntax fails before any transfer.
        specs = [classify_source(d) for d in descriptors]
        artifacts: list[str] = []
        for spec in specs:
            for name in self.resolve(spec):
                if name not in artifacts:
                    artifacts.append(name)
        return artifacts

    def resolve(self, spec: SourceSpec) -> list[str]:
        """
        Fetch one source and return the names it placed in the working
        directory. A local source that already is its own destination is an
        input, not an artifact; only its extracted directory is reported.
        """
        if spec.kind == "git":
            self._fetch_git(spec)
            return [spec.local_name]
        in_place = False
        if spec.kind == "url":
            self._fetch_url(spec)
        else:
            in_place = not self._copy_local(spec)

        extracted = False
        if spec.extract:
            extracted = archives.extract_archive(self._work_dir / spec.local_name, self._work_dir)
        else:
            logger.info("%s flag found; skipping extraction: %s", NOEXTRACT_MARKER, spec.local_name)

        if not in_place:
            return [spec.local_name]
        stem = archives.strip_archive_suffix(spec.local_name)
        return [stem] if extracted and stem is not None else []

    def _fetch_git(self, spec: SourceSpec) -> None:
        target = self._work_dir / spec.local_name
        if git_client.is_nonempty_dir(target):
            logger.info("Directory '%s' already exists; skipping clone...", spec.local_name)
            return
        logger.info("Cloning Git repo: %s => %s", spec.location, spec.local_name)
        sink = self._progress_factory(f"clone {spec.local_name}")
        try:
            self._clone(spec.location, spec.local_name, cwd=self._work_dir, progress=sink)
        finally:
            _close(sink)

    def _fetch_url(self, spec: SourceSpec) -> None:
        target = self._work_dir / spec.local_name
        if target.exists():
            logger.info("File already exists, skipping download: %s", spec.local_name)
            return
        sink = self._progress_factory(spec.local_name)
        try:
            self._downloader.download(spec.location, target, progress=sink)
        finally:
            _close(sink)

    def _copy_local(self, spec: SourceSpec) -> bool:
        """Copy a local source into the working directory; False if it is already there."""
        src = self._base_dir / spec.location
        if not src.exists():
            raise MissingLocalSource(f"Local source file does not exist: {src}")
        dest = self._work_dir / spec.local_name
        if dest.exists() and dest.resolve() == src.resolve():
            logger.info("Local file already present: %s", spec.local_name)
            return False
        try:
            if src.is_dir():
                shutil.copytree(src, dest, symlinks=True, dirs_exist_ok=True)
            else:
                shutil.copy2(src, dest)
        except OSError as e:
            raise SourceFetchError(f"Failed to copy local file {src}: {e}") from e
        logger.info("Copied local file: %s", spec.local_name)
        return True


def _close(sink: ProgressSink) -> None:
    close = getattr(sink, "close", None)
    if close is not None:
        close()


def resolve_sources(
    descriptors: Iterable[str],
    *,
    base_dir: str | Path,
    work_dir: str | Path | None = None,
    downloader: Downloader | None = None,
) -> list[str]:
    return SourceResolver(base_dir=base_dir, work_dir=work_dir, downloader=downloader).resolve_all(descriptors)


def cleanup_build_artifacts(work_dir: str | Path, staging_root: str | Path, artifacts: Iterable[str]) -> None:
    """
    Remove the per-package staging root, every recorded artifact and, for
    archive artifacts, the directory they were extracted into.
    """
    staging = Path(staging_root)
    if staging.exists():
        shutil.rmtree(staging)
        logger.info("Removed directory: %s", staging)

    base = Path(work_dir)
    for name in artifacts:
        path = base / name
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
            logger.info("Removed: %s", path)
        elif path.exists() or path.is_symlink():
            path.unlink()
            logger.info("Removed: %s", path)

        stem = archives.strip_archive_suffix(name)
        if stem is not None:
            extracted = base / stem
            if extracted.is_dir():
                shutil.rmtree(extracted)
                logger.info("Removed extracted dir: %s", extracted)
