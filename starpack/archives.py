"""
archives.py

Responsibility: recognise downloaded sources as archives and unpack them.

Recognition is by content (tar, optionally gzip/bzip2/xz compressed, and
zip), never by file extension. Extraction restores directories, symlinks
and regular files with their recorded permission bits. Members that
would land outside the destination directory are refused.
"""

from __future__ import annotations

import logging
import os
import stat
import tarfile
import zipfile
from pathlib import Path

from starpack.errors import SourceFetchError

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIXES: tuple[str, ...] = (".tar.xz", ".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".zip")


class ExtractError(SourceFetchError):
    pass


def strip_archive_suffix(filename: str) -> str | None:
    """Return `filename` without its known archive suffix, or None if it has none."""
    for suffix in ARCHIVE_SUFFIXES:
        if len(filename) > len(suffix) and filename.endswith(suffix):
            return filename[: -len(suffix)]
    return None


def is_archive(path: str | Path) -> bool:
    p = Path(path)
    if not p.is_file():
        return False
    try:
        return tarfile.is_tarfile(p) or zipfile.is_zipfile(p)
    except OSError:
        return False


def _already_extracted(archive_path: Path, dest_dir: Path) -> bool:
    base = strip_archive_suffix(archive_path.name) or archive_path.name
    target = dest_dir / base
    return target.is_dir() and any(target.iterdir())


def _extract_tar(archive_path: Path, dest_dir: Path) -> None:
    with tarfile.open(archive_path) as tar:
        tar.extractall(dest_dir, filter="tar")


def _extract_zip(archive_path: Path, dest_dir: Path) -> None:
    root = dest_dir.resolve()
    with zipfile.ZipFile(archive_path) as zf:
        for info in zf.infolist():
            out = dest_dir / info.filename
            if not (out.parent.resolve() / out.name).is_relative_to(root):
                raise ExtractError(f"Refusing to extract {info.filename!r} outside {dest_dir}")
            mode = info.external_attr >> 16
            out.parent.mkdir(parents=True, exist_ok=True)
            if info.is_dir():
                out.mkdir(parents=True, exist_ok=True)
            elif stat.S_ISLNK(mode):
                target = zf.read(info).decode("utf-8")
                if out.is_symlink() or out.exists():
                    out.unlink()
                os.symlink(target, out)
                continue
            else:
                with zf.open(info) as src, out.open("wb") as dst:
                    while chunk := src.read(64 * 1024):
                        dst.write(chunk)
            perms = stat.S_IMODE(mode)
            if perms:
                out.chmod(perms)


def extract_archive(archive_path: str | Path, dest_dir: str | Path) -> bool:
    """
    Unpack `archive_path` into `dest_dir`.

    Returns False when nothing was done: the file is not an archive, or its
    expected output directory already exists and is non-empty.
    """
    archive = Path(archive_path)
    dest = Path(dest_dir)
    if not is_archive(archive):
        logger.info("Not an archive, skipping extraction: %s", archive)
        return False
    if _already_extracted(archive, dest):
        logger.info("Archive already extracted, skipping: %s", archive)
        return False

    logger.info("Extracting archive: %s", archive)
    try:
        if zipfile.is_zipfile(archive):
            _extract_zip(archive, dest)
        else:
            _extract_tar(archive, dest)
    except (tarfile.TarError, zipfile.BadZipFile, OSError, UnicodeDecodeError) as e:
        raise ExtractError(f"Failed to extract {archive}: {e}") from e
    logger.info("Extracted %s into %s", archive, dest)
    return True
