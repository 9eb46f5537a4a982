"""
postprocess.py

Responsibility: tidy a staged package tree after its assemble step.

- Strip symbols from binaries with `strip` when it is available.
- Remove libtool archives (`*.la`) and static libraries (`*.a`).

Nothing here is fatal: problems are logged as warnings and the build goes on.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

STRIP_ARGS: tuple[str, ...] = ("--strip-unneeded", "--strip-debug")
REMOVED_SUFFIXES: tuple[str, ...] = (".la", ".a")


def _iter_regular_files(root: Path) -> list[Path]:
    """Regular (non-symlink) files under root, in deterministic order."""
    files: list[Path] = []
    for dirpath, _dirs, filenames in os.walk(root):
        for name in filenames:
            p = Path(dirpath) / name
            if p.is_file() and not p.is_symlink():
                files.append(p)
    files.sort()
    return files


def strip_binaries(packagedir: Path) -> None:
    strip = shutil.which("strip")
    if strip is None:
        logger.warning("'strip' command not found. Binaries won't be stripped.")
        return

    candidates = [str(p) for p in _iter_regular_files(packagedir) if p.suffix != ".o"]
    if not candidates:
        return
    logger.info("Stripping binaries in %s...", packagedir)
    try:
        result = subprocess.run(
            [strip, *STRIP_ARGS, *candidates],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
    except OSError as e:
        logger.warning("Could not run strip: %s", e)
        return
    # strip also complains about every non-ELF file it is handed.
    if result.returncode != 0:
        logger.warning("Strip command returned non-zero exit code %s; check logs for potential errors.", result.returncode)
    else:
        logger.info("Finished stripping binaries for %s.", packagedir)


def remove_static_archives(packagedir: Path) -> list[Path]:
    removed: list[Path] = []
    for suffix in REMOVED_SUFFIXES:
        found = False
        for p in _iter_regular_files(packagedir):
            if p.suffix != suffix:
                continue
            found = True
            logger.info("Removing %s", p)
            try:
                p.unlink()
            except OSError as e:
                logger.warning("Failed to remove %s file %s: %s", suffix, p, e)
            else:
                removed.append(p)
        if not found:
            logger.info("No %s files found in %s.", suffix, packagedir)
    return removed


def post_process(packagedir: str | Path, *, strip: bool) -> None:
    if not strip:
        logger.info("nostrip flag enabled; skipping binary stripping and .la/.a removal.")
        return
    root = Path(packagedir)
    strip_binaries(root)
    remove_static_archives(root)
