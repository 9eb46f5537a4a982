"""
packager.py

Responsibility: turn a staged package tree into a `.starpack` file.

Steps:
1) Write `metadata.yaml` at the root of the staged tree.
2) Create the recipe's symlinks inside the tree (existing paths are left alone).
3) Stream the tree through `tar | zstd`, rewriting paths so that everything
   lands under `files/` except `metadata.yaml` and the `hooks/` subtree.
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from starpack.errors import PackagingError

logger = logging.getLogger(__name__)

METADATA_FILENAME = "metadata.yaml"
PACKAGE_EXTENSION = ".starpack"

TAR_TRANSFORMS: tuple[str, ...] = (
    r"s|^\./metadata\.yaml$|metadata.yaml|",
    r"s|^\./hooks|hooks|",
    r"s|^\./|files/|",
)
ZSTD_ARGS: tuple[str, ...] = ("--ultra", "--long", "-22", "-T0", "-q", "-c")


@dataclass(frozen=True)
class PackageMetadata:
    """What `metadata.yaml` records for one produced package."""

    name: str
    version: str
    description: str
    dependencies: tuple[str, ...] = ()
    clashes: tuple[str, ...] = ()
    gives: tuple[str, ...] = ()
    optional_dependencies: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "dependencies": list(self.dependencies),
        }
        for key in ("clashes", "gives", "optional_dependencies"):
            values = getattr(self, key)
            if values:
                data[key] = list(values)
        return data

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False, allow_unicode=True)


def package_filename(name: str, version: str) -> str:
    return f"{name}-{version}{PACKAGE_EXTENSION}"


def write_metadata(packagedir: Path, metadata_content: str) -> Path:
    meta_path = packagedir / METADATA_FILENAME
    try:
        meta_path.write_text(metadata_content, encoding="utf-8")
    except OSError as e:
        raise PackagingError(f"Failed to write {METADATA_FILENAME} to {meta_path}: {e}") from e
    logger.info("Wrote %s to %s", METADATA_FILENAME, meta_path)
    return meta_path


def create_symlinks(packagedir: Path, symlink_pairs: Iterable[tuple[str, str]]) -> list[Path]:
    """
    Create each `link -> target` pair inside packagedir. An occupied link path
    is skipped with a warning.
    """
    created: list[Path] = []
    for link, target in symlink_pairs:
        link_path = packagedir / link.lstrip("/")
        if link_path.exists() or link_path.is_symlink():
            logger.warning("Symlink target %s already exists; skipping creation.", link_path)
            continue
        try:
            link_path.parent.mkdir(parents=True, exist_ok=True)
            os.symlink(target, link_path)
        except OSError as e:
            raise PackagingError(f"Failed to create symlink {link_path} -> {target}: {e}") from e
        logger.info("Created symlink: %s -> %s", link_path, target)
        created.append(link_path)
    return created


def tar_command() -> list[str]:
    cmd = ["tar", "--owner=0", "--group=0"]
    cmd.extend(f"--transform={t}" for t in TAR_TRANSFORMS)
    cmd.extend(["-cf", "-", "."])
    return cmd


def archive_tree(packagedir: Path, output_file: Path) -> None:
    """Run `tar ... | zstd ... > output_file` from inside packagedir."""
    tar_cmd = tar_command()
    zstd_cmd = ["zstd", *ZSTD_ARGS]
    logger.debug("Running: %s | %s > %s", " ".join(tar_cmd), " ".join(zstd_cmd), output_file)
    try:
        with output_file.open("wb") as out:
            tar = subprocess.Popen(tar_cmd, cwd=str(packagedir), stdout=subprocess.PIPE)
            assert tar.stdout is not None
            try:
                zstd = subprocess.Popen(zstd_cmd, stdin=tar.stdout, stdout=out)
            finally:
                tar.stdout.close()
            zstd_code = zstd.wait()
            tar_code = tar.wait()
    except OSError as e:
        raise PackagingError(f"Could not run tar|zstd: {e}") from e
    if tar_code != 0 or zstd_code != 0:
        raise PackagingError(f"tar|zstd command failed (tar exit {tar_code}, zstd exit {zstd_code})")


def package_starpack(
    packagedir: str | Path,
    metadata_content: str,
    output_file: str | Path,
    symlink_pairs: Sequence[tuple[str, str]] = (),
) -> Path:
    """
    Write metadata, create symlinks and archive `packagedir` into `output_file`.
    Raises PackagingError on any fatal step.
    """
    pkg_dir = Path(packagedir)
    out = Path(output_file)
    write_metadata(pkg_dir, metadata_content)
    create_symlinks(pkg_dir, symlink_pairs)
    archive_tree(pkg_dir, out)
    logger.info("Successfully created starpack archive: %s", out)
    return out
