"""
starpack package

This package implements create-starpack, a recipe-driven package builder.

Key responsibilities are split across modules:
- `starbuild_parser.py`: parse a STARBUILD recipe into a typed `RecipeModel`
- `sources.py`: classify and fetch sources (`downloader.py`, `git_client.py`, `archives.py`)
- `scripts.py`: run phase scripts through bash, optionally under fakeroot
- `resume.py`: persist global phase progress so interrupted builds can resume
- `assembler.py`: per-package assemble, hook routing and metadata
- `packager.py`: metadata.yaml, symlinks and the final tar+zstd archive
- `pipeline.py`: orchestration (parse -> fetch -> phases -> assemble -> clean)
- `cli.py`: CLI entrypoint
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
