"""
cli.py

Responsibility: CLI entrypoint for create-starpack.

    create-starpack [STARBUILD] [--clean] [--nostrip] [--no-fakeroot] [-v]

The STARBUILD path defaults to `./STARBUILD`. Unknown `--flags` are ignored.
Exit status is 0 on success and 1 on any failure, reported as a single line.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Callable
from pathlib import Path

from starpack import __version__
from starpack.errors import StarpackError
from starpack.pipeline import BuildConfig, Pipeline

logger = logging.getLogger(__name__)

DEFAULT_STARBUILD = "./STARBUILD"


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="create-starpack",
        description="Build .starpack packages from a STARBUILD recipe",
        allow_abbrev=False,
    )
    p.add_argument("starbuild_path", nargs="?", default=DEFAULT_STARBUILD, help="Path to the STARBUILD file (default: ./STARBUILD)")
    p.add_argument("--clean", action="store_true", help="Remove downloaded sources and staging trees after success")
    p.add_argument("--nostrip", action="store_true", help="Do not strip binaries or remove .la/.a files")
    p.add_argument("--no-fakeroot", dest="no_fakeroot", action="store_true", help="Run build scripts without fakeroot")
    p.add_argument("-v", "--verbose", action="store_true", help="Log subprocess commands")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
        stream=sys.stderr,
    )


def confirm_root(read_line: Callable[[], str] | None = None) -> bool:
    """
    Ask before building as root. Anything but `y`/`yes` (including EOF) declines.
    """
    sys.stderr.write(
        "Warning: It is generally NOT recommended to run create-starpack as root.\n"
        "You are doing this at your own risk!\n"
        "Do you want to proceed anyway? [y/N] "
    )
    sys.stderr.flush()
    try:
        response = (read_line or sys.stdin.readline)()
    except (EOFError, OSError):
        response = ""
    return response.strip().lower() in ("y", "yes")


def build_config(args: argparse.Namespace, *, euid: int) -> BuildConfig:
    if args.nostrip:
        logger.info("No-strip flag enabled: binaries will not be stripped.")
    if args.no_fakeroot:
        logger.info("No-fakeroot flag enabled: fakeroot will be disabled.")
    return BuildConfig(
        strip_binaries=not args.nostrip,
        use_fakeroot=(euid != 0) and not args.no_fakeroot,
        clean=bool(args.clean),
    )


def build_cmd(args: argparse.Namespace) -> int:
    euid = os.geteuid()
    if euid == 0:
        if not confirm_root():
            print("Aborting at user request.", file=sys.stderr)
            return 1
        logger.warning("Proceeding as root (at your own risk)!")

    config = build_config(args, euid=euid)
    try:
        Pipeline(Path(args.starbuild_path), config).run()
    except (StarpackError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args, unknown = parser.parse_known_args(argv)
    _configure_logging(bool(args.verbose))
    for extra in unknown:
        logger.debug("Ignoring unknown argument: %s", extra)
    return int(build_cmd(args))


if __name__ == "__main__":
    raise SystemExit(main())
