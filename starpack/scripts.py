"""
scripts.py

Responsibility: run STARBUILD function bodies through bash.

Script text is passed to `bash -c` as a single argument and the package
bindings travel in the child environment, so no shell quoting is ever built
by hand. When privilege simulation is enabled the command is prefixed with
`fakeroot`.
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from starpack.errors import ScriptFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScriptEnvironment:
    """Variables exported to every phase script."""

    pkgdir: Path
    srcdir: Path
    package_name: str
    package_version: str

    def as_env(self) -> dict[str, str]:
        return {
            "pkgdir": str(self.pkgdir),
            "packagedir": str(self.pkgdir),
            "srcdir": str(self.srcdir),
            "package_name": self.package_name,
            "package_version": self.package_version,
        }


def compose_script(body: str, custom_fns: Sequence[str]) -> str:
    """Helper function definitions first, each newline-terminated, then the body."""
    parts = [fn if fn.endswith("\n") else fn + "\n" for fn in custom_fns if fn]
    parts.append(body)
    return "".join(parts)


class ScriptRunner:
    def __init__(self, *, use_fakeroot: bool, shell: str = "bash") -> None:
        self.use_fakeroot = use_fakeroot
        self._shell = shell

    def command(self, script: str) -> list[str]:
        cmd = [self._shell, "-c", script]
        if self.use_fakeroot:
            cmd.insert(0, "fakeroot")
        return cmd

    def run(
        self,
        phase: str,
        body: str,
        env: ScriptEnvironment,
        *,
        custom_fns: Sequence[str] = (),
        cwd: str | Path | None = None,
        package_name: str | None = None,
    ) -> None:
        """
        Run `body` (preceded by `custom_fns`) and wait for it.

        Raises ScriptFailure on a non-zero exit or when the shell cannot be started.
        Nothing is started when both the body and the helpers are empty.
        """
        if not body.strip() and not any(fn.strip() for fn in custom_fns):
            logger.debug("%s(): nothing to run", phase)
            return

        child_env = os.environ.copy()
        child_env.update(env.as_env())
        cmd = self.command(compose_script(body, custom_fns))
        logger.debug("Running %s() via %s", phase, " ".join(cmd[:-1]))
        try:
            completed = subprocess.run(cmd, cwd=str(cwd) if cwd is not None else None, env=child_env, check=False)
        except OSError as e:
            logger.warning("Could not start %s: %s", cmd[0], e)
            raise ScriptFailure(phase, 127, package_name=package_name) from e
        if completed.returncode != 0:
            raise ScriptFailure(phase, completed.returncode, package_name=package_name)
