"""
resume.py

Responsibility: persist how far the global build phases got.

The marker lives next to the STARBUILD as two whitespace separated tokens,
the phase name and a package index. It is rewritten atomically (temp file
then rename) before each global phase and removed once all of them pass.
"""

from __future__ import annotations

import enum
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

RESUME_FILENAME = ".starpack_resume"


class Phase(enum.IntEnum):
    PREPARE = 0
    COMPILE = 1
    VERIFY = 2
    ASSEMBLE = 3

    @property
    def token(self) -> str:
        return self.name.lower()

    @classmethod
    def from_token(cls, token: str) -> Phase:
        try:
            return cls[token.upper()]
        except KeyError:
            raise ValueError(f"Unknown phase: {token!r}") from None


@dataclass(frozen=True)
class ResumeState:
    phase: Phase
    package_index: int = 0

    def serialize(self) -> str:
        return f"{self.phase.token}\n{self.package_index}\n"

    @classmethod
    def deserialize(cls, text: str) -> ResumeState:
        tokens = text.split()
        if len(tokens) != 2:
            raise ValueError(f"Expected 2 tokens, got {len(tokens)}")
        return cls(phase=Phase.from_token(tokens[0]), package_index=int(tokens[1]))


class ResumeStore:
    """Reads and writes the resume marker for one STARBUILD directory."""

    def __init__(self, starbuild_dir: str | Path) -> None:
        self.path = Path(starbuild_dir) / RESUME_FILENAME

    def load(self) -> ResumeState | None:
        """
        Return the saved state, or None for a fresh run.
        A marker that cannot be understood is ignored with a warning.
        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            state = ResumeState.deserialize(text)
        except ValueError as e:
            logger.warning("Ignoring unreadable resume marker %s: %s", self.path, e)
            return None
        logger.info("Resuming build at %s()", state.phase.token)
        return state

    def save(self, state: ResumeState) -> None:
        fd, tmp = tempfile.mkstemp(prefix=RESUME_FILENAME + ".", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(state.serialize())
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
