"""
progress.py

Responsibility: progress sinks for long-running fetches (downloads, clones).

A sink is any callable `(done, total)`; collaborators call it on their own
stack while they work. The default sink renders a tqdm bar on stderr and
keeps only its own counter.
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from types import TracebackType

from tqdm import tqdm

ProgressSink = Callable[[int, "int | None"], None]


def null_progress(done: int, total: int | None) -> None:
    return None


class TqdmProgress:
    """Lazily opened tqdm bar; `total` may only be known after the first callback."""

    def __init__(self, desc: str, *, unit: str = "B", unit_scale: bool = True) -> None:
        self._desc = desc
        self._unit = unit
        self._unit_scale = unit_scale
        self._bar: tqdm | None = None

    def __call__(self, done: int, total: int | None) -> None:
        if self._bar is None:
            self._bar = tqdm(
                total=total,
                desc=self._desc,
                unit=self._unit,
                unit_scale=self._unit_scale,
                file=sys.stderr,
                leave=True,
            )
        elif total is not None and self._bar.total != total:
            self._bar.total = total
        if done > self._bar.n:
            self._bar.update(done - self._bar.n)

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None

    def __enter__(self) -> TqdmProgress:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
