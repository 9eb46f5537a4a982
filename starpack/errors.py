"""
errors.py

Responsibility: the error taxonomy shared by every stage of a build.

Every fatal failure derives from `StarpackError` so the CLI can report it
as a single line and exit non-zero. Post-processing problems are not part
of this hierarchy: they are logged as warnings and never raised.
"""

from __future__ import annotations


class StarpackError(RuntimeError):
    pass


class ParseError(StarpackError):
    """The STARBUILD could not be read, or declares no package."""


class SourceFetchError(StarpackError):
    """A declared source could not be retrieved or unpacked."""


class InvalidSourceSyntax(SourceFetchError):
    """A `name::url` source whose right side is not a URL."""


class MissingLocalSource(SourceFetchError):
    """A relative-path source that does not exist next to the STARBUILD."""


class ScriptFailure(StarpackError):
    """A build phase script exited non-zero."""

    def __init__(self, phase: str, exit_code: int, *, package_name: str | None = None) -> None:
        self.phase = phase
        self.exit_code = exit_code
        self.package_name = package_name
        where = f"{phase}()" if package_name is None else f"{phase}() for package {package_name}"
        super().__init__(f"{where} failed with exit code {exit_code}")


class PackagingError(StarpackError):
    """Writing metadata, creating symlinks or archiving a package failed."""
