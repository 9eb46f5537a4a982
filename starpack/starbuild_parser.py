"""
starbuild_parser.py

Responsibility: Load and parse a STARBUILD recipe into a deterministic, typed model.

The grammar is deliberately lenient:
- `key = "value"` and `key = ( "a" "b" )` assignments (arrays may span lines
  until the first line containing `)`).
- `name() {` ... `}` function blocks, terminated by the first line that is
  exactly `}` after trimming. There is no nested-brace tracking: a standalone
  `}` closing an inner block ends the function early.
- `symlink: "link:target"` lines.
- Blank lines and `#` comments are ignored outside function blocks.

Anything else is silently ignored. Only an unreadable file (or a recipe that
declares no package) is an error.
"""

from __future__ import annotations

import enum
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from starpack.errors import ParseError

GLOBAL_PHASES: tuple[str, ...] = ("prepare", "compile", "verify")
RESERVED_FUNCTIONS: frozenset[str] = frozenset({*GLOBAL_PHASES, "assemble"})

_QUOTED = re.compile(r'"([^"]*)"')
_FUNCTION_HEADER = re.compile(r"([_A-Za-z]\w*)\s*\(\)\s*\{")
_PACKAGE_NAME_SINGLE = re.compile(r'package_name\s*=\s*"(.*)"')
_PACKAGE_VERSION = re.compile(r'package_version\s*=\s*"(.*)"')
_DESCRIPTION = re.compile(r'description\s*=\s*"(.*)"')
_PACKAGE_NAME_ARRAY = re.compile(r"package_name\s*=\s*\(")
_GLOBAL_ARRAY = re.compile(
    r"(dependencies|build_dependencies|clashes|gives|optional_dependencies|sources)\s*=\s*\("
)


@dataclass(frozen=True)
class RecipeModel:
    """Parsed STARBUILD contents. Immutable once produced by the parser."""

    package_names: tuple[str, ...]
    package_descriptions: tuple[str, ...] = ()
    package_version: str = ""
    description: str = ""
    dependencies: tuple[str, ...] = ()
    build_dependencies: tuple[str, ...] = ()
    clashes: tuple[str, ...] = ()
    gives: tuple[str, ...] = ()
    optional_dependencies: tuple[str, ...] = ()
    subpackage_dependencies: dict[str, tuple[str, ...]] = field(default_factory=dict)
    sources: tuple[str, ...] = ()
    prepare_fn: str = ""
    compile_fn: str = ""
    verify_fn: str = ""
    generic_assemble_fn: str = ""
    assemble_fns: dict[str, str] = field(default_factory=dict)
    custom_fns: tuple[str, ...] = ()
    symlink_pairs: tuple[tuple[str, str], ...] = ()

    def phase_script(self, phase: str) -> str:
        return {"prepare": self.prepare_fn, "compile": self.compile_fn, "verify": self.verify_fn}[phase]

    def description_for(self, index: int) -> str:
        if index < len(self.package_descriptions):
            return self.package_descriptions[index]
        return self.description

    def assemble_script_for(self, package_name: str) -> str:
        if package_name in self.assemble_fns:
            return self.assemble_fns[package_name]
        return self.generic_assemble_fn


class _Mode(enum.Enum):
    IDLE = "idle"
    ARRAY = "array"
    CUSTOM = "custom"
    PHASE = "phase"
    ASSEMBLE = "assemble"


def extract_quoted_strings(text: str) -> list[str]:
    """
    Return every `"..."` segment of `text`, without the quotes.
    No escape handling: an embedded quote always ends a segment.
    """
    return _QUOTED.findall(text)


def parse_symlink(line: str) -> tuple[str, str] | None:
    """
    Parse a trimmed `symlink: "link:target"` line.
    Returns None for a missing colon or an empty side.
    """
    pair = line[len("symlink:") :].strip()
    if len(pair) >= 2 and pair.startswith('"') and pair.endswith('"'):
        pair = pair[1:-1]
    link, sep, target = pair.partition(":")
    link, target = link.strip(), target.strip()
    if not sep or not link or not target:
        return None
    return link, target


class _RecipeBuilder:
    """Mutable accumulator driven line by line; frozen into a RecipeModel at the end."""

    def __init__(self) -> None:
        self.mode = _Mode.IDLE
        self.package_names: list[str] = []
        self.package_descriptions: list[str] = []
        self.package_version = ""
        self.description = ""
        self.arrays: dict[str, list[str]] = {
            "dependencies": [],
            "build_dependencies": [],
            "clashes": [],
            "gives": [],
            "optional_dependencies": [],
            "sources": [],
        }
        self.subpackage_dependencies: dict[str, list[str]] = {}
        self.phase_bodies: dict[str, list[str]] = {phase: [] for phase in GLOBAL_PHASES}
        self.generic_assemble = ""
        self.assemble_fns: dict[str, str] = {}
        self.custom_fns: list[str] = []
        self.symlink_pairs: list[tuple[str, str]] = []

        # Pending capture state.
        self._array_target: list[str] = []
        self._array_buffer = ""
        self._phase = ""
        self._assemble_key: str | None = None
        self._body: list[str] = []

    # -- captures ---------------------------------------------------------

    def _open_array(self, target: list[str], rest: str) -> None:
        self._array_target = target
        self._array_buffer = rest
        self.mode = _Mode.ARRAY
        self._maybe_close_array()

    def _maybe_close_array(self) -> None:
        end = self._array_buffer.find(")")
        if end == -1:
            return
        self._close_array(self._array_buffer[:end])

    def _close_array(self, text: str) -> None:
        self._array_target.extend(extract_quoted_strings(text))
        self._array_buffer = ""
        self.mode = _Mode.IDLE

    def _open_body(self, mode: _Mode, *, phase: str = "", assemble_key: str | None = None) -> None:
        self.mode = mode
        self._phase = phase
        self._assemble_key = assemble_key
        self._body = []

    # -- line dispatch ----------------------------------------------------

    def feed(self, line: str) -> None:
        trimmed = line.strip()

        if self.mode is _Mode.ARRAY:
            self._array_buffer += " " + trimmed
            self._maybe_close_array()
            return

        if self.mode is _Mode.CUSTOM:
            self._body.append(line + "\n")
            if trimmed == "}":
                self.custom_fns.append("".join(self._body))
                self.mode = _Mode.IDLE
            return

        if self.mode is _Mode.PHASE:
            if trimmed == "}":
                self.mode = _Mode.IDLE
            else:
                self.phase_bodies[self._phase].append(line + "\n")
            return

        if self.mode is _Mode.ASSEMBLE:
            if trimmed == "}":
                body = "".join(self._body)
                if self._assemble_key is None:
                    self.generic_assemble = body
                else:
                    self.assemble_fns[self._assemble_key] = body
                self.mode = _Mode.IDLE
            else:
                self._body.append(line + "\n")
            return

        if not trimmed or trimmed.startswith("#"):
            return
        self._feed_top_level(line, trimmed)

    def _feed_top_level(self, line: str, trimmed: str) -> None:
        header = _FUNCTION_HEADER.fullmatch(trimmed)
        if header is not None:
            name = header.group(1)
            if name not in RESERVED_FUNCTIONS and not name.startswith("assemble_"):
                self._open_body(_Mode.CUSTOM)
                self._body.append(line + "\n")
                return

        if _PACKAGE_NAME_ARRAY.match(trimmed):
            self._open_array(self.package_names, trimmed[trimmed.index("(") + 1 :])
            return
        m = _PACKAGE_NAME_SINGLE.fullmatch(trimmed)
        if m is not None:
            self.package_names.append(m.group(1))
            return

        if trimmed.startswith("package_descriptions"):
            if "(" in trimmed:
                self._open_array(self.package_descriptions, trimmed[trimmed.index("(") + 1 :])
            return

        if trimmed.startswith("dependencies_"):
            left, eq, _right = trimmed.partition("=")
            if eq and "(" in trimmed:
                subpackage = left.strip()[len("dependencies_") :]
                target = self.subpackage_dependencies.setdefault(subpackage, [])
                self._open_array(target, trimmed[trimmed.index("(") + 1 :])
            return

        m = _PACKAGE_VERSION.fullmatch(trimmed)
        if m is not None:
            self.package_version = m.group(1)
            return
        m = _DESCRIPTION.fullmatch(trimmed)
        if m is not None:
            self.description = m.group(1)
            return

        m = _GLOBAL_ARRAY.match(trimmed)
        if m is not None:
            self._open_array(self.arrays[m.group(1)], trimmed[m.end() :])
            return

        if trimmed.startswith("symlink:"):
            pair = parse_symlink(trimmed)
            if pair is not None:
                self.symlink_pairs.append(pair)
            return

        if "{" in trimmed:
            for phase in GLOBAL_PHASES:
                if trimmed.startswith(f"{phase}()"):
                    self._open_body(_Mode.PHASE, phase=phase)
                    return
            if trimmed.startswith("assemble()"):
                self._open_body(_Mode.ASSEMBLE)
                return
            if trimmed.startswith("assemble_"):
                end = trimmed.find("()", len("assemble_"))
                if end != -1:
                    self._open_body(_Mode.ASSEMBLE, assemble_key=trimmed[len("assemble_") : end])
                    return

    def finish(self) -> RecipeModel:
        # An array left open at end of input keeps what was collected.
        # Unterminated assemble and helper blocks are dropped.
        if self.mode is _Mode.ARRAY:
            self._close_array(self._array_buffer)

        return RecipeModel(
            package_names=tuple(self.package_names),
            package_descriptions=tuple(self.package_descriptions),
            package_version=self.package_version,
            description=self.description,
            dependencies=tuple(self.arrays["dependencies"]),
            build_dependencies=tuple(self.arrays["build_dependencies"]),
            clashes=tuple(self.arrays["clashes"]),
            gives=tuple(self.arrays["gives"]),
            optional_dependencies=tuple(self.arrays["optional_dependencies"]),
            subpackage_dependencies={k: tuple(v) for k, v in self.subpackage_dependencies.items()},
            sources=tuple(self.arrays["sources"]),
            prepare_fn="".join(self.phase_bodies["prepare"]),
            compile_fn="".join(self.phase_bodies["compile"]),
            verify_fn="".join(self.phase_bodies["verify"]),
            generic_assemble_fn=self.generic_assemble,
            assemble_fns=dict(self.assemble_fns),
            custom_fns=tuple(self.custom_fns),
            symlink_pairs=tuple(self.symlink_pairs),
        )


def parse_starbuild_lines(lines: Iterable[str], *, source: str = "<string>") -> RecipeModel:
    builder = _RecipeBuilder()
    for line in lines:
        builder.feed(line.rstrip("\r\n"))
    recipe = builder.finish()
    if not recipe.package_names:
        raise ParseError(f"No package_name defined in STARBUILD: {source}")
    return recipe


def parse_starbuild_text(text: str, *, source: str = "<string>") -> RecipeModel:
    return parse_starbuild_lines(text.splitlines(), source=source)


def parse_starbuild(starbuild_path: str | Path) -> RecipeModel:
    """
    Parse a STARBUILD file into a `RecipeModel`.

    Raises ParseError if the file cannot be read or declares no package.
    """
    path = Path(starbuild_path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(f"Error opening STARBUILD file: {path} ({e})") from e
    return parse_starbuild_text(text, source=str(path))
