"""
assembler.py

Responsibility: produce one `.starpack` per package declared in a recipe.

For each package, in declaration order:
1) Create `packages/<name>/files` and run its assemble script there.
2) Strip binaries / drop static archives (see `postprocess.py`).
3) Copy `.hook` files from the STARBUILD directory into the staged tree.
4) Merge global and per-package dependencies, build metadata, and hand the
   tree to the packager.

Any failure aborts the whole build; there is no partial success across packages.
"""

from __future__ import annotations

import logging
import re
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from starpack.packager import PackageMetadata, package_filename, package_starpack
from starpack.postprocess import post_process
from starpack.scripts import ScriptEnvironment, ScriptRunner
from starpack.starbuild_parser import RecipeModel

logger = logging.getLogger(__name__)

STAGING_ROOT = "packages"
HOOKS_DIR = Path("hooks")
UNIVERSAL_HOOKS_DIR = Path("etc") / "starpack.d" / "universal-hooks"


@dataclass(frozen=True)
class HookRoute:
    source: Path
    destination: Path

    @property
    def universal(self) -> bool:
        return UNIVERSAL_HOOKS_DIR.name in self.destination.parts


def hook_pattern(package_name: str, *, single_package: bool) -> re.Pattern[str]:
    """
    `<name>-<phase>.hook`; in a single-package build the `<name>-` prefix is optional.
    The last group is always the prefix-stripped file name.
    """
    prefix = re.escape(package_name) + "-"
    if single_package:
        return re.compile(rf"^({prefix})?(.+\.hook)$", re.IGNORECASE)
    return re.compile(rf"^{prefix}(.+\.hook)$", re.IGNORECASE)


def plan_hooks(recipe_dir: Path, packagedir: Path, package_name: str, *, single_package: bool) -> list[HookRoute]:
    pattern = hook_pattern(package_name, single_package=single_package)
    routes: list[HookRoute] = []
    for entry in sorted(recipe_dir.iterdir()):
        if not entry.is_file():
            continue
        m = pattern.match(entry.name)
        if m is None:
            continue
        if entry.name[0].isdigit():
            dest = packagedir / UNIVERSAL_HOOKS_DIR / entry.name
        else:
            dest = packagedir / HOOKS_DIR / m.group(m.lastindex or 0)
        routes.append(HookRoute(entry, dest))
    return routes


def install_hooks(routes: list[HookRoute]) -> list[HookRoute]:
    installed: list[HookRoute] = []
    for route in routes:
        try:
            route.destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(route.source, route.destination)
        except OSError as e:
            logger.warning("Failed to copy hook %s: %s", route.source.name, e)
            continue
        logger.info("Installed hook %s -> %s", route.source.name, route.destination)
        installed.append(route)
    return installed


def merged_dependencies(recipe: RecipeModel, package_name: str) -> tuple[str, ...]:
    # Global first, then per-package; duplicates are kept.
    return recipe.dependencies + recipe.subpackage_dependencies.get(package_name, ())


def build_metadata(recipe: RecipeModel, index: int) -> PackageMetadata:
    name = recipe.package_names[index]
    return PackageMetadata(
        name=name,
        version=recipe.package_version,
        description=recipe.description_for(index),
        dependencies=merged_dependencies(recipe, name),
        clashes=recipe.clashes,
        gives=recipe.gives,
        optional_dependencies=recipe.optional_dependencies,
    )


Packager = Callable[[Path, str, Path, "tuple[tuple[str, str], ...]"], Path]


class SubpackageAssembler:
    def __init__(
        self,
        recipe: RecipeModel,
        *,
        recipe_dir: str | Path,
        runner: ScriptRunner,
        strip_binaries: bool = True,
        work_dir: str | Path | None = None,
        packager: Packager = package_starpack,
    ) -> None:
        self.recipe = recipe
        self.recipe_dir = Path(recipe_dir)
        self.work_dir = Path(work_dir) if work_dir is not None else self.recipe_dir
        self.runner = runner
        self.strip_binaries = strip_binaries
        self._packager = packager

    @property
    def staging_root(self) -> Path:
        return self.recipe_dir / STAGING_ROOT

    @property
    def single_package(self) -> bool:
        return len(self.recipe.package_names) == 1

    def packagedir(self, package_name: str) -> Path:
        return self.staging_root / package_name / "files"

    def output_path(self, package_name: str) -> Path:
        return self.recipe_dir / package_filename(package_name, self.recipe.package_version)

    def assemble_all(self) -> list[Path]:
        return [self.assemble(i) for i in range(len(self.recipe.package_names))]

    def assemble(self, index: int) -> Path:
        name = self.recipe.package_names[index]
        pkgdir = self.packagedir(name)
        pkgdir.mkdir(parents=True, exist_ok=True)

        logger.info("Assembling package: %s", name)
        phase = f"assemble_{name}" if name in self.recipe.assemble_fns else "assemble"
        env = ScriptEnvironment(
            pkgdir=pkgdir,
            srcdir=self.recipe_dir,
            package_name=name,
            package_version=self.recipe.package_version,
        )
        self.runner.run(
            phase,
            self.recipe.assemble_script_for(name),
            env,
            custom_fns=self.recipe.custom_fns,
            cwd=self.work_dir,
            package_name=name,
        )

        post_process(pkgdir, strip=self.strip_binaries)
        install_hooks(plan_hooks(self.recipe_dir, pkgdir, name, single_package=self.single_package))

        metadata = build_metadata(self.recipe, index)
        return self._packager(pkgdir, metadata.to_yaml(), self.output_path(name), self.recipe.symlink_pairs)
