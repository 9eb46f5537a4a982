"""
pipeline.py

Responsibility: drive a whole build from a STARBUILD path.

High-level flow:
1) Parse the STARBUILD -> `RecipeModel`
2) Fetch sources into the working directory
3) Run prepare() -> compile() -> verify(), skipping phases already completed
   by an interrupted earlier run (see `resume.py`)
4) Assemble and package every declared package
5) (Optional) Remove intermediate artifacts

Concerns stay isolated in their own modules; this one only sequences them.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from starpack.assembler import Packager, SubpackageAssembler
from starpack.packager import package_starpack
from starpack.resume import Phase, ResumeState, ResumeStore
from starpack.scripts import ScriptEnvironment, ScriptRunner
from starpack.sources import SourceResolver, cleanup_build_artifacts
from starpack.starbuild_parser import RecipeModel, parse_starbuild

logger = logging.getLogger(__name__)

GLOBAL_PHASES: tuple[Phase, ...] = (Phase.PREPARE, Phase.COMPILE, Phase.VERIFY)


def default_use_fakeroot() -> bool:
    return os.geteuid() != 0


@dataclass(frozen=True)
class BuildConfig:
    """Options for one build; replaces process-wide toggles."""

    strip_binaries: bool = True
    use_fakeroot: bool = field(default_factory=default_use_fakeroot)
    clean: bool = False
    work_dir: Path | None = None


@dataclass(frozen=True)
class BuildResult:
    packages: list[Path]
    artifacts: list[str]
    skipped_phases: list[Phase]


class Pipeline:
    def __init__(
        self,
        starbuild_path: str | Path,
        config: BuildConfig | None = None,
        *,
        resolver: SourceResolver | None = None,
        runner: ScriptRunner | None = None,
        packager: Packager = package_starpack,
    ) -> None:
        self.starbuild_path = Path(starbuild_path)
        self.config = config or BuildConfig()
        self.recipe_dir = self.starbuild_path.resolve().parent
        self.work_dir = (self.config.work_dir or Path.cwd()).resolve()
        self.resume_store = ResumeStore(self.recipe_dir)
        self.runner = runner or ScriptRunner(use_fakeroot=self.config.use_fakeroot)
        self._resolver = resolver
        self._packager = packager

    def _source_resolver(self) -> SourceResolver:
        if self._resolver is None:
            self._resolver = SourceResolver(base_dir=self.recipe_dir, work_dir=self.work_dir)
        return self._resolver

    def run(self) -> BuildResult:
        recipe = parse_starbuild(self.starbuild_path)
        resume = self.resume_store.load()

        artifacts = self._source_resolver().resolve_all(recipe.sources)
        skipped = self.run_global_phases(recipe, resume)
        self.resume_store.clear()

        assembler = SubpackageAssembler(
            recipe,
            recipe_dir=self.recipe_dir,
            runner=self.runner,
            strip_binaries=self.config.strip_binaries,
            work_dir=self.work_dir,
            packager=self._packager,
        )
        packages = assembler.assemble_all()
        logger.info("All steps complete. Final .starpack archive(s) have been created.")

        if self.config.clean:
            logger.info("Cleaning up intermediate files...")
            cleanup_build_artifacts(self.work_dir, assembler.staging_root, artifacts)

        return BuildResult(packages=packages, artifacts=artifacts, skipped_phases=skipped)

    def run_global_phases(self, recipe: RecipeModel, resume: ResumeState | None) -> list[Phase]:
        """
        Run prepare/compile/verify in order. Phases before the resumed one are
        skipped; the marker is rewritten before each phase that runs.
        """
        start = resume.phase if resume is not None else Phase.PREPARE
        env = ScriptEnvironment(
            pkgdir=self.recipe_dir,
            srcdir=self.recipe_dir,
            package_name=recipe.package_names[0],
            package_version=recipe.package_version,
        )
        skipped: list[Phase] = []
        for phase in GLOBAL_PHASES:
            if phase < start:
                logger.info("Skipping %s() (completed in a previous run)", phase.token)
                skipped.append(phase)
                continue
            self.resume_store.save(ResumeState(phase=phase, package_index=0))
            logger.info("Running %s()...", phase.token)
            self.runner.run(
                phase.token,
                recipe.phase_script(phase.token),
                env,
                custom_fns=recipe.custom_fns,
                cwd=self.work_dir,
            )
        return skipped


def create_package(starbuild_path: str | Path, config: BuildConfig | None = None) -> BuildResult:
    return Pipeline(starbuild_path, config).run()
