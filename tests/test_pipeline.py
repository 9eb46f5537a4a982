"""Tests for starpack/pipeline.py -- phase sequencing, resume and end-to-end builds."""

import io
import shutil
import subprocess
import tarfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml

from starpack.errors import InvalidSourceSyntax, ParseError, ScriptFailure
from starpack.pipeline import BuildConfig, Pipeline
from starpack.resume import RESUME_FILENAME, Phase, ResumeState, ResumeStore
from starpack.scripts import ScriptRunner

needs_tools = pytest.mark.skipif(
    any(shutil.which(tool) is None for tool in ("bash", "tar", "zstd")),
    reason="bash, tar and zstd are required",
)

TWO_PACKAGES = """\
package_name = ( "a" "b" )
package_version = "1.0"
description = "Demo"
dependencies = ( "libc" )
dependencies_b = ( "extra" )

prepare() {
    echo prepare
}

compile() {
    echo compile
}

verify() {
    echo verify
}

assemble() {
    mkdir -p "$pkgdir/usr/share/$package_name"
    echo "$package_name" > "$pkgdir/usr/share/$package_name/name"
}
"""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class RecordingPackager:
    def __init__(self) -> None:
        self.metadata: dict[str, dict] = {}

    def __call__(self, packagedir, metadata_content, output_file, symlink_pairs):
        meta = yaml.safe_load(metadata_content)
        self.metadata[Path(output_file).name] = meta
        Path(output_file).write_bytes(b"")
        return Path(output_file)


def _write_recipe(tmp_path: Path, text: str = TWO_PACKAGES) -> Path:
    path = tmp_path / "STARBUILD"
    path.write_text(text, encoding="utf-8")
    return path


def _pipeline(tmp_path: Path, runner=None, packager=None, **config) -> Pipeline:
    return Pipeline(
        _write_recipe(tmp_path),
        BuildConfig(strip_binaries=False, use_fakeroot=False, work_dir=tmp_path, **config),
        runner=runner or MagicMock(),
        packager=packager or RecordingPackager(),
    )


def _phases(runner: MagicMock) -> list[str]:
    return [c.args[0] for c in runner.run.call_args_list]


# ---------------------------------------------------------------------------
# Tests: phase sequencing
# ---------------------------------------------------------------------------


def test_fresh_run_executes_every_phase(tmp_path):
    runner = MagicMock()
    packager = RecordingPackager()

    result = _pipeline(tmp_path, runner=runner, packager=packager).run()

    assert _phases(runner) == ["prepare", "compile", "verify", "assemble", "assemble"]
    assert result.skipped_phases == []
    assert result.packages == [tmp_path / "a-1.0.starpack", tmp_path / "b-1.0.starpack"]
    assert packager.metadata["a-1.0.starpack"]["dependencies"] == ["libc"]
    assert packager.metadata["b-1.0.starpack"]["dependencies"] == ["libc", "extra"]
    assert not (tmp_path / RESUME_FILENAME).exists()


def test_resume_from_compile_skips_prepare(tmp_path):
    ResumeStore(tmp_path).save(ResumeState(Phase.COMPILE, 0))
    runner = MagicMock()

    result = _pipeline(tmp_path, runner=runner).run()

    assert _phases(runner) == ["compile", "verify", "assemble", "assemble"]
    assert result.skipped_phases == [Phase.PREPARE]
    assert not (tmp_path / RESUME_FILENAME).exists()


def test_resume_at_assemble_skips_all_global_phases(tmp_path):
    ResumeStore(tmp_path).save(ResumeState(Phase.ASSEMBLE, 1))
    runner = MagicMock()

    _pipeline(tmp_path, runner=runner).run()

    # The package index is recorded but every package is assembled again.
    assert _phases(runner) == ["assemble", "assemble"]


def test_failure_leaves_marker_at_failed_phase(tmp_path):
    runner = MagicMock()

    def fail_verify(phase, *args, **kwargs):
        if phase == "verify":
            raise ScriptFailure("verify", 2)

    runner.run.side_effect = fail_verify

    with pytest.raises(ScriptFailure):
        _pipeline(tmp_path, runner=runner).run()

    assert _phases(runner) == ["prepare", "compile", "verify"]
    assert ResumeStore(tmp_path).load() == ResumeState(Phase.VERIFY, 0)
    assert not (tmp_path / "packages").exists()


def test_global_phase_environment(tmp_path):
    runner = MagicMock()
    _pipeline(tmp_path, runner=runner).run()

    env = runner.run.call_args_list[0].args[2]
    assert env.pkgdir == tmp_path.resolve()
    assert env.srcdir == tmp_path.resolve()
    assert env.package_name == "a"
    assert env.package_version == "1.0"


def test_invalid_source_fails_before_any_script(tmp_path):
    recipe = _write_recipe(tmp_path, TWO_PACKAGES + 'sources=( "foo::not-a-url" )\n')
    runner = MagicMock()

    with pytest.raises(InvalidSourceSyntax):
        Pipeline(recipe, BuildConfig(use_fakeroot=False, work_dir=tmp_path), runner=runner).run()
    runner.run.assert_not_called()


def test_missing_recipe(tmp_path):
    with pytest.raises(ParseError):
        Pipeline(tmp_path / "STARBUILD", BuildConfig(use_fakeroot=False, work_dir=tmp_path), runner=MagicMock()).run()


def test_clean_removes_staging_and_artifacts(tmp_path):
    (tmp_path / "patch.diff").write_text("diff")
    work = tmp_path / "work"
    work.mkdir()
    recipe = _write_recipe(tmp_path, TWO_PACKAGES + 'sources=( "patch.diff" )\n')

    Pipeline(
        recipe,
        BuildConfig(strip_binaries=False, use_fakeroot=False, clean=True, work_dir=work),
        runner=MagicMock(),
        packager=RecordingPackager(),
    ).run()

    assert not (tmp_path / "packages").exists()
    assert not (work / "patch.diff").exists()
    assert (tmp_path / "patch.diff").exists()
    assert (tmp_path / "a-1.0.starpack").exists()


def test_clean_keeps_local_sources_when_building_in_recipe_dir(tmp_path):
    (tmp_path / "fix.patch").write_text("diff")
    recipe = _write_recipe(tmp_path, TWO_PACKAGES + 'sources=( "fix.patch" )\n')

    Pipeline(
        recipe,
        BuildConfig(strip_binaries=False, use_fakeroot=False, clean=True, work_dir=tmp_path),
        runner=MagicMock(),
        packager=RecordingPackager(),
    ).run()

    assert (tmp_path / "fix.patch").read_text() == "diff"
    assert (tmp_path / "STARBUILD").exists()
    assert not (tmp_path / "packages").exists()


# ---------------------------------------------------------------------------
# Tests: end to end
# ---------------------------------------------------------------------------


@needs_tools
def test_two_package_build_end_to_end(tmp_path):
    recipe = _write_recipe(tmp_path)
    config = BuildConfig(strip_binaries=False, use_fakeroot=False, work_dir=tmp_path)

    result = Pipeline(recipe, config, runner=ScriptRunner(use_fakeroot=False)).run()

    assert [p.name for p in result.packages] == ["a-1.0.starpack", "b-1.0.starpack"]
    for name, deps in (("a", ["libc"]), ("b", ["libc", "extra"])):
        raw = subprocess.run(
            ["zstd", "-dc", str(tmp_path / f"{name}-1.0.starpack")],
            check=True,
            stdout=subprocess.PIPE,
        ).stdout
        with tarfile.open(fileobj=io.BytesIO(raw)) as tar:
            meta = yaml.safe_load(tar.extractfile("metadata.yaml").read())
            payload = tar.extractfile(f"files/usr/share/{name}/name").read()
        assert meta["name"] == name
        assert meta["dependencies"] == deps
        assert payload == f"{name}\n".encode()
