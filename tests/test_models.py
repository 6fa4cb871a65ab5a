"""Tests for job state tracking and shared models."""

from __future__ import annotations

from pathlib import Path

import pytest
from packaging.version import Version

from pkgdocs.models import (
    BuildJob,
    InvalidTransition,
    JobState,
    PackageSpec,
    TierOutcome,
    DocType,
    format_stage_marker,
    parse_stage_markers,
)


def _job(tmp_path: Path) -> BuildJob:
    spec = PackageSpec(name="Example-Pkg", url="https://example.com/repo", version=Version("1.2.0"))
    return BuildJob(spec=spec, build_dir=tmp_path / "build", log_path=tmp_path / "job.log")


def test_package_spec_derives_import_name_and_requirement() -> None:
    spec = PackageSpec(name="Example-Pkg.extra", url="u", version=Version("1.2.0"))
    assert spec.import_name == "example_pkg_extra"
    assert spec.requirement == "Example-Pkg.extra==1.2.0"


def test_job_state_only_moves_forward(tmp_path: Path) -> None:
    job = _job(tmp_path)
    assert job.advance(JobState.BUILDING) is True
    assert job.advance(JobState.INSTALLING) is False
    assert job.state is JobState.BUILDING


def test_terminal_state_is_final(tmp_path: Path) -> None:
    job = _job(tmp_path)
    job.advance(JobState.TIMED_OUT)
    assert job.is_finished
    assert job.advance(JobState.TIMED_OUT) is False
    with pytest.raises(InvalidTransition):
        job.advance(JobState.SUCCEEDED)


def test_observe_output_advances_from_stage_markers(tmp_path: Path) -> None:
    job = _job(tmp_path)
    job.observe_output("pip noise\n" + format_stage_marker(JobState.INSTALLING) + "\n")
    assert job.state is JobState.INSTALLING

    job.observe_output(
        f"{format_stage_marker(JobState.BUILDING)}\n{format_stage_marker(JobState.SELECTING_STRATEGY)}\n"
    )
    assert job.state is JobState.BUILDING


def test_stage_markers_never_finish_a_job(tmp_path: Path) -> None:
    text = "[pkgdocs:stage] succeeded\n[pkgdocs:stage] bogus\n  [pkgdocs:stage] installing  \n"
    assert list(parse_stage_markers(text)) == [JobState.INSTALLING]

    job = _job(tmp_path)
    job.observe_output(text)
    assert job.state is JobState.INSTALLING


def test_tier_outcome_constructors() -> None:
    assert TierOutcome.success(DocType.REAL) == TierOutcome(ok=True, doctype=DocType.REAL)
    fallthrough = TierOutcome.fallthrough("no build script")
    assert not fallthrough.ok
    assert fallthrough.doctype is DocType.NONE
    assert fallthrough.reason == "no build script"
