"""Tests for the bounded-concurrency batch scheduler."""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path
from typing import Dict, List

import pytest
from packaging.version import Version

from pkgdocs.models import BuildJob, JobState, PackageSpec, VersionCatalogEntry
from pkgdocs.scheduler import (
    Scheduler,
    all_versions,
    build_documentations,
    finalize,
    job_paths,
    latest,
    worker_command,
)
from pkgdocs.supervisor import run_with_timeout


class FakeHandle:
    """Stands in for SupervisedProcess; reports running for ``polls`` checks."""

    def __init__(self, polls: int = 2, returncode: int = 0, timed_out: bool = False) -> None:
        self.polls = polls
        self.returncode = returncode
        self.timed_out = timed_out
        self.terminated = False
        self.waited = False

    def running(self) -> bool:
        if self.terminated:
            return False
        if self.polls > 0:
            self.polls -= 1
            return True
        return False

    def wait(self, timeout=None):
        self.waited = True
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self.returncode = -9


class FakeLauncher:
    """Records launches and the number of unfinished jobs at each admission."""

    def __init__(self, outcomes: Dict[str, dict] | None = None, polls: int = 2) -> None:
        self.outcomes = outcomes or {}
        self.polls = polls
        self.jobs: List[BuildJob] = []
        self.handles: List[FakeHandle] = []
        self.commands: List[List[str]] = []
        self.max_active = 0

    def __call__(self, command, *, log, name, timeout, wait_time, on_output, env):
        job = on_output.__self__
        self.jobs.append(job)
        self.commands.append(list(command))
        active = sum(1 for tracked in self.jobs if not tracked.is_finished)
        self.max_active = max(self.max_active, active)
        handle = FakeHandle(self.polls, **self.outcomes.get(name, {}))
        self.handles.append(handle)
        return handle


def _specs(count: int) -> List[PackageSpec]:
    return [
        PackageSpec(name=f"pkg{index}", url=f"https://example.com/pkg{index}", version=Version("1.0"))
        for index in range(count)
    ]


def test_worker_command_is_isolated_interpreter(tmp_path: Path) -> None:
    command = worker_command("example", "https://x/y", Version("1.2"), tmp_path, python="py")
    assert command == ["py", "-I", "-B", "-m", "pkgdocs.worker", "example", "https://x/y", "1.2", str(tmp_path)]


def test_job_paths_are_partitioned_by_version(tmp_path: Path) -> None:
    first = job_paths(tmp_path, "example", Version("1.0"))
    second = job_paths(tmp_path, "example", Version("2.0"))

    assert first == (tmp_path / "build" / "example" / "1.0", tmp_path / "logs" / "example 1.0.log")
    assert set(first).isdisjoint(second)


def test_version_policies() -> None:
    versions = [Version("0.1"), Version("0.2"), Version("1.0")]
    assert latest(versions) == [Version("1.0")]
    assert latest([]) == []
    assert all_versions(versions) == versions


@pytest.mark.parametrize("limit", [1, 2, 3])
def test_scheduler_never_exceeds_concurrency(tmp_path: Path, limit: int) -> None:
    launcher = FakeLauncher(polls=3)
    scheduler = Scheduler(max_concurrency=limit, sleeptime=0.001, launcher=launcher)

    jobs = scheduler.build_all(_specs(7), tmp_path)

    assert launcher.max_active <= limit
    assert [job.spec.name for job in jobs] == [f"pkg{index}" for index in range(7)]
    assert all(job.state is JobState.SUCCEEDED for job in jobs)
    assert all(handle.waited for handle in launcher.handles)


def test_reaping_records_terminal_states(tmp_path: Path) -> None:
    launcher = FakeLauncher(
        outcomes={
            "pkg0 1.0": {"returncode": 0},
            "pkg1 1.0": {"returncode": 3},
            "pkg2 1.0": {"returncode": -9, "timed_out": True},
        }
    )
    scheduler = Scheduler(max_concurrency=2, sleeptime=0.001, launcher=launcher)

    states = [job.state for job in scheduler.build_all(_specs(3), tmp_path)]

    assert states == [JobState.SUCCEEDED, JobState.FAILED, JobState.TIMED_OUT]


def test_jobs_get_their_own_directories(tmp_path: Path) -> None:
    launcher = FakeLauncher(polls=0)
    specs = [
        PackageSpec(name="same", url="u", version=Version("1.0")),
        PackageSpec(name="same", url="u", version=Version("2.0")),
    ]

    jobs = Scheduler(2, 0.001, launcher=launcher).build_all(specs, tmp_path)

    assert jobs[0].build_dir != jobs[1].build_dir
    assert jobs[0].log_path != jobs[1].log_path
    assert all(job.build_dir.is_dir() for job in jobs)
    assert launcher.commands[0][-1] == str(jobs[0].build_dir)


def test_unpreparable_build_directory_fails_only_that_job(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    (tmp_path / "build").mkdir()
    (tmp_path / "build" / "pkg1").write_text("not a directory", encoding="utf-8")
    launcher = FakeLauncher(polls=1)

    with caplog.at_level(logging.ERROR, logger="pkgdocs"):
        jobs = Scheduler(2, 0.001, launcher=launcher).build_all(_specs(3), tmp_path)

    assert [job.state for job in jobs] == [JobState.SUCCEEDED, JobState.FAILED, JobState.SUCCEEDED]
    assert jobs[1].handle is None
    assert [job.spec.name for job in launcher.jobs] == ["pkg0", "pkg2"]
    assert "Cannot prepare" in caplog.text


def test_cancel_event_stops_admission_and_kills_running_workers(tmp_path: Path) -> None:
    cancel = threading.Event()
    launcher = FakeLauncher(polls=10_000)

    def cancelling_launcher(command, **kwargs):
        handle = launcher(command, **kwargs)
        if len(launcher.jobs) == 2:
            cancel.set()
        return handle

    scheduler = Scheduler(2, 0.001, launcher=cancelling_launcher, cancel_event=cancel)
    jobs = scheduler.build_all(_specs(5), tmp_path)

    assert len(jobs) == 2
    assert all(handle.terminated and handle.waited for handle in launcher.handles)
    assert all(job.state is JobState.FAILED for job in jobs)


def test_errors_reap_in_flight_workers_before_propagating(tmp_path: Path) -> None:
    launcher = FakeLauncher(polls=10_000)

    def failing_launcher(command, **kwargs):
        if len(launcher.jobs) == 2:
            raise OSError("cannot spawn")
        return launcher(command, **kwargs)

    scheduler = Scheduler(3, 0.001, launcher=failing_launcher)
    with pytest.raises(OSError):
        scheduler.build_all(_specs(4), tmp_path)

    assert len(launcher.handles) == 2
    assert all(handle.terminated and handle.waited for handle in launcher.handles)
    assert all(job.is_finished for job in launcher.jobs)


def test_finalize_without_handle_fails_job(tmp_path: Path) -> None:
    job = BuildJob(spec=_specs(1)[0], build_dir=tmp_path, log_path=tmp_path / "log")
    assert finalize(job) is JobState.FAILED


def test_build_documentations_applies_version_policy(tmp_path: Path) -> None:
    catalog = [
        VersionCatalogEntry("alpha", "https://a", (Version("1.0"), Version("0.5"))),
        VersionCatalogEntry("beta", "https://b", (Version("2.0"),)),
    ]

    launcher = FakeLauncher(polls=0)
    jobs = build_documentations(catalog, processes=2, sleeptime=0.001, basepath=tmp_path, launcher=launcher)
    assert [(job.spec.name, str(job.spec.version)) for job in jobs] == [("alpha", "1.0"), ("beta", "2.0")]
    assert (tmp_path / "build").is_dir()
    assert (tmp_path / "logs").is_dir()

    launcher = FakeLauncher(polls=0)
    jobs = build_documentations(
        catalog,
        processes=2,
        sleeptime=0.001,
        basepath=tmp_path,
        filter_versions=all_versions,
        launcher=launcher,
    )
    assert [str(job.spec.version) for job in jobs] == ["0.5", "1.0", "2.0"]


def test_real_workers_report_stages_and_timeouts(tmp_path: Path) -> None:
    scripts = {
        "quick": "print('[pkgdocs:stage] building', flush=True)",
        "stuck": "import time; time.sleep(30)",
    }

    def launcher(command, **kwargs):
        name = command[5]
        return run_with_timeout([sys.executable, "-c", scripts[name]], **kwargs)

    specs = [
        PackageSpec(name="quick", url="u", version=Version("1.0")),
        PackageSpec(name="stuck", url="u", version=Version("1.0")),
    ]
    scheduler = Scheduler(2, 0.05, launcher=launcher, timeout=0.5, poll_interval=0.05)

    quick, stuck = scheduler.build_all(specs, tmp_path)

    assert quick.state is JobState.SUCCEEDED
    assert "[pkgdocs:stage] building" in quick.log_path.read_text(encoding="utf-8")
    assert stuck.state is JobState.TIMED_OUT
