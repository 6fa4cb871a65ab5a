"""Batch driver: run one supervised worker process per package version."""

from __future__ import annotations

import os
import shutil
import sys
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Sequence, Tuple

from packaging.version import Version

from .config import CONFIG_ENV_VAR
from .logging import get_logger
from .models import BuildJob, JobState, PackageSpec, VersionCatalogEntry
from .supervisor import SupervisedProcess, run_with_timeout

logger = get_logger("scheduler")

WORKER_MODULE = "pkgdocs.worker"
BUILD_ROOT = "build"
LOG_ROOT = "logs"

Launcher = Callable[..., SupervisedProcess]
VersionPolicy = Callable[[Sequence[Version]], List[Version]]


def latest(versions: Sequence[Version]) -> List[Version]:
    """Build only the newest version."""
    return list(versions[-1:])


def all_versions(versions: Sequence[Version]) -> List[Version]:
    return list(versions)


VERSION_POLICIES: Dict[str, VersionPolicy] = {"latest": latest, "all": all_versions}


def worker_command(
    name: str,
    url: str,
    version: Version | str,
    build_dir: Path,
    python: str = sys.executable,
) -> List[str]:
    """Command line for a fresh, isolated worker interpreter."""
    return [python, "-I", "-B", "-m", WORKER_MODULE, name, url, str(version), str(build_dir)]


def job_paths(basepath: Path, name: str, version: Version | str) -> Tuple[Path, Path]:
    """Return ``(build_dir, log_path)`` for one package version."""
    basepath = Path(basepath)
    return (
        basepath / BUILD_ROOT / name / str(version),
        basepath / LOG_ROOT / f"{name} {version}.log",
    )


def worker_environment(config_path: Path | None = None) -> Dict[str, str]:
    """Environment for worker processes; points them at the batch's config file."""
    env = dict(os.environ)
    if config_path is not None:
        env[CONFIG_ENV_VAR] = str(config_path)
    return env


def build_documentation(
    name: str,
    url: str,
    version: Version | str,
    *,
    basepath: Path,
    launcher: Launcher | None = None,
    timeout: float = 5 * 60,
    poll_interval: float = 1.0,
    python: str = sys.executable,
    env: Mapping[str, str] | None = None,
) -> BuildJob:
    """Prepare the job's directories and start its worker; does not wait.

    A job whose directories cannot be prepared comes back already ``failed``
    and without a worker.
    """
    build_dir, log_path = job_paths(basepath, name, version)
    spec = PackageSpec(name=name, url=url, version=Version(str(version)))
    job = BuildJob(spec=spec, build_dir=build_dir, log_path=log_path)
    try:
        if build_dir.exists():
            shutil.rmtree(build_dir)
        build_dir.mkdir(parents=True)
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Cannot prepare %s for %s %s: %s", build_dir, name, version, exc)
        job.advance(JobState.FAILED)
        return job

    job.advance(JobState.INSTALLING)
    launch = launcher or run_with_timeout
    job.handle = launch(
        worker_command(name, url, version, build_dir, python=python),
        log=log_path,
        name=f"{name} {version}",
        timeout=timeout,
        wait_time=poll_interval,
        on_output=job.observe_output,
        env=env,
    )
    return job


class Scheduler:
    """Admits jobs in order while keeping at most ``max_concurrency`` running.

    Admission is a bounded busy-wait: when the active set is full, finished
    workers are reaped and the scheduler sleeps ``sleeptime`` before looking
    again. Every started worker is reaped before :meth:`build_all` returns or
    raises; setting ``cancel_event`` stops admission and kills in-flight work.
    """

    def __init__(
        self,
        max_concurrency: int = 8,
        sleeptime: float = 0.5,
        launcher: Launcher | None = None,
        cancel_event: threading.Event | None = None,
        *,
        timeout: float = 5 * 60,
        poll_interval: float = 1.0,
        python: str = sys.executable,
        env: Mapping[str, str] | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self.sleeptime = sleeptime
        self.launcher = launcher or run_with_timeout
        self.cancel_event = cancel_event or threading.Event()
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.python = python
        self.env = env

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def build_all(self, specs: Iterable[PackageSpec], basepath: Path) -> List[BuildJob]:
        """Build every spec; return the jobs in admission order, all terminal."""
        jobs: List[BuildJob] = []
        active: List[BuildJob] = []
        try:
            for spec in specs:
                self._wait_for_capacity(active)
                if self.cancelled:
                    break
                job = self.launch(spec, basepath)
                jobs.append(job)
                if not job.is_finished:
                    active.append(job)
            self._wait_for_all(active)
        except BaseException:
            logger.error("Batch interrupted; stopping %d running worker(s)", len(active))
            self._abort(active)
            raise
        if active:
            logger.warning("Batch cancelled; stopping %d running worker(s)", len(active))
            self._abort(active)
        return jobs

    def launch(self, spec: PackageSpec, basepath: Path) -> BuildJob:
        logger.info("Starting build for %s %s", spec.name, spec.version)
        return build_documentation(
            spec.name,
            spec.url,
            spec.version,
            basepath=basepath,
            launcher=self.launcher,
            timeout=self.timeout,
            poll_interval=self.poll_interval,
            python=self.python,
            env=self.env,
        )

    def _wait_for_capacity(self, active: List[BuildJob]) -> None:
        while len(active) >= self.max_concurrency and not self.cancelled:
            self._reap(active)
            if len(active) >= self.max_concurrency:
                time.sleep(self.sleeptime)

    def _wait_for_all(self, active: List[BuildJob]) -> None:
        while active and not self.cancelled:
            self._reap(active)
            if active:
                time.sleep(self.sleeptime)

    def _reap(self, active: List[BuildJob]) -> None:
        for job in list(active):
            if job.handle is not None and job.handle.running():
                continue
            finalize(job)
            active.remove(job)

    def _abort(self, active: List[BuildJob]) -> None:
        for job in active:
            if job.handle is not None:
                job.handle.terminate()
        for job in active:
            finalize(job)
        active.clear()


def finalize(job: BuildJob) -> JobState:
    """Reap the job's worker and record its terminal state."""
    handle = job.handle
    if handle is None:
        job.advance(JobState.FAILED)
        return job.state
    handle.wait()
    if handle.timed_out:
        state = JobState.TIMED_OUT
    elif handle.returncode == 0:
        state = JobState.SUCCEEDED
    else:
        state = JobState.FAILED
    job.advance(state)
    logger.info("%s %s finished: %s", job.spec.name, job.spec.version, job.state.value)
    return job.state


def expand_catalog(
    catalog: Iterable[VersionCatalogEntry],
    filter_versions: VersionPolicy = latest,
) -> Iterator[PackageSpec]:
    """Yield one spec per selected version, lazily, in catalog order."""
    for name, url, versions in catalog:
        for version in filter_versions(sorted(versions)):
            yield PackageSpec(name=name, url=url, version=version)


def build_documentations(
    catalog: Iterable[VersionCatalogEntry],
    *,
    processes: int = 8,
    sleeptime: float = 0.5,
    basepath: Path,
    filter_versions: VersionPolicy = latest,
    timeout: float = 5 * 60,
    poll_interval: float = 1.0,
    launcher: Launcher | None = None,
    cancel_event: threading.Event | None = None,
    python: str = sys.executable,
    env: Mapping[str, str] | None = None,
) -> List[BuildJob]:
    """Build docs for every selected catalog version with bounded concurrency."""
    basepath = Path(basepath)
    (basepath / BUILD_ROOT).mkdir(parents=True, exist_ok=True)
    (basepath / LOG_ROOT).mkdir(parents=True, exist_ok=True)
    scheduler = Scheduler(
        processes,
        sleeptime,
        launcher=launcher,
        cancel_event=cancel_event,
        timeout=timeout,
        poll_interval=poll_interval,
        python=python,
        env=env,
    )
    return scheduler.build_all(expand_catalog(catalog, filter_versions), basepath)


__all__ = [
    "Scheduler",
    "VERSION_POLICIES",
    "all_versions",
    "build_documentation",
    "build_documentations",
    "expand_catalog",
    "finalize",
    "job_paths",
    "latest",
    "worker_command",
    "worker_environment",
]
