"""Core data models shared across pkgdocs components."""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional, Tuple

from packaging.version import Version

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .supervisor import SupervisedProcess

STAGE_MARKER = "[pkgdocs:stage]"

_IMPORT_NAME_PATTERN = re.compile(r"[-.]+")


@dataclass(frozen=True)
class PackageSpec:
    """Identifies a single buildable unit: one package at one version."""

    name: str
    url: str
    version: Version

    @property
    def import_name(self) -> str:
        return _IMPORT_NAME_PATTERN.sub("_", self.name).lower()

    @property
    def requirement(self) -> str:
        return f"{self.name}=={self.version}"


@dataclass(frozen=True)
class VersionCatalogEntry:
    """A package and the ordered versions compatible with the target Python."""

    name: str
    url: str
    versions: Tuple[Version, ...]

    def __iter__(self):
        # Allows `for name, url, versions in catalog` unpacking.
        return iter((self.name, self.url, self.versions))


class JobState(Enum):
    QUEUED = "queued"
    INSTALLING = "installing"
    SELECTING_STRATEGY = "selecting-strategy"
    BUILDING = "building"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed-out"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES

    @property
    def rank(self) -> int:
        return _STATE_RANKS[self]


_TERMINAL_STATES = frozenset({JobState.SUCCEEDED, JobState.FAILED, JobState.TIMED_OUT})
_STATE_RANKS = {
    JobState.QUEUED: 0,
    JobState.INSTALLING: 1,
    JobState.SELECTING_STRATEGY: 2,
    JobState.BUILDING: 3,
    JobState.SUCCEEDED: 4,
    JobState.FAILED: 4,
    JobState.TIMED_OUT: 4,
}


class InvalidTransition(RuntimeError):
    """Raised when a job is asked to leave a terminal state."""


@dataclass
class BuildJob:
    """One attempt to build documentation for a package at a version.

    Owned by the scheduler until it reaches a terminal state. The supervisor's
    monitor thread advances it through the non-terminal stages by way of
    :meth:`observe_output`, so every mutation goes through a lock.
    """

    spec: PackageSpec
    build_dir: Path
    log_path: Path
    state: JobState = JobState.QUEUED
    handle: Optional["SupervisedProcess"] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def advance(self, state: JobState) -> bool:
        """Move to ``state`` if it is further along; return True when it changed."""
        with self._lock:
            if self.state.is_terminal:
                if state is self.state:
                    return False
                raise InvalidTransition(
                    f"{self.spec.name} {self.spec.version} is already {self.state.value}"
                )
            if state.rank <= self.state.rank:
                return False
            self.state = state
            return True

    def observe_output(self, text: str) -> None:
        """Advance the job from stage markers found in captured worker output."""
        for state in parse_stage_markers(text):
            if self.state.is_terminal:
                return
            self.advance(state)

    @property
    def is_finished(self) -> bool:
        return self.state.is_terminal


def format_stage_marker(state: JobState) -> str:
    return f"{STAGE_MARKER} {state.value}"


def parse_stage_markers(text: str) -> Iterable[JobState]:
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped.startswith(STAGE_MARKER):
            continue
        value = stripped[len(STAGE_MARKER):].strip()
        try:
            state = JobState(value)
        except ValueError:
            continue
        if not state.is_terminal:
            yield state


@dataclass(frozen=True)
class HostedDocs:
    """Documentation already lives on an external site."""

    url: str


@dataclass(frozen=True)
class GitRepositoryDocs:
    """Documentation sources live in a separate git repository."""

    url: str


@dataclass(frozen=True)
class LocalDirectoryDocs:
    """Documentation sources live in a directory of the package itself."""

    path: Path


DocStrategy = HostedDocs | GitRepositoryDocs | LocalDirectoryDocs


@dataclass(frozen=True)
class TransformedScript:
    """A rewritten build script ready to execute in a job environment."""

    source: str
    build_dir: Path
    removed_deploys: int = 0
    requirements: Tuple[str, ...] = ()
    statement_count: int = 0

    @property
    def is_empty(self) -> bool:
        return self.statement_count == 0


class DocType(Enum):
    REAL = "real"
    DEFAULT = "default"
    NONE = "none"


@dataclass(frozen=True)
class TierOutcome:
    """Result of a single cascade tier; ``ok=False`` means fall through."""

    ok: bool
    doctype: DocType = DocType.NONE
    reason: str = ""

    @classmethod
    def success(cls, doctype: DocType) -> "TierOutcome":
        return cls(ok=True, doctype=doctype)

    @classmethod
    def fallthrough(cls, reason: str) -> "TierOutcome":
        return cls(ok=False, reason=reason)


@dataclass(frozen=True)
class BuildResult:
    """Terminal output of a single package build."""

    doctype: DocType
    installed: bool
    artifact_path: Optional[Path]
    root: Optional[Path] = None


__all__ = [
    "BuildJob",
    "BuildResult",
    "DocStrategy",
    "DocType",
    "GitRepositoryDocs",
    "HostedDocs",
    "InvalidTransition",
    "JobState",
    "LocalDirectoryDocs",
    "PackageSpec",
    "STAGE_MARKER",
    "TierOutcome",
    "TransformedScript",
    "VersionCatalogEntry",
    "format_stage_marker",
    "parse_stage_markers",
]
