"""Git helpers for documentation that lives in a separate repository."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable, Iterable

from ..logging import get_logger

logger = get_logger("git")


class GitCloneError(RuntimeError):
    """Raised when a documentation repository cannot be cloned."""


class GitCloner:
    """Shallow-clones repositories through an injectable command runner."""

    def __init__(self, runner: Callable[..., str] | None = None) -> None:
        self._runner = runner or self._default_runner

    def clone(self, url: str, dest: Path, *, depth: int = 1) -> Path:
        """Clone ``url`` into ``dest`` and return the checkout path."""
        dest = Path(dest)
        if dest.exists() and any(dest.iterdir()):
            raise GitCloneError(f"Clone destination {dest} is not empty")
        dest.parent.mkdir(parents=True, exist_ok=True)
        args = ["git", "clone", f"--depth={depth}", url, str(dest)]
        logger.info("Cloning %s", url)
        try:
            self._runner(args, cwd=dest.parent)
        except (subprocess.CalledProcessError, OSError) as exc:
            raise GitCloneError(f"git clone {url} failed: {exc}") from exc
        return dest

    @staticmethod
    def _default_runner(
        args: Iterable[str],
        *,
        cwd: Path,
        capture_output: bool = False,
    ) -> str:
        completed = subprocess.run(
            list(args),
            cwd=str(cwd),
            check=True,
            text=True,
            capture_output=capture_output,
        )
        if capture_output:
            return completed.stdout
        return ""


__all__ = ["GitCloneError", "GitCloner"]
