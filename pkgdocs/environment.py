"""Per-job virtual environments used to install and load packages."""

from __future__ import annotations

import json
import os
import subprocess
import venv
from importlib import metadata
from pathlib import Path
from typing import Callable, Iterable, Mapping, Sequence
from urllib.parse import unquote, urlparse

from .logging import get_logger

logger = get_logger("environment")

Runner = Callable[..., str]

_DISTRIBUTION = "pkgdocs"

_IMPORT_SNIPPET = "import importlib, sys; importlib.import_module(sys.argv[1])"
_ORIGIN_SNIPPET = (
    "import importlib.util, sys; "
    "spec = importlib.util.find_spec(sys.argv[1]); "
    "print(spec.origin if spec is not None and spec.origin else '')"
)


class EnvironmentSetupError(RuntimeError):
    """Raised when a job environment cannot be created or provisioned."""


class Environment:
    """Handle to an isolated virtual environment owned by a single job.

    Nothing here touches the interpreter running pkgdocs: every install and
    import check happens in a subprocess of the environment's own Python.
    """

    def __init__(self, path: Path, runner: Runner | None = None) -> None:
        self.path = Path(path)
        self._runner = runner or _default_runner

    @classmethod
    def create(
        cls,
        path: Path,
        *,
        runner: Runner | None = None,
        builder: venv.EnvBuilder | None = None,
    ) -> "Environment":
        """Create a fresh virtual environment with pip at ``path``."""
        builder = builder or venv.EnvBuilder(with_pip=True, clear=True)
        logger.debug("Creating job environment at %s", path)
        try:
            builder.create(str(path))
        except (OSError, subprocess.CalledProcessError) as exc:
            raise EnvironmentSetupError(f"Failed to create environment at {path}: {exc}") from exc
        return cls(path, runner=runner)

    @property
    def python(self) -> Path:
        if os.name == "nt":
            return self.path / "Scripts" / "python.exe"
        return self.path / "bin" / "python"

    def run(
        self,
        args: Iterable[str],
        *,
        cwd: Path | None = None,
        capture_output: bool = False,
        env: Mapping[str, str] | None = None,
    ) -> str:
        """Run ``python <args>`` inside the environment; raise on non-zero exit."""
        command = [str(self.python), *args]
        return self._runner(command, cwd=cwd, env=env, capture_output=capture_output)

    def pip_install(self, *requirements: str, no_deps: bool = False) -> None:
        if not requirements:
            return
        args = ["-m", "pip", "install", "--disable-pip-version-check"]
        if no_deps:
            args.append("--no-deps")
        args.extend(requirements)
        logger.info("pip install %s", " ".join(requirements))
        self.run(args)

    def pip_download_source(self, requirement: str, dest: Path) -> Path:
        """Download the sdist for ``requirement`` into ``dest`` and return the archive."""
        dest.mkdir(parents=True, exist_ok=True)
        before = set(dest.iterdir())
        self.run(
            [
                "-m",
                "pip",
                "download",
                "--disable-pip-version-check",
                "--no-deps",
                "--no-binary",
                ":all:",
                "--dest",
                str(dest),
                requirement,
            ]
        )
        downloaded = sorted(set(dest.iterdir()) - before)
        if not downloaded:
            raise EnvironmentSetupError(f"pip download produced no archive for {requirement}")
        return downloaded[0]

    def install_toolchain(self, requirements: Sequence[str]) -> None:
        """Install the docs toolchain plus pkgdocs itself (for ``pkgdocs.documenter``)."""
        self.pip_install(*requirements)
        self.pip_install(self_requirement(), no_deps=True)

    def can_import(self, module: str) -> bool:
        try:
            self.run(["-c", _IMPORT_SNIPPET, module], capture_output=True)
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or "").strip().splitlines()
            logger.warning(
                "Module %s fails to import: %s", module, detail[-1] if detail else exc.returncode
            )
            return False
        return True

    def module_path(self, module: str) -> Path | None:
        """Return the directory (or file) a module is loaded from, if findable."""
        try:
            origin = self.run(["-c", _ORIGIN_SNIPPET, module], capture_output=True).strip()
        except subprocess.CalledProcessError:
            return None
        if not origin:
            return None
        path = Path(origin)
        return path.parent if path.name == "__init__.py" else path


def self_requirement(distribution: str = _DISTRIBUTION) -> str:
    """Return a pip requirement that reinstalls the running pkgdocs distribution."""
    try:
        dist = metadata.distribution(distribution)
    except metadata.PackageNotFoundError as exc:
        raise EnvironmentSetupError(
            f"{distribution} is not installed; cannot provision job environments"
        ) from exc
    direct_url = dist.read_text("direct_url.json")
    if direct_url:
        try:
            url = json.loads(direct_url).get("url", "")
        except json.JSONDecodeError:
            url = ""
        if url.startswith("file://"):
            return unquote(urlparse(url).path)
    return f"{distribution}=={dist.version}"


def _default_runner(
    args: Iterable[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    capture_output: bool = False,
) -> str:
    completed = subprocess.run(
        list(args),
        cwd=str(cwd) if cwd is not None else None,
        env=dict(env) if env is not None else None,
        check=True,
        text=True,
        capture_output=capture_output,
    )
    if capture_output:
        return completed.stdout
    return ""


__all__ = ["Environment", "EnvironmentSetupError", "Runner", "self_requirement"]
