"""Install a package into a job environment and check that it loads."""

from __future__ import annotations

import shutil
import subprocess
import tarfile
import zipfile
from dataclasses import dataclass
from pathlib import Path

from .environment import Environment, EnvironmentSetupError
from .logging import get_logger
from .models import PackageSpec

logger = get_logger("installer")


class PackageUnusable(RuntimeError):
    """Raised when a package cannot be installed at all."""

    def __init__(self, name: str, reason: str = "") -> None:
        self.name = name
        message = f"Package {name} could not be installed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


@dataclass(frozen=True)
class InstallResult:
    """Outcome of installing a package; ``root`` is set even when loading fails."""

    loaded: bool
    root: Path
    import_name: str


class Installer:
    """Installs packages into per-job environments and locates their sources."""

    def __init__(self, workdir_name: str = "sources") -> None:
        self.workdir_name = workdir_name

    def install_and_load(self, spec: PackageSpec, env: Environment, sandbox: Path) -> InstallResult:
        """Install ``spec`` into ``env``; unpack its sources under ``sandbox``."""
        logger.info("Installing %s", spec.requirement)
        try:
            env.pip_install(spec.requirement)
        except (subprocess.CalledProcessError, OSError) as exc:
            logger.error("Installing %s failed: %s", spec.requirement, exc)
            raise PackageUnusable(spec.name, str(exc)) from exc

        loaded = env.can_import(spec.import_name)
        if not loaded:
            logger.warning("%s installed but cannot be imported as %s", spec.name, spec.import_name)

        root = self._fetch_sources(spec, env, sandbox / self.workdir_name)
        if root is None:
            root = env.module_path(spec.import_name) or sandbox / self.workdir_name / spec.name
        logger.info("%s sources at %s", spec.name, root)
        return InstallResult(loaded=loaded, root=root, import_name=spec.import_name)

    def _fetch_sources(self, spec: PackageSpec, env: Environment, workdir: Path) -> Path | None:
        try:
            archive = env.pip_download_source(spec.requirement, workdir / "dist")
        except (subprocess.CalledProcessError, EnvironmentSetupError, OSError) as exc:
            logger.warning("No source distribution for %s: %s", spec.requirement, exc)
            return None
        return unpack_source(archive, workdir / "unpacked")


def unpack_source(archive: Path, dest: Path) -> Path | None:
    """Unpack an sdist archive; return its single top-level directory."""
    try:
        shutil.unpack_archive(str(archive), str(dest))
    except (shutil.ReadError, tarfile.TarError, zipfile.BadZipFile, ValueError, OSError) as exc:
        logger.warning("Cannot unpack %s: %s", archive.name, exc)
        return None
    entries = [entry for entry in dest.iterdir() if entry.is_dir()]
    if len(entries) == 1:
        return entries[0]
    return dest


__all__ = ["InstallResult", "Installer", "PackageUnusable", "unpack_source"]
