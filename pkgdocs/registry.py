"""Package registry walking and Python-compatibility resolution.

The registry is a two-level directory tree::

    <registry>/<Initial>/<Name>/Package.toml    name, repo
    <registry>/<Initial>/<Name>/Versions.toml   one table per released version
    <registry>/<Initial>/<Name>/Compat.toml     version range -> {python = ...}

Compat keys are PEP 440 specifiers over the package's own versions (``"*"``
matches every version); each table's ``python`` entry is a specifier, or a
list of specifiers, over interpreter versions.
"""

from __future__ import annotations

import platform
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from .logging import get_logger
from .models import VersionCatalogEntry

logger = get_logger("registry")

PACKAGE_FILE = "Package.toml"
VERSIONS_FILE = "Versions.toml"
COMPAT_FILE = "Compat.toml"


class RegistryError(RuntimeError):
    """Raised when the registry root cannot be read at all."""


class MalformedPackage(ValueError):
    """Raised internally when a package's registry metadata is unusable."""


@dataclass(frozen=True)
class RegistryCatalog:
    """Lazy, restartable view of the packages installable on a Python version.

    Every ``iter()`` walks the registry afresh, so the catalog can be consumed
    partially and iterated again.
    """

    registry: Path
    python_version: Version

    def __iter__(self) -> Iterator[VersionCatalogEntry]:
        if not self.registry.is_dir():
            raise RegistryError(f"Registry not found at {self.registry}")
        for initial in sorted(self.registry.iterdir()):
            if not initial.is_dir() or initial.name.startswith("."):
                continue
            for package_dir in sorted(initial.iterdir()):
                if not package_dir.is_dir() or not (package_dir / COMPAT_FILE).is_file():
                    continue
                try:
                    entry = read_package(package_dir, self.python_version)
                except MalformedPackage as exc:
                    logger.error("Skipping %s: %s", package_dir.name, exc)
                    continue
                if entry is not None:
                    yield entry


def resolve(registry: Path | str, python_version: Version | str | None = None) -> RegistryCatalog:
    """Return the catalog of packages in ``registry`` compatible with ``python_version``."""
    if python_version is None:
        python_version = platform.python_version()
    if not isinstance(python_version, Version):
        python_version = Version(str(python_version))
    return RegistryCatalog(registry=Path(registry).expanduser(), python_version=python_version)


def read_package(package_dir: Path, python_version: Version) -> Optional[VersionCatalogEntry]:
    """Read one registry entry; return None when no version fits ``python_version``."""
    package = _load_toml(package_dir / PACKAGE_FILE)
    versions_table = _load_toml(package_dir / VERSIONS_FILE)
    compat = _load_toml(package_dir / COMPAT_FILE)

    name = package.get("name")
    url = package.get("repo")
    if not isinstance(name, str) or not isinstance(url, str):
        raise MalformedPackage(f"{PACKAGE_FILE} must define string 'name' and 'repo'")

    released = _released_versions(versions_table)
    selected: Set[Version] = set()
    for range_text, requirements in compat.items():
        if not isinstance(requirements, Mapping) or "python" not in requirements:
            continue
        if not _python_matches(requirements["python"], python_version):
            continue
        package_range = _parse_specifier(range_text)
        selected.update(version for version in released if version in package_range)

    if not selected:
        return None
    return VersionCatalogEntry(name=name, url=url, versions=tuple(sorted(selected)))


def _load_toml(path: Path) -> Dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise MalformedPackage(f"missing {path.name}") from exc
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise MalformedPackage(f"cannot read {path.name}: {exc}") from exc


def _released_versions(table: Mapping[str, Any]) -> List[Version]:
    released: List[Version] = []
    for raw, info in table.items():
        if isinstance(info, Mapping) and info.get("yanked") is True:
            continue
        try:
            released.append(Version(raw))
        except InvalidVersion as exc:
            raise MalformedPackage(f"invalid version {raw!r} in {VERSIONS_FILE}") from exc
    return released


def _python_matches(requirement: Any, python_version: Version) -> bool:
    if isinstance(requirement, str):
        candidates = [requirement]
    elif isinstance(requirement, list) and all(isinstance(item, str) for item in requirement):
        candidates = requirement
    else:
        raise MalformedPackage(f"'python' compat must be a string or list of strings, got {requirement!r}")
    return any(python_version in _parse_specifier(candidate) for candidate in candidates)


def _parse_specifier(text: str) -> SpecifierSet:
    stripped = text.strip()
    if stripped in {"", "*"}:
        return SpecifierSet("")
    try:
        return SpecifierSet(stripped)
    except InvalidSpecifier as exc:
        raise MalformedPackage(f"invalid specifier {text!r}") from exc


__all__ = ["RegistryCatalog", "RegistryError", "read_package", "resolve"]
