"""Configuration loading for pkgdocs (pkgdocs.yml)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

CONFIG_FILENAME = "pkgdocs.yml"
CONFIG_ENV_VAR = "PKGDOCS_CONFIG"
TOKEN_ENV_KEYS = ("PKGDOCS_GITHUB_TOKEN", "GITHUB_TOKEN")

DEFAULT_TOOLCHAIN = ("mkdocs>=1.5", "mkdocstrings[python]>=0.24")


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed."""


@dataclass
class BuildConfig:
    """Batch scheduling settings."""

    basepath: Optional[Path] = None
    processes: int = 8
    sleeptime: float = 0.5
    timeout: float = 5 * 60
    poll_interval: float = 1.0
    versions: str = "latest"


@dataclass
class ToolchainConfig:
    """Requirements installed into every job environment to render docs."""

    requirements: List[str] = field(default_factory=lambda: list(DEFAULT_TOOLCHAIN))


@dataclass
class MetadataConfig:
    """Code-forge metadata enrichment settings."""

    github_token_file: Optional[Path] = None
    github_token: Optional[str] = None


@dataclass
class PkgDocsConfig:
    """Represents the settings defined in pkgdocs.yml."""

    root: Path
    registry: Optional[Path] = None
    python_version: Optional[str] = None
    build: BuildConfig = field(default_factory=BuildConfig)
    toolchain: ToolchainConfig = field(default_factory=ToolchainConfig)
    metadata: MetadataConfig = field(default_factory=MetadataConfig)
    source: Optional[Path] = None

    def resolve_github_token(self) -> Optional[str]:
        """Return the GitHub token from the environment, config or token file."""
        for key in TOKEN_ENV_KEYS:
            value = os.environ.get(key, "").strip()
            if value:
                return value
        if self.metadata.github_token:
            return self.metadata.github_token
        token_file = self.metadata.github_token_file
        if token_file is not None and token_file.is_file():
            token = token_file.read_text(encoding="utf-8").strip()
            return token or None
        return None


def load_config(config_path: Path | None = None) -> PkgDocsConfig:
    """Load configuration from disk, falling back to defaults when absent."""
    if config_path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        config_path = Path(env_path) if env_path else Path.cwd()
    config_file = _resolve_config_path(Path(config_path))
    root = config_file.parent.resolve()

    if not config_file.exists():
        return PkgDocsConfig(root=root)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{config_file.name} must contain a mapping at the root")

    build_data = _as_dict(data.get("build"))
    build = BuildConfig()
    if build_data:
        basepath = _as_str(build_data.get("basepath"))
        build.basepath = _as_path(root, basepath)
        processes = _as_int(build_data.get("processes"))
        if processes is not None:
            if processes < 1:
                raise ConfigError("build.processes must be at least 1")
            build.processes = processes
        build.sleeptime = _as_float(build_data.get("sleeptime")) or build.sleeptime
        build.timeout = _as_float(build_data.get("timeout")) or build.timeout
        build.poll_interval = _as_float(build_data.get("poll_interval")) or build.poll_interval
        versions = _as_str(build_data.get("versions"))
        if versions is not None:
            if versions not in {"latest", "all"}:
                raise ConfigError("build.versions must be 'latest' or 'all'")
            build.versions = versions

    toolchain = ToolchainConfig()
    toolchain_data = _as_dict(data.get("toolchain"))
    if toolchain_data and "requirements" in toolchain_data:
        toolchain.requirements = _as_str_list(toolchain_data.get("requirements"))

    metadata = MetadataConfig()
    metadata_data = _as_dict(data.get("metadata"))
    if metadata_data:
        metadata.github_token_file = _as_path(root, _as_str(metadata_data.get("github_token_file")))
        metadata.github_token = _as_str(metadata_data.get("github_token"))

    return PkgDocsConfig(
        root=root,
        registry=_as_path(root, _as_str(data.get("registry"))),
        python_version=_as_str(data.get("python_version")),
        build=build,
        toolchain=toolchain,
        metadata=metadata,
        source=config_file,
    )


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float)) and not isinstance(value, bool) else None


def _as_path(root: Path, value: Optional[str]) -> Optional[Path]:
    if not value:
        return None
    path = Path(value).expanduser()
    return path if path.is_absolute() else (root / path).resolve()


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float))]
    return []
