"""Decide how a package's documentation should be produced."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Dict

from .logging import get_logger
from .models import DocStrategy, GitRepositoryDocs, HostedDocs, LocalDirectoryDocs

logger = get_logger("strategy")

PROJECT_FILE = "pyproject.toml"
DEFAULT_DOCS_DIR = "docs"


def select_strategy(root: Path) -> DocStrategy:
    """Read ``[tool.pkgdocs.documentation]`` from the package's pyproject.toml.

    ``hosted`` wins over ``gitrepo``, which wins over ``dir``. Without any
    declaration the strategy is the package's conventional ``docs`` folder.
    """
    docs = _documentation_table(root / PROJECT_FILE)
    hosted = docs.get("hosted")
    if isinstance(hosted, str) and hosted:
        return HostedDocs(url=hosted)
    gitrepo = docs.get("gitrepo")
    if isinstance(gitrepo, str) and gitrepo:
        return GitRepositoryDocs(url=gitrepo)
    directory = docs.get("dir")
    if isinstance(directory, str) and directory:
        return LocalDirectoryDocs(path=root / directory)
    return LocalDirectoryDocs(path=root / DEFAULT_DOCS_DIR)


def _documentation_table(project_path: Path) -> Dict[str, Any]:
    if not project_path.is_file():
        return {}
    try:
        data = tomllib.loads(project_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        logger.error("Cannot parse %s, using default docs strategy: %s", project_path, exc)
        return {}
    tool = data.get("tool")
    pkgdocs = tool.get("pkgdocs") if isinstance(tool, dict) else None
    docs = pkgdocs.get("documentation") if isinstance(pkgdocs, dict) else None
    return docs if isinstance(docs, dict) else {}


def describe(strategy: DocStrategy) -> str:
    if isinstance(strategy, HostedDocs):
        return f"hosted ({strategy.url})"
    if isinstance(strategy, GitRepositoryDocs):
        return f"gitrepo ({strategy.url})"
    return f"dir ({strategy.path})"


__all__ = ["DEFAULT_DOCS_DIR", "describe", "select_strategy"]
