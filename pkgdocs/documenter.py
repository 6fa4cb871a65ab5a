"""Build API for package documentation scripts.

A package's ``docs/make.py`` calls :func:`makedocs` to render its Markdown
sources to a static HTML site and, when publishing, :func:`deploydocs`::

    from pkgdocs.documenter import deploydocs, makedocs

    makedocs(sitename="Example", modules=["example"], pages=[("Home", "index.md")])
    deploydocs(repo="github.com/example/example")

Rendering is delegated to MkDocs (and mkdocstrings for ``modules`` API
pages). This module runs inside job environments, so it only needs the
standard library plus the MkDocs toolchain.
"""

from __future__ import annotations

import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import yaml

Page = Union[str, Tuple[str, str], Mapping[str, str]]

_CONFIG_NAME = "mkdocs.yml"
_last_config: Optional[Path] = None


def makedocs(
    *,
    sitename: str,
    root: str | Path | None = None,
    source: str = "src",
    build: str = "build",
    format: str = "html",
    pages: Optional[Sequence[Page]] = None,
    modules: Iterable[str] = (),
    strict: bool = False,
    **extra: Any,
) -> Path:
    """Render ``root/source`` into ``root/build`` and return the site directory."""
    global _last_config
    if format != "html":
        raise ValueError(f"Unsupported documentation format {format!r}; only 'html' is available")
    base = Path(root) if root is not None else Path.cwd()
    docs_dir = (base / source).resolve()
    site_dir = (base / build).resolve()
    if not docs_dir.is_dir():
        raise FileNotFoundError(f"Documentation source directory not found: {docs_dir}")
    if extra:
        print(f"makedocs: ignoring unsupported options {sorted(extra)}", flush=True)

    config: Dict[str, Any] = {
        "site_name": sitename,
        "docs_dir": str(docs_dir),
        "site_dir": str(site_dir),
        "use_directory_urls": False,
        "plugins": ["search"],
    }
    nav = _nav(pages or [])
    if nav:
        config["nav"] = nav
    module_names = [str(name) for name in modules]
    if module_names:
        config["plugins"].append(
            {"mkdocstrings": {"handlers": {"python": {"options": {"show_source": False}}}}}
        )

    config_dir = Path(tempfile.mkdtemp(prefix="pkgdocs-mkdocs-"))
    config_path = config_dir / _CONFIG_NAME
    config_path.write_text(yaml.safe_dump(config, sort_keys=False), encoding="utf-8")
    _last_config = config_path

    command = [sys.executable, "-m", "mkdocs", "build", "--clean", "--config-file", str(config_path)]
    if strict:
        command.append("--strict")
    print(f"makedocs: building {sitename} into {site_dir}", flush=True)
    subprocess.run(command, check=True)
    return site_dir


def deploydocs(*, repo: str | None = None, branch: str = "gh-pages", **extra: Any) -> None:
    """Publish the most recently built site with ``mkdocs gh-deploy``."""
    if _last_config is None:
        raise RuntimeError("deploydocs() called before makedocs()")
    command = [
        sys.executable,
        "-m",
        "mkdocs",
        "gh-deploy",
        "--force",
        "--config-file",
        str(_last_config),
        "--remote-branch",
        branch,
    ]
    print(f"deploydocs: publishing to {repo or 'origin'} ({branch})", flush=True)
    subprocess.run(command, check=True)


def _nav(pages: Sequence[Page]) -> List[Any]:
    nav: List[Any] = []
    for page in pages:
        if isinstance(page, str):
            nav.append(page)
        elif isinstance(page, Mapping):
            nav.extend({str(title): str(target)} for title, target in page.items())
        else:
            title, target = page
            nav.append({str(title): str(target)})
    return nav


__all__ = ["deploydocs", "makedocs"]
