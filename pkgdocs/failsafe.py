"""Fallback documentation sites for packages without a usable docs build."""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence, Tuple

from .environment import Environment
from .logging import get_logger
from .postproc.links import copy_local_links

logger = get_logger("failsafe")

SOURCE_DIR = "src"
BUILD_DIR = "build"
README_NAMES = ("README.md", "README.markdown", "README.rst", "README.txt", "README")
API_PAGE = "autodocs.md"
INDEX_PAGE = "index.md"

Page = Tuple[str, str]


def default_docs(
    package: str,
    root: Path,
    pkgroot: Path,
    env: Environment,
    *,
    import_name: str,
) -> Path:
    """Build README + API reference docs under ``root``; return the site dir."""
    pages = prepare_default_sources(package, root, pkgroot, import_name=import_name)
    return _run_makedocs(env, root, sitename=package, pages=pages, modules=[import_name])


def readme_docs(package: str, root: Path, pkgroot: Path, env: Environment) -> Path:
    """Build README-only docs for packages that install but cannot be imported."""
    pages = prepare_readme_sources(package, root, pkgroot)
    return _run_makedocs(env, root, sitename=package, pages=pages, modules=[])


def prepare_default_sources(
    package: str, root: Path, pkgroot: Path, *, import_name: str
) -> List[Page]:
    """Write the Markdown sources for default docs and return the page list."""
    doc_source = root / SOURCE_DIR
    doc_source.mkdir(parents=True, exist_ok=True)
    pages: List[Page] = []
    api_page = API_PAGE
    if _copy_readme(pkgroot, doc_source):
        pages.append(("Readme", INDEX_PAGE))
    else:
        api_page = INDEX_PAGE
    (doc_source / api_page).write_text(
        f"# {package} API reference\n\n::: {import_name}\n", encoding="utf-8"
    )
    pages.append(("API reference", api_page))
    return pages


def prepare_readme_sources(package: str, root: Path, pkgroot: Path) -> List[Page]:
    doc_source = root / SOURCE_DIR
    doc_source.mkdir(parents=True, exist_ok=True)
    if not _copy_readme(pkgroot, doc_source):
        (doc_source / INDEX_PAGE).write_text(
            f"# {package}\n\n{package} ships without a README and could not be loaded, "
            "so no further documentation is available.\n",
            encoding="utf-8",
        )
    return [("Readme", INDEX_PAGE)]


def render_makedocs_program(
    *, sitename: str, root: Path, pages: Sequence[Page], modules: Sequence[str]
) -> str:
    return (
        "from pkgdocs.documenter import makedocs\n"
        "\n"
        "makedocs(\n"
        f"    sitename={sitename!r},\n"
        f"    root={str(root)!r},\n"
        f"    source={SOURCE_DIR!r},\n"
        f"    build={BUILD_DIR!r},\n"
        "    format='html',\n"
        f"    pages={[tuple(page) for page in pages]!r},\n"
        f"    modules={list(modules)!r},\n"
        ")\n"
    )


def find_readme(pkgroot: Path) -> Path | None:
    for name in README_NAMES:
        candidate = pkgroot / name
        if candidate.is_file():
            return candidate
    return None


def _copy_readme(pkgroot: Path, doc_source: Path) -> bool:
    readme = find_readme(pkgroot)
    if readme is None:
        return False
    target = doc_source / INDEX_PAGE
    # MkDocs only reads UTF-8 sources.
    text = readme.read_bytes().decode("utf-8", errors="replace")
    target.write_text(text, encoding="utf-8")
    copy_local_links(readme, target)
    return True


def _run_makedocs(
    env: Environment,
    root: Path,
    *,
    sitename: str,
    pages: Sequence[Page],
    modules: Sequence[str],
) -> Path:
    program = root / "make.py"
    program.write_text(
        render_makedocs_program(sitename=sitename, root=root, pages=pages, modules=modules),
        encoding="utf-8",
    )
    logger.info("Rendering fallback docs for %s", sitename)
    env.run(["-B", str(program)], cwd=root)
    return root / BUILD_DIR


__all__ = [
    "default_docs",
    "find_readme",
    "prepare_default_sources",
    "prepare_readme_sources",
    "readme_docs",
    "render_makedocs_program",
]
