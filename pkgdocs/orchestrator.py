"""Single-package documentation pipeline: install, pick a strategy, build, record."""

from __future__ import annotations

import html
import json
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.error import URLError
from urllib.request import urlopen

from packaging.version import Version

from . import failsafe
from .config import PkgDocsConfig
from .environment import Environment
from .git.clone import GitCloner
from .installer import Installer, InstallResult
from .logging import get_logger
from .metadata import GitHubMetadataProvider, write_meta
from .models import (
    BuildResult,
    DocType,
    GitRepositoryDocs,
    HostedDocs,
    JobState,
    PackageSpec,
    TierOutcome,
    format_stage_marker,
)
from .strategy import describe, select_strategy
from .transform import ScriptTransformer, TransformError

BUILD_SCRIPT = "make.py"
TRANSFORMED_SCRIPT = "_pkgdocs_make.py"
ALTERNATE_DOC_DIRS = ("docs", "doc")
PACKAGE_SOURCE_DIR = "_packagesource"
SEARCH_INDEX_PATH = "search/search_index.json"

EnvironmentFactory = Callable[[Path], Environment]
SearchIndexFetcher = Callable[[str, Path], Path]
StageReporter = Callable[[JobState], None]

_REDIRECT_TEMPLATE = """<!DOCTYPE html>
<html>
    <head>
        <meta http-equiv="Content-Type" content="text/html; charset=utf-8" />
        <script type="text/javascript">
            window.onload = function () {{
                window.location.replace({target_js});
            }}
        </script>
    </head>
    <body>
        Redirecting to <a href="{target_attr}">{target_text}</a>.
    </body>
</html>
"""


class Orchestrator:
    """Builds documentation for one package at one version.

    Collaborators are injectable so tests can replace the environment, the
    installer, git and network access. Every per-package failure is logged
    with the package name and turned into a degraded ``meta.toml`` record.
    """

    def __init__(
        self,
        config: PkgDocsConfig | None = None,
        *,
        installer: Installer | None = None,
        environment_factory: EnvironmentFactory | None = None,
        transformer: ScriptTransformer | None = None,
        cloner: GitCloner | None = None,
        search_index_fetcher: SearchIndexFetcher | None = None,
        metadata_provider: GitHubMetadataProvider | None = None,
        stage_reporter: StageReporter | None = None,
        scratch_dir: Path | None = None,
    ) -> None:
        self.config = config or PkgDocsConfig(root=Path.cwd())
        self.installer = installer or Installer()
        self.environment_factory = environment_factory or self._create_environment
        self.transformer = transformer or ScriptTransformer()
        self.cloner = cloner or GitCloner()
        self.search_index_fetcher = search_index_fetcher or fetch_search_index
        self.metadata_provider = metadata_provider or GitHubMetadataProvider(
            self.config.resolve_github_token()
        )
        self.stage_reporter = stage_reporter or print_stage
        self.scratch_dir = scratch_dir
        self.logger = get_logger("orchestrator")

    def build(self, name: str, url: str, version: Version | str, buildpath: Path | str) -> Dict[str, Any]:
        """Build docs into ``buildpath`` and write ``buildpath/meta.toml``."""
        buildpath = Path(buildpath)
        meta = self.package_docs(name, url, version, buildpath)
        try:
            meta.update(self.package_metadata(name, url))
        except Exception as exc:
            self.logger.error("Cannot fetch metadata for %s: %s", name, exc, exc_info=True)
        self.logger.info("Writing metadata for %s", name)
        try:
            write_meta(buildpath, meta)
        except OSError as exc:
            self.logger.error("Cannot write metadata for %s to %s: %s", name, buildpath, exc)
        return meta

    def package_docs(self, name: str, url: str, version: Version | str, buildpath: Path) -> Dict[str, Any]:
        meta: Dict[str, Any] = {"name": name, "url": url, "version": str(version), "installs": False}
        self.logger.info("Generating docs for %s %s", name, version)
        try:
            spec = PackageSpec(name=name, url=url, version=Version(str(version)))
            with tempfile.TemporaryDirectory(prefix="pkgdocs-", dir=self.scratch_dir) as scratch:
                sandbox = Path(scratch)
                self.stage_reporter(JobState.INSTALLING)
                env = self.environment_factory(sandbox / "env")
                result = self.create_docs(spec, buildpath, env, sandbox)
                meta["installs"] = result.installed
                if result.installed:
                    meta["doctype"] = result.doctype.value
                self.logger.info("Done generating docs for %s", name)
                if result.root is not None:
                    self.package_source(name, result.root, buildpath)
        except Exception as exc:
            self.logger.error("Package %s didn't build: %s", name, exc, exc_info=True)
            meta["installs"] = False
            meta.pop("doctype", None)
        return meta

    def package_metadata(self, name: str, url: str) -> Dict[str, Any]:
        return self.metadata_provider.fetch(name, url)

    def package_source(self, name: str, root: Path, buildpath: Path) -> None:
        """Snapshot the package root into ``buildpath/_packagesource``."""
        if not root.is_dir():
            return
        self.logger.info("Copying source code for %s", name)
        _replace_tree(root, buildpath / PACKAGE_SOURCE_DIR)

    def create_docs(
        self, spec: PackageSpec, buildpath: Path, env: Environment, sandbox: Path
    ) -> BuildResult:
        install = self.installer.install_and_load(spec, env, sandbox)

        self.stage_reporter(JobState.SELECTING_STRATEGY)
        strategy = select_strategy(install.root)
        self.logger.info("%s specifies docs of type %s", spec.name, describe(strategy))

        self.stage_reporter(JobState.BUILDING)
        if isinstance(strategy, HostedDocs):
            outcome = self.build_hosted_docs(spec.name, buildpath, strategy.url)
        elif isinstance(strategy, GitRepositoryDocs):
            outcome = self.build_git_docs(spec.name, install, buildpath, strategy.url, env, sandbox)
        else:
            outcome = self.build_local_dir_docs(
                spec.name, install, buildpath, strategy.path, env, sandbox
            )
        if not outcome.ok:
            self.logger.error("No documentation could be built for %s: %s", spec.name, outcome.reason)
        return BuildResult(
            doctype=outcome.doctype if outcome.ok else DocType.NONE,
            installed=True,
            artifact_path=buildpath if outcome.ok else None,
            root=install.root,
        )

    def build_local_dir_docs(
        self,
        package: str,
        install: InstallResult,
        buildpath: Path,
        docdir: Path | None,
        env: Environment,
        sandbox: Path,
    ) -> TierOutcome:
        """Run the fallback cascade for docs that live next to the sources."""
        if not install.loaded:
            self.logger.info("%s does not load; building README-only docs", package)
            return self._fallback_docs(
                package,
                buildpath,
                sandbox,
                lambda root: failsafe.readme_docs(package, root, install.root, env),
            )

        outcome = self._build_script_docs(package, install.root, buildpath, docdir, env)
        if outcome.ok:
            return outcome

        self.logger.info("Building default docs for %s (%s)", package, outcome.reason)
        return self._fallback_docs(
            package,
            buildpath,
            sandbox,
            lambda root: failsafe.default_docs(
                package, root, install.root, env, import_name=install.import_name
            ),
        )

    def build_git_docs(
        self,
        package: str,
        install: InstallResult,
        buildpath: Path,
        url: str,
        env: Environment,
        sandbox: Path,
    ) -> TierOutcome:
        """Clone the linked docs repository and build it like a local directory."""
        checkout = self.cloner.clone(url, sandbox / "docsource")
        docs_install = InstallResult(loaded=True, root=checkout, import_name=install.import_name)
        return self.build_local_dir_docs(package, docs_install, buildpath, checkout, env, sandbox)

    def build_hosted_docs(self, package: str, buildpath: Path, url: str) -> TierOutcome:
        """Write a redirect page to externally hosted docs."""
        buildpath.mkdir(parents=True, exist_ok=True)
        (buildpath / "index.html").write_text(render_redirect(url), encoding="utf-8")
        try:
            self.search_index_fetcher(url, buildpath / SEARCH_INDEX_PATH)
        except (URLError, OSError, ValueError) as exc:
            self.logger.error("Search index download failed for %s (%s): %s", package, url, exc)
        return TierOutcome.success(DocType.REAL)

    # ------------------------------------------------------------------
    # Cascade tiers

    def _build_script_docs(
        self,
        package: str,
        root: Path,
        buildpath: Path,
        docdir: Path | None,
        env: Environment,
    ) -> TierOutcome:
        for candidate in candidate_doc_dirs(root, docdir):
            script = candidate / BUILD_SCRIPT
            if not script.is_file():
                self.logger.debug("No %s in %s", BUILD_SCRIPT, candidate)
                continue
            return self._run_build_script(package, script, buildpath, env)
        return TierOutcome.fallthrough("no documentation build script found")

    def _run_build_script(
        self, package: str, script: Path, buildpath: Path, env: Environment
    ) -> TierOutcome:
        try:
            transformed = self.transformer.transform(script)
        except TransformError as exc:
            self.logger.error("Cannot rewrite build script for %s: %s", package, exc)
            return TierOutcome.fallthrough(f"transform failed: {exc}")
        if transformed.is_empty:
            return TierOutcome.fallthrough(f"{script.name} is empty")

        program = script.parent / TRANSFORMED_SCRIPT
        try:
            program.write_text(transformed.source, encoding="utf-8")
            env.run(["-E", "-B", str(program)], cwd=script.parent)
        except (subprocess.CalledProcessError, OSError, ValueError) as exc:
            self.logger.error("Tried building docs from %s for %s but failed: %s", script, package, exc)
            return TierOutcome.fallthrough(f"build script failed: {exc}")

        if not transformed.build_dir.is_dir():
            self.logger.error(
                "Build script for %s finished without output in %s", package, transformed.build_dir
            )
            return TierOutcome.fallthrough("build script produced no output")
        _replace_tree(transformed.build_dir, buildpath)
        return TierOutcome.success(DocType.REAL)

    def _fallback_docs(
        self,
        package: str,
        buildpath: Path,
        sandbox: Path,
        generate: Callable[[Path], Path],
    ) -> TierOutcome:
        sandbox.mkdir(parents=True, exist_ok=True)
        root = Path(tempfile.mkdtemp(prefix="fallback-", dir=sandbox))
        try:
            site = generate(root)
        except (subprocess.CalledProcessError, OSError, ValueError) as exc:
            self.logger.error("Fallback docs for %s failed: %s", package, exc)
            return TierOutcome.fallthrough(f"fallback docs failed: {exc}")
        if not site.is_dir():
            return TierOutcome.fallthrough("fallback docs produced no output")
        _replace_tree(site, buildpath)
        return TierOutcome.success(DocType.DEFAULT)

    def _create_environment(self, path: Path) -> Environment:
        env = Environment.create(path)
        env.install_toolchain(self.config.toolchain.requirements)
        return env


def candidate_doc_dirs(root: Path, docdir: Path | None = None) -> List[Path]:
    """Return existing documentation directories in lookup order, without repeats."""
    candidates: List[Path] = []
    options: List[Optional[Path]] = [docdir, *(root / name for name in ALTERNATE_DOC_DIRS)]
    for option in options:
        if option is None or not option.is_dir():
            continue
        if any(option.resolve() == seen.resolve() for seen in candidates):
            continue
        candidates.append(option)
    return candidates


def render_redirect(url: str) -> str:
    return _REDIRECT_TEMPLATE.format(
        target_js=json.dumps(url),
        target_attr=html.escape(url, quote=True),
        target_text=html.escape(url),
    )


def fetch_search_index(url: str, dest: Path, *, timeout: float = 30.0) -> Path:
    """Download the MkDocs search index published next to hosted docs."""
    with urlopen(f"{url.rstrip('/')}/{SEARCH_INDEX_PATH}", timeout=timeout) as response:
        payload = response.read()
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_bytes(payload)
    return dest


def print_stage(state: JobState) -> None:
    print(format_stage_marker(state), flush=True)


def _replace_tree(source: Path, dest: Path) -> None:
    if dest.exists():
        shutil.rmtree(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copytree(source, dest, symlinks=True)


__all__ = [
    "Orchestrator",
    "candidate_doc_dirs",
    "fetch_search_index",
    "print_stage",
    "render_redirect",
]
