"""CLI entrypoints for pkgdocs commands."""

from __future__ import annotations

import argparse
import sys
from collections import Counter
from pathlib import Path
from typing import List

from .config import ConfigError, PkgDocsConfig, load_config
from .logging import configure_logging
from .models import BuildJob, JobState
from .orchestrator import Orchestrator
from .registry import RegistryCatalog, RegistryError, resolve
from .scheduler import VERSION_POLICIES, build_documentations, worker_environment


def _add_common_options(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    verbose_kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
        "default": argparse.SUPPRESS if suppress_default else False,
    }
    parser.add_argument("-v", "--verbose", **verbose_kwargs)
    parser.add_argument(
        "--config",
        type=Path,
        default=argparse.SUPPRESS if suppress_default else None,
        help="Path to pkgdocs.yml or the directory holding it.",
    )


def _add_registry_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--registry",
        type=Path,
        default=None,
        help="Registry root (overrides the configured registry).",
    )
    parser.add_argument(
        "--python-version",
        default=None,
        help="Target Python version used for compatibility (defaults to the running one).",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pkgdocs",
        description="Build documentation sites for registry packages in isolated workers.",
    )
    _add_common_options(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    catalog_parser = subparsers.add_parser(
        "catalog",
        help="List packages and the versions compatible with the target Python.",
    )
    _add_common_options(catalog_parser, suppress_default=True)
    _add_registry_options(catalog_parser)

    build_parser = subparsers.add_parser(
        "build",
        help="Build documentation for one package version in this process.",
    )
    _add_common_options(build_parser, suppress_default=True)
    build_parser.add_argument("name", help="Distribution name.")
    build_parser.add_argument("url", help="Source repository URL.")
    build_parser.add_argument("version", help="Version to install.")
    build_parser.add_argument("output", type=Path, help="Directory receiving the site and meta.toml.")

    batch_parser = subparsers.add_parser(
        "batch",
        help="Build documentation for the whole registry with worker processes.",
    )
    _add_common_options(batch_parser, suppress_default=True)
    _add_registry_options(batch_parser)
    batch_parser.add_argument(
        "--processes",
        type=int,
        default=None,
        help="Maximum number of concurrent workers.",
    )
    batch_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds a worker may stay silent before it is killed.",
    )
    batch_parser.add_argument(
        "--all-versions",
        action="store_true",
        help="Build every compatible version instead of the latest only.",
    )
    batch_parser.add_argument(
        "--basepath",
        type=Path,
        default=None,
        help="Directory receiving build/ and logs/ (defaults to the current directory).",
    )

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for pkgdocs commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose))

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        parser.exit(1, f"pkgdocs: {exc}\n")

    if args.command == "catalog":
        catalog = _resolve_catalog(parser, args, config)
        try:
            for name, url, versions in catalog:
                print(f"{name} {url} {', '.join(str(version) for version in versions)}")
        except RegistryError as exc:
            parser.exit(1, f"pkgdocs: {exc}\n")
    elif args.command == "build":
        meta = Orchestrator(config).build(args.name, args.url, args.version, args.output)
        doctype = meta.get("doctype", "none")
        print(f"{args.name} {args.version}: installs={str(meta['installs']).lower()} doctype={doctype}")
        print(f"Metadata written to {_relativize(args.output / 'meta.toml')}")
    elif args.command == "batch":
        catalog = _resolve_catalog(parser, args, config)
        basepath = (args.basepath or config.build.basepath or Path.cwd()).resolve()
        policy = "all" if args.all_versions else config.build.versions
        try:
            jobs = build_documentations(
                catalog,
                processes=args.processes or config.build.processes,
                sleeptime=config.build.sleeptime,
                basepath=basepath,
                filter_versions=VERSION_POLICIES[policy],
                timeout=args.timeout or config.build.timeout,
                poll_interval=config.build.poll_interval,
                env=worker_environment(config.source),
            )
        except RegistryError as exc:
            parser.exit(1, f"pkgdocs: {exc}\n")
        except KeyboardInterrupt:
            parser.exit(130, "pkgdocs batch interrupted; running workers were stopped.\n")
        except (OSError, ValueError) as exc:
            parser.exit(1, f"pkgdocs batch failed: {exc}\nRun with --verbose for more details.\n")
        print(_summary(jobs, basepath))
    else:  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")


def _resolve_catalog(
    parser: argparse.ArgumentParser, args: argparse.Namespace, config: PkgDocsConfig
) -> RegistryCatalog:
    registry = args.registry or config.registry
    if registry is None:
        parser.exit(1, "pkgdocs: no registry given; pass --registry or set it in pkgdocs.yml\n")
    try:
        return resolve(registry, args.python_version or config.python_version)
    except (RegistryError, ValueError) as exc:
        parser.exit(1, f"pkgdocs: {exc}\n")


def _summary(jobs: List[BuildJob], basepath: Path) -> str:
    counts = Counter(job.state for job in jobs)
    lines = [f"Built {len(jobs)} job(s) into {_relativize(basepath)}"]
    for state in JobState:
        if counts[state]:
            lines.append(f"  {state.value}: {counts[state]}")
    return "\n".join(lines)


def _relativize(path: Path) -> str:
    try:
        return str(path.resolve().relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    main(sys.argv[1:])
