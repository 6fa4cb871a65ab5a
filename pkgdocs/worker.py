"""Worker entry point: ``python -m pkgdocs.worker NAME URL VERSION BUILDDIR``.

Runs in a fresh interpreter started by the scheduler. Everything it has to
say goes to stdout/stderr (captured into the job log) and the metadata record
written to ``BUILDDIR/meta.toml``.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Sequence

from .config import ConfigError, PkgDocsConfig, load_config
from .logging import configure_logging, get_logger
from .orchestrator import Orchestrator

logger = get_logger("worker")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pkgdocs.worker", description="Build docs for one package.")
    parser.add_argument("name")
    parser.add_argument("url")
    parser.add_argument("version")
    parser.add_argument("builddir", type=Path)
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging(verbose=args.verbose, stream=sys.stdout, timestamps=True)
    try:
        config = load_config()
    except ConfigError as exc:
        logger.error("Ignoring invalid configuration: %s", exc)
        config = PkgDocsConfig(root=Path.cwd())
    Orchestrator(config).build(args.name, args.url, args.version, args.builddir)
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised through the scheduler
    sys.exit(main())
