from __future__ import annotations

import logging
from pathlib import Path

import pytest

from tests._fixtures.registry_builder import PackageTreeBuilder, RegistryBuilder


@pytest.fixture
def registry_builder(tmp_path: Path) -> RegistryBuilder:
    """Provide a reusable registry builder rooted at the pytest tmp_path."""
    return RegistryBuilder(tmp_path)


@pytest.fixture
def package_tree(tmp_path: Path) -> PackageTreeBuilder:
    """Provide a package source tree builder rooted at the pytest tmp_path."""
    return PackageTreeBuilder(tmp_path)


@pytest.fixture(autouse=True)
def _reset_pkgdocs_logger():
    """Undo configure_logging() so caplog sees pkgdocs records in every test."""
    yield
    logger = logging.getLogger("pkgdocs")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
