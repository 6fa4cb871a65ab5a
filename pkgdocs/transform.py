"""Rewrite a package's docs build script before running it.

The script is parsed with :mod:`ast` and treated as a sequence of top-level
statements. Deployment calls are dropped wherever they appear. Build calls
at the top level or directly inside an ``if __name__ == "__main__":`` block
are pinned to HTML output rooted at the script's directory; build calls
nested deeper are left alone. Top-level imports turn into
``_ensure_installed(...)`` calls placed ahead of the program so the job
environment has the script's own dependencies.
"""

from __future__ import annotations

import ast
import copy
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, List, Optional, Tuple

from .logging import get_logger
from .models import TransformedScript

logger = get_logger("transform")

DEFAULT_BUILD_DIR = "build"
ENSURE_FUNCTION = "_ensure_installed"

_PRELUDE = f'''
import importlib.util as _pkgdocs_importlib_util
import subprocess as _pkgdocs_subprocess
import sys as _pkgdocs_sys


def {ENSURE_FUNCTION}(*modules):
    missing = [name for name in modules if _pkgdocs_importlib_util.find_spec(name) is None]
    if missing:
        _pkgdocs_subprocess.check_call([_pkgdocs_sys.executable, "-m", "pip", "install", *missing])
'''


class TransformError(ValueError):
    """Raised when a build script cannot be parsed or safely rewritten."""


@dataclass(frozen=True)
class TransformRules:
    """Names of the operations and keywords the transformer recognises."""

    build_calls: FrozenSet[str] = field(default_factory=lambda: frozenset({"makedocs"}))
    deploy_calls: FrozenSet[str] = field(default_factory=lambda: frozenset({"deploydocs"}))
    format_keyword: str = "format"
    build_keyword: str = "build"
    root_keyword: str = "root"
    html_format: str = "html"


class ScriptTransformer:
    """Applies :class:`TransformRules` to build scripts."""

    def __init__(self, rules: TransformRules | None = None) -> None:
        self.rules = rules or TransformRules()

    def transform(self, script_path: Path | str) -> TransformedScript:
        """Parse ``script_path`` and return the rewritten program and build dir."""
        path = Path(script_path).resolve()
        try:
            source = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise TransformError(f"Cannot read build script {path}: {exc}") from exc
        try:
            tree = ast.parse(source, filename=str(path))
        except SyntaxError as exc:
            raise TransformError(f"Cannot parse build script {path}: {exc}") from exc
        return self.transform_tree(tree, path.parent)

    def transform_tree(self, tree: ast.Module, script_dir: Path) -> TransformedScript:
        tree = copy.deepcopy(tree)
        build_dir = script_dir / DEFAULT_BUILD_DIR
        if not tree.body:
            return TransformedScript(source="", build_dir=build_dir)

        future: List[ast.stmt] = []
        body: List[ast.stmt] = []
        requirements: List[str] = []
        removed = 0
        stripper = _DeployStripper(self._is_deploy)

        for statement in tree.body:
            call = _statement_call(statement)
            if call is not None and self._is_deploy(call):
                removed += 1
                continue
            if call is not None and self._is_build(call):
                build_dir = self._rewrite_build_call(call, script_dir) or build_dir
            elif isinstance(statement, ast.ImportFrom) and statement.module == "__future__":
                future.append(statement)
                continue
            elif isinstance(statement, (ast.Import, ast.ImportFrom)):
                for name in _imported_modules(statement):
                    if name not in requirements:
                        requirements.append(name)
            else:
                if _is_main_guard(statement):
                    build_dir = self._rewrite_guarded_builds(statement, script_dir) or build_dir
                statement = stripper.visit(statement)
            body.append(statement)

        removed += stripper.removed
        prelude: List[ast.stmt] = []
        if requirements:
            prelude = ast.parse(_PRELUDE).body
            prelude.append(_ensure_call(requirements))

        module = ast.Module(body=future + prelude + body, type_ignores=[])
        ast.fix_missing_locations(module)
        logger.debug(
            "Rewrote build script in %s: %d deploy call(s) removed, build dir %s",
            script_dir,
            removed,
            build_dir,
        )
        return TransformedScript(
            source=ast.unparse(module) + "\n",
            build_dir=build_dir,
            removed_deploys=removed,
            requirements=tuple(requirements),
            statement_count=len(tree.body),
        )

    # ------------------------------------------------------------------
    # Helpers

    def _is_deploy(self, call: ast.Call) -> bool:
        return _callee_name(call) in self.rules.deploy_calls

    def _is_build(self, call: ast.Call) -> bool:
        return _callee_name(call) in self.rules.build_calls

    def _rewrite_build_call(self, call: ast.Call, script_dir: Path) -> Optional[Path]:
        """Force HTML output and the root dir; return a custom build dir if declared."""
        rules = self.rules
        build_dir: Optional[Path] = None
        format_seen = False
        keywords: List[ast.keyword] = []
        for keyword in call.keywords:
            if keyword.arg == rules.root_keyword:
                continue
            if keyword.arg == rules.format_keyword:
                keyword = ast.keyword(arg=rules.format_keyword, value=ast.Constant(rules.html_format))
                format_seen = True
            elif keyword.arg == rules.build_keyword:
                value = keyword.value
                if not (isinstance(value, ast.Constant) and isinstance(value.value, str)):
                    raise TransformError(
                        f"{_callee_name(call)}({rules.build_keyword}=...) must be a string literal"
                    )
                build_dir = Path(os.path.normpath(script_dir / value.value))
            keywords.append(keyword)
        if not format_seen:
            keywords.append(ast.keyword(arg=rules.format_keyword, value=ast.Constant(rules.html_format)))
        keywords.append(ast.keyword(arg=rules.root_keyword, value=ast.Constant(str(script_dir))))
        call.keywords = keywords
        return build_dir

    def _rewrite_guarded_builds(self, guard: ast.If, script_dir: Path) -> Optional[Path]:
        build_dir: Optional[Path] = None
        for statement in guard.body:
            call = _statement_call(statement)
            if call is not None and self._is_build(call):
                build_dir = self._rewrite_build_call(call, script_dir) or build_dir
        return build_dir


class _DeployStripper(ast.NodeTransformer):
    """Removes deploy calls nested anywhere inside compound statements."""

    def __init__(self, is_deploy) -> None:
        self._is_deploy = is_deploy
        self.removed = 0

    def generic_visit(self, node: ast.AST) -> ast.AST:
        for name, value in ast.iter_fields(node):
            if not (isinstance(value, list) and value and isinstance(value[0], ast.stmt)):
                continue
            kept = []
            for statement in value:
                call = _statement_call(statement)
                if call is not None and self._is_deploy(call):
                    self.removed += 1
                    continue
                kept.append(statement)
            setattr(node, name, kept or [ast.Pass()])
        return super().generic_visit(node)


def transform(script_path: Path | str, rules: TransformRules | None = None) -> Tuple[str, Path]:
    """Return ``(rewritten source, build output directory)`` for a build script."""
    result = ScriptTransformer(rules).transform(script_path)
    return result.source, result.build_dir


def _statement_call(statement: ast.stmt) -> Optional[ast.Call]:
    if isinstance(statement, ast.Expr) and isinstance(statement.value, ast.Call):
        return statement.value
    return None


def _is_main_guard(statement: ast.stmt) -> bool:
    """Match ``if __name__ == "__main__":`` in either operand order."""
    if not isinstance(statement, ast.If) or not isinstance(statement.test, ast.Compare):
        return False
    test = statement.test
    if len(test.ops) != 1 or not isinstance(test.ops[0], ast.Eq):
        return False
    operands = [test.left, test.comparators[0]]
    has_name = any(isinstance(node, ast.Name) and node.id == "__name__" for node in operands)
    has_main = any(isinstance(node, ast.Constant) and node.value == "__main__" for node in operands)
    return has_name and has_main


def _callee_name(call: ast.Call) -> Optional[str]:
    func = call.func
    if isinstance(func, ast.Name):
        return func.id
    if isinstance(func, ast.Attribute):
        return func.attr
    return None


def _imported_modules(statement: ast.Import | ast.ImportFrom) -> List[str]:
    if isinstance(statement, ast.Import):
        return [alias.name.split(".", 1)[0] for alias in statement.names]
    if statement.level or not statement.module:
        return []
    return [statement.module.split(".", 1)[0]]


def _ensure_call(modules: List[str]) -> ast.stmt:
    return ast.Expr(
        value=ast.Call(
            func=ast.Name(id=ENSURE_FUNCTION, ctx=ast.Load()),
            args=[ast.Constant(name) for name in modules],
            keywords=[],
        )
    )


__all__ = [
    "DEFAULT_BUILD_DIR",
    "ENSURE_FUNCTION",
    "ScriptTransformer",
    "TransformError",
    "TransformRules",
    "transform",
]
