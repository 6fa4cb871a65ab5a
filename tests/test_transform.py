"""Tests for the docs build script transformer."""

from __future__ import annotations

import ast
import textwrap
from pathlib import Path

import pytest

from pkgdocs.transform import ENSURE_FUNCTION, ScriptTransformer, TransformError, TransformRules, transform


def _script(tmp_path: Path, body: str) -> Path:
    docs = tmp_path / "docs"
    docs.mkdir(exist_ok=True)
    script = docs / "make.py"
    script.write_text(textwrap.dedent(body).lstrip("\n"), encoding="utf-8")
    return script


def _calls(source: str) -> list[str]:
    names = []
    for node in ast.walk(ast.parse(source)):
        if isinstance(node, ast.Call):
            func = node.func
            names.append(func.id if isinstance(func, ast.Name) else getattr(func, "attr", "?"))
    return names


def test_plain_build_call_only_gains_root_and_html(tmp_path: Path) -> None:
    script = _script(tmp_path, 'makedocs(sitename="Example")\n')
    script_dir = script.resolve().parent

    result = ScriptTransformer().transform(script)

    expected = f"makedocs(sitename='Example', format='html', root={str(script_dir)!r})"
    assert ast.dump(ast.parse(result.source)) == ast.dump(ast.parse(expected))
    assert result.build_dir == script_dir / "build"
    assert result.removed_deploys == 0
    assert not result.is_empty


def test_every_deploy_call_is_removed(tmp_path: Path) -> None:
    script = _script(
        tmp_path,
        """
        print("start")
        makedocs(sitename="Example", format="latex")
        deploydocs(repo="github.com/example/example")
        documenter.deploydocs(repo="elsewhere")
        if True:
            deploydocs(repo="nested")
        print("done")
        """,
    )

    result = ScriptTransformer().transform(script)

    calls = _calls(result.source)
    assert "deploydocs" not in calls
    assert calls.count("print") == 2
    assert calls.count("makedocs") == 1
    assert result.removed_deploys == 3
    assert "format='html'" in result.source
    assert "format='latex'" not in result.source
    assert "if True:\n    pass" in result.source


def test_custom_build_dir_is_resolved_against_script(tmp_path: Path) -> None:
    script = _script(tmp_path, 'makedocs(sitename="X", build="../site/out", root="/elsewhere")\n')
    script_dir = script.resolve().parent

    source, build_dir = transform(script)

    assert build_dir == (script_dir.parent / "site" / "out")
    tree = ast.parse(source)
    call = tree.body[0].value
    keywords = {keyword.arg: keyword.value.value for keyword in call.keywords}
    assert keywords["root"] == str(script_dir)
    assert keywords["build"] == "../site/out"
    assert [keyword.arg for keyword in call.keywords].count("root") == 1


def test_non_literal_build_dir_is_rejected(tmp_path: Path) -> None:
    script = _script(tmp_path, 'out = "site"\nmakedocs(sitename="X", build=out)\n')
    with pytest.raises(TransformError):
        ScriptTransformer().transform(script)


def test_syntax_error_raises_transform_error(tmp_path: Path) -> None:
    script = _script(tmp_path, "makedocs(sitename=\n")
    with pytest.raises(TransformError):
        ScriptTransformer().transform(script)


def test_empty_script_yields_empty_program(tmp_path: Path) -> None:
    script = _script(tmp_path, "# nothing to see here\n")

    result = ScriptTransformer().transform(script)

    assert result.source == ""
    assert result.is_empty
    assert result.build_dir == script.resolve().parent / "build"


def test_imports_become_ensure_installed_prelude(tmp_path: Path) -> None:
    script = _script(
        tmp_path,
        """
        from __future__ import annotations
        import os.path
        import numpy.linalg as la, yaml
        from pkgdocs.documenter import makedocs, deploydocs
        from . import local_helpers
        makedocs(sitename="X")
        """,
    )

    result = ScriptTransformer().transform(script)

    assert result.requirements == ("os", "numpy", "yaml", "pkgdocs")
    tree = ast.parse(result.source)
    assert isinstance(tree.body[0], ast.ImportFrom) and tree.body[0].module == "__future__"
    ensure_calls = [
        node
        for node in tree.body
        if isinstance(node, ast.Expr)
        and isinstance(node.value, ast.Call)
        and getattr(node.value.func, "id", None) == ENSURE_FUNCTION
    ]
    assert len(ensure_calls) == 1
    assert [arg.value for arg in ensure_calls[0].value.args] == ["os", "numpy", "yaml", "pkgdocs"]
    ensure_index = tree.body.index(ensure_calls[0])
    first_import = next(
        index
        for index, node in enumerate(tree.body)
        if isinstance(node, ast.Import) and node.names[0].name == "os.path"
    )
    assert ensure_index < first_import


def test_custom_rules_recognise_other_names(tmp_path: Path) -> None:
    script = _script(tmp_path, 'build_site(title="X")\npublish()\n')
    rules = TransformRules(build_calls=frozenset({"build_site"}), deploy_calls=frozenset({"publish"}))

    result = ScriptTransformer(rules).transform(script)

    assert _calls(result.source) == ["build_site"]
    assert "format='html'" in result.source


def test_build_call_under_main_guard_is_rewritten(tmp_path: Path) -> None:
    script = _script(
        tmp_path,
        """
        def main():
            makedocs(sitename="Inner", format="pdf")

        if __name__ == "__main__":
            makedocs(sitename="X", format="latex", build="site", root="/elsewhere")
            deploydocs(repo="github.com/example/example")
        """,
    )
    script_dir = script.resolve().parent

    result = ScriptTransformer().transform(script)

    tree = ast.parse(result.source)
    guard = tree.body[1]
    call = guard.body[0].value
    keywords = {keyword.arg: keyword.value.value for keyword in call.keywords}
    assert keywords["format"] == "html"
    assert keywords["root"] == str(script_dir)
    assert result.build_dir == script_dir / "site"
    assert result.removed_deploys == 1
    assert len(guard.body) == 1
    assert "format='pdf'" in result.source
