"""Tests for job environments and package installation."""

from __future__ import annotations

import io
import subprocess
import tarfile
from pathlib import Path

import pytest
from packaging.version import Version

from pkgdocs.environment import Environment
from pkgdocs.installer import Installer, PackageUnusable, unpack_source
from pkgdocs.models import PackageSpec


class RecordingRunner:
    """Runner double keyed on the first argument after the interpreter."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.fail_install = False
        self.fail_import = False
        self.sdist: Path | None = None
        self.origin = ""

    def __call__(self, args, *, cwd=None, env=None, capture_output=False) -> str:
        args = list(args)
        self.calls.append(args)
        if args[1:4] == ["-m", "pip", "install"] and self.fail_install:
            raise subprocess.CalledProcessError(1, args)
        if args[1:4] == ["-m", "pip", "download"]:
            if self.sdist is None:
                raise subprocess.CalledProcessError(1, args)
            dest = Path(args[args.index("--dest") + 1])
            target = dest / self.sdist.name
            target.write_bytes(self.sdist.read_bytes())
            return ""
        if args[1] == "-c" and "import_module" in args[2]:
            if self.fail_import:
                raise subprocess.CalledProcessError(1, args, stderr="ImportError: boom\n")
            return ""
        if args[1] == "-c" and "find_spec" in args[2]:
            return self.origin + "\n"
        return ""


def _sdist(tmp_path: Path, name: str = "example-1.0") -> Path:
    archive = tmp_path / f"{name}.tar.gz"
    with tarfile.open(archive, "w:gz") as tar:
        data = b"# Example\n"
        info = tarfile.TarInfo(f"{name}/README.md")
        info.size = len(data)
        tar.addfile(info, io.BytesIO(data))
    return archive


def _spec() -> PackageSpec:
    return PackageSpec(name="Example", url="https://github.com/o/example", version=Version("1.0"))


def test_environment_runs_commands_with_its_own_python(tmp_path: Path) -> None:
    runner = RecordingRunner()
    env = Environment(tmp_path / "env", runner=runner)

    env.pip_install("a==1", "b", no_deps=True)

    assert runner.calls[0][0] == str(env.python)
    assert runner.calls[0][1:] == ["-m", "pip", "install", "--disable-pip-version-check", "--no-deps", "a==1", "b"]
    assert env.python.parent.parent == tmp_path / "env"


def test_pip_install_without_requirements_is_noop(tmp_path: Path) -> None:
    runner = RecordingRunner()
    Environment(tmp_path, runner=runner).pip_install()
    assert runner.calls == []


def test_can_import_reports_failure(tmp_path: Path) -> None:
    runner = RecordingRunner()
    env = Environment(tmp_path, runner=runner)
    assert env.can_import("example") is True

    runner.fail_import = True
    assert env.can_import("example") is False


def test_module_path_returns_package_directory(tmp_path: Path) -> None:
    runner = RecordingRunner()
    env = Environment(tmp_path, runner=runner)
    runner.origin = str(tmp_path / "site-packages" / "example" / "__init__.py")
    assert env.module_path("example") == tmp_path / "site-packages" / "example"

    runner.origin = ""
    assert env.module_path("example") is None


def test_installer_uses_unpacked_sdist_as_root(tmp_path: Path) -> None:
    runner = RecordingRunner()
    runner.sdist = _sdist(tmp_path)
    env = Environment(tmp_path / "env", runner=runner)

    result = Installer().install_and_load(_spec(), env, tmp_path / "sandbox")

    assert result.loaded is True
    assert result.import_name == "example"
    assert result.root.name == "example-1.0"
    assert (result.root / "README.md").read_text(encoding="utf-8") == "# Example\n"
    assert ["-m", "pip", "install", "--disable-pip-version-check", "Example==1.0"] == runner.calls[0][1:]


def test_installer_falls_back_to_module_path(tmp_path: Path) -> None:
    runner = RecordingRunner()
    runner.fail_import = True
    runner.origin = str(tmp_path / "site" / "example" / "__init__.py")
    env = Environment(tmp_path / "env", runner=runner)

    result = Installer().install_and_load(_spec(), env, tmp_path / "sandbox")

    assert result.loaded is False
    assert result.root == tmp_path / "site" / "example"


def test_installer_raises_package_unusable(tmp_path: Path) -> None:
    runner = RecordingRunner()
    runner.fail_install = True
    env = Environment(tmp_path / "env", runner=runner)

    with pytest.raises(PackageUnusable) as excinfo:
        Installer().install_and_load(_spec(), env, tmp_path / "sandbox")

    assert excinfo.value.name == "Example"


def test_unpack_source_rejects_garbage(tmp_path: Path) -> None:
    archive = tmp_path / "broken.tar.gz"
    archive.write_bytes(b"not an archive")
    assert unpack_source(archive, tmp_path / "out") is None
