"""Integration tests for CLI commands."""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from codeskel import __version__
from codeskel.cli import app

from conftest import write_file

runner = CliRunner()


@pytest.fixture
def project(workspace: Path) -> Path:
    write_file(workspace, "b.py", 'def helper():\n    """Help out."""\n    return 1\n')
    write_file(workspace, "a.py", "import b\n\n\ndef main():\n    return b.helper()\n")
    return workspace


def _index(project: Path, *extra: str):
    return runner.invoke(app, ["index", "--workspace", str(project), *extra])


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"codeskel v{__version__}" in result.stdout


class TestIndexCommand:
    """Tests for 'cskel index'."""

    def test_full_build(self, project: Path):
        result = _index(project, "--full")

        assert result.exit_code == 0, result.stdout
        assert "Processed 2 document(s)" in result.stdout
        assert "2 file(s) indexed" in result.stdout

    def test_without_paths_is_full_build(self, project: Path):
        result = _index(project)

        assert result.exit_code == 0, result.stdout
        assert "Full build" in result.stdout

    def test_index_single_file(self, project: Path):
        result = _index(project, str(project / "b.py"))

        assert result.exit_code == 0, result.stdout
        assert "Processed 1 document(s)" in result.stdout
        assert "1 file(s) indexed" in result.stdout

    def test_filter_option(self, project: Path):
        write_file(project, "stubs/c.pyi", "def c() -> int: ...\n")

        result = _index(project, "--filter", "**/*.pyi")

        assert result.exit_code == 0, result.stdout
        assert "Processed 1 document(s)" in result.stdout

    def test_exclude_option(self, project: Path):
        write_file(project, "vendor/lib.py", "def v():\n    pass\n")

        result = _index(project, "--exclude", "vendor/")

        assert result.exit_code == 0, result.stdout
        assert "Processed 2 document(s)" in result.stdout

    def test_second_run_resumes_from_snapshot(self, project: Path):
        _index(project)

        result = runner.invoke(app, ["status", "--workspace", str(project)])

        assert result.exit_code == 0
        assert "Files" in result.stdout
        assert "2" in result.stdout


class TestRemoveCommand:
    def test_remove_indexed_file(self, project: Path):
        _index(project)

        result = runner.invoke(app, ["remove", str(project / "a.py"), "--workspace", str(project)])

        assert result.exit_code == 0, result.stdout
        assert "Removed a.py" in result.stdout
        assert (project / "a.py").exists()

    def test_remove_unknown_file(self, project: Path):
        result = runner.invoke(app, ["remove", str(project / "a.py"), "--workspace", str(project)])

        assert result.exit_code == 1
        assert "not indexed" in result.stdout


class TestSearchAndClear:
    def test_search(self, project: Path):
        _index(project)

        result = runner.invoke(app, ["search", "helper", "--workspace", str(project)])

        assert result.exit_code == 0, result.stdout
        assert "b.py" in result.stdout

    def test_search_without_index(self, project: Path):
        result = runner.invoke(app, ["search", "helper", "--workspace", str(project)])

        assert result.exit_code == 0
        assert "No matches" in result.stdout

    def test_clear(self, project: Path):
        _index(project)

        result = runner.invoke(app, ["clear", "--yes", "--workspace", str(project)])
        search = runner.invoke(app, ["search", "helper", "--workspace", str(project)])

        assert result.exit_code == 0
        assert "Index cleared" in result.stdout
        assert "No matches" in search.stdout


class TestConfigCommands:
    def test_set_filter_and_show(self):
        result = runner.invoke(app, ["config", "set-filter", "**/*.pyi", "--exclude", "gen/"])
        show = runner.invoke(app, ["config", "show"])

        assert result.exit_code == 0
        assert "**/*.pyi" in show.stdout
        assert "gen/" in show.stdout

    def test_set_llm(self):
        result = runner.invoke(app, ["config", "set-llm", "ollama", "--model", "tiny"])
        show = runner.invoke(app, ["config", "show"])

        assert result.exit_code == 0
        assert "ollama" in show.stdout
        assert "tiny" in show.stdout

    def test_set_llm_unknown_provider(self):
        result = runner.invoke(app, ["config", "set-llm", "skynet"])

        assert result.exit_code != 0
