"""Integration tests for CLI commands."""

from pathlib import Path

from typer.testing import CliRunner

from codecontext.cli import app
from codecontext.config_manager import load_settings

runner = CliRunner()


def test_version():
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert "codecontext v0.1.0" in result.stdout


class TestIndexCommand:
    """Tests for 'cx index'."""

    def test_index_project(self, sample_project_path: Path):
        result = runner.invoke(app, ["index", str(sample_project_path)])

        assert result.exit_code == 0
        assert "Indexed" in result.stdout
        assert "Files: 5" in result.stdout
        assert "Symbols: 9" in result.stdout
        assert "Modules: 3" in result.stdout

    def test_index_nonexistent_path(self):
        result = runner.invoke(app, ["index", "/nonexistent/path"])

        assert result.exit_code != 0


class TestSearchCommand:
    """Tests for 'cx search'."""

    def test_symbol_search(self, sample_project_path: Path):
        result = runner.invoke(app, ["search", str(sample_project_path), "Greeter", "--mode", "symbol"])

        assert result.exit_code == 0
        assert "Greeter" in result.stdout
        assert "1.000" in result.stdout

    def test_no_results(self, sample_project_path: Path):
        result = runner.invoke(app, ["search", str(sample_project_path), "zzzqqq", "--mode", "keyword"])

        assert result.exit_code == 0
        assert "No results." in result.stdout

    def test_invalid_regex(self, sample_project_path: Path):
        result = runner.invoke(app, ["search", str(sample_project_path), "(oops", "--mode", "regex"])

        assert result.exit_code == 1
        assert "Invalid regex" in result.stdout

    def test_top_k_is_bounded(self, sample_project_path: Path):
        result = runner.invoke(app, ["search", str(sample_project_path), "order", "--top-k", "0"])

        assert result.exit_code != 0


class TestContextCommand:
    """Tests for 'cx context'."""

    def test_code_context(self, sample_project_path: Path):
        result = runner.invoke(app, ["context", str(sample_project_path), "order validation"])

        assert result.exit_code == 0
        assert "results" in result.stdout
        assert "tokens" in result.stdout

    def test_errors_need(self, sample_project_path: Path):
        result = runner.invoke(app, ["context", str(sample_project_path), "order", "--need", "errors"])

        assert result.exit_code == 0
        assert "CRITICAL" in result.stdout
        assert "Research synthesis" in result.stdout


def test_research_command(sample_project_path: Path):
    result = runner.invoke(
        app, ["research", str(sample_project_path), "order errors", "-q", "How is ValidationFailure raised?"],
    )

    assert result.exit_code == 0
    assert "completed" in result.stdout
    assert "Research on" in result.stdout


def test_research_bad_depth(sample_project_path: Path):
    result = runner.invoke(app, ["research", str(sample_project_path), "order", "--depth", "abyssal"])

    assert result.exit_code == 1


class TestConfigCommands:
    """Tests for 'cx config'."""

    def test_set_then_show(self):
        set_result = runner.invoke(app, ["config", "set", "window", "max_tokens", "4096"])
        show_result = runner.invoke(app, ["config", "show"])

        assert set_result.exit_code == 0
        assert "[window] max_tokens = 4096" in set_result.stdout
        assert load_settings().window.max_tokens == 4096
        assert show_result.exit_code == 0
        assert "[window]" in show_result.stdout
        assert "max_tokens = 4096" in show_result.stdout

    def test_set_unknown_key(self):
        result = runner.invoke(app, ["config", "set", "window", "colour", "blue"])

        assert result.exit_code == 1

    def test_set_bad_value(self):
        result = runner.invoke(app, ["config", "set", "window", "auto_compress", "maybe"])

        assert result.exit_code == 1
