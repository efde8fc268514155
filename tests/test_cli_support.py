"""Tests for CLI support utilities."""
from io import StringIO

import pytest
import typer
from rich.console import Console

from mxdeploy.cli_support import (
    confirm_action,
    find_project,
    handle_cli_error,
    is_mock,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from mxdeploy.core.errors import MissingFileError, ValidationError


def make_console():
    return Console(file=StringIO(), width=200, force_terminal=False)


class TestFindProject:
    def test_explicit_path(self, tmp_path):
        layout = find_project("staging", str(tmp_path))
        assert layout.root == tmp_path
        assert layout.environment == "staging"

    def test_env_variable(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MXDEPLOY_PROJECT_DIR", str(tmp_path))
        assert find_project("production").root == tmp_path

    def test_walks_up_to_marker(self, monkeypatch, project):
        nested = project.root / "roles" / "matrix"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)

        assert find_project("production").root == project.root.resolve()

    def test_invalid_environment(self, tmp_path):
        with pytest.raises(ValidationError):
            find_project("../prod", str(tmp_path))


class TestIsMock:
    def test_mock_enabled(self, monkeypatch):
        monkeypatch.setenv("MXDEPLOY_MOCK", "1")
        assert is_mock() is True

    def test_mock_disabled(self):
        assert is_mock() is False


class TestConfirmAction:
    def test_yes_flag_skips_prompt(self, monkeypatch):
        monkeypatch.setattr(typer, "confirm", lambda msg: pytest.fail("prompted"))
        assert confirm_action("Proceed?", yes_flag=True) is True

    def test_mock_skips_prompt(self, monkeypatch):
        monkeypatch.setattr(typer, "confirm", lambda msg: pytest.fail("prompted"))
        assert confirm_action("Proceed?", mock=True) is True

    def test_prompts(self, monkeypatch):
        monkeypatch.setattr(typer, "confirm", lambda msg: False)
        assert confirm_action("Proceed?") is False


class TestHandleCliError:
    def test_exit_code_and_hint(self):
        console = make_console()
        error = MissingFileError("vault.yml", "Vault file not found", hint="Run: mxdeploy secrets generate\nthen retry")

        with pytest.raises(typer.Exit) as exc_info:
            handle_cli_error(error, console)

        assert exc_info.value.exit_code == 1
        output = console.file.getvalue()
        assert "Error: Vault file not found" in output
        assert "Run: mxdeploy secrets generate" in output
        assert "then retry" in output

    def test_custom_exit_code(self):
        with pytest.raises(typer.Exit) as exc_info:
            handle_cli_error(RuntimeError("boom"), make_console(), exit_code=2)
        assert exc_info.value.exit_code == 2


class TestPrinters:
    @pytest.mark.parametrize("printer,prefix", [
        (print_success, "✓"),
        (print_error, "✗"),
        (print_warning, "⚠"),
        (print_info, "ℹ"),
    ])
    def test_prefixes(self, printer, prefix):
        console = make_console()
        printer(console, "hello")
        assert console.file.getvalue().strip() == f"{prefix} hello"
