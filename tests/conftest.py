"""Shared test fixtures for mxdeploy tests."""
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import pytest

from mxdeploy.core.config import MxDeployConfig, set_config
from mxdeploy.core.project import ProjectLayout
from mxdeploy.core.runner import CommandResult, CommandRunner

Response = Union[CommandResult, Callable]


class FakeRunner(CommandRunner):
    """CommandRunner that records calls and replays scripted results.

    Rules are matched on command prefix; the most recently added rule wins.
    A rule may hold a list of results which are consumed in order (the last
    one repeats), or a callable ``(command, input) -> CommandResult``.
    """

    def __init__(self, tools: Optional[Sequence[str]] = None):
        super().__init__()
        self.tools = None if tools is None else set(tools)
        self.rules: List[Tuple[Tuple[str, ...], list]] = []
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.vault_store: Dict[str, str] = {}

    def which(self, tool):
        if self.tools is None or tool in self.tools:
            return f"/usr/bin/{tool}"
        return None

    def on(self, *prefix, returncode=0, stdout="", stderr="", results=None, handler=None):
        if handler is not None:
            responses = [handler]
        elif results is not None:
            responses = list(results)
        else:
            responses = [CommandResult(list(prefix), returncode, stdout, stderr)]
        self.rules.append((tuple(prefix), responses))
        return self

    def _respond(self, cmd, input=None) -> CommandResult:
        self.calls.append(cmd)
        self.inputs.append(input)
        for prefix, responses in reversed(self.rules):
            if tuple(cmd[: len(prefix)]) == prefix:
                response = responses.pop(0) if len(responses) > 1 else responses[0]
                if callable(response):
                    return response(cmd, input)
                if isinstance(response, int):
                    return CommandResult(cmd, response)
                return CommandResult(cmd, response.returncode, response.stdout, response.stderr)
        return CommandResult(cmd, 0)

    def run(self, command, input=None, timeout=None, cwd=None):
        return self._respond([str(c) for c in command], input)

    def run_interactive(self, command, cwd=None):
        return self._respond([str(c) for c in command]).returncode

    def stream(self, command, log_file=None, cwd=None):
        result = self._respond([str(c) for c in command])
        if log_file:
            with open(log_file, "a") as f:
                f.write(result.stdout)
        return result.returncode

    def called(self, *prefix) -> List[List[str]]:
        return [c for c in self.calls if tuple(c[: len(prefix)]) == prefix]


def _option(cmd, name):
    for part in cmd:
        if part.startswith(f"{name}="):
            return part.split("=", 1)[1]
    return None


def install_fake_vault(runner: FakeRunner) -> FakeRunner:
    """Make ansible-vault encrypt/view behave against runner.vault_store.

    Like ansible-vault, a password file is read whole and stripped, and view
    fails unless it matches the password the vault was encrypted with.
    """

    def file_password(cmd):
        path = _option(cmd, "--vault-password-file")
        return Path(path).read_text().strip() if path else None

    def encrypt(cmd, input):
        output = _option(cmd, "--output")
        Path(output).write_text(
            "$ANSIBLE_VAULT;1.1;AES256\n"
            + file_password(cmd).encode().hex() + "\n"
            + (input or "").encode().hex() + "\n"
        )
        runner.vault_store[output] = input
        return CommandResult(cmd, 0)

    def view(cmd, input):
        path = Path(cmd[2])
        lines = path.read_text().splitlines()
        if not lines or not lines[0].startswith("$ANSIBLE_VAULT"):
            return CommandResult(cmd, 1, "", "input is not vault encrypted data")
        if len(lines) > 2:
            password = file_password(cmd)
            if password is not None and password != bytes.fromhex(lines[1]).decode():
                return CommandResult(
                    cmd, 1, "", "Decryption failed (no vault secrets were found that could decrypt)"
                )
        return CommandResult(cmd, 0, bytes.fromhex(lines[-1]).decode())

    runner.on("ansible-vault", "encrypt", handler=encrypt)
    runner.on("ansible-vault", "view", handler=view)
    return runner


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep tests away from the real home directory and global config."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    for var in ("MXDEPLOY_VAULT_PASSWORD_FILE", "MXDEPLOY_PROJECT_DIR", "MXDEPLOY_MOCK"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr("mxdeploy.core.logger.LOG_FILE", tmp_path / "logs" / "mxdeploy.log")
    set_config(MxDeployConfig(retry_delay=0))
    yield
    set_config(None)


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def vault_runner():
    return install_fake_vault(FakeRunner())


@pytest.fixture
def project(tmp_path):
    """Empty Ansible project with playbooks/ and inventory/ markers."""
    root = tmp_path / "project"
    (root / "playbooks").mkdir(parents=True)
    (root / "playbooks" / "site.yml").write_text("---\n- hosts: all\n  tasks: []\n")
    (root / "inventory" / "production").mkdir(parents=True)
    return ProjectLayout(root, "production")


@pytest.fixture
def vault_content():
    return (
        "---\n"
        "vault_matrix_database_password: \"db-password-value-1234567890\"\n"
        "vault_form_secret: \"form-secret-value-1234567890\"\n"
        "vault_admin_username: \"admin\"\n"
    )
