"""Tests for VaultManager against a scripted ansible-vault."""
import os
import stat

import pytest

from conftest import FakeRunner, install_fake_vault

from mxdeploy.core.errors import CommandFailedError, MissingDependencyError, MissingFileError
from mxdeploy.core.secret_generator import generate_bundle, placeholder_vault_yaml
from mxdeploy.core.vault import PASSWORD_TEMPLATE, VaultManager, read_password


@pytest.fixture
def vault(project, vault_runner):
    return VaultManager(project, runner=vault_runner, environ={})


class TestCreate:
    def test_create_encrypts_from_stdin(self, vault, vault_runner, vault_content):
        path = vault.create(vault_content, "pw")

        assert path == vault.vault_file
        assert vault.is_encrypted()
        encrypt = vault_runner.called("ansible-vault", "encrypt")[0]
        assert vault_runner.inputs[vault_runner.calls.index(encrypt)] == vault_content
        # No plaintext copy left next to the vault
        assert sorted(p.name for p in path.parent.iterdir()) == ["vault.yml"]

    def test_temporary_password_file_is_removed(self, vault, vault_runner, vault_content):
        vault.create(vault_content, "pw")
        encrypt = vault_runner.called("ansible-vault", "encrypt")[0]
        password_arg = next(a for a in encrypt if a.startswith("--vault-password-file="))
        assert not os.path.exists(password_arg.split("=", 1)[1])

    def test_refuses_small_content(self, vault):
        with pytest.raises(ValueError):
            vault.create("short: yes\n", "pw")
        assert not vault.vault_file.exists()

    def test_failed_encrypt_leaves_no_vault(self, project, vault_content):
        runner = FakeRunner().on("ansible-vault", "encrypt", returncode=1, stderr="bad")
        vault = VaultManager(project, runner=runner, environ={})
        with pytest.raises(CommandFailedError):
            vault.create(vault_content, "pw")
        assert not vault.vault_file.exists()

    def test_missing_tool(self, project, vault_content):
        vault = VaultManager(project, runner=FakeRunner(tools=[]), environ={})
        with pytest.raises(MissingDependencyError) as exc_info:
            vault.create(vault_content, "pw")
        assert exc_info.value.tools == ["ansible-vault"]


class TestViewAndValidate:
    def test_view_returns_plaintext(self, vault, vault_content):
        vault.create(vault_content, "pw")
        vault.save_password("pw")
        assert vault.view() == vault_content

    def test_missing_vault_hint(self, vault):
        with pytest.raises(MissingFileError) as exc_info:
            vault.view()
        assert exc_info.value.hint == "Run: mxdeploy secrets generate production"

    def test_validate_generated_vault(self, vault):
        vault.create(generate_bundle().to_vault_yaml("production"), "pw")
        vault.save_password("pw")

        validation = vault.validate()
        assert validation.ok
        assert validation.decryptable is True
        assert validation.placeholders == []

    def test_validate_reports_placeholders(self, vault):
        vault.create(placeholder_vault_yaml("production"), "pw")
        vault.save_password("pw")

        validation = vault.validate()
        assert validation.ok
        assert len(validation.placeholders) == 6

    def test_validate_plaintext_file_fails(self, vault):
        vault.vault_file.parent.mkdir(parents=True)
        vault.vault_file.write_text("vault_form_secret: plain\n")

        validation = vault.validate()
        assert not validation.ok
        assert validation.encrypted is False
        assert "not encrypted" in validation.errors[0]

    def test_validate_wrong_password(self, project, vault_content):
        runner = install_fake_vault(FakeRunner())
        vault = VaultManager(project, runner=runner, environ={})
        vault.create(vault_content, "pw")
        vault.save_password("wrong")

        validation = vault.validate()
        assert validation.decryptable is False
        assert not validation.ok

    def test_unattended_without_password_skips_decrypt(self, project, vault_runner, vault_content):
        VaultManager(project, runner=vault_runner, environ={}).create(vault_content, "pw")
        vault = VaultManager(project, runner=vault_runner, unattended=True, environ={})

        validation = vault.validate()
        assert validation.decryptable is None
        assert validation.ok


class TestEditAndRekey:
    def test_edit_runs_interactively(self, vault, vault_runner, vault_content):
        vault.create(vault_content, "pw")
        vault.edit()
        assert vault_runner.called("ansible-vault", "edit")[0][2] == str(vault.vault_file)

    def test_rekey_failure_raises(self, vault, vault_runner, vault_content):
        vault.create(vault_content, "pw")
        vault_runner.on("ansible-vault", "rekey", returncode=1)
        with pytest.raises(CommandFailedError):
            vault.rekey()

    def test_rekey_with_new_password_file(self, vault, vault_runner, vault_content, tmp_path):
        vault.create(vault_content, "pw")
        new_file = tmp_path / "new.pass"
        vault.rekey(new_file)
        assert f"--new-vault-password-file={new_file}" in vault_runner.called("ansible-vault", "rekey")[0]


class TestPasswordFiles:
    def test_save_password_mode_600(self, vault):
        path = vault.save_password("pw")
        assert path.read_text() == "pw\n"
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_template_leaves_password_file_alone(self, vault):
        vault.save_password("pw")
        assert vault.write_password_template() is not None
        assert vault.layout.default_password_file.read_text() == "pw\n"

    def test_template_written_beside_password_file(self, vault):
        path = vault.write_password_template()
        assert path == vault.layout.password_template_file
        assert path.read_text() == PASSWORD_TEMPLATE
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert not vault.layout.default_password_file.exists()

    def test_template_not_rewritten(self, vault):
        vault.layout.password_template_file.write_text("local notes\n")
        assert vault.write_password_template() is None
        assert vault.layout.password_template_file.read_text() == "local notes\n"

    def test_password_added_after_setup_decrypts(self, vault, vault_content):
        vault.write_password_template()
        vault.layout.default_password_file.write_text("s3cret-password\n")

        password = read_password(vault.password_source().path)
        vault.create(vault_content, password)

        assert password == "s3cret-password"
        assert vault.view() == vault_content
        assert vault.validate().decryptable is True

    def test_commented_password_file_still_decrypts(self, vault, vault_content):
        vault.layout.default_password_file.write_text("# prod\ns3cret-password\n")

        vault.create(vault_content, read_password(vault.layout.default_password_file))

        assert vault.view() == vault_content


class TestBackup:
    def test_backup_copies_into_backup_dir(self, vault, vault_content):
        vault.create(vault_content, "pw")
        backup = vault.backup()
        assert backup.parent == vault.layout.backup_dir
        assert backup.name.startswith("vault-production-")
        assert backup.read_text() == vault.vault_file.read_text()
