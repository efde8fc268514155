"""Tests for project layout conventions."""
from datetime import datetime

import pytest

from mxdeploy.core.errors import ValidationError
from mxdeploy.core.project import GITIGNORE_ENTRIES, ProjectLayout, check_environment_name


class TestPaths:
    def test_environment_paths(self, tmp_path):
        layout = ProjectLayout(tmp_path, "staging")
        base = tmp_path / "inventory" / "staging"

        assert layout.inventory_file == base / "hosts.yml"
        assert layout.group_vars_file == base / "group_vars" / "all.yml"
        assert layout.vault_file == base / "group_vars" / "all" / "vault.yml"
        assert layout.environment_password_file == tmp_path / ".vault_pass_staging"
        assert layout.lock_file == tmp_path / ".mxdeploy" / "deploy.lock"

    @pytest.mark.parametrize("name", ["site", "site.yml", "site.yaml"])
    def test_playbook_file(self, tmp_path, name):
        assert ProjectLayout(tmp_path).playbook_file(name) == tmp_path / "playbooks" / "site.yml"

    def test_deployment_log_name(self, tmp_path):
        log = ProjectLayout(tmp_path).deployment_log(datetime(2024, 1, 2, 3, 4, 5))
        assert log == tmp_path / "deployment-20240102-030405.log"

    @pytest.mark.parametrize("name", ["", "prod/../x", "with space", "production\n"])
    def test_invalid_environment(self, tmp_path, name):
        with pytest.raises(ValidationError):
            ProjectLayout(tmp_path, name)

    def test_valid_environment(self):
        assert check_environment_name("prod-eu_1") == "prod-eu_1"


class TestFindRoot:
    def test_finds_marker_above(self, tmp_path):
        (tmp_path / "ansible.cfg").write_text("[defaults]\n")
        nested = tmp_path / "roles" / "synapse" / "tasks"
        nested.mkdir(parents=True)

        assert ProjectLayout.find_root(nested) == tmp_path.resolve()


class TestGitignore:
    def test_adds_all_entries(self, tmp_path):
        added = ProjectLayout(tmp_path).update_gitignore()
        assert added == GITIGNORE_ENTRIES
        assert (tmp_path / ".gitignore").read_text().splitlines() == GITIGNORE_ENTRIES

    def test_idempotent(self, tmp_path):
        layout = ProjectLayout(tmp_path)
        layout.update_gitignore()
        assert layout.update_gitignore() == []

    def test_appends_after_existing_content(self, tmp_path):
        gitignore = tmp_path / ".gitignore"
        gitignore.write_text("*.retry\n.vault_pass")

        added = ProjectLayout(tmp_path).update_gitignore()

        assert ".vault_pass" not in added
        lines = gitignore.read_text().splitlines()
        assert lines[:3] == ["*.retry", ".vault_pass", ".vault_pass_*"]
