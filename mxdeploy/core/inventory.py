"""Render the Ansible inventory and group variables for one environment."""
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from jinja2 import BaseLoader, Environment, TemplateError

from mxdeploy.core.errors import MissingFileError, MxDeployError
from mxdeploy.core.logger import get_logger
from mxdeploy.core.project import ProjectLayout
from mxdeploy.models.settings import ServerSettings

logger = get_logger(__name__)

TEMPLATE_DIR = Path(__file__).parent.parent / "templates"

# Operational defaults written into group_vars/all.yml
HARDENING_DEFAULTS = {
    "ssh_max_auth_tries": 3,
    "ssh_client_alive_interval": 300,
    "ssh_client_alive_count_max": 2,
    "ssh_login_grace_time": 60,
    "fail2ban_bantime": 3600,
    "fail2ban_findtime": 600,
    "fail2ban_maxretry": 5,
    "auto_reboot_time": "03:00",
}
RETENTION_DEFAULTS = {
    "log_retention_days": 30,
    "matrix_media_retention_days": 90,
    "matrix_redaction_retention_period": 300,
}


class InventoryWriter:
    """Write hosts.yml and group_vars/all.yml from ServerSettings."""

    def __init__(self, layout: ProjectLayout, template_dir: Optional[Path] = None):
        self.layout = layout
        self.template_dir = Path(template_dir) if template_dir else TEMPLATE_DIR
        self.jinja_env = Environment(
            loader=BaseLoader(),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def _render(self, template_name: str, context: Dict) -> str:
        source = (self.template_dir / template_name).read_text()
        try:
            rendered = self.jinja_env.from_string(source).render(**context)
        except TemplateError as e:
            raise MxDeployError(f"Failed to render {template_name}: {e}") from e

        # Rendered output must stay loadable by Ansible
        try:
            yaml.safe_load(rendered)
        except yaml.YAMLError as e:
            raise MxDeployError(f"Rendered {template_name} is not valid YAML: {e}") from e
        return rendered

    def context(self, settings: ServerSettings, now: Optional[datetime] = None) -> Dict:
        context = settings.model_dump(exclude={"admin_password"})
        context["generated_at"] = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
        context["hardening"] = HARDENING_DEFAULTS
        context["retention"] = RETENTION_DEFAULTS
        return context

    def render_hosts(self, settings: ServerSettings, now: Optional[datetime] = None) -> str:
        return self._render("hosts.yml.j2", self.context(settings, now))

    def render_group_vars(self, settings: ServerSettings, now: Optional[datetime] = None) -> str:
        return self._render("all.yml.j2", self.context(settings, now))

    def write_hosts(self, settings: ServerSettings, now: Optional[datetime] = None) -> Path:
        target = self.layout.inventory_file
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.render_hosts(settings, now))
        logger.info(f"Inventory file created: {target}")
        return target

    def write_group_vars(self, settings: ServerSettings, now: Optional[datetime] = None) -> Path:
        target = self.layout.group_vars_file
        target.parent.mkdir(parents=True, exist_ok=True)
        # Vault lives in group_vars/all/ next to all.yml
        self.layout.vault_file.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.render_group_vars(settings, now))
        logger.info(f"Group variables created: {target}")
        return target

    def write_all(self, settings: ServerSettings, now: Optional[datetime] = None) -> List[Path]:
        return [self.write_hosts(settings, now), self.write_group_vars(settings, now)]

    def read_matrix_domain(self) -> Optional[str]:
        """Return the first ``matrix_domain`` found in the inventory, if any."""
        inventory = self.layout.inventory_file
        if not inventory.exists():
            raise MissingFileError(
                inventory,
                f"Inventory file not found: {inventory}",
                hint="Run: mxdeploy configure",
            )

        return read_inventory_var(inventory, "matrix_domain")


def read_inventory_var(inventory: Path, key: str) -> Optional[str]:
    """Return the first string value of ``key`` anywhere in an inventory file."""
    try:
        data = yaml.safe_load(Path(inventory).read_text())
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not parse {inventory}: {e}")
        return None
    return _find_key(data, key)


def _find_key(node, key: str):
    """Depth-first search for a key in nested inventory data."""
    if isinstance(node, dict):
        if isinstance(node.get(key), str):
            return node[key]
        for value in node.values():
            found = _find_key(value, key)
            if found:
                return found
    elif isinstance(node, list):
        for item in node:
            found = _find_key(item, key)
            if found:
                return found
    return None
