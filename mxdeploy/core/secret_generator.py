"""Secret generation for the Matrix vault.

Tokens come from the OS CSPRNG through the :mod:`secrets` module. The
bundle renders into the YAML document that ``ansible-vault`` encrypts.
"""
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import yaml

from mxdeploy.core.logger import get_logger

logger = get_logger(__name__)

ALPHANUMERIC = string.ascii_letters + string.digits

PLACEHOLDER_MARKER = "CHANGE_ME"


@dataclass(frozen=True)
class SecretSpec:
    """One generated value in the vault."""

    name: str
    length: int
    kind: str = "token"  # token | password
    description: str = ""


# Vault key -> how it is generated
SECRET_SPECS: List[SecretSpec] = [
    SecretSpec("vault_matrix_database_password", 32, "password", "PostgreSQL database"),
    SecretSpec("vault_form_secret", 64, "token", "Matrix Synapse form secret"),
    SecretSpec("vault_macaroon_secret_key", 64, "token", "Matrix Synapse macaroon key"),
    SecretSpec("vault_registration_secret", 32, "token", "Registration shared secret"),
    SecretSpec("vault_coturn_secret", 32, "token", "Coturn (TURN server) secret"),
]

ADMIN_PASSWORD_LENGTH = 16


def generate_secret(length: int = 32) -> str:
    """Return a random alphanumeric token of exactly ``length`` characters."""
    if length < 1:
        raise ValueError(f"Secret length must be positive, got {length}")
    # token_urlsafe gives ~1.3 chars per byte; strip '-' and '_' and top up
    token = ""
    while len(token) < length:
        token += secrets.token_urlsafe(length).replace("-", "").replace("_", "")
    return token[:length]


def generate_password(length: int = 24) -> str:
    """Return a random password of ``length`` characters from [A-Za-z0-9]."""
    if length < 1:
        raise ValueError(f"Password length must be positive, got {length}")
    return "".join(secrets.choice(ALPHANUMERIC) for _ in range(length))


def generate_value(spec: SecretSpec) -> str:
    if spec.kind == "password":
        return generate_password(spec.length)
    return generate_secret(spec.length)


@dataclass
class SecretBundle:
    """All values stored in one environment's vault file."""

    tokens: Dict[str, str]
    admin_username: str = "admin"
    admin_password: str = ""
    ssl_email: str = ""
    admin_password_generated: bool = field(default=False, compare=False)

    def as_vault_vars(self) -> Dict[str, str]:
        data = dict(self.tokens)
        data["vault_admin_username"] = self.admin_username
        data["vault_admin_password"] = self.admin_password
        data["vault_ssl_email"] = self.ssl_email
        return data

    def to_vault_yaml(self, environment: str, now: Optional[datetime] = None) -> str:
        """Render the plaintext vault document."""
        stamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
        header = (
            "---\n"
            f"# Matrix Server Secrets - {environment}\n"
            f"# Generated on {stamp}\n"
            "#\n"
            "# This file is encrypted with Ansible Vault.\n"
            "# Edit with: mxdeploy vault edit -e " + environment + "\n"
        )
        body = yaml.safe_dump(
            self.as_vault_vars(),
            default_flow_style=False,
            sort_keys=False,
        )
        return header + "\n" + body


def generate_bundle(
    admin_username: str = "admin",
    admin_password: Optional[str] = None,
    ssl_email: str = "",
    specs: Optional[List[SecretSpec]] = None,
) -> SecretBundle:
    """Generate every vault secret.

    An empty admin password is replaced with a generated one and the bundle
    is flagged so the caller can show it once.
    """
    values = {}
    for spec in specs or SECRET_SPECS:
        value = generate_value(spec)
        if len(value) != spec.length or not value:
            raise RuntimeError(f"Secret generation returned wrong length for {spec.name}")
        values[spec.name] = value

    generated = not admin_password
    if generated:
        admin_password = generate_password(ADMIN_PASSWORD_LENGTH)

    logger.info(f"Generated {len(values)} secrets")
    return SecretBundle(
        tokens=values,
        admin_username=admin_username or "admin",
        admin_password=admin_password,
        ssl_email=ssl_email,
        admin_password_generated=generated,
    )


def placeholder_vault_yaml(environment: str, now: Optional[datetime] = None) -> str:
    """Template vault with CHANGE_ME values for operators filling secrets by hand."""
    stamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
    return f"""---
# Matrix Server Secrets - {environment}
# Generated on {stamp}

# IMPORTANT: Add your actual secrets here
# This is a template - replace with real values

# PostgreSQL Database
vault_matrix_database_password: "{PLACEHOLDER_MARKER}_DB_PASSWORD"

# Matrix Synapse Secrets
vault_form_secret: "{PLACEHOLDER_MARKER}_FORM_SECRET"
vault_macaroon_secret_key: "{PLACEHOLDER_MARKER}_MACAROON_SECRET"
vault_registration_secret: "{PLACEHOLDER_MARKER}_REGISTRATION_SECRET"

# Coturn (TURN server) Secret
vault_coturn_secret: "{PLACEHOLDER_MARKER}_COTURN_SECRET"

# Admin User
vault_admin_username: "admin"
vault_admin_password: "{PLACEHOLDER_MARKER}_ADMIN_PASSWORD"

# SSL and Contact Information
vault_ssl_email: "admin@example.com"

# Replace every {PLACEHOLDER_MARKER} value: mxdeploy vault edit -e {environment}
"""


def find_placeholders(content: str) -> List[str]:
    """Return the lines of a decrypted vault that still hold placeholders."""
    return [
        line.strip()
        for line in content.splitlines()
        if PLACEHOLDER_MARKER in line and not line.lstrip().startswith("#")
    ]
