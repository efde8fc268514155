"""Server settings captured by the configuration wizard."""
import re
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from mxdeploy.core.project import DEFAULT_ENVIRONMENT
from mxdeploy.core.validators import (
    validate_domain,
    validate_email,
    validate_ipv4_shape,
    validate_port,
)

DEPLOYMENT_TYPES = ("fresh", "update", "recovery")
LOCAL_SERVER_IP = "127.0.0.1"
MIN_ADMIN_PASSWORD_LENGTH = 8


class ServerSettings(BaseModel):
    """Everything needed to render the inventory and group variables."""

    model_config = ConfigDict(extra='forbid', validate_assignment=True)

    environment: str = DEFAULT_ENVIRONMENT
    deployment_type: Literal["fresh", "update", "recovery"] = "fresh"

    matrix_domain: str = Field(..., description="Domain serving Element web")
    homeserver_domain: str = Field(..., description="Matrix federation domain")
    ssl_email: str

    local: bool = True
    server_ip: str = LOCAL_SERVER_IP
    ssh_port: int = 2222
    ssh_private_key_file: str = "~/.ssh/id_rsa"

    admin_username: str = "admin"
    admin_password: Optional[str] = Field(None, repr=False)
    enable_registration: bool = False
    system_user: str = "matrixadmin"
    timezone: str = "UTC"

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        if not re.fullmatch(r'[A-Za-z0-9_-]+', v):
            raise ValueError(f"Invalid environment name '{v}'")
        return v

    @field_validator('matrix_domain', 'homeserver_domain')
    @classmethod
    def validate_domains(cls, v):
        if not validate_domain(v):
            raise ValueError(f"Invalid domain format '{v}' (example: chat.example.com)")
        return v.lower()

    @field_validator('ssl_email')
    @classmethod
    def validate_ssl_email(cls, v):
        if not validate_email(v):
            raise ValueError(f"Invalid email format '{v}'")
        return v

    @field_validator('server_ip')
    @classmethod
    def validate_server_ip(cls, v):
        if not validate_ipv4_shape(v):
            raise ValueError(f"Invalid IP address format '{v}'")
        return v

    @field_validator('ssh_port')
    @classmethod
    def validate_ssh_port(cls, v):
        if not validate_port(v):
            raise ValueError(f"SSH port must be between 1 and 65535, got {v}")
        return v

    @field_validator('admin_password')
    @classmethod
    def validate_admin_password(cls, v):
        """Empty means "generate one"; a typed password needs 8+ characters."""
        if not v:
            return None
        if len(v) < MIN_ADMIN_PASSWORD_LENGTH:
            raise ValueError(
                f"Password must be at least {MIN_ADMIN_PASSWORD_LENGTH} characters"
            )
        return v

    @field_validator('system_user', 'admin_username')
    @classmethod
    def validate_username(cls, v):
        if not re.fullmatch(r'[a-z_][a-z0-9_-]*', v):
            raise ValueError(
                f"User name '{v}' must start with a lowercase letter or '_' "
                "and contain only lowercase letters, digits, '-' and '_'"
            )
        return v

    @model_validator(mode='before')
    @classmethod
    def local_uses_loopback(cls, data):
        """Local deployments always target the loopback address."""
        if isinstance(data, dict) and data.get('local', True):
            data = {**data, 'server_ip': LOCAL_SERVER_IP}
        return data

    @property
    def method(self) -> str:
        return "Local" if self.local else "Remote"

    def summary_rows(self):
        """(section, label, value) rows for the confirmation screen."""
        return [
            ("Deployment", "Environment", self.environment),
            ("Deployment", "Type", self.deployment_type),
            ("Deployment", "Method", self.method),
            ("Domains", "Matrix domain", self.matrix_domain),
            ("Domains", "Homeserver", self.homeserver_domain),
            ("Domains", "SSL email", self.ssl_email),
            ("Server", "Server IP", self.server_ip),
            ("Server", "SSH port", str(self.ssh_port)),
            ("Admin", "Username", self.admin_username),
            ("Admin", "Password", "Set (hidden)" if self.admin_password else "Auto-generate"),
            ("Admin", "Registration", "Enabled" if self.enable_registration else "Disabled"),
            ("Admin", "System user", self.system_user),
        ]
