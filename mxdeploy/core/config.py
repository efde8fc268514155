"""mxdeploy runtime configuration and settings."""
import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class MxDeployConfig:
    """Runtime configuration for mxdeploy operations.

    Attributes:
        max_retries: Playbook retries after the first failed run (default: 2)
        retry_delay: Seconds to wait between playbook attempts (default: 10)
        backup_keep: Vault backups kept per environment (default: 10)
        command_timeout: Timeout in seconds for host probes (default: 30)
        min_disk_gb: Free space on / below which pre-flight fails (default: 5)
        min_memory_mb: Memory below which pre-flight warns (default: 1024)
        matrix_api_url: Client API endpoint probed after deployment
        backup_root: Directory receiving pre-deploy server checkpoints
    """

    max_retries: int = 2
    retry_delay: float = 10.0
    backup_keep: int = 10

    command_timeout: int = 30
    min_disk_gb: int = 5
    min_memory_mb: int = 1024

    matrix_api_url: str = "http://localhost:8008/_matrix/client/versions"
    backup_root: str = "/root"

    @classmethod
    def from_env(cls) -> "MxDeployConfig":
        """Create config from environment variables.

        Environment variables:
            MXDEPLOY_MAX_RETRIES: Playbook retries after the first failure
            MXDEPLOY_RETRY_DELAY: Seconds between playbook attempts
            MXDEPLOY_BACKUP_KEEP: Vault backups kept per environment
            MXDEPLOY_COMMAND_TIMEOUT: Timeout for host probes
            MXDEPLOY_MIN_DISK_GB: Minimum free disk space
            MXDEPLOY_MIN_MEMORY_MB: Memory warning threshold
            MXDEPLOY_MATRIX_API_URL: Client API endpoint for verification
            MXDEPLOY_BACKUP_ROOT: Where server checkpoints are written

        Returns:
            MxDeployConfig instance with values from environment or defaults
        """
        return cls(
            max_retries=int(os.getenv("MXDEPLOY_MAX_RETRIES", cls.max_retries)),
            retry_delay=float(os.getenv("MXDEPLOY_RETRY_DELAY", cls.retry_delay)),
            backup_keep=int(os.getenv("MXDEPLOY_BACKUP_KEEP", cls.backup_keep)),
            command_timeout=int(
                os.getenv("MXDEPLOY_COMMAND_TIMEOUT", cls.command_timeout)
            ),
            min_disk_gb=int(os.getenv("MXDEPLOY_MIN_DISK_GB", cls.min_disk_gb)),
            min_memory_mb=int(os.getenv("MXDEPLOY_MIN_MEMORY_MB", cls.min_memory_mb)),
            matrix_api_url=os.getenv("MXDEPLOY_MATRIX_API_URL", cls.matrix_api_url),
            backup_root=os.getenv("MXDEPLOY_BACKUP_ROOT", cls.backup_root),
        )


# Global config instance (can be overridden)
_config: Optional[MxDeployConfig] = None


def get_config() -> MxDeployConfig:
    """Get the global mxdeploy configuration.

    Returns:
        MxDeployConfig instance (creates from environment if not set)
    """
    global _config
    if _config is None:
        _config = MxDeployConfig.from_env()
    return _config


def set_config(config: Optional[MxDeployConfig]):
    """Set the global mxdeploy configuration.

    Args:
        config: MxDeployConfig instance to use globally (None re-reads the environment)
    """
    global _config
    _config = config
