"""Error taxonomy shared by mxdeploy modules and the CLI."""
from typing import Optional


class MxDeployError(Exception):
    """Base error carrying an optional remediation hint."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint


class MissingDependencyError(MxDeployError):
    """Raised when a required external tool is not on PATH."""

    def __init__(self, tools, hint: Optional[str] = None):
        self.tools = list(tools)
        super().__init__(
            f"Missing required dependencies: {', '.join(self.tools)}",
            hint or "Ubuntu/Debian: sudo apt install ansible\nmacOS: brew install ansible",
        )


class MissingFileError(MxDeployError):
    """Raised when an inventory, vault or password file is absent."""

    def __init__(self, path, message: Optional[str] = None, hint: Optional[str] = None):
        self.path = path
        super().__init__(message or f"File not found: {path}", hint)


class ValidationError(MxDeployError):
    """Raised when a domain, email, IP or port fails validation."""


class CommandFailedError(MxDeployError):
    """Raised when an external command exits non-zero."""

    def __init__(
        self,
        command,
        returncode: int,
        stderr: str = "",
        message: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            message or f"Command failed ({returncode}): {' '.join(self.command)}",
            hint,
        )
