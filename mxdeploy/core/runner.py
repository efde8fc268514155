"""Thin subprocess seam used for every external tool mxdeploy drives."""
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from mxdeploy.core.errors import MissingDependencyError
from mxdeploy.core.logger import console, get_logger

logger = get_logger(__name__)

INSTALL_HINTS = {
    "ansible": "Ubuntu/Debian: sudo apt install ansible\nmacOS: brew install ansible",
    "ansible-playbook": "Ubuntu/Debian: sudo apt install ansible\nmacOS: brew install ansible",
    "ansible-vault": "Ubuntu/Debian: sudo apt install ansible\nmacOS: brew install ansible",
    "ansible-inventory": "Ubuntu/Debian: sudo apt install ansible\nmacOS: brew install ansible",
    "whiptail": "Ubuntu/Debian: sudo apt install whiptail\nmacOS: brew install newt",
}


@dataclass
class CommandResult:
    """Outcome of one external command."""

    command: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class CommandRunner:
    """Run external commands and report results instead of raising.

    Tests replace this with a fake that records calls; production code only
    talks to the host through these methods.
    """

    timeout: Optional[int] = None
    env: Optional[Dict[str, str]] = field(default=None, repr=False)

    def which(self, tool: str) -> Optional[str]:
        return shutil.which(tool)

    def require(self, tools: Iterable[str]) -> None:
        """Raise MissingDependencyError listing every tool not on PATH."""
        missing = [tool for tool in tools if not self.which(tool)]
        if missing:
            hints = {INSTALL_HINTS[t] for t in missing if t in INSTALL_HINTS}
            raise MissingDependencyError(missing, hint="\n".join(sorted(hints)) or None)
        logger.debug(f"All dependencies available: {', '.join(tools)}")

    def run(
        self,
        command: Sequence[str],
        input: Optional[str] = None,
        timeout: Optional[int] = None,
        cwd: Optional[Path] = None,
    ) -> CommandResult:
        """Run a command with captured output."""
        cmd = [str(part) for part in command]
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            completed = subprocess.run(
                cmd,
                input=input,
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout,
                cwd=cwd,
                env=self.env,
            )
        except FileNotFoundError as e:
            return CommandResult(cmd, 127, "", str(e))
        except subprocess.TimeoutExpired as e:
            return CommandResult(cmd, 124, "", f"Timed out after {e.timeout}s")
        return CommandResult(cmd, completed.returncode, completed.stdout, completed.stderr)

    def run_interactive(self, command: Sequence[str], cwd: Optional[Path] = None) -> int:
        """Run a command attached to the terminal (editors, password prompts)."""
        cmd = [str(part) for part in command]
        logger.debug(f"Running interactively: {' '.join(cmd)}")
        try:
            return subprocess.call(cmd, cwd=cwd, env=self.env)
        except FileNotFoundError as e:
            logger.error(f"Command not found: {e}")
            return 127

    def stream(
        self,
        command: Sequence[str],
        log_file: Optional[Path] = None,
        cwd: Optional[Path] = None,
    ) -> int:
        """Run a command, echoing its output to the console and a log file."""
        cmd = [str(part) for part in command]
        logger.debug(f"Streaming: {' '.join(cmd)}")
        log_handle = open(log_file, "a") if log_file else None
        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                cwd=cwd,
                env=self.env,
            )
            for line in process.stdout:
                console.out(line, end="", highlight=False)
                if log_handle:
                    log_handle.write(line)
            return process.wait()
        except FileNotFoundError as e:
            logger.error(f"Command not found: {e}")
            return 127
        finally:
            if log_handle:
                log_handle.close()
