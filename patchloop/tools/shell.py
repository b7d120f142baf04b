"""Subprocess execution for patchloop.

Runs git and package-manager commands with a timeout, optional stdin and
captured output, returning a structured ShellResult.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Optional

from patchloop.core.exceptions import ShellTimeoutError, ToolError

logger = logging.getLogger("patchloop.tools.shell")

DEFAULT_TIMEOUT = 300  # seconds
MAX_OUTPUT_CHARS = 1_000_000


@dataclass
class ShellResult:
    """Structured result from a shell command."""
    command: str
    return_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.return_code == 0

    @property
    def output(self) -> str:
        """stdout followed by stderr, for failure reports."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


def run_command(
    command: list[str],
    cwd: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
    input_text: Optional[str] = None,
) -> ShellResult:
    """Execute a command (list form, no shell) with timeout and output capture.

    Raises:
        ShellTimeoutError: If command exceeds timeout.
        ToolError: If the executable can't be started.
    """
    cmd_str = " ".join(command)
    logger.debug("Running: %s (cwd=%s, timeout=%ss)", cmd_str, cwd, timeout)

    try:
        result = subprocess.run(
            command,
            cwd=cwd,
            input=input_text,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        logger.warning("Command timed out after %ss: %s", timeout, cmd_str)
        raise ShellTimeoutError(f"Command timed out after {timeout}s: {cmd_str}") from e
    except FileNotFoundError as e:
        raise ToolError(f"Command not found: {e}") from e
    except OSError as e:
        raise ToolError(f"Failed to run command: {e}") from e

    shell_result = ShellResult(
        command=cmd_str,
        return_code=result.returncode,
        stdout=_truncate_output(result.stdout or ""),
        stderr=_truncate_output(result.stderr or ""),
    )
    logger.debug("Command finished: rc=%d", result.returncode)
    return shell_result


def _truncate_output(text: str) -> str:
    if len(text) <= MAX_OUTPUT_CHARS:
        return text
    return text[:MAX_OUTPUT_CHARS] + "\n... [output truncated]"
