"""
Shell collaborator for planrunner.

WHAT THIS FILE DOES:
-------------------
Runs one shell command inside the project directory and reports the outcome
as a CommandResult. The engine never sees an exception from here: a rejected
command, a non-zero exit, a timeout and a spawn error all come back as
success=False with the reason in error/details.

SAFETY:
------
- Known destructive patterns (rm -rf /, mkfs, dd if=, ...) are rejected
  anywhere in the line, since chained commands pass the allow-list.
- The first word of the command must be an allow-listed binary
  (config.shell.allowed_commands).
- Commands run with the project directory as cwd.
- An optional timeout bounds long-running commands.

KILL-PORT-PROCESS:
-----------------
`kill-port-process <port>` is not a real binary. It is expanded to the
platform's way of killing whatever listens on the port (lsof/fuser on Unix,
netstat + taskkill on Windows). It always reports success: "nothing was
listening" is a fine outcome for the recovery flow that calls it.
"""

import logging
import os
import re
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Optional

from config import DEFAULT_ALLOWED_COMMANDS
from schemas import CommandResult


logger = logging.getLogger("planrunner.shell")

KILL_PORT_COMMAND = "kill-port-process"

# Rejected anywhere in the command line, whatever the base binary
DANGEROUS_PATTERNS = [
    r"rm\s+-rf\s+/",   # rm -rf /
    r"rm\s+-rf\s+~",   # rm -rf ~
    r">\s*/dev/(?!null)",  # redirect to device files
    r"mkfs\.",         # format filesystems
    r"dd\s+if=",       # direct disk access
    re.escape(":(){ :|:& };:"),  # fork bomb
]


def build_kill_port_command(port: str, platform: Optional[str] = None) -> str:
    """The platform-specific command line that frees a TCP port."""
    platform = platform or sys.platform

    if platform.startswith("win"):
        return (
            f'for /f "tokens=5" %a in (\'netstat -ano ^| findstr :{port}\') '
            f'do taskkill /F /PID %a 2>nul || echo Port {port} is not in use'
        )
    if platform == "darwin":
        return f'lsof -ti:{port} | xargs kill -9 2>/dev/null || echo "Port {port} is not in use"'
    return (
        f"(fuser -k {port}/tcp 2>/dev/null || lsof -ti:{port} | xargs kill -9 2>/dev/null)"
        f' || echo "Port {port} is not in use"'
    )


def base_command(command: str) -> str:
    """First word of a command line, or "" for an unparseable/empty one."""
    try:
        parts = shlex.split(command)
    except ValueError:
        parts = command.split()
    return parts[0] if parts else ""


class ShellExecutor:
    """
    Executes allow-listed commands in a project directory.

    Usage:
        shell = ShellExecutor()
        result = await shell.execute("npm run build", "/path/to/project")
        if not result.success:
            print(result.stderr)
    """

    def __init__(
        self,
        allowed_commands: Optional[list[str]] = None,
        timeout: Optional[float] = None,
        max_output: int = 100_000,
    ):
        self.allowed_commands = list(allowed_commands or DEFAULT_ALLOWED_COMMANDS)
        self.timeout = timeout
        self.max_output = max_output

    def _env(self) -> dict[str, str]:
        env = os.environ.copy()
        env["FORCE_COLOR"] = "1"
        env["TERM"] = "xterm-256color"
        return env

    def _clip(self, text: Optional[str]) -> str:
        if not text:
            return ""
        if isinstance(text, bytes):
            text = text.decode("utf-8", errors="replace")
        if len(text) > self.max_output:
            return text[-self.max_output:]
        return text

    async def execute(self, command: str, project_root: str) -> CommandResult:
        """
        Run a command with project_root as the working directory.

        Args:
            command: Command line as written in the plan
            project_root: Absolute path of the project

        Returns:
            CommandResult (never raises for command failures)
        """
        command = command.strip()
        if not command or not project_root:
            return CommandResult(
                success=False,
                error="A command and a project path are required",
            )

        cwd = Path(project_root).expanduser()
        if not cwd.is_dir():
            return CommandResult(
                success=False,
                error=f"Working directory does not exist: {cwd}",
            )

        if command.startswith(KILL_PORT_COMMAND):
            return self._kill_port(command, cwd)

        for pattern in DANGEROUS_PATTERNS:
            if re.search(pattern, command):
                logger.warning(f"Blocked dangerous command: {command}")
                return CommandResult(
                    success=False,
                    error=f"Blocked dangerous command pattern: {pattern}",
                )

        base = base_command(command)
        if base not in self.allowed_commands:
            logger.warning(f"Rejected command: {base}")
            return CommandResult(
                success=False,
                error=f"Command not allowed: {base}. "
                      f"Allowed commands: {', '.join(self.allowed_commands)}",
            )

        logger.info(f"Running: {command} (cwd={cwd})")
        return self._run(command, cwd)

    def _run(self, command: str, cwd: Path) -> CommandResult:
        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=str(cwd),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=self._env(),
            )
        except subprocess.TimeoutExpired as e:
            return CommandResult(
                success=False,
                stdout=self._clip(e.stdout),
                stderr=self._clip(e.stderr),
                error="Command execution failed",
                details=f"Command timed out after {self.timeout} seconds: {command}",
            )
        except OSError as e:
            return CommandResult(
                success=False,
                error="Command execution failed",
                details=str(e),
            )

        stdout = self._clip(result.stdout)
        stderr = self._clip(result.stderr)

        if result.returncode != 0:
            return CommandResult(
                success=False,
                stdout=stdout,
                stderr=stderr,
                error="Command execution failed",
                details=f"Command failed with exit code {result.returncode}: {command}",
                exit_code=result.returncode,
            )

        return CommandResult(
            success=True,
            stdout=stdout,
            stderr=stderr,
            message="Command completed successfully",
            exit_code=0,
        )

    def _kill_port(self, command: str, cwd: Path) -> CommandResult:
        match = re.match(rf"{KILL_PORT_COMMAND}\s+(\d+)", command)
        if not match:
            return CommandResult(success=False, error="A port number is required")

        port = match.group(1)
        kill_command = build_kill_port_command(port)
        logger.info(f"Freeing port {port}: {kill_command}")

        try:
            result = subprocess.run(
                kill_command,
                shell=True,
                cwd=str(cwd),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            # Nothing listening is indistinguishable from a failed kill here.
            logger.debug(f"kill-port-process {port}: {e}")
            return CommandResult(success=True, message=f"Port {port} handled")

        return CommandResult(
            success=True,
            stdout=self._clip(result.stdout),
            stderr=self._clip(result.stderr),
            message=f"Killed process on port {port}",
            exit_code=result.returncode,
        )
