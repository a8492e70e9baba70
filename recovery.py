"""
Recovery controller for planrunner.

WHAT THIS FILE DOES:
-------------------
When a command from a command step fails, the recovery controller gets one
chance to repair the situation before the failure is final. Two failure
shapes are recognised:

PORT CONFLICT:
    "listen EADDRINUSE: address already in use :::3000" from a dev/start/run
    command. Free the port with `kill-port-process <port>`, wait, retry the
    command once.

BUILD ERRORS:
    A build/compile/test command whose output carries web-toolchain compiler
    errors with `./path:line:col` locations. For each file: read it, ask the
    LLM for a corrected version, write it back if it changed. Then wait and
    retry the command once.

Anything else is not recovered. The number of retries is bounded by
recovery.max_retries (MAX_RECOVERY_RETRIES, 1 by default).

The functions above the controller are pure text helpers and are tested on
their own.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from config import MAX_RECOVERY_RETRIES, RecoveryConfig, TimingConfig
from providers import collect_stream, extract_json_from_text
from schemas import BuildError, CommandResult, LogType


logger = logging.getLogger("planrunner.recovery")

DEFAULT_PORT = "3000"

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")

PORT_PATTERNS = [
    re.compile(r"port[:\s]+(\d{4,5})\b", re.IGNORECASE),
    re.compile(r":(\d{4,5})\b"),
    re.compile(r"\b(\d{4,5})\b"),
]

BUILD_ERROR_LOCATION = re.compile(r"\./([^:\s]+):(\d+):(\d+)")

COMPILER_MARKERS = ["typescript", "next", "react", "turbopack"]

FENCED_BLOCK = re.compile(
    r"```(?:[A-Za-z0-9_+\-]*)[ \t]*\n([\s\S]*?)```"
)


# =============================================================================
# TEXT HELPERS
# =============================================================================

def strip_ansi(text: Optional[str]) -> str:
    """Remove terminal color/control sequences."""
    return ANSI_ESCAPE.sub("", text or "")


def is_port_conflict(text: str) -> bool:
    """Whether failure output looks like an address-in-use error."""
    lowered = strip_ansi(text).lower()
    return (
        "eaddrinuse" in lowered
        or "address already in use" in lowered
        or ("port" in lowered and "already" in lowered)
        or ("listen" in lowered and "error" in lowered)
    )


def is_server_command(command: str) -> bool:
    return any(word in command for word in ("dev", "start", "run"))


def extract_port(text: str, default: str = DEFAULT_PORT) -> str:
    """
    The port a conflict is about.

    "port 3001" beats ":3001" beats any bare 4-5 digit number.
    """
    cleaned = strip_ansi(text)
    for pattern in PORT_PATTERNS:
        for match in pattern.finditer(cleaned):
            if 1 <= int(match.group(1)) <= 65535:
                return match.group(1)
    return default


def is_build_command(command: str) -> bool:
    return any(word in command for word in ("build", "compile", "test"))


def has_compiler_error(text: str) -> bool:
    """An error marker together with a supported web toolchain name."""
    lowered = strip_ansi(text).lower()
    return "error" in lowered and any(marker in lowered for marker in COMPILER_MARKERS)


def parse_build_errors(text: str) -> dict[str, list[BuildError]]:
    """
    Group `./path:line:col` occurrences by file.

    The message of an error is the first non-empty line, within the five
    lines starting at the location line, that doesn't mention the file.
    """
    cleaned = strip_ansi(text)
    lines = cleaned.split("\n")
    errors: dict[str, list[BuildError]] = {}

    for match in BUILD_ERROR_LOCATION.finditer(cleaned):
        path = match.group(1).strip()
        line = int(match.group(2))
        column = int(match.group(3))

        message = ""
        for i, text_line in enumerate(lines):
            if path in text_line and f":{line}:" in text_line:
                for candidate in lines[i:i + 5]:
                    if candidate.strip() and path not in candidate:
                        message = candidate.strip()
                        break
                break

        errors.setdefault(path, []).append(
            BuildError(line=line, column=column, message=message)
        )

    return errors


def summarize_errors(errors: list[BuildError]) -> str:
    return "\n".join(f"Line {e.line}:{e.column} - {e.message}" for e in errors)


def build_fix_prompt(file_path: str, errors: list[BuildError], content: str) -> str:
    """Prompt asking the LLM for a corrected version of one file."""
    return (
        f"Fix the build errors in the following file.\n\n"
        f"File: {file_path}\n\n"
        f"Errors:\n{summarize_errors(errors)}\n\n"
        f"Current file content:\n```\n{content}\n```\n\n"
        f"Return the complete corrected file content, either in a fenced code "
        f"block or as JSON: {{\"fixedContent\": \"...\"}}. "
        f"If the project uses the Next.js App Router, components that use React "
        f"hooks need the \"use client\" directive."
    )


def extract_fixed_content(reply: str) -> Optional[str]:
    """
    Replacement file content from an LLM reply.

    Accepts a JSON object with a "fixedContent" field (bare or fenced) or a
    fenced code block. Returns None when the reply has neither.
    """
    if not reply:
        return None

    if "fixedContent" in reply:
        candidates = [extract_json_from_text(reply)]
        match = re.search(r'\{[\s\S]*"fixedContent"[\s\S]*\}', reply)
        if match:
            candidates.append(match.group(0))
        for candidate in candidates:
            try:
                data = json.loads(candidate)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict) and data.get("fixedContent"):
                return str(data["fixedContent"])

    match = FENCED_BLOCK.search(reply)
    if match:
        return match.group(1)

    return None


def terminal_error_text(result: CommandResult) -> str:
    parts = result.error_parts(labelled=True)
    return "\n".join(parts) if parts else "Unknown error"


# =============================================================================
# RECOVERY CONTROLLER
# =============================================================================

@dataclass
class RecoveryOutcome:
    """What recovery did for one failed command."""
    attempted: bool
    success: bool
    message: str = ""


class RecoveryController:
    """
    Repairs a failed command and retries it.

    Usage:
        controller = RecoveryController(config.recovery, config.timing)
        outcome = await controller.recover(ctx, "npm run dev", result)
        if outcome.success:
            ...  # the retry succeeded

    ctx is the handler's StepContext: it supplies logging, the shell, the
    filesystem, the chat client and the terminal mirror.
    """

    def __init__(
        self,
        config: Optional[RecoveryConfig] = None,
        timing: Optional[TimingConfig] = None,
    ):
        self.config = config or RecoveryConfig()
        self.timing = timing or TimingConfig()

    @property
    def max_retries(self) -> int:
        retries = self.config.max_retries
        return MAX_RECOVERY_RETRIES if retries is None else retries

    async def recover(self, ctx, command: str, result: CommandResult) -> RecoveryOutcome:
        """Try the matching recovery flow for a failed command, if any."""
        if self.max_retries <= 0:
            return RecoveryOutcome(attempted=False, success=False)

        text = strip_ansi(result.failure_text())

        if self.config.port_conflict and is_port_conflict(text) and is_server_command(command):
            return await self._recover_port_conflict(ctx, command, text)

        if self.config.build_errors and is_build_command(command) and has_compiler_error(text):
            return await self._recover_build_errors(ctx, command, text)

        return RecoveryOutcome(attempted=False, success=False)

    # -------------------------------------------------------------------------
    # Port conflict
    # -------------------------------------------------------------------------

    async def _recover_port_conflict(self, ctx, command: str, text: str) -> RecoveryOutcome:
        port = extract_port(text)
        ctx.log(
            LogType.INFO,
            f"Port {port} conflict detected. Stopping the existing process and restarting..."
        )

        message = ""
        for _ in range(self.max_retries):
            ctx.log(LogType.INFO, f"Stopping the process on port {port}...")
            kill = await ctx.shell.execute(f"kill-port-process {port}", ctx.project_path)
            if kill.success:
                ctx.log(
                    LogType.SUCCESS,
                    f"Stopped the process on port {port}",
                    details=kill.message or kill.stdout or None,
                )
            else:
                ctx.log(
                    LogType.WARNING,
                    f"Could not stop the process on port {port} (continuing)",
                    details=kill.error or kill.stderr or "No process may have been listening",
                )

            await ctx.sleep(self.timing.port_release_wait)

            ctx.log(LogType.COMMAND, f"Restarting: {command}", command=command)
            retry = await ctx.run(command, label="restart")

            if retry.success:
                ctx.log(
                    LogType.SUCCESS,
                    f"Restart succeeded: {command}",
                    details=retry.stdout or retry.message or None,
                )
                return RecoveryOutcome(
                    attempted=True, success=True, message=f"{command}: restarted"
                )

            message = " | ".join(retry.error_parts()) or "Unknown error"
            ctx.log(LogType.ERROR, f"Restart failed: {command}", details=message)

        return RecoveryOutcome(
            attempted=True,
            success=False,
            message=f"{command}: restart failed ({message})",
        )

    # -------------------------------------------------------------------------
    # Build errors
    # -------------------------------------------------------------------------

    async def _recover_build_errors(self, ctx, command: str, text: str) -> RecoveryOutcome:
        ctx.log(LogType.INFO, "Attempting to fix build errors automatically...")

        for _ in range(self.max_retries):
            file_errors = parse_build_errors(text)
            if not file_errors:
                ctx.log(LogType.WARNING, "No file locations found in the build output")
                return RecoveryOutcome(
                    attempted=True,
                    success=False,
                    message=f"{command}: build errors could not be located",
                )

            for file_path, errors in file_errors.items():
                await self._fix_file(ctx, file_path, errors)

            ctx.log(LogType.INFO, "File fixes applied. Rebuilding...")
            await ctx.sleep(self.timing.rebuild_wait)

            ctx.log(LogType.COMMAND, f"Rebuilding: {command}", command=command)
            retry = await ctx.run(command, label="rebuild")

            if retry.success:
                ctx.log(
                    LogType.SUCCESS,
                    f"Rebuild succeeded: {command}",
                    details=retry.stdout or retry.message or None,
                )
                return RecoveryOutcome(
                    attempted=True, success=True, message=f"{command}: rebuilt"
                )

            ctx.log(
                LogType.ERROR,
                f"Rebuild failed: {command}",
                details=retry.error or retry.stderr or "The rebuild reported errors",
            )
            text = strip_ansi(retry.failure_text())

        return RecoveryOutcome(
            attempted=True, success=False, message=f"{command}: rebuild failed"
        )

    async def _fix_file(self, ctx, file_path: str, errors: list[BuildError]) -> bool:
        """Ask the LLM to fix one file. True if a changed file was written."""
        if ctx.chat is None:
            ctx.log(
                LogType.WARNING,
                f"No chat model configured, cannot fix {file_path}",
                file_path=file_path,
            )
            return False

        try:
            current = (await ctx.file_system.read(file_path, ctx.project_path)).content
        except (FileNotFoundError, ValueError, OSError) as e:
            ctx.log(LogType.WARNING, f"Cannot read {file_path}", file_path=file_path, details=str(e))
            return False

        summary = summarize_errors(errors)
        ctx.log(
            LogType.INFO,
            f"Requesting a fix for {file_path}",
            file_path=file_path,
            details=f"Errors: {summary}",
        )

        try:
            reply = await collect_stream(
                ctx.chat.complete(build_fix_prompt(file_path, errors, current), [])
            )
        except httpx.HTTPError as e:
            logger.warning(f"Fix request for {file_path} failed: {e}")
            ctx.log(LogType.ERROR, f"Fix request failed: {file_path}", file_path=file_path, details=str(e))
            return False

        fixed = extract_fixed_content(reply)
        if not fixed or fixed.strip() == current.strip():
            ctx.log(LogType.INFO, f"No changes proposed for {file_path}", file_path=file_path)
            return False

        written = await ctx.file_system.write(file_path, ctx.project_path, fixed)
        if written.success:
            ctx.log(LogType.SUCCESS, f"Fixed {file_path}", file_path=file_path)
            return True

        ctx.log(
            LogType.ERROR,
            f"Failed to update {file_path}",
            file_path=file_path,
            details=written.error,
        )
        return False
