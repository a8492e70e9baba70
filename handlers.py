"""
Action handlers for planrunner.

WHAT THIS FILE DOES:
-------------------
One handler per ActionKind. The engine asks the classifier for a dispatch
order and calls handlers in that order; each handler either takes the step
and returns a StepResult, or returns None ("not mine") so the next one can
try.

    INSTALL       InstallHandler                <pm> install <packages>
    CREATE        CreateFileHandler             N targets -> N writes
    MODIFY        ModifyFileHandler             one target, real content only
    COMMAND       CommandHandler                run, recover, tally
    TASK          TaskHandler                   act on a structured task
    ENV_VAR       EnvironmentVariableHandler    upsert a line in .env
    CONFIG_FILE   ConfigFileHandler             write a config skeleton
    INFORMATION   InformationHandler            LLM analysis, kept in memory

Every handler works through a StepContext, which carries the step, the plan,
the injected collaborators and a logger bound to the step index.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx

from config import Config
from diagnostics import CompilerErrorChecker
from execution_log import ExecutionStore
from providers import collect_stream
from recovery import RecoveryController, strip_ansi, terminal_error_text
from resolution import (
    CodeBlockStage,
    ContentResolver,
    TaskStage,
    TemplateStage,
    basename,
    extract_commands,
    extract_packages,
    extract_path_candidates,
    resolve_modify_target,
    resolve_targets,
)
from schemas import (
    ActionKind,
    CommandResult,
    ExecutionLogEntry,
    FailureKind,
    LogType,
    PlanDocument,
    StepResult,
    Task,
    WriteResult,
)


logger = logging.getLogger("planrunner.handlers")

# Receives (text, is_error) for every command the engine runs
TerminalSink = Callable[[str, bool], None]

MAX_ERROR_MESSAGE = 2000
MAX_ERROR_PART = 5000
MAX_CONTEXT_CHARS = 3000


# =============================================================================
# STEP CONTEXT
# =============================================================================

@dataclass
class StepContext:
    """Everything a handler needs to act on one step."""
    step_index: int
    description: str
    plan: PlanDocument
    project_path: str
    store: ExecutionStore
    file_system: Any
    shell: Any
    config: Config = field(default_factory=Config)
    chat: Optional[Any] = None
    terminal: Optional[TerminalSink] = None

    def log(
        self,
        type: LogType,
        message: str,
        command: Optional[str] = None,
        file_path: Optional[str] = None,
        details: Optional[str] = None,
    ) -> ExecutionLogEntry:
        return self.store.log(
            self.step_index,
            type,
            message,
            command=command,
            file_path=file_path,
            details=details,
        )

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)

    def mirror(self, command: str, result: CommandResult, label: Optional[str] = None) -> None:
        """Echo a command's outcome to the terminal sink, if there is one."""
        if self.terminal is None:
            return
        label = label or f"step {self.step_index}"
        if result.success:
            self.terminal(f"[{label}] {command}\n{result.stdout or result.message or ''}", False)
        else:
            self.terminal(f"[{label}] {command}\n{terminal_error_text(result)}", True)

    async def run(self, command: str, label: Optional[str] = None) -> CommandResult:
        """Run a command in the project and mirror its output."""
        result = await self.shell.execute(command, self.project_path)
        self.mirror(command, result, label)
        return result

    async def write(self, path: str, content: str) -> WriteResult:
        """Write a project file; a path outside the project is a failed write."""
        try:
            return await self.file_system.write(path, self.project_path, content)
        except ValueError as e:
            return WriteResult(success=False, error=str(e))


def command_error_text(result: CommandResult) -> str:
    """
    Readable error text for a failed command.

    Error fields are de-duplicated, stdout only counts when it mentions an
    error, oversized parts are dropped and the whole is capped.
    """
    candidates = [result.error, result.details, result.stderr]
    if result.stdout and ("error" in result.stdout.lower() or "failed" in result.stdout.lower()):
        candidates.append(result.stdout)

    parts: list[str] = []
    for candidate in candidates:
        if not candidate:
            continue
        cleaned = strip_ansi(candidate).strip()
        if not cleaned or cleaned in parts or len(cleaned) >= MAX_ERROR_PART:
            continue
        parts.append(cleaned)

    text = "\n\n".join(parts) or "Unknown error"
    if len(text) > MAX_ERROR_MESSAGE:
        text = text[:MAX_ERROR_MESSAGE] + "\n... (message truncated)"
    return text


def file_size_kb(content: str) -> str:
    return f"{len(content.encode('utf-8')) / 1024:.2f} KB"


# =============================================================================
# BASE HANDLER
# =============================================================================

class StepHandler(ABC):
    """Base class for the action handlers."""

    kind: ActionKind

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()

    @abstractmethod
    async def handle(self, ctx: StepContext) -> Optional[StepResult]:
        """Act on the step, or return None to let the next handler try."""
        pass


class _WritingHandler(StepHandler):
    """Shared post-write error check for the handlers that write source files."""

    def __init__(
        self,
        config: Optional[Config] = None,
        error_checker: Optional[CompilerErrorChecker] = None,
    ):
        super().__init__(config)
        self.error_checker = error_checker

    async def after_write(self, ctx: StepContext, path: str, content: str) -> None:
        if self.error_checker is None or not self.config.engine.check_after_write:
            return
        if self.error_checker.supports(path):
            await self.error_checker.check_and_fix(ctx, path, content)


# =============================================================================
# INSTALL
# =============================================================================

class InstallHandler(StepHandler):
    """Installs the plan's (or the step's) packages with the package manager."""

    kind = ActionKind.INSTALL

    async def handle(self, ctx: StepContext) -> Optional[StepResult]:
        packages = extract_packages(ctx.description, ctx.plan)
        if packages:
            command = f"{self.config.engine.package_manager} install {' '.join(packages)}"
        else:
            task = next(
                (t for t in ctx.plan.tasks if t.type == "install" and t.command),
                None,
            )
            if task is None:
                return None
            command = task.command

        ctx.log(LogType.COMMAND, f"Installing packages: {command}", command=command)
        result = await ctx.run(command)

        if result.success:
            ctx.log(
                LogType.SUCCESS,
                "Packages installed",
                command=command,
                details=result.stdout or None,
            )
            return StepResult(success=True, message=f"Packages installed: {command}")

        error = command_error_text(result)
        ctx.log(LogType.ERROR, "Package installation failed", command=command, details=error)
        return StepResult(
            success=False,
            message=f"Package installation failed: {error}",
            failure=FailureKind.COMMAND,
        )


# =============================================================================
# CREATE
# =============================================================================

class CreateFileHandler(_WritingHandler):
    """
    Creates every file a step names.

    "컴포넌트 생성 (A.tsx, B.tsx)" resolves to two targets and attempts two
    writes. A failed write is recorded and the remaining files still go.
    """

    kind = ActionKind.CREATE

    def __init__(
        self,
        config: Optional[Config] = None,
        error_checker: Optional[CompilerErrorChecker] = None,
        resolver: Optional[ContentResolver] = None,
    ):
        super().__init__(config, error_checker)
        self.resolver = resolver or ContentResolver(
            [CodeBlockStage(), TaskStage(), TemplateStage()],
            min_content_length=self.config.engine.min_content_length,
        )

    async def handle(self, ctx: StepContext) -> Optional[StepResult]:
        files = ctx.plan.files_to_create
        if not files:
            return None

        targets = resolve_targets(ctx.description, ctx.plan.tasks, files, ctx.step_index)
        total = len(targets)
        created = 0
        failed = 0
        outcomes = []

        for i, target in enumerate(targets, 1):
            resolved = self.resolver.resolve(target.path, ctx.plan)
            if resolved is None:
                failed += 1
                outcomes.append(f"{target.path}: no content")
                ctx.log(LogType.ERROR, f"No content for {target.path}", file_path=target.path)
                continue

            ctx.log(
                LogType.FILE,
                f"[{i}/{total}] Creating file: {target.path}",
                file_path=target.path,
                details=f"size: {file_size_kb(resolved.content)} | source: {resolved.source}",
            )

            written = await ctx.write(target.path, resolved.content)
            if written.success:
                created += 1
                outcomes.append(f"{target.path}: created")
                ctx.log(LogType.SUCCESS, f"Created {target.path}", file_path=target.path)
                await self.after_write(ctx, target.path, resolved.content)
            else:
                failed += 1
                outcomes.append(f"{target.path}: failed ({written.error or written.message})")
                ctx.log(
                    LogType.ERROR,
                    f"Failed to create {target.path}",
                    file_path=target.path,
                    details=written.error or written.message,
                )

            if i < total:
                await ctx.sleep(self.config.timing.file_delay)

        if created == 0:
            return StepResult(
                success=False,
                message=(
                    f"No files could be created for step: {ctx.description}. "
                    f"{', '.join(outcomes)}"
                ),
                failure=FailureKind.WRITE,
            )

        summary = f"{created} files created"
        if failed:
            summary += f", {failed} failed"
        return StepResult(
            success=failed == 0,
            message=f"{summary}. {', '.join(outcomes)}",
            failure=None if failed == 0 else FailureKind.WRITE,
        )


# =============================================================================
# MODIFY
# =============================================================================

class ModifyFileHandler(_WritingHandler):
    """
    Rewrites the one file a modify step refers to.

    Only code block or task content is used. A modification needs real
    content, so there is no template fallback.
    """

    kind = ActionKind.MODIFY

    def __init__(
        self,
        config: Optional[Config] = None,
        error_checker: Optional[CompilerErrorChecker] = None,
        resolver: Optional[ContentResolver] = None,
    ):
        super().__init__(config, error_checker)
        self.resolver = resolver or ContentResolver(
            [CodeBlockStage(), TaskStage()],
            min_content_length=self.config.engine.min_content_length,
        )

    async def handle(self, ctx: StepContext) -> Optional[StepResult]:
        files = ctx.plan.files_to_modify
        if not files:
            return None

        target = resolve_modify_target(ctx.description, ctx.plan.tasks, files, ctx.step_index)
        if target is None:
            return None

        resolved = self.resolver.resolve(target.path, ctx.plan)
        if resolved is None:
            ctx.log(
                LogType.WARNING,
                f"No modification content found for {target.path}",
                file_path=target.path,
            )
            return StepResult(
                success=False,
                message=f"No modification content found for {target.path}",
                failure=FailureKind.RESOLUTION,
            )

        ctx.log(
            LogType.FILE,
            f"Modifying file: {target.path}",
            file_path=target.path,
            details=f"size: {file_size_kb(resolved.content)} | source: {resolved.source}",
        )

        written = await ctx.write(target.path, resolved.content)
        if not written.success:
            ctx.log(
                LogType.ERROR,
                f"Failed to modify {target.path}",
                file_path=target.path,
                details=written.error or written.message,
            )
            return StepResult(
                success=False,
                message=f"Failed to modify {target.path}: {written.error or written.message}",
                failure=FailureKind.WRITE,
            )

        ctx.log(LogType.SUCCESS, f"Modified {target.path}", file_path=target.path)
        await self.after_write(ctx, target.path, resolved.content)
        return StepResult(success=True, message=f"Modified {target.path} ({resolved.source})")


# =============================================================================
# COMMAND
# =============================================================================

class CommandHandler(StepHandler):
    """
    Runs the commands a step asks for.

    Each failure gets one pass through the recovery controller. A recovered
    command moves from the failure count to the success count.
    """

    kind = ActionKind.COMMAND

    def __init__(
        self,
        config: Optional[Config] = None,
        recovery: Optional[RecoveryController] = None,
    ):
        super().__init__(config)
        self.recovery = recovery or RecoveryController(self.config.recovery, self.config.timing)

    async def handle(self, ctx: StepContext) -> Optional[StepResult]:
        commands = extract_commands(ctx.description, ctx.plan.tasks)
        if not commands:
            logger.debug(f"No command found in step {ctx.step_index}")
            return None

        successes = 0
        failures = 0
        exhausted = False
        outcomes = []

        for i, command in enumerate(commands):
            ctx.log(LogType.COMMAND, f"Running: {command}", command=command)
            result = await ctx.run(command)

            if result.success:
                successes += 1
                outcomes.append(f"{command}: ok")
                ctx.log(
                    LogType.SUCCESS,
                    f"Command succeeded: {command}",
                    command=command,
                    details=result.stdout or result.message or None,
                )
            else:
                failures += 1
                error = command_error_text(result)
                ctx.log(LogType.ERROR, f"Command failed: {command}", command=command, details=error)

                outcome = await self.recovery.recover(ctx, command, result)
                if outcome.success:
                    failures -= 1
                    successes += 1
                    outcomes.append(outcome.message)
                elif outcome.attempted:
                    exhausted = True
                    outcomes.append(outcome.message)
                else:
                    outcomes.append(f"{command}: failed ({error})")

            if i < len(commands) - 1:
                await ctx.sleep(self.config.timing.command_delay)

        message = (
            f"{len(commands)} commands executed, {failures} failed. "
            f"{', '.join(outcomes)}"
        )
        if failures == 0:
            return StepResult(success=True, message=message)
        return StepResult(
            success=False,
            message=message,
            failure=FailureKind.RECOVERY_EXHAUSTED if exhausted else FailureKind.COMMAND,
        )


# =============================================================================
# TASK
# =============================================================================

class TaskHandler(_WritingHandler):
    """
    Acts on the structured task that belongs to a step.

    The task is found by a path mentioned in the step, then by install or
    command phrasing, then by position. No task at all lets the fallback
    handlers try.
    """

    kind = ActionKind.TASK

    def __init__(
        self,
        config: Optional[Config] = None,
        error_checker: Optional[CompilerErrorChecker] = None,
        resolver: Optional[ContentResolver] = None,
    ):
        super().__init__(config, error_checker)
        self.resolver = resolver or ContentResolver(
            [CodeBlockStage(fuzzy=False), TaskStage(), TemplateStage()],
            min_content_length=self.config.engine.min_content_length,
        )

    def find_task(self, ctx: StepContext) -> Optional[Task]:
        tasks = ctx.plan.tasks

        for candidate in extract_path_candidates(ctx.description):
            for task in tasks:
                if not task.target:
                    continue
                if (
                    task.target == candidate
                    or task.target.endswith(candidate)
                    or basename(task.target) == basename(candidate)
                ):
                    return task

        lowered = ctx.description.lower()
        if any(word in lowered for word in ("install", "패키지", "command")):
            for task in tasks:
                if task.type in ("install", "command") and task.command:
                    return task

        if ctx.step_index < len(tasks):
            return tasks[ctx.step_index]
        return None

    async def handle(self, ctx: StepContext) -> Optional[StepResult]:
        task = self.find_task(ctx)
        if task is None:
            return None

        if task.type in ("install", "command"):
            return await self._run_task_command(ctx, task)
        if task.type in ("create", "modify"):
            return await self._write_task_file(ctx, task)

        ctx.log(LogType.ERROR, f"Unsupported task type: {task.type}")
        return StepResult(
            success=False,
            message=f"Unsupported task type: {task.type}",
            failure=FailureKind.CLASSIFICATION,
        )

    async def _run_task_command(self, ctx: StepContext, task: Task) -> StepResult:
        if not task.command:
            return StepResult(
                success=False,
                message=f"The {task.type} task has no command",
                failure=FailureKind.RESOLUTION,
            )

        ctx.log(LogType.COMMAND, f"Running task command: {task.command}", command=task.command)
        result = await ctx.run(task.command)
        if result.success:
            ctx.log(LogType.SUCCESS, "Task command succeeded", command=task.command,
                    details=result.stdout or None)
            return StepResult(success=True, message=f"Task command succeeded: {task.command}")

        error = command_error_text(result)
        ctx.log(LogType.ERROR, "Task command failed", command=task.command, details=error)
        return StepResult(
            success=False,
            message=f"Task command failed: {error}",
            failure=FailureKind.COMMAND,
        )

    async def _write_task_file(self, ctx: StepContext, task: Task) -> StepResult:
        if not task.target:
            return StepResult(
                success=False,
                message=f"The {task.type} task has no target file",
                failure=FailureKind.RESOLUTION,
            )

        resolved = self.resolver.resolve(task.target, ctx.plan)
        ctx.log(
            LogType.FILE,
            f"Writing file from task: {task.target}",
            file_path=task.target,
            details=f"size: {file_size_kb(resolved.content)} | source: {resolved.source}",
        )

        written = await ctx.write(task.target, resolved.content)
        if not written.success:
            ctx.log(LogType.ERROR, f"Failed to write {task.target}", file_path=task.target,
                    details=written.error or written.message)
            return StepResult(
                success=False,
                message=f"Failed to write {task.target}: {written.error or written.message}",
                failure=FailureKind.WRITE,
            )

        ctx.log(LogType.SUCCESS, f"Wrote {task.target}", file_path=task.target)
        await self.after_write(ctx, task.target, resolved.content)
        verb = "Created" if task.type == "create" else "Modified"
        return StepResult(success=True, message=f"{verb} {task.target} ({resolved.source})")


# =============================================================================
# ENVIRONMENT VARIABLES
# =============================================================================

_ENV_NAME = r"[A-Z][A-Z0-9_]*"

ENV_NAME_PATTERNS = [
    re.compile(rf"\b({_ENV_NAME})\s*=\s*\S"),
    re.compile(rf"\b({_ENV_NAME})\s+(?:추가|설정)"),
    re.compile(rf"(?i:\badd|\bset)\s+({_ENV_NAME})\b"),
    re.compile(rf"\.env.*?\b({_ENV_NAME})\b"),
    re.compile(r"\b([A-Z][A-Z0-9]*_[A-Z0-9_]+)\b"),
]

ENV_VALUE_PATTERNS = [
    re.compile(r"예[:\s]+([a-zA-Z0-9_\-./:]+)"),
    re.compile(r"예\s*:\s*([^\s,)]+)"),
    re.compile(r"값[:\s]+([^\s,)]+)"),
    re.compile(r"추가[:\s]+([^\s,)]+)"),
    re.compile(r"설정[:\s]+([^\s,)]+)"),
    re.compile(r"\([^)]*예[:\s]*([^)]+)\)"),
    re.compile(r"\bto\s+[\"']?([^\s\"',)]+)", re.IGNORECASE),
    re.compile(r":\s*([a-zA-Z0-9_\-./:]+)"),
]


def extract_env_name(description: str) -> Optional[str]:
    """The variable a step is about, e.g. NEXT_PUBLIC_API_URL."""
    for pattern in ENV_NAME_PATTERNS:
        match = pattern.search(description)
        if match:
            return match.group(1)
    return None


def _clean_env_value(value: str) -> str:
    return value.strip().strip("\"'()").strip()


def extract_env_value(description: str, name: str) -> Optional[str]:
    """The value to assign; an uppercase identifier is never taken as one."""
    assignment = re.search(rf"\b{re.escape(name)}\s*=\s*[\"']?([^\s\"',)]+)", description)
    candidates = [assignment] if assignment else []
    candidates.extend(pattern.search(description) for pattern in ENV_VALUE_PATTERNS)

    for match in candidates:
        if not match:
            continue
        value = _clean_env_value(match.group(1))
        if value and not re.fullmatch(_ENV_NAME, value):
            return value
    return None


def upsert_env_line(existing: str, name: str, value: str) -> str:
    """Replace NAME=... if present, else append it on its own line."""
    line = f"{name}={value}"
    pattern = re.compile(rf"^{re.escape(name)}\s*=.*$", re.MULTILINE)
    if pattern.search(existing):
        return pattern.sub(lambda _: line, existing)
    if existing and not existing.endswith("\n"):
        existing += "\n"
    return f"{existing}{line}\n"


class EnvironmentVariableHandler(StepHandler):
    """Sets one variable in the project's .env file."""

    kind = ActionKind.ENV_VAR
    env_file = ".env"

    async def handle(self, ctx: StepContext) -> Optional[StepResult]:
        name = extract_env_name(ctx.description)
        if not name:
            ctx.log(LogType.ERROR, "Could not determine the environment variable name")
            return StepResult(
                success=False,
                message="Could not determine the environment variable name from the step",
                failure=FailureKind.RESOLUTION,
            )

        value = extract_env_value(ctx.description, name)
        if not value:
            ctx.log(LogType.ERROR, f"Could not determine a value for {name}")
            return StepResult(
                success=False,
                message=f"Could not determine a value for {name} from the step",
                failure=FailureKind.RESOLUTION,
            )

        try:
            existing = (await ctx.file_system.read(self.env_file, ctx.project_path)).content
        except FileNotFoundError:
            existing = ""

        ctx.log(LogType.FILE, f"Setting {name} in {self.env_file}", file_path=self.env_file)
        written = await ctx.write(self.env_file, upsert_env_line(existing, name, value))
        if not written.success:
            ctx.log(LogType.ERROR, f"Failed to update {self.env_file}", file_path=self.env_file,
                    details=written.error or written.message)
            return StepResult(
                success=False,
                message=f"Failed to update {self.env_file}: {written.error or written.message}",
                failure=FailureKind.WRITE,
            )

        ctx.log(LogType.SUCCESS, f"Set {name}={value}", file_path=self.env_file)
        return StepResult(success=True, message=f"Environment variable set: {name}={value}")


# =============================================================================
# CONFIG FILES
# =============================================================================

CONFIG_NAME_PATTERNS = [
    re.compile(r"([a-zA-Z0-9_\-./]+\.(?:json|js|ts|yaml|yml|toml|ini|conf|config))\b"),
    re.compile(r"([a-zA-Z0-9_\-./]+)\s*(?:설정|config|configuration)", re.IGNORECASE),
]


def extract_config_file_name(description: str) -> Optional[str]:
    for pattern in CONFIG_NAME_PATTERNS:
        match = pattern.search(description)
        if match and "." in match.group(1):
            return match.group(1)
    return None


def config_skeleton(path: str) -> str:
    """An empty config file shaped for its extension."""
    ext = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    if ext == "json":
        return "{\n  \n}\n"
    if ext in ("js", "ts"):
        return "module.exports = {\n  \n};\n"
    return "# Configuration\n"


class ConfigFileHandler(StepHandler):
    """Creates an empty config file the step names, unless it already has content."""

    kind = ActionKind.CONFIG_FILE

    async def handle(self, ctx: StepContext) -> Optional[StepResult]:
        path = extract_config_file_name(ctx.description)
        if not path:
            return None

        try:
            existing = (await ctx.file_system.read(path, ctx.project_path)).content
        except FileNotFoundError:
            existing = ""

        if existing.strip():
            ctx.log(LogType.INFO, f"{path} already exists, left unchanged", file_path=path)
            return StepResult(success=True, message=f"{path} already exists, left unchanged")

        ctx.log(LogType.FILE, f"Creating config file: {path}", file_path=path)
        written = await ctx.write(path, config_skeleton(path))
        if not written.success:
            ctx.log(LogType.ERROR, f"Failed to create {path}", file_path=path,
                    details=written.error or written.message)
            return StepResult(
                success=False,
                message=f"Failed to create {path}: {written.error or written.message}",
                failure=FailureKind.WRITE,
            )

        ctx.log(LogType.SUCCESS, f"Created {path}", file_path=path)
        return StepResult(success=True, message=f"Config file created: {path}")


# =============================================================================
# INFORMATION
# =============================================================================

def truncate(text: str, limit: int = MAX_CONTEXT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n... (truncated)"


def build_analysis_prompt(ctx: StepContext, structure) -> str:
    config_sections = "\n\n".join(
        f"### {name}\n```\n{truncate(content)}\n```"
        for name, content in structure.config_files.items()
    ) or "(none found)"

    return (
        f"You are reviewing a software project as one step of an execution plan.\n\n"
        f"User request: {ctx.plan.metadata.user_request or '(not given)'}\n"
        f"Step: {ctx.description}\n"
        f"Project path: {ctx.project_path}\n"
        f"Project type: {structure.project_type}\n\n"
        f"## Project structure\n```\n{truncate(structure.tree_text) or '(empty)'}\n```\n\n"
        f"## Key configuration files\n{config_sections}\n\n"
        f"Answer the step based on this project. Be specific and concise."
    )


class InformationHandler(StepHandler):
    """Asks the LLM about the project and keeps the answer as the step's analysis."""

    kind = ActionKind.INFORMATION

    async def handle(self, ctx: StepContext) -> Optional[StepResult]:
        if ctx.chat is None:
            ctx.log(LogType.ERROR, "No chat model configured for analysis")
            return StepResult(
                success=False,
                message="No chat model configured for analysis",
                failure=FailureKind.ANALYSIS,
            )

        structure = ctx.file_system.describe_structure(ctx.project_path)
        prompt = build_analysis_prompt(ctx, structure)
        ctx.log(LogType.INFO, "Analysing the project...",
                details=f"Project type: {structure.project_type}")

        try:
            reply = await collect_stream(ctx.chat.complete(prompt, []))
        except httpx.HTTPError as e:
            logger.error(f"Analysis request failed: {e}")
            ctx.log(LogType.ERROR, "Analysis request failed", details=str(e))
            return StepResult(
                success=False,
                message=f"Analysis request failed: {e}",
                failure=FailureKind.ANALYSIS,
            )

        if not reply.strip():
            ctx.log(LogType.ERROR, "The model returned an empty analysis")
            return StepResult(
                success=False,
                message="The model returned an empty analysis",
                failure=FailureKind.ANALYSIS,
            )

        ctx.store.record_analysis(ctx.step_index, reply)
        ctx.log(LogType.SUCCESS, "Analysis completed", details=truncate(reply, 500))
        return StepResult(success=True, message="Analysis completed")


# =============================================================================
# REGISTRY
# =============================================================================

def build_handlers(
    config: Optional[Config] = None,
    error_checker: Optional[CompilerErrorChecker] = None,
    recovery: Optional[RecoveryController] = None,
) -> dict[ActionKind, StepHandler]:
    """One handler per action kind, sharing config, checker and recovery."""
    config = config or Config()
    handlers: list[StepHandler] = [
        InstallHandler(config),
        CreateFileHandler(config, error_checker),
        ModifyFileHandler(config, error_checker),
        CommandHandler(config, recovery),
        TaskHandler(config, error_checker),
        EnvironmentVariableHandler(config),
        ConfigFileHandler(config),
        InformationHandler(config),
    ]
    return {handler.kind: handler for handler in handlers}
