"""
Execution Engine for planrunner.

WHAT THIS FILE DOES:
-------------------
Executes one step of a plan at a time. A step is a free-text sentence from
the plan's execution order; the engine works out what it means and does it.

EXECUTION FLOW:
--------------
    execute_step(index, "3.1 컴포넌트 생성 (PostList.tsx, PostForm.tsx)", ctx)
           │
           ▼
    status -> executing, "Step started" logged
           │
           ▼
    classifier.dispatch_order()      e.g. [CREATE, CONFIG_FILE]
           │
           ▼
    handlers tried in order until one returns a StepResult
    ├── CreateFileHandler -> writes PostList.tsx, PostForm.tsx
    └── (a handler returning None passes to the next)
           │
           ▼
    status -> succeeded | failed, result recorded

ERROR BOUNDARY:
--------------
execute_step never raises for a step-level problem. Every exception from a
handler or collaborator is caught here, logged as an error entry, and
returned as StepResult(success=False, failure=FailureKind.UNEXPECTED).
Steps can be re-executed any number of times; their logs keep growing.

There is no locking between steps. Two concurrent execute_step calls that
touch the same file are not coordinated.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from classifier import dispatch_order
from config import Config
from diagnostics import CompilerErrorChecker
from execution_log import ExecutionStore
from handlers import StepContext, StepHandler, build_handlers
from providers import ChatClient, get_provider
from schemas import (
    FailureKind,
    LogType,
    PlanDocument,
    StepResult,
    StepStatus,
)
from shell import ShellExecutor
from workspace import ProjectFileSystem


logger = logging.getLogger("planrunner.engine")


@dataclass
class StepExecutionContext:
    """Caller-supplied context shared by every step of one plan run."""
    project_path: Optional[str]
    plan: PlanDocument
    store: ExecutionStore = field(default_factory=ExecutionStore)


class ExecutionEngine:
    """
    Classifies steps and runs them through the action handlers.

    Usage:
        engine = ExecutionEngine(ProjectFileSystem(), ShellExecutor(), chat=chat)
        context = StepExecutionContext(project_path="/path/to/app", plan=plan)
        result = await engine.execute_step(0, plan.steps[0], context)

    Collaborators are injected so tests can replace them with fakes:
        file_system: read / write / describe_structure
        shell: execute(command, project_root)
        chat: complete(prompt, history) -> async iterator of SSE frames
        terminal: callable(text, is_error) mirroring command output
    """

    def __init__(
        self,
        file_system: Any,
        shell: Any,
        chat: Optional[Any] = None,
        terminal: Optional[Callable[[str, bool], None]] = None,
        error_checker: Optional[CompilerErrorChecker] = None,
        config: Optional[Config] = None,
        handlers: Optional[dict] = None,
    ):
        self.file_system = file_system
        self.shell = shell
        self.chat = chat
        self.terminal = terminal
        self.config = config or Config()
        self.error_checker = error_checker
        self.handlers: dict = handlers if handlers is not None else build_handlers(
            self.config, error_checker
        )

    def _step_context(
        self,
        step_index: int,
        step_description: str,
        context: StepExecutionContext,
    ) -> StepContext:
        return StepContext(
            step_index=step_index,
            description=step_description,
            plan=context.plan,
            project_path=context.project_path,
            store=context.store,
            file_system=self.file_system,
            shell=self.shell,
            config=self.config,
            chat=self.chat,
            terminal=self.terminal,
        )

    async def execute_step(
        self,
        step_index: int,
        step_description: str,
        context: StepExecutionContext,
    ) -> StepResult:
        """
        Execute one step and record its outcome.

        Args:
            step_index: Position of the step in the plan's execution order
            step_description: The step's text
            context: Project path, plan and store for this run

        Returns:
            StepResult; failures are reported, never raised
        """
        store = context.store

        if not context.project_path:
            result = StepResult(
                success=False,
                message="No project path set; cannot execute steps",
                failure=FailureKind.RESOLUTION,
            )
            store.log(step_index, LogType.ERROR, result.message)
            store.record_result(step_index, result)
            return result

        store.log(step_index, LogType.INFO, f"Step started: {step_description}")

        try:
            store.set_status(step_index, StepStatus.EXECUTING)
        except ValueError as e:
            store.log(step_index, LogType.ERROR, str(e))
            return StepResult(success=False, message=str(e), failure=FailureKind.UNEXPECTED)

        step = self._step_context(step_index, step_description, context)

        try:
            result = await self._dispatch(step)
        except Exception as e:
            logger.exception(f"Step {step_index} raised")
            store.log(
                step_index,
                LogType.ERROR,
                f"Unexpected error: {e}",
                details=type(e).__name__,
            )
            result = StepResult(
                success=False,
                message=f"Unexpected error: {e}",
                failure=FailureKind.UNEXPECTED,
            )

        store.set_status(
            step_index,
            StepStatus.SUCCEEDED if result.success else StepStatus.FAILED,
        )
        store.record_result(step_index, result)
        store.log(
            step_index,
            LogType.SUCCESS if result.success else LogType.ERROR,
            f"Step {'completed' if result.success else 'failed'}: {result.message}",
        )
        return result

    async def _dispatch(self, step: StepContext) -> StepResult:
        kinds = dispatch_order(step.description, step.plan)
        step.log(
            LogType.INFO,
            f"Step type: {', '.join(kind.value for kind in kinds) or 'unknown'}",
        )

        for kind in kinds:
            handler: Optional[StepHandler] = self.handlers.get(kind)
            if handler is None:
                continue
            result = await handler.handle(step)
            if result is not None:
                return result
            logger.debug(f"{kind.value} handler passed on step {step.step_index}")

        step.log(LogType.ERROR, "Cannot execute this step")
        return StepResult(
            success=False,
            message=f"Cannot execute this step: {step.description}",
            failure=FailureKind.CLASSIFICATION,
        )

    async def execute_plan(
        self,
        context: StepExecutionContext,
        indices: Optional[list[int]] = None,
        stop_on_failure: bool = False,
    ) -> dict[int, StepResult]:
        """
        Execute several steps of the plan, in order.

        Args:
            context: Project path, plan and store for this run
            indices: Step indices to run (default: all)
            stop_on_failure: Stop at the first failed step

        Returns:
            Results keyed by step index, in execution order

        Raises:
            ValueError: If an index is outside the plan's execution order
        """
        steps = context.plan.steps
        if indices is None:
            indices = list(range(len(steps)))

        for index in indices:
            if not 0 <= index < len(steps):
                raise ValueError(
                    f"Step {index} does not exist (the plan has {len(steps)} steps)"
                )

        results: dict[int, StepResult] = {}
        for index in indices:
            result = await self.execute_step(index, steps[index], context)
            results[index] = result
            if stop_on_failure and not result.success:
                break

        return results


# =============================================================================
# FACTORY
# =============================================================================

def create_chat_client(config: Config, model_name: Optional[str] = None) -> ChatClient:
    """
    Chat client for the configured (or named) model.

    Raises:
        ValueError: If the model is unknown or its API key isn't set
    """
    name = model_name or config.chat.model
    provider = get_provider(config.to_provider_config(), name)
    return ChatClient(provider, max_tokens=config.chat.max_tokens)


def create_engine(
    config: Optional[Config] = None,
    chat: Optional[Any] = None,
    terminal: Optional[Callable[[str, bool], None]] = None,
    file_system: Optional[Any] = None,
    shell: Optional[Any] = None,
) -> ExecutionEngine:
    """Engine wired with the default filesystem, shell and error checker."""
    config = config or Config()
    return ExecutionEngine(
        file_system=file_system or ProjectFileSystem(),
        shell=shell or ShellExecutor(
            allowed_commands=config.shell.allowed_commands,
            timeout=config.shell.timeout,
            max_output=config.shell.max_output,
        ),
        chat=chat,
        terminal=terminal,
        error_checker=CompilerErrorChecker(
            fix_attempts=config.recovery.fix_attempts,
            supported_languages=config.engine.supported_languages,
        ),
        config=config,
    )
