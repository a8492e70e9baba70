"""
Execution log store for planrunner.

WHAT THIS FILE DOES:
-------------------
Holds everything the engine records about a run, keyed by step index:

- the append-only list of ExecutionLogEntry records per step
- the latest StepResult per step
- the StepStatus per step (pending -> executing -> succeeded | failed)
- analysis text produced by information steps

One ExecutionStore is created per plan execution and passed in explicitly;
there is no module-level registry. Listeners registered with add_listener()
see every entry as it is appended, which is how the CLI streams the log.

Every entry is also emitted on the "planrunner.execution" logger.
"""

import logging
from typing import Callable, Optional

from schemas import (
    ExecutionLogEntry,
    LogType,
    StepResult,
    StepStatus,
)


logger = logging.getLogger("planrunner.execution")

LogListener = Callable[[int, ExecutionLogEntry], None]

_LEVELS = {
    LogType.ERROR: logging.ERROR,
    LogType.WARNING: logging.WARNING,
    LogType.SUCCESS: logging.INFO,
    LogType.INFO: logging.INFO,
    LogType.COMMAND: logging.INFO,
    LogType.FILE: logging.DEBUG,
}


class ExecutionStore:
    """
    Per-run store of step logs, results, statuses and analyses.

    Log entries are never removed. Re-executing a step appends to the same
    list, so a step's log only ever grows.
    """

    def __init__(self):
        self._entries: dict[int, list[ExecutionLogEntry]] = {}
        self._results: dict[int, StepResult] = {}
        self._statuses: dict[int, StepStatus] = {}
        self._analyses: dict[int, str] = {}
        self._listeners: list[LogListener] = []

    # -------------------------------------------------------------------------
    # Log
    # -------------------------------------------------------------------------

    def log(
        self,
        step_index: int,
        type: LogType,
        message: str,
        command: Optional[str] = None,
        file_path: Optional[str] = None,
        details: Optional[str] = None,
    ) -> ExecutionLogEntry:
        """Append an entry to a step's log and notify listeners."""
        entry = ExecutionLogEntry(
            type=type,
            message=message,
            command=command,
            file_path=file_path,
            details=details,
        )
        self._entries.setdefault(step_index, []).append(entry)

        logger.log(_LEVELS.get(type, logging.INFO), f"[step {step_index}] {message}")

        for listener in self._listeners:
            listener(step_index, entry)

        return entry

    def entries(self, step_index: int) -> list[ExecutionLogEntry]:
        """A copy of the step's log, oldest first."""
        return list(self._entries.get(step_index, []))

    def add_listener(self, callback: LogListener) -> None:
        """Register a callback invoked as callback(step_index, entry)."""
        self._listeners.append(callback)

    # -------------------------------------------------------------------------
    # Status and results
    # -------------------------------------------------------------------------

    def status(self, step_index: int) -> StepStatus:
        return self._statuses.get(step_index, StepStatus.PENDING)

    def set_status(self, step_index: int, status: StepStatus) -> None:
        """
        Move a step to a new status.

        Raises:
            ValueError: On entering EXECUTING while already executing, or on
                finishing a step that is not executing.
        """
        current = self.status(step_index)

        if status == StepStatus.EXECUTING:
            if current == StepStatus.EXECUTING:
                raise ValueError(f"Step {step_index} is already executing")
        elif status in (StepStatus.SUCCEEDED, StepStatus.FAILED):
            if current != StepStatus.EXECUTING:
                raise ValueError(
                    f"Step {step_index} cannot finish from status {current.value}"
                )
        else:
            raise ValueError(f"Step {step_index} cannot return to {status.value}")

        self._statuses[step_index] = status

    def result(self, step_index: int) -> Optional[StepResult]:
        """The latest result of a step, or None if it never finished."""
        return self._results.get(step_index)

    def record_result(self, step_index: int, result: StepResult) -> None:
        self._results[step_index] = result

    # -------------------------------------------------------------------------
    # Analysis artifacts
    # -------------------------------------------------------------------------

    def analysis(self, step_index: int) -> Optional[str]:
        return self._analyses.get(step_index)

    def record_analysis(self, step_index: int, text: str) -> None:
        self._analyses[step_index] = text
