#!/usr/bin/env python3
"""
planrunner CLI - execute an LLM-generated plan against a project.

This is the main entry point for the planrunner command-line interface.
It loads a plan document, wires the execution engine with the real
filesystem, shell and chat model, and runs the requested steps with a rich
terminal UI.

USAGE:
------
  planrunner plan.json --project ./my-app            - Run every step
  planrunner plan.json --project ./my-app --step 2   - Run (or re-run) step 2
  planrunner plan.json --list                         - Show the steps
  planrunner plan.json --project ./my-app --no-chat   - Run without an LLM

EXIT CODES:
----------
  0    every executed step succeeded
  1    a step failed, or the plan/config couldn't be loaded
  130  interrupted
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import httpx
import yaml
from pydantic import ValidationError

from config import Config, load_config
from execution import StepExecutionContext, create_chat_client, create_engine
from execution_log import ExecutionStore
from schemas import PlanDocument, load_plan
import ui


logger = logging.getLogger("planrunner.cli")


# =============================================================================
# CLI ARGUMENT PARSING
# =============================================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="planrunner",
        description="Execute the steps of an LLM-generated plan against a project",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  planrunner plan.json --project ./my-app
  planrunner plan.json --project ./my-app --step 0 --step 3
  planrunner plan.json --list
        """
    )

    parser.add_argument(
        "plan",
        type=Path,
        help="Plan document (JSON)"
    )

    parser.add_argument(
        "-p", "--project",
        help="Project directory (default: the plan's metadata.projectPath)"
    )

    parser.add_argument(
        "-s", "--step",
        type=int,
        action="append",
        dest="steps",
        metavar="N",
        help="Step index to execute; repeatable (default: all steps)"
    )

    parser.add_argument(
        "-l", "--list",
        action="store_true",
        help="List the plan's steps and exit"
    )

    parser.add_argument(
        "-c", "--config",
        type=Path,
        help="Configuration file (default: ~/.planrunner/config.yaml or ./planrunner.yaml)"
    )

    parser.add_argument(
        "-m", "--model",
        help="Model for analysis and fixes (default: chat.model from config)"
    )

    parser.add_argument(
        "--no-chat",
        action="store_true",
        help="Run without an LLM (analysis steps fail, no automatic fixes)"
    )

    parser.add_argument(
        "--stop-on-failure",
        action="store_true",
        help="Stop at the first failed step"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show log details and full command output"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="planrunner 0.1.0"
    )

    return parser


def configure_logging(config: Config, verbose: bool) -> None:
    """Send planrunner loggers to stderr; the console UI owns stdout."""
    level = logging.DEBUG if verbose else getattr(logging, config.logging.level.upper(), logging.INFO)
    logging.basicConfig(
        level=logging.WARNING,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Step log entries are already printed by the UI
    logging.getLogger("planrunner").setLevel(level)
    logging.getLogger("planrunner.execution").setLevel(
        logging.DEBUG if verbose else logging.WARNING
    )


# =============================================================================
# RUN
# =============================================================================

async def run_plan(
    plan: PlanDocument,
    project_path: str,
    config: Config,
    steps: list[int],
    use_chat: bool = True,
    model: Optional[str] = None,
    stop_on_failure: bool = False,
    verbose: bool = False,
) -> bool:
    """
    Execute the given steps and print the outcome.

    Returns:
        True if every executed step succeeded
    """
    chat = None
    if use_chat:
        try:
            chat = create_chat_client(config, model)
        except ValueError as e:
            ui.show_warning(f"No chat model available ({e}); continuing without one")

    engine = create_engine(config, chat=chat, terminal=ui.RichTerminal(verbose=verbose))

    store = ExecutionStore()
    store.add_listener(lambda index, entry: ui.show_log_entry(index, entry, verbose=verbose))
    context = StepExecutionContext(project_path=project_path, plan=plan, store=store)

    results = {}
    for index in steps:
        ui.show_header(f"Step {index}", plan.steps[index])
        result = await engine.execute_step(index, plan.steps[index], context)
        results[index] = result

        ui.show_step_result(index, plan.steps[index], result)
        analysis = store.analysis(index)
        if analysis:
            ui.show_analysis(index, analysis)

        if stop_on_failure and not result.success:
            ui.show_warning("Stopping at the first failed step")
            break

    ui.show_run_summary(plan, results)
    return all(r.success for r in results.values())


async def async_main(args: argparse.Namespace) -> int:
    """Async main function."""
    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        ui.show_error(f"Could not load configuration: {e}")
        return 1

    configure_logging(config, args.verbose)

    try:
        with ui.show_thinking("Loading plan..."):
            plan = load_plan(args.plan)
    except FileNotFoundError as e:
        ui.show_error(str(e))
        return 1
    except (ValueError, ValidationError) as e:
        ui.show_error(f"Invalid plan document: {e}")
        return 1

    if args.list:
        ui.show_plan(plan)
        return 0

    project_path = args.project or plan.metadata.project_path
    if not project_path:
        ui.show_error("No project directory: pass --project or set metadata.projectPath")
        return 1
    project_path = str(Path(project_path).expanduser().resolve())
    if not Path(project_path).is_dir():
        ui.show_error(f"Project directory not found: {project_path}")
        return 1

    steps = args.steps if args.steps else list(range(len(plan.steps)))
    invalid = [i for i in steps if not 0 <= i < len(plan.steps)]
    if invalid:
        ui.show_error(
            f"Unknown step index: {', '.join(str(i) for i in invalid)} "
            f"(the plan has {len(plan.steps)} steps)"
        )
        return 1
    if not steps:
        ui.show_warning("The plan has no steps")
        return 0

    ui.show_info(f"Project: {project_path}")

    try:
        ok = await run_plan(
            plan=plan,
            project_path=project_path,
            config=config,
            steps=steps,
            use_chat=not args.no_chat,
            model=args.model,
            stop_on_failure=args.stop_on_failure,
            verbose=args.verbose,
        )
        return 0 if ok else 1
    except KeyboardInterrupt:
        ui.console.print("\n")
        ui.show_warning("Interrupted")
        return 130
    except httpx.HTTPError as e:
        ui.show_error(f"Model request failed: {e}")
        return 1


def main() -> None:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args()

    try:
        exit_code = asyncio.run(async_main(args))
        sys.exit(exit_code)
    except KeyboardInterrupt:
        ui.console.print("\n")
        sys.exit(130)


if __name__ == "__main__":
    main()
