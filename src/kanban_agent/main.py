"""
Command line for the kanban task harness.

Usage:
    python -m kanban_agent create "Add logout button" --project ~/src/app
    python -m kanban_agent run <task-id>
    python -m kanban_agent run <task-id> --loop --max-iterations 5
    python -m kanban_agent analyze --project ~/src/app
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

from kanban_agent.config import OrchestratorConfig
from kanban_agent.harness.analysis import AnalysisResult
from kanban_agent.harness.errors import ConfigError
from kanban_agent.harness.events import JsonLinesPublisher, LoggingPublisher
from kanban_agent.harness.models import (
    AgentModel,
    AnalysisSubject,
    Task,
    TaskPriority,
    TaskStatus,
)
from kanban_agent.harness.orchestrator import TaskOrchestrator
from kanban_agent.harness.state import SQLiteTaskStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Log to stderr and, if configured, to a file."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def _print_task(task: Task, verbose: bool = False) -> None:
    mode = "loop" if task.ralph_enabled else "single"
    print(f"{task.id}  [{task.status.value}] {task.title}  ({mode}, {task.claude_model.value})")
    if not verbose:
        return
    if task.description:
        print(f"  Description: {task.description}")
    print(f"  Project: {task.project_directory or '.'}")
    print(f"  Shell commands: {'allowed' if task.allow_shell_commands else 'not allowed'}")
    if task.ralph_enabled:
        print(
            f"  Ralph loop: {task.ralph_current_iteration}/{task.max_iterations} iterations, "
            f"status {task.ralph_status.value if task.ralph_status else '-'}, "
            f"promise {task.completion_promise!r}"
        )
    if task.claude_output:
        print("-" * 50)
        print(task.claude_output)


def cmd_create(args, config: OrchestratorConfig, store: SQLiteTaskStore) -> int:
    fields = {
        "status": TaskStatus(args.status),
        "priority": TaskPriority(args.priority),
        "claude_model": AgentModel(args.model or config.default_model),
        "allow_shell_commands": args.allow_shell,
        "ralph_enabled": args.loop,
        "ralph_max_iterations": args.max_iterations or config.default_max_iterations,
        "ralph_completion_promise": args.promise or config.default_completion_promise,
    }
    if args.project:
        fields["project_directory"] = os.path.abspath(args.project)

    task = store.create_task(args.title, description=args.description, **fields)
    print(task.id)
    return 0


def cmd_list(args, config: OrchestratorConfig, store: SQLiteTaskStore) -> int:
    status = TaskStatus(args.status) if args.status else None
    for task in store.list_tasks(status):
        _print_task(task)
    return 0


def cmd_show(args, config: OrchestratorConfig, store: SQLiteTaskStore) -> int:
    task = store.read(args.task_id)
    if task is None:
        print(f"Error: task {args.task_id} not found", file=sys.stderr)
        return 1

    _print_task(task, verbose=True)
    if args.history:
        print("-" * 50)
        for entry in store.get_run_history(task.id):
            print(json.dumps(entry, default=str))
    return 0


async def _with_shutdown(orchestrator: TaskOrchestrator, coro):
    """Await coro, cancelling active runs on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()

    def _signal_handler(signum: int) -> None:
        logger.info(f"Received signal {signum}, cancelling active runs...")
        orchestrator.shutdown()

    installed = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _signal_handler, signum)
            installed.append(signum)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform or outside the main thread
            pass
    try:
        return await coro
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)


def cmd_run(args, config: OrchestratorConfig, store: SQLiteTaskStore) -> int:
    task = store.read(args.task_id)
    if task is None:
        print(f"Error: task {args.task_id} not found", file=sys.stderr)
        return 1

    overrides = {}
    if args.loop:
        overrides["ralph_enabled"] = True
    if args.max_iterations:
        overrides["ralph_max_iterations"] = args.max_iterations
    if args.promise:
        overrides["ralph_completion_promise"] = args.promise
    if overrides:
        task = store.write(task.id, **overrides)

    publisher = JsonLinesPublisher(echo_progress=not args.json) if not args.quiet else LoggingPublisher()
    orchestrator = TaskOrchestrator.from_config(config, store, publisher)

    result = asyncio.run(_with_shutdown(orchestrator, orchestrator.start(task)))
    print(f"\n{result.summary}", file=sys.stderr)
    return 0 if result.success else 1


def cmd_analyze(args, config: OrchestratorConfig, store: SQLiteTaskStore) -> int:
    project = os.path.abspath(args.project)
    if not os.path.isdir(project):
        print(f"Error: {args.project} is not a directory", file=sys.stderr)
        return 2

    if args.title:
        subjects = [AnalysisSubject(title=title) for title in args.title]
    else:
        subjects = [
            AnalysisSubject(title=task.title, description=task.description)
            for task in store.list_tasks()
            if task.status != TaskStatus.DONE
        ]
    if not subjects:
        print("Error: nothing to analyze", file=sys.stderr)
        return 2

    publisher = LoggingPublisher()
    orchestrator = TaskOrchestrator.from_config(config, store, publisher)
    results: list[AnalysisResult] = asyncio.run(
        _with_shutdown(orchestrator, orchestrator.analyze_codebase(project, subjects))
    )
    print(json.dumps({"results": [r.to_dict() for r in results]}, indent=2))
    return 0


def cmd_config(args, config: OrchestratorConfig, store: Optional[SQLiteTaskStore]) -> int:
    print(json.dumps(config.to_dict(), indent=2, default=str))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kanban-agent",
        description="Run kanban tasks through the Claude Code CLI",
    )
    parser.add_argument(
        "--config", "-c",
        help="Path to YAML config (default: $KANBAN_AGENT_CONFIG or ./kanban_agent.yaml)"
    )
    parser.add_argument(
        "--db",
        help="Path to the task database (overrides storage.db_path)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create", help="Create a task")
    create.add_argument("title", help="Task title")
    create.add_argument("--description", "-d", help="Task details")
    create.add_argument("--project", "-p", help="Directory the agent works in")
    create.add_argument(
        "--status",
        default=TaskStatus.BACKLOG.value,
        choices=[s.value for s in TaskStatus],
    )
    create.add_argument(
        "--priority",
        default=TaskPriority.MEDIUM.value,
        choices=[p.value for p in TaskPriority],
    )
    create.add_argument("--model", "-m", choices=[m.value for m in AgentModel])
    create.add_argument(
        "--allow-shell",
        action="store_true",
        help="Grant the agent the shell tool"
    )
    create.add_argument("--loop", action="store_true", help="Run as a ralph loop")
    create.add_argument("--max-iterations", type=int, help="Ralph loop iteration bound")
    create.add_argument("--promise", help="Ralph loop completion promise")
    create.set_defaults(func=cmd_create)

    list_cmd = subparsers.add_parser("list", help="List tasks")
    list_cmd.add_argument("--status", choices=[s.value for s in TaskStatus])
    list_cmd.set_defaults(func=cmd_list)

    show = subparsers.add_parser("show", help="Show a task and its last output")
    show.add_argument("task_id")
    show.add_argument("--history", action="store_true", help="Also print run history")
    show.set_defaults(func=cmd_show)

    run = subparsers.add_parser("run", help="Run a task with the agent")
    run.add_argument("task_id")
    run.add_argument("--loop", action="store_true", help="Force ralph loop mode")
    run.add_argument("--max-iterations", type=int, help="Override the iteration bound")
    run.add_argument("--promise", help="Override the completion promise")
    run.add_argument("--json", action="store_true", help="Print progress as JSON events")
    run.add_argument("--quiet", "-q", action="store_true", help="Only log lifecycle events")
    run.set_defaults(func=cmd_run)

    analyze = subparsers.add_parser("analyze", help="Check which tasks a codebase already implements")
    analyze.add_argument("--project", "-p", required=True, help="Directory to analyze")
    analyze.add_argument(
        "--title", "-t",
        action="append",
        help="Task title to check (repeatable; default: every task not done)"
    )
    analyze.set_defaults(func=cmd_analyze)

    config_cmd = subparsers.add_parser("config", help="Print the effective configuration")
    config_cmd.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = OrchestratorConfig.load(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    if args.db:
        config.db_path = args.db

    setup_logging("DEBUG" if args.verbose else config.log_level, config.log_file)

    store = None if args.command == "config" else SQLiteTaskStore(config.db_path)
    return args.func(args, config, store)


if __name__ == "__main__":
    sys.exit(main())
