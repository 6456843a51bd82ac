"""CLI for phase-orchestrator: serve, task lifecycle and inspection commands."""

import argparse
import asyncio
import sys
from typing import Awaitable, Callable

from rich.console import Console

from . import __version__
from .artifacts.models import ArtifactKind
from .config import load_config
from .errors import OrchestratorError
from .logging_config import setup_logging
from .runtime import Runtime, build_runtime
from .tasks.models import GateDecision, TaskStatus


def _run(args: argparse.Namespace, command: Callable[[Runtime], Awaitable[None]]) -> None:
	"""Build a runtime, run one command against it and close it."""
	config = load_config()
	setup_logging(level="DEBUG" if args.verbose else "WARNING", log_dir=config.log_dir)

	async def runner() -> None:
		runtime = await build_runtime(config, project_path=args.project)
		try:
			await command(runtime)
		finally:
			await runtime.close()

	try:
		asyncio.run(runner())
	except OrchestratorError as e:
		print(f"Error: {e}", file=sys.stderr)
		sys.exit(1)


def cmd_serve(args: argparse.Namespace) -> None:
	"""Run the MCP server (stdio transport)."""
	from .server import mcp
	mcp.run()


def cmd_start(args: argparse.Namespace) -> None:
	"""Start a task."""
	from .visualizer import render_task_summary

	async def command(runtime: Runtime) -> None:
		task = await runtime.machine.start_task(args.title, args.request, args.project)
		render_task_summary(task, console=Console())
		print(f"Next: phase-orchestrator advance {task.id}")

	_run(args, command)


def cmd_advance(args: argparse.Namespace) -> None:
	"""Advance a task by one step, or until it reaches a gate."""
	from .visualizer import render_task_progress, render_task_summary

	async def command(runtime: Runtime) -> None:
		if args.until_gate:
			status = await runtime.machine.advance_until_gate(args.task_id)
		else:
			status = await runtime.machine.advance(args.task_id)
		task = await runtime.machine.get_task(args.task_id)
		console = Console()
		console.print(f"Phase status: [bold]{status.value}[/bold]")
		render_task_progress(task, console=console)
		if status.is_gate:
			render_task_summary(task, console=console)

	_run(args, command)


def cmd_resolve(args: argparse.Namespace) -> None:
	"""Resolve a task's open approval gate."""
	from .visualizer import render_task_progress

	async def command(runtime: Runtime) -> None:
		status = await runtime.machine.resolve_gate(
			args.task_id,
			GateDecision(args.decision),
			args.notes,
		)
		task = await runtime.machine.get_task(args.task_id)
		console = Console()
		console.print(f"Phase status: [bold]{status.value}[/bold]")
		render_task_progress(task, console=console)

	_run(args, command)


def cmd_status(args: argparse.Namespace) -> None:
	"""Show one task, or list tasks."""
	from .visualizer import (
		render_dispatch_timeline,
		render_task_list,
		render_task_progress,
		render_task_summary,
	)

	async def command(runtime: Runtime) -> None:
		console = Console()
		if not args.task_id:
			status = TaskStatus(args.status) if args.status else None
			render_task_list(await runtime.machine.list_tasks(status), console=console)
			return

		task = await runtime.machine.get_task(args.task_id)
		if args.summary:
			render_task_summary(task, console=console)
		elif args.dispatches:
			render_dispatch_timeline(task, console=console)
		else:
			render_task_progress(task, console=console)

	_run(args, command)


def cmd_artifacts(args: argparse.Namespace) -> None:
	"""List a task's artifacts or print one."""
	from .visualizer import render_artifact_list

	async def command(runtime: Runtime) -> None:
		if args.show:
			content = await runtime.artifacts.read(
				args.task_id,
				ArtifactKind(args.show),
				args.phase,
			)
			print(content)
			return
		render_artifact_list(await runtime.artifacts.list(args.task_id), console=Console())

	_run(args, command)


def cmd_events(args: argparse.Namespace) -> None:
	"""Show recorded state transitions."""
	from .instrumentation import TransitionStore
	from .visualizer import render_events, render_status_counts

	config = load_config()
	store = TransitionStore(str(config.events_db_path))
	console = Console()
	if args.counts:
		render_status_counts(store, task_id=args.task_id, console=console)
	else:
		render_events(store, task_id=args.task_id, console=console, limit=args.limit)


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="phase-orchestrator",
		description="Phased subagent orchestration with human approval gates",
	)
	parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
	parser.add_argument("--project", default=".", help="Project directory (default: current directory)")
	parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
	subparsers = parser.add_subparsers(dest="command")

	# serve
	serve_parser = subparsers.add_parser("serve", help="Run MCP server (stdio)")
	serve_parser.set_defaults(func=cmd_serve)

	# start
	start_parser = subparsers.add_parser("start", help="Start a task")
	start_parser.add_argument("title", help="Task title")
	start_parser.add_argument("request", help="What should be built")
	start_parser.set_defaults(func=cmd_start)

	# advance
	advance_parser = subparsers.add_parser("advance", help="Advance a task")
	advance_parser.add_argument("task_id", help="Task ID")
	advance_parser.add_argument("--until-gate", action="store_true", help="Advance until an approval gate")
	advance_parser.set_defaults(func=cmd_advance)

	# resolve
	resolve_parser = subparsers.add_parser("resolve", help="Resolve an approval gate")
	resolve_parser.add_argument("task_id", help="Task ID")
	resolve_parser.add_argument("decision", choices=[d.value for d in GateDecision])
	resolve_parser.add_argument("--notes", default=None, help="Revision notes or rejection reason")
	resolve_parser.set_defaults(func=cmd_resolve)

	# status
	status_parser = subparsers.add_parser("status", help="Show a task or list tasks")
	status_parser.add_argument("task_id", nargs="?", default=None, help="Task ID (default: list tasks)")
	status_parser.add_argument("--status", choices=[s.value for s in TaskStatus], help="Filter the listing")
	status_parser.add_argument("--summary", action="store_true", help="Show summary panel instead of tree")
	status_parser.add_argument("--dispatches", action="store_true", help="Show the dispatch timeline")
	status_parser.set_defaults(func=cmd_status)

	# artifacts
	artifacts_parser = subparsers.add_parser("artifacts", help="List or print a task's artifacts")
	artifacts_parser.add_argument("task_id", help="Task ID")
	artifacts_parser.add_argument("--show", choices=[k.value for k in ArtifactKind], help="Print the latest artifact")
	artifacts_parser.add_argument("--phase", type=int, default=None, help="Phase number for preservation artifacts")
	artifacts_parser.set_defaults(func=cmd_artifacts)

	# events
	events_parser = subparsers.add_parser("events", help="Show recorded transitions")
	events_parser.add_argument("task_id", nargs="?", default=None, help="Task ID (default: all tasks)")
	events_parser.add_argument("--counts", action="store_true", help="Show per-status counts")
	events_parser.add_argument("--limit", type=int, default=200, help="Max results")
	events_parser.set_defaults(func=cmd_events)

	return parser


def main() -> None:
	parser = build_parser()
	args = parser.parse_args()

	if not args.command:
		parser.print_help()
		sys.exit(1)

	args.func(args)


if __name__ == "__main__":
	main()
