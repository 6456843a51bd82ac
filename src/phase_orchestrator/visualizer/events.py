"""Rich views for recorded state transitions."""

from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..instrumentation import TransitionStore
from .utils import format_timestamp, truncate


def render_events(
	store: TransitionStore,
	task_id: Optional[str] = None,
	console: Optional[Console] = None,
	limit: int = 200,
) -> None:
	"""Render a chronological table of transitions."""
	console = console or Console()
	events = store.query(task_id=task_id, limit=limit)

	if not events:
		console.print("[dim]No transitions recorded yet.[/dim]")
		return

	title = f"Transitions for {task_id}" if task_id else "Transitions"
	table = Table(title=title)
	table.add_column("Time")
	if not task_id:
		table.add_column("Task", style="cyan")
	table.add_column("Phase", justify="right")
	table.add_column("From")
	table.add_column("To", style="bold")
	table.add_column("Detail")

	for event in events:
		row = [format_timestamp(event.timestamp)]
		if not task_id:
			row.append(event.task_id)
		to_style = "red" if event.to_status == "failed" else "white"
		row.extend([
			str(event.phase_number) if event.phase_number is not None else "-",
			event.from_status,
			f"[{to_style}]{event.to_status}[/{to_style}]",
			escape(truncate(event.detail, 50)),
		])
		table.add_row(*row)

	console.print(table)


def render_status_counts(
	store: TransitionStore,
	task_id: Optional[str] = None,
	console: Optional[Console] = None,
) -> None:
	"""Render how often each status was entered."""
	console = console or Console()
	counts = store.status_counts(task_id)

	if not counts:
		console.print("[dim]No transitions recorded yet.[/dim]")
		return

	table = Table(title="Status Counts")
	table.add_column("Status", style="cyan")
	table.add_column("Entered", justify="right")
	table.add_column("Last Entered")

	for c in counts:
		table.add_row(c.status, str(c.count), format_timestamp(c.last_entered))

	console.print(table)
