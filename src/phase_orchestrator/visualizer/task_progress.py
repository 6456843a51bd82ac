"""Rich views for task progress, dispatches and artifacts."""

from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from ..artifacts.models import Artifact
from ..tasks.models import PhaseStatus, Task, TaskStatus
from .utils import duration_between, format_duration, format_timestamp, outcome_style, truncate

STATUS_ICONS = {
	PhaseStatus.PENDING: "[dim][ ][/dim]",
	PhaseStatus.PLANNING: "[cyan]\\[p][/cyan]",
	PhaseStatus.STRESS_TESTING: "[cyan]\\[s][/cyan]",
	PhaseStatus.AWAITING_PLAN_APPROVAL: "[magenta][?][/magenta]",
	PhaseStatus.IMPLEMENTING: "[yellow][~][/yellow]",
	PhaseStatus.REVIEWING: "[yellow]\\[r][/yellow]",
	PhaseStatus.PRESERVING: "[yellow]\\[w][/yellow]",
	PhaseStatus.AWAITING_COMMIT_APPROVAL: "[magenta][?][/magenta]",
	PhaseStatus.COMMITTED: "[green]\\[x][/green]",
	PhaseStatus.FAILED: "[red][!][/red]",
}

TASK_STYLES = {
	TaskStatus.PLANNING: "cyan",
	TaskStatus.ACTIVE: "yellow",
	TaskStatus.COMPLETED: "green",
	TaskStatus.FAILED: "red",
}


def render_task_progress(task: Task, console: Optional[Console] = None) -> None:
	"""Render a task as a Rich Tree with phases and their dispatches."""
	console = console or Console()

	progress = task.get_progress()
	pct = progress["percent_complete"]

	tree = Tree(
		f"[bold]{escape(task.title)}[/bold]  "
		f"[dim]({progress['committed_phases']}/{progress['total_phases']} phases, {pct:.0f}%)[/dim]"
	)

	if not task.phases:
		tree.add("[dim]Not decomposed yet. Advance the task to plan its phases.[/dim]")

	for phase in task.phases:
		icon = STATUS_ICONS.get(phase.status, "[ ]")
		label = f"{icon} [bold]Phase {phase.number}: {escape(phase.title)}[/bold] [dim]- {phase.status.value}[/dim]"
		if phase.revision_count:
			label += f" [dim](revisions: {phase.revision_count})[/dim]"
		branch = tree.add(label)

		if phase.approval is not None:
			branch.add(f"[magenta]gate {phase.approval.id} ({phase.approval.kind.value}) pending[/magenta]")
		for record in phase.dispatches:
			style = outcome_style(record.outcome.value)
			step = record.step.value if record.step else "-"
			branch.add(f"[{style}]{record.capability}[/{style}] [dim]{step}, {record.outcome.value}[/dim]")
		if phase.failure_reason:
			branch.add(f"[red]{escape(phase.failure_reason)}[/red]")

	console.print(tree)


def render_task_summary(task: Task, console: Optional[Console] = None) -> None:
	"""Render a summary panel for a task."""
	console = console or Console()

	progress = task.get_progress()
	style = TASK_STYLES.get(task.status, "white")

	lines = []
	lines.append(f"[bold]Title:[/bold] {escape(task.title)}")
	lines.append(f"[bold]Status:[/bold] [{style}]{task.status.value}[/{style}]")
	lines.append(f"[bold]Plans:[/bold] {task.plan_root}")
	lines.append(f"[bold]Created:[/bold] {format_timestamp(task.created_at)}")
	lines.append("")
	lines.append(
		f"[bold]Progress:[/bold] {progress['committed_phases']}/{progress['total_phases']} phases committed"
	)

	phase = task.current_phase
	if phase is not None:
		lines.append(f"[bold]Current:[/bold] Phase {phase.number} ({phase.status.value})")
		if phase.approval is not None:
			lines.append("")
			lines.append(f"[bold]Pending {phase.approval.kind.value} gate:[/bold]")
			lines.append(escape(phase.approval.summary))

	if task.failure_reason:
		lines.append("")
		lines.append(f"[red]{escape(task.failure_reason)}[/red]")

	console.print(Panel("\n".join(lines), title=f"Task: {task.id}", border_style=style))


def render_task_list(tasks: list[Task], console: Optional[Console] = None) -> None:
	"""Render a table of tasks."""
	console = console or Console()

	if not tasks:
		console.print("[dim]No tasks yet.[/dim]")
		return

	table = Table(title="Tasks")
	table.add_column("Task", style="cyan")
	table.add_column("Title")
	table.add_column("Status", justify="center")
	table.add_column("Phases", justify="right")
	table.add_column("Updated")

	for task in tasks:
		progress = task.get_progress()
		style = TASK_STYLES.get(task.status, "white")
		table.add_row(
			task.id,
			escape(truncate(task.title, 40)),
			f"[{style}]{task.status.value}[/{style}]",
			f"{progress['committed_phases']}/{progress['total_phases']}",
			format_timestamp(task.updated_at),
		)

	console.print(table)


def render_dispatch_timeline(task: Task, console: Optional[Console] = None) -> None:
	"""Render every dispatch of a task in order."""
	console = console or Console()

	rows = [(None, d) for d in task.dispatches]
	for phase in task.phases:
		rows.extend((phase.number, d) for d in phase.dispatches)

	if not rows:
		console.print("[dim]No dispatches recorded yet.[/dim]")
		return

	table = Table(title=f"Dispatches for {task.id}")
	table.add_column("Phase", justify="right")
	table.add_column("Step")
	table.add_column("Capability", style="cyan")
	table.add_column("Attempts", justify="right")
	table.add_column("Duration", justify="right")
	table.add_column("Outcome", justify="center")
	table.add_column("Payload")

	for phase_number, record in rows:
		style = outcome_style(record.outcome.value)
		duration = duration_between(record.started_at, record.finished_at)
		table.add_row(
			str(phase_number) if phase_number is not None else "-",
			record.step.value if record.step else "decompose",
			record.capability,
			str(record.attempts),
			format_duration(duration) if duration is not None else "-",
			f"[{style}]{record.outcome.value}[/{style}]",
			escape(truncate(record.result.payload, 50)),
		)

	console.print(table)


def render_artifact_list(artifacts: list[Artifact], console: Optional[Console] = None) -> None:
	"""Render a task's artifacts, marking superseded ones."""
	console = console or Console()

	if not artifacts:
		console.print("[dim]No artifacts written yet.[/dim]")
		return

	superseded = {a.supersedes for a in artifacts if a.supersedes}

	table = Table(title="Artifacts")
	table.add_column("ID", style="cyan")
	table.add_column("Kind")
	table.add_column("Path")
	table.add_column("Size", justify="right")
	table.add_column("Created")
	table.add_column("Current", justify="center")

	for artifact in artifacts:
		current = artifact.id not in superseded
		table.add_row(
			artifact.id,
			artifact.kind.value,
			artifact.path,
			f"{len(artifact.content.encode())}B",
			format_timestamp(artifact.created_at),
			"[green]yes[/green]" if current else "[dim]superseded[/dim]",
		)

	console.print(table)
