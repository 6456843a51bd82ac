"""
Documents - Parsing capability payloads and rendering phase artifacts.

Planner and reviewer payloads are read as JSON first (see schemas) and
fall back to the markdown conventions the personas use:

	### Phase 2: Add settings page
	**Objective:** Let users toggle dark mode

	Status: NEEDS_REVISION
"""

import logging
import re
from dataclasses import dataclass, field

from ..schemas import PHASE_BREAKDOWN_SCHEMA, REVIEW_VERDICT_SCHEMA
from ..tasks.models import DispatchOutcome, Phase, PhaseStatus, ReviewVerdict, Task

logger = logging.getLogger(__name__)

_PHASE_HEADING = re.compile(r"^#{2,4}\s*Phase\s+(\d+)\s*[:.\-–—]?\s*(.*)$", re.IGNORECASE)
_OBJECTIVE_LINE = re.compile(r"^\**objective\**\s*:\**\s*(.+)$", re.IGNORECASE)
_VERDICT_TOKEN = re.compile(r"\b(APPROVED|NEEDS[_ ]REVISION|FAILED)\b")


@dataclass
class PhaseOutline:
	"""Title and objective of a phase proposed by the planner."""
	title: str
	objective: str = ""


@dataclass
class PhaseBreakdown:
	"""Parsed planner decomposition."""
	phases: list[PhaseOutline]
	summary: str = ""


@dataclass
class ReviewOutcome:
	"""Parsed reviewer payload."""
	verdict: ReviewVerdict
	summary: str = ""
	issues: list[str] = field(default_factory=list)
	parsed: bool = True


def parse_phase_breakdown(payload: str, fallback_title: str, fallback_objective: str) -> PhaseBreakdown:
	"""
	Parse a planner payload into ordered phases.

	Falls back to a single phase covering the whole request when neither
	JSON nor phase headings are found.
	"""
	valid, data, _ = PHASE_BREAKDOWN_SCHEMA.validate(payload)
	if valid:
		phases = [
			PhaseOutline(
				title=str(item.get("title") or f"Phase {i}").strip(),
				objective=str(item.get("objective") or "").strip(),
			)
			for i, item in enumerate(data["phases"], start=1)
			if isinstance(item, dict)
		]
		if phases:
			return PhaseBreakdown(phases=phases, summary=str(data.get("summary", "")))

	phases = []
	current: PhaseOutline | None = None
	for line in payload.splitlines():
		stripped = line.strip()
		heading = _PHASE_HEADING.match(stripped)
		if heading:
			current = PhaseOutline(title=heading.group(2).strip() or f"Phase {heading.group(1)}")
			phases.append(current)
			continue
		if current is None or not stripped or current.objective:
			continue
		if stripped.startswith("#"):
			current = None
			continue
		objective = _OBJECTIVE_LINE.match(stripped)
		current.objective = objective.group(1).strip() if objective else stripped.lstrip("-* ").strip()

	if phases:
		return PhaseBreakdown(phases=phases)

	logger.warning("Planner payload had no recognizable phases, using a single phase")
	return PhaseBreakdown(phases=[PhaseOutline(title=fallback_title, objective=fallback_objective)])


def parse_review(payload: str) -> ReviewOutcome:
	"""
	Parse a reviewer payload into a verdict.

	A payload with no recognizable verdict is treated as NEEDS_REVISION
	so it consumes one of the bounded revision cycles.
	"""
	valid, data, _ = REVIEW_VERDICT_SCHEMA.validate(payload)
	if valid:
		return ReviewOutcome(
			verdict=ReviewVerdict(data["verdict"]),
			summary=str(data.get("summary", "")),
			issues=[str(i) for i in data.get("issues", []) if i],
		)

	match = _VERDICT_TOKEN.search(payload)
	if match:
		token = match.group(1).replace(" ", "_")
		return ReviewOutcome(verdict=ReviewVerdict(token), summary=payload.strip())

	logger.warning("Reviewer payload had no verdict, treating it as NEEDS_REVISION")
	return ReviewOutcome(verdict=ReviewVerdict.NEEDS_REVISION, summary=payload.strip(), parsed=False)


def _excerpt(text: str, max_len: int = 400) -> str:
	text = text.strip()
	if len(text) > max_len:
		return text[:max_len] + "..."
	return text


def render_plan(task: Task, summary: str = "") -> str:
	"""Render plan.md for a task."""
	lines = [
		f"# {task.title}",
		"",
		f"**Task:** {task.id}",
		f"**Created:** {task.created_at}",
		"",
		"## Request",
		task.request,
		"",
	]
	if summary:
		lines.extend(["## Summary", summary, ""])

	lines.append("## Phases")
	for phase in task.phases:
		lines.append(f"### Phase {phase.number}: {phase.title}")
		if phase.objective:
			lines.append(f"**Objective:** {phase.objective}")
		lines.append("")

	return "\n".join(lines)


def render_preservation(task: Task, phase: Phase) -> str:
	"""Render phase-N-preserve.md: what was planned, found, built and reviewed."""
	lines = [
		f"# Phase {phase.number}: {phase.title}",
		"",
		f"**Task:** {task.id}",
		f"**Objective:** {phase.objective or '-'}",
		f"**Revision cycles:** {phase.revision_count}",
		"",
	]

	if phase.plan_text:
		lines.extend(["## Plan", phase.plan_text.strip(), ""])

	if phase.findings:
		lines.append("## Stress Test Findings")
		for finding in phase.findings:
			lines.append(f"- {_excerpt(finding)}")
		lines.append("")

	implementations = phase.dispatches_for(PhaseStatus.IMPLEMENTING)
	if implementations:
		lines.append("## Implementation")
		for i, record in enumerate(implementations, start=1):
			lines.append(f"### Cycle {i} ({record.capability}, {record.outcome.value})")
			lines.append(_excerpt(record.result.payload, 1200))
			lines.append("")

	if phase.review_verdicts:
		lines.append("## Reviews")
		for i, verdict in enumerate(phase.review_verdicts, start=1):
			lines.append(f"{i}. {verdict.value}")
		lines.append("")

	decisions = [a for a in phase.approval_history if a.notes]
	if decisions:
		lines.append("## Decisions")
		for approval in decisions:
			lines.append(f"- {approval.kind.value} gate, {approval.outcome.value}: {approval.notes}")
		lines.append("")

	return "\n".join(lines)


def render_completion(task: Task) -> str:
	"""Render complete.md once every phase is committed."""
	progress = task.get_progress()
	lines = [
		f"# Complete: {task.title}",
		"",
		f"**Task:** {task.id}",
		f"**Phases committed:** {progress['committed_phases']}/{progress['total_phases']}",
		"",
		"## Phases",
	]
	for phase in task.phases:
		dispatches = len(phase.dispatches)
		failures = len([d for d in phase.dispatches if d.outcome != DispatchOutcome.SUCCESS])
		lines.append(
			f"- Phase {phase.number}: {phase.title} "
			f"({phase.revision_count} revision(s), {dispatches} dispatch(es), {failures} failed)"
		)
	lines.append("")
	return "\n".join(lines)


def render_plan_gate_summary(task: Task, phase: Phase) -> str:
	"""Summary shown to the user before implementation starts."""
	lines = [
		f"Plan for phase {phase.number}/{len(task.phases)} of '{task.title}': {phase.title}",
		"",
		_excerpt(phase.plan_text, 1500) or "(no plan text)",
	]
	if phase.findings:
		lines.append("")
		lines.append("Stress test findings:")
		for finding in phase.findings:
			lines.append(f"- {_excerpt(finding, 300)}")
	return "\n".join(lines)


def render_commit_gate_summary(task: Task, phase: Phase) -> str:
	"""Summary shown to the user before a phase is committed."""
	last_review = phase.review_verdicts[-1].value if phase.review_verdicts else "none"
	return "\n".join([
		f"Phase {phase.number}/{len(task.phases)} of '{task.title}' is ready to commit: {phase.title}",
		f"Review verdict: {last_review} after {phase.revision_count} revision cycle(s)",
		f"Dispatches: {len(phase.dispatches)}",
	])
