"""Tests for payload parsing and document rendering."""

import json

from phase_orchestrator.orchestrator.documents import (
	parse_phase_breakdown,
	parse_review,
	render_commit_gate_summary,
	render_completion,
	render_plan,
	render_preservation,
)
from phase_orchestrator.tasks.models import (
	ApprovalOutcome,
	ApprovalRequest,
	CapabilityRequest,
	CapabilityResult,
	DispatchRecord,
	GateKind,
	Phase,
	PhaseStatus,
	ReviewVerdict,
	Task,
)


def _task() -> Task:
	return Task(
		id="demo",
		title="Demo",
		request="Build a demo app",
		plan_root="/tmp/plans",
		phases=[
			Phase(number=1, title="Backend", objective="API endpoints"),
			Phase(number=2, title="Frontend", objective="Settings page"),
		],
	)


class TestParsePhaseBreakdown:
	"""Planner payloads."""

	def test_json_payload(self):
		payload = json.dumps({
			"phases": [{"title": "Backend", "objective": "API"}, {"title": "Frontend"}],
			"summary": "Two phases",
		})
		result = parse_phase_breakdown(payload, "Demo", "Build it")
		assert [p.title for p in result.phases] == ["Backend", "Frontend"]
		assert result.phases[0].objective == "API"
		assert result.summary == "Two phases"

	def test_fenced_json_payload(self):
		payload = 'Here is the plan:\n```json\n{"phases": [{"title": "Only"}]}\n```\n'
		result = parse_phase_breakdown(payload, "Demo", "Build it")
		assert [p.title for p in result.phases] == ["Only"]

	def test_markdown_headings(self):
		payload = (
			"# Plan\n\n"
			"### Phase 1: Add settings page\n"
			"**Objective:** Let users toggle dark mode\n\n"
			"### Phase 2: Persist preferences\n"
			"- Store the choice per user\n"
		)
		result = parse_phase_breakdown(payload, "Demo", "Build it")
		assert [p.title for p in result.phases] == ["Add settings page", "Persist preferences"]
		assert result.phases[0].objective == "Let users toggle dark mode"
		assert result.phases[1].objective == "Store the choice per user"

	def test_prose_falls_back_to_single_phase(self):
		result = parse_phase_breakdown("Just do it all at once.", "Demo", "Build it")
		assert len(result.phases) == 1
		assert result.phases[0].title == "Demo"
		assert result.phases[0].objective == "Build it"


class TestParseReview:
	"""Reviewer payloads."""

	def test_json_verdict(self):
		payload = json.dumps({"verdict": "NEEDS_REVISION", "summary": "Close", "issues": ["add tests"]})
		review = parse_review(payload)
		assert review.verdict == ReviewVerdict.NEEDS_REVISION
		assert review.issues == ["add tests"]
		assert review.parsed

	def test_invalid_enum_falls_back_to_token(self):
		review = parse_review('{"verdict": "LGTM"} Status: APPROVED')
		assert review.verdict == ReviewVerdict.APPROVED

	def test_spaced_token(self):
		assert parse_review("Verdict: NEEDS REVISION").verdict == ReviewVerdict.NEEDS_REVISION

	def test_no_verdict(self):
		review = parse_review("Looks fine to me")
		assert review.verdict == ReviewVerdict.NEEDS_REVISION
		assert review.parsed is False


class TestRender:
	"""Markdown documents."""

	def test_render_plan(self):
		plan = render_plan(_task(), "Two phases")
		assert plan.startswith("# Demo")
		assert "## Summary\nTwo phases" in plan
		assert "### Phase 2: Frontend" in plan
		assert "**Objective:** Settings page" in plan

	def test_render_preservation(self):
		task = _task()
		phase = task.phases[0]
		phase.plan_text = "1. Add routes"
		phase.findings = ["stress-tester: rate limits"]
		phase.review_verdicts = [ReviewVerdict.NEEDS_REVISION, ReviewVerdict.APPROVED]
		phase.revision_count = 1
		request = CapabilityRequest(capability="implementer", instructions="Implement")
		phase.dispatches.append(DispatchRecord(
			id="d1",
			capability="implementer",
			request=request,
			result=CapabilityResult.success("Added /settings"),
			step=PhaseStatus.IMPLEMENTING,
			started_at="2026-01-01T00:00:00",
			finished_at="2026-01-01T00:00:05",
		))
		phase.approval_history.append(ApprovalRequest(
			id="g1",
			phase_id="demo/phase-1",
			kind=GateKind.PLAN,
			summary="Plan",
			outcome=ApprovalOutcome.REVISE,
			notes="add dark mode",
		))

		doc = render_preservation(task, phase)
		assert doc.startswith("# Phase 1: Backend")
		assert "**Revision cycles:** 1" in doc
		assert "## Stress Test Findings\n- stress-tester: rate limits" in doc
		assert "Added /settings" in doc
		assert "1. NEEDS_REVISION\n2. APPROVED" in doc
		assert "- plan gate, revise: add dark mode" in doc

	def test_render_completion(self):
		task = _task()
		for phase in task.phases:
			phase.status = PhaseStatus.COMMITTED
		doc = render_completion(task)
		assert "**Phases committed:** 2/2" in doc
		assert "- Phase 2: Frontend" in doc

	def test_commit_gate_summary(self):
		task = _task()
		task.phases[0].review_verdicts = [ReviewVerdict.APPROVED]
		summary = render_commit_gate_summary(task, task.phases[0])
		assert "Phase 1/2 of 'Demo' is ready to commit" in summary
		assert "Review verdict: APPROVED" in summary
