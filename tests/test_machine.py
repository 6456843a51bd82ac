"""Tests for the phase state machine."""

from pathlib import Path

import pytest

from phase_orchestrator.artifacts.models import ArtifactKind
from phase_orchestrator.errors import (
	AlreadyResolved,
	InvalidRequest,
	InvalidTransition,
	NoPendingGate,
	NotFound,
)
from phase_orchestrator.orchestrator.gate import ApprovalGate
from phase_orchestrator.orchestrator.machine import PhaseStateMachine
from phase_orchestrator.tasks.models import (
	ApprovalOutcome,
	GateDecision,
	GateKind,
	PhaseStatus,
	ReviewVerdict,
	TaskStatus,
)

from .helpers import ScriptedHandler, breakdown, build_machine, happy_scripts, verdict


async def _to_commit_gate(setup, task_id: str) -> None:
	"""Drive the current phase from wherever it is to its commit gate."""
	status = await setup.machine.advance_until_gate(task_id)
	assert status == PhaseStatus.AWAITING_PLAN_APPROVAL
	await setup.machine.resolve_gate(task_id, GateDecision.APPROVE)
	status = await setup.machine.advance_until_gate(task_id)
	assert status == PhaseStatus.AWAITING_COMMIT_APPROVAL


class TestStartTask:
	"""Task creation."""

	@pytest.mark.asyncio
	async def test_start_task_creates_planning_task(self, tmp_path: Path):
		setup = await build_machine(tmp_path)
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			assert task.id == "demo"
			assert task.status == TaskStatus.PLANNING
			assert task.phases == []
			assert Path(task.plan_root) == setup.project.resolve() / "plans"

			stored = await setup.tasks.get("demo")
			assert stored is not None
			assert stored.request == "Build a demo app"
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_empty_title_rejected(self, tmp_path: Path):
		setup = await build_machine(tmp_path)
		try:
			with pytest.raises(InvalidRequest):
				await setup.machine.start_task("   ", "Build something")
			with pytest.raises(InvalidRequest):
				await setup.machine.start_task("Demo", "")
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_duplicate_titles_get_unique_ids(self, tmp_path: Path):
		setup = await build_machine(tmp_path)
		try:
			first = await setup.machine.start_task("Demo", "one")
			second = await setup.machine.start_task("Demo", "two")
			assert first.id == "demo"
			assert second.id == "demo-2"
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_plan_root_from_agents_md(self, tmp_path: Path):
		setup = await build_machine(tmp_path)
		try:
			(setup.project / "AGENTS.md").write_text("# Agents\n\nPlans directory: `docs/plans`\n")
			task = await setup.machine.start_task("Demo", "Build a demo app")
			assert Path(task.plan_root) == setup.project.resolve() / "docs" / "plans"

			await setup.machine.advance(task.id)
			assert (setup.project / "docs" / "plans" / "demo" / "plan.md").exists()
		finally:
			await setup.close()


class TestDecomposition:
	"""First advance splits the request into phases."""

	@pytest.mark.asyncio
	async def test_decompose_creates_phases_and_plan(self, tmp_path: Path):
		handler = ScriptedHandler(happy_scripts("Backend", "Frontend"))
		setup = await build_machine(tmp_path, handler)
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			status = await setup.machine.advance(task.id)

			task = await setup.machine.get_task(task.id)
			assert status == PhaseStatus.PENDING
			assert task.status == TaskStatus.ACTIVE
			assert [p.title for p in task.phases] == ["Backend", "Frontend"]
			assert [p.number for p in task.phases] == [1, 2]
			assert len(task.dispatches) == 1
			assert task.dispatches[0].capability == "planner"

			plan = await setup.artifacts.read(task.id, ArtifactKind.PLAN)
			assert "### Phase 1: Backend" in plan
			assert "### Phase 2: Frontend" in plan
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_planner_failure_fails_task(self, tmp_path: Path):
		handler = ScriptedHandler({"planner": [RuntimeError("model unavailable")]})
		setup = await build_machine(tmp_path, handler)
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			status = await setup.machine.advance(task.id)

			task = await setup.machine.get_task(task.id)
			assert status == PhaseStatus.FAILED
			assert task.status == TaskStatus.FAILED
			assert "model unavailable" in task.failure_reason
			# Read-only planner is retried twice before giving up
			assert len(handler.calls_for("planner")) == 3

			with pytest.raises(InvalidTransition):
				await setup.machine.advance(task.id)
		finally:
			await setup.close()


class TestLifecycle:
	"""Phase lifecycle end to end."""

	@pytest.mark.asyncio
	async def test_single_phase_walkthrough(self, tmp_path: Path):
		setup = await build_machine(tmp_path)
		machine = setup.machine
		try:
			task = await machine.start_task("Demo", "Build a demo app")
			assert await machine.advance(task.id) == PhaseStatus.PENDING
			assert await machine.advance(task.id) == PhaseStatus.PLANNING
			assert await machine.advance(task.id) == PhaseStatus.STRESS_TESTING
			assert await machine.advance(task.id) == PhaseStatus.AWAITING_PLAN_APPROVAL

			task = await machine.get_task(task.id)
			phase = task.current_phase
			assert phase.plan_text == "Detailed plan"
			assert phase.findings == ["stress-tester: No blocking risks"]
			assert phase.approval is not None
			assert phase.approval.kind == GateKind.PLAN

			assert await machine.resolve_gate(task.id, GateDecision.APPROVE) == PhaseStatus.IMPLEMENTING
			assert await machine.advance(task.id) == PhaseStatus.REVIEWING
			assert await machine.advance(task.id) == PhaseStatus.PRESERVING
			assert await machine.advance(task.id) == PhaseStatus.AWAITING_COMMIT_APPROVAL
			assert await machine.resolve_gate(task.id, "approve") == PhaseStatus.COMMITTED

			task = await machine.get_task(task.id)
			assert task.status == TaskStatus.COMPLETED
			assert task.phases[0].status == PhaseStatus.COMMITTED
			assert [a.outcome for a in task.phases[0].approval_history] == [
				ApprovalOutcome.APPROVED,
				ApprovalOutcome.APPROVED,
			]

			kinds = [a.kind for a in await setup.artifacts.list(task.id)]
			assert kinds == [ArtifactKind.PLAN, ArtifactKind.PRESERVATION, ArtifactKind.COMPLETION]
			assert (setup.project / "plans" / "demo" / "phase-1-preserve.md").exists()
			assert (setup.project / "plans" / "demo" / "complete.md").exists()
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_advance_at_gate_is_invalid(self, tmp_path: Path):
		setup = await build_machine(tmp_path)
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			await setup.machine.advance_until_gate(task.id)

			with pytest.raises(InvalidTransition):
				await setup.machine.advance(task.id)

			task = await setup.machine.get_task(task.id)
			assert task.current_phase.status == PhaseStatus.AWAITING_PLAN_APPROVAL
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_resolve_without_gate(self, tmp_path: Path):
		setup = await build_machine(tmp_path)
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			await setup.machine.advance(task.id)

			with pytest.raises(NoPendingGate):
				await setup.machine.resolve_gate(task.id, GateDecision.APPROVE)
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_unknown_task(self, tmp_path: Path):
		setup = await build_machine(tmp_path)
		try:
			with pytest.raises(NotFound):
				await setup.machine.advance("missing")
			with pytest.raises(NotFound):
				await setup.machine.get_task("missing")
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_two_phase_task_is_monotonic(self, tmp_path: Path):
		handler = ScriptedHandler(happy_scripts("Backend", "Frontend"))
		setup = await build_machine(tmp_path, handler)
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			await _to_commit_gate(setup, task.id)
			await setup.machine.resolve_gate(task.id, GateDecision.APPROVE)

			task = await setup.machine.get_task(task.id)
			assert task.status == TaskStatus.ACTIVE
			assert task.current_phase.number == 2

			await _to_commit_gate(setup, task.id)
			await setup.machine.resolve_gate(task.id, GateDecision.APPROVE)

			task = await setup.machine.get_task(task.id)
			assert task.status == TaskStatus.COMPLETED

			phase_events = [e for e in setup.events if e.phase_number is not None]
			first_phase_two = next(i for i, e in enumerate(phase_events) if e.phase_number == 2)
			phase_one_committed = next(
				i for i, e in enumerate(phase_events)
				if e.phase_number == 1 and e.to_status == PhaseStatus.COMMITTED.value
			)
			assert phase_one_committed < first_phase_two
			assert all(e.phase_number == 2 for e in phase_events[first_phase_two:])
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_every_transition_emits_event(self, tmp_path: Path):
		setup = await build_machine(tmp_path)
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			await setup.machine.advance_until_gate(task.id)

			transitions = [(e.phase_number, e.from_status, e.to_status) for e in setup.events]
			assert transitions == [
				(None, "none", "planning"),
				(None, "planning", "active"),
				(1, "pending", "planning"),
				(1, "planning", "stress_testing"),
				(1, "stress_testing", "awaiting_plan_approval"),
			]
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_failing_event_hook_does_not_stop_machine(self, tmp_path: Path):
		setup = await build_machine(tmp_path)

		def broken_hook(event):
			raise RuntimeError("hook down")

		setup.machine.event_hook = broken_hook
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			status = await setup.machine.advance_until_gate(task.id)
			assert status == PhaseStatus.AWAITING_PLAN_APPROVAL
		finally:
			await setup.close()


class TestReview:
	"""Review verdict handling."""

	@pytest.mark.asyncio
	async def test_needs_revision_twice_then_approved(self, tmp_path: Path):
		scripts = happy_scripts("Backend", "Frontend")
		scripts["reviewer"] = [
			verdict("NEEDS_REVISION", "missing tests"),
			verdict("NEEDS_REVISION", "lint errors"),
			verdict("APPROVED"),
		]
		handler = ScriptedHandler(scripts)
		setup = await build_machine(tmp_path, handler)
		try:
			task = await setup.machine.start_task("demo", "Build a demo app")
			await _to_commit_gate(setup, task.id)

			task = await setup.machine.get_task(task.id)
			phase = task.phases[0]
			assert len(phase.dispatches_for(PhaseStatus.REVIEWING)) == 3
			assert len(phase.dispatches_for(PhaseStatus.IMPLEMENTING)) == 3
			assert phase.revision_count == 2
			assert phase.review_verdicts == [
				ReviewVerdict.NEEDS_REVISION,
				ReviewVerdict.NEEDS_REVISION,
				ReviewVerdict.APPROVED,
			]

			implementer_calls = handler.calls_for("implementer")
			assert "Revision notes: missing tests" in implementer_calls[1].context
			assert "Revision notes: lint errors" in implementer_calls[2].context
			assert not any(c.startswith("Revision notes") for c in implementer_calls[0].context)
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_failed_verdict_halts_task(self, tmp_path: Path):
		scripts = happy_scripts("Backend", "Frontend")
		scripts["reviewer"] = [verdict("FAILED", "wrong approach")]
		setup = await build_machine(tmp_path, ScriptedHandler(scripts))
		try:
			task = await setup.machine.start_task("demo2", "Build a demo app")
			await setup.machine.advance_until_gate(task.id)
			await setup.machine.resolve_gate(task.id, GateDecision.APPROVE)

			assert await setup.machine.advance(task.id) == PhaseStatus.REVIEWING
			assert await setup.machine.advance(task.id) == PhaseStatus.FAILED

			task = await setup.machine.get_task(task.id)
			assert task.status == TaskStatus.FAILED
			assert task.phases[0].status == PhaseStatus.FAILED
			assert "review failed" in task.phases[0].failure_reason

			artifacts = await setup.artifacts.list(task.id)
			assert not any(a.kind == ArtifactKind.PRESERVATION for a in artifacts)

			with pytest.raises(InvalidTransition):
				await setup.machine.advance(task.id)
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_revision_bound_exhausted(self, tmp_path: Path):
		scripts = happy_scripts("Backend")
		scripts["reviewer"] = [verdict("NEEDS_REVISION", "still broken")]
		setup = await build_machine(tmp_path, ScriptedHandler(scripts), max_revisions=1)
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			await setup.machine.advance_until_gate(task.id)
			await setup.machine.resolve_gate(task.id, GateDecision.APPROVE)

			status = await setup.machine.advance_until_gate(task.id)
			assert status == PhaseStatus.FAILED

			task = await setup.machine.get_task(task.id)
			assert task.status == TaskStatus.FAILED
			assert task.phases[0].revision_count == 2
			assert len(task.phases[0].dispatches_for(PhaseStatus.REVIEWING)) == 2
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_prose_review_without_verdict_needs_revision(self, tmp_path: Path):
		scripts = happy_scripts("Backend")
		scripts["reviewer"] = ["Looks mostly fine, a few nits.", "Status: APPROVED"]
		setup = await build_machine(tmp_path, ScriptedHandler(scripts))
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			await _to_commit_gate(setup, task.id)

			task = await setup.machine.get_task(task.id)
			assert task.phases[0].review_verdicts == [ReviewVerdict.NEEDS_REVISION, ReviewVerdict.APPROVED]
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_implementer_failure_is_not_retried(self, tmp_path: Path):
		scripts = happy_scripts("Backend")
		scripts["implementer"] = [RuntimeError("disk full")]
		handler = ScriptedHandler(scripts)
		setup = await build_machine(tmp_path, handler)
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			await setup.machine.advance_until_gate(task.id)
			await setup.machine.resolve_gate(task.id, GateDecision.APPROVE)

			assert await setup.machine.advance(task.id) == PhaseStatus.FAILED
			assert len(handler.calls_for("implementer")) == 1

			task = await setup.machine.get_task(task.id)
			assert "disk full" in task.failure_reason
			# Halted tasks stay queryable
			assert task.phases[0].dispatches[-1].capability == "implementer"
			assert await setup.artifacts.read(task.id, ArtifactKind.PLAN)
		finally:
			await setup.close()


class TestGates:
	"""Gate decisions."""

	@pytest.mark.asyncio
	async def test_revise_at_commit_gate_returns_to_implementing(self, tmp_path: Path):
		handler = ScriptedHandler(happy_scripts("Settings"))
		setup = await build_machine(tmp_path, handler)
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			await _to_commit_gate(setup, task.id)

			status = await setup.machine.resolve_gate(task.id, GateDecision.REVISE, "add dark mode")
			assert status == PhaseStatus.IMPLEMENTING

			await setup.machine.advance(task.id)
			task = await setup.machine.get_task(task.id)
			record = task.phases[0].dispatches_for(PhaseStatus.IMPLEMENTING)[-1]
			assert record.capability == "implementer"
			assert "Revision notes: add dark mode" in record.request.context
			assert task.phases[0].revision_notes == []
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_revise_at_plan_gate_replans(self, tmp_path: Path):
		handler = ScriptedHandler(happy_scripts("Settings"))
		setup = await build_machine(tmp_path, handler)
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			await setup.machine.advance_until_gate(task.id)

			status = await setup.machine.resolve_gate(task.id, GateDecision.REVISE, "split the migration")
			assert status == PhaseStatus.PLANNING

			status = await setup.machine.advance_until_gate(task.id)
			assert status == PhaseStatus.AWAITING_PLAN_APPROVAL
			assert "Revision notes: split the migration" in handler.calls_for("planner")[-1].context
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_reject_fails_task(self, tmp_path: Path):
		setup = await build_machine(tmp_path)
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			await setup.machine.advance_until_gate(task.id)

			status = await setup.machine.resolve_gate(task.id, GateDecision.REJECT, "out of scope")
			assert status == PhaseStatus.FAILED

			task = await setup.machine.get_task(task.id)
			assert task.status == TaskStatus.FAILED
			assert "out of scope" in task.failure_reason
			assert task.phases[0].approval is None
			assert task.phases[0].approval_history[0].outcome == ApprovalOutcome.REJECTED

			with pytest.raises(NoPendingGate):
				await setup.machine.resolve_gate(task.id, GateDecision.APPROVE)
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_gate_survives_restart(self, tmp_path: Path):
		setup = await build_machine(tmp_path)
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			await setup.machine.advance_until_gate(task.id)

			restarted = PhaseStateMachine(
				setup.dispatcher,
				ApprovalGate(),
				setup.artifacts,
				setup.tasks,
				config=setup.machine.config,
				project_path=str(setup.project),
			)
			status = await restarted.resolve_gate(task.id, GateDecision.APPROVE)
			assert status == PhaseStatus.IMPLEMENTING

			stored = await setup.tasks.get(task.id)
			assert stored.phases[0].status == PhaseStatus.IMPLEMENTING
			assert stored.phases[0].approval is None
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_resolved_request_stays_resolved_after_restart(self, tmp_path: Path):
		setup = await build_machine(tmp_path)
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			await setup.machine.advance_until_gate(task.id)
			task = await setup.machine.get_task(task.id)
			request_id = task.phases[0].approval.id
			await setup.machine.resolve_gate(task.id, GateDecision.APPROVE)

			gate = ApprovalGate()
			restarted = PhaseStateMachine(
				setup.dispatcher,
				gate,
				setup.artifacts,
				setup.tasks,
				config=setup.machine.config,
				project_path=str(setup.project),
			)
			await restarted.get_task(task.id)

			with pytest.raises(AlreadyResolved):
				gate.resolve(request_id, GateDecision.APPROVE)
			assert gate.get(request_id).outcome == ApprovalOutcome.APPROVED
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_failed_completion_write_halts_task(self, tmp_path: Path):
		setup = await build_machine(tmp_path)
		write = setup.artifacts.write

		async def write_without_completion(task_id, kind, content, **kwargs):
			if kind == ArtifactKind.COMPLETION:
				raise OSError("disk full")
			return await write(task_id, kind, content, **kwargs)

		setup.artifacts.write = write_without_completion
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			await _to_commit_gate(setup, task.id)

			status = await setup.machine.resolve_gate(task.id, GateDecision.APPROVE)
			assert status == PhaseStatus.COMMITTED

			task = await setup.machine.get_task(task.id)
			assert task.status == TaskStatus.FAILED
			assert task.phases[0].status == PhaseStatus.COMMITTED
			assert "disk full" in task.failure_reason

			with pytest.raises(InvalidTransition):
				await setup.machine.advance(task.id)
			with pytest.raises(NoPendingGate):
				await setup.machine.resolve_gate(task.id, GateDecision.APPROVE)
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_stress_test_failures_become_findings(self, tmp_path: Path):
		scripts = happy_scripts("Backend")
		scripts["researcher"] = [RuntimeError("search offline")]
		setup = await build_machine(
			tmp_path,
			ScriptedHandler(scripts),
			stress_test_capabilities=["stress-tester", "researcher"],
		)
		try:
			task = await setup.machine.start_task("Demo", "Build a demo app")
			status = await setup.machine.advance_until_gate(task.id)
			assert status == PhaseStatus.AWAITING_PLAN_APPROVAL

			task = await setup.machine.get_task(task.id)
			findings = task.phases[0].findings
			assert findings[0] == "stress-tester: No blocking risks"
			assert findings[1].startswith("researcher unavailable (failure)")
			assert "Stress test findings:" in task.phases[0].approval.summary
		finally:
			await setup.close()


class TestQueries:
	"""Listing tasks."""

	@pytest.mark.asyncio
	async def test_list_tasks_by_status(self, tmp_path: Path):
		handler = ScriptedHandler({"planner": [breakdown("Only")]})
		setup = await build_machine(tmp_path, handler)
		try:
			await setup.machine.start_task("First", "one")
			second = await setup.machine.start_task("Second", "two")
			await setup.machine.advance(second.id)

			active = await setup.machine.list_tasks(TaskStatus.ACTIVE)
			assert [t.id for t in active] == ["second"]
			assert len(await setup.machine.list_tasks()) == 2
		finally:
			await setup.close()

	@pytest.mark.asyncio
	async def test_finished_tasks_leave_the_cache(self, tmp_path: Path):
		setup = await build_machine(tmp_path, ScriptedHandler(happy_scripts("Only")))
		machine = setup.machine
		try:
			done = await machine.start_task("Done", "finish me")
			await _to_commit_gate(setup, done.id)
			await machine.resolve_gate(done.id, GateDecision.APPROVE)

			dropped = await machine.start_task("Dropped", "reject me")
			await machine.advance_until_gate(dropped.id)
			await machine.resolve_gate(dropped.id, GateDecision.REJECT)

			live = await machine.start_task("Live", "keep me")
			await machine.advance(live.id)

			assert set(machine._tasks) == {"live"}
			assert set(machine._locks) == {"live"}

			finished = await machine.get_task(done.id)
			assert finished.status == TaskStatus.COMPLETED
			assert "done" not in machine._tasks
		finally:
			await setup.close()
