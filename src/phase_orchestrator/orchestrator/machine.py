"""
Phase State Machine - Drives a task's phases through the lifecycle.

Lifecycle of a phase:

	pending -> planning -> stress_testing -> awaiting_plan_approval
	-> implementing -> reviewing -> (implementing | preserving)
	-> awaiting_commit_approval -> committed

`failed` is reached from reviewing (FAILED verdict or too many revision
cycles), from a rejected gate, or from an unrecoverable dispatch failure.

Each call to advance() performs one transition. Gates never block: the
machine stops at them and waits for resolve_gate().
"""

import asyncio
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Optional

from ..artifacts.models import ArtifactKind
from ..artifacts.store import ArtifactStore
from ..config import Config, resolve_orchestrator_config
from ..errors import InvalidRequest, InvalidTransition, NoPendingGate, NotFound, OrchestratorError
from ..instrumentation import TransitionEvent
from ..tasks.models import (
	CapabilityRequest,
	GateDecision,
	GateKind,
	Phase,
	PhaseStatus,
	ReviewVerdict,
	Task,
	TaskStatus,
	slugify,
)
from ..tasks.store import TaskStore
from . import documents
from .dispatcher import Dispatcher
from .gate import ApprovalGate

logger = logging.getLogger(__name__)

TransitionHook = Callable[[TransitionEvent], None]

PLANNER = "planner"
IMPLEMENTER = "implementer"
REVIEWER = "reviewer"


class PhaseStateMachine:
	"""
	Composes the dispatcher, approval gate and artifact store.

	Phases within a task run strictly in order under a per-task lock;
	separate tasks progress independently.
	"""

	def __init__(
		self,
		dispatcher: Dispatcher,
		gate: ApprovalGate,
		artifacts: ArtifactStore,
		tasks: TaskStore,
		config: Optional[Config] = None,
		project_path: str = ".",
		event_hook: Optional[TransitionHook] = None,
		stress_test_capabilities: Optional[list[str]] = None,
		max_revisions: Optional[int] = None,
		dispatch_timeout: Optional[float] = None,
	):
		"""
		Initialize the state machine.

		Args:
			dispatcher: Capability dispatcher
			gate: Approval gate registry
			artifacts: Artifact store
			tasks: Task store used to persist every transition
			config: Global configuration (defaults are used when omitted)
			project_path: Project whose AGENTS.md / config decides the plan root
			event_hook: Called with every TransitionEvent
			stress_test_capabilities: Read-only capabilities fanned out before plan approval
			max_revisions: NEEDS_REVISION cycles allowed before a phase fails
			dispatch_timeout: Per-call timeout handed to the dispatcher
		"""
		self.dispatcher = dispatcher
		self.gate = gate
		self.artifacts = artifacts
		self.tasks = tasks
		self.config = config or Config()
		self.project_path = project_path
		self.event_hook = event_hook
		self.stress_test_capabilities = (
			stress_test_capabilities
			if stress_test_capabilities is not None
			else list(self.config.stress_test_capabilities)
		)
		self.max_revisions = max_revisions if max_revisions is not None else self.config.max_revisions
		self.dispatch_timeout = dispatch_timeout

		self._tasks: dict[str, Task] = {}
		self._locks: dict[str, asyncio.Lock] = {}
		self._create_lock = asyncio.Lock()

		self._steps: dict[PhaseStatus, Callable[[Task, Phase], Awaitable[PhaseStatus]]] = {
			PhaseStatus.PENDING: self._begin_planning,
			PhaseStatus.PLANNING: self._plan,
			PhaseStatus.STRESS_TESTING: self._stress_test,
			PhaseStatus.IMPLEMENTING: self._implement,
			PhaseStatus.REVIEWING: self._review,
			PhaseStatus.PRESERVING: self._preserve,
		}

	# ------------------------------------------------------------------
	# Public operations
	# ------------------------------------------------------------------

	async def start_task(
		self,
		title: str,
		initial_request: str,
		project_path: Optional[str] = None,
	) -> Task:
		"""
		Create a task. Its phases are unknown until the first advance().

		Raises:
			InvalidRequest: If the title or request is empty
		"""
		if not title or not title.strip():
			raise InvalidRequest("Task title must not be empty")
		if not initial_request or not initial_request.strip():
			raise InvalidRequest("Task request must not be empty")

		orchestrator_config = resolve_orchestrator_config(project_path or self.project_path, self.config)

		async with self._create_lock:
			task_id = await self.tasks.reserve_id(slugify(title), taken=set(self._tasks))
			task = Task(
				id=task_id,
				title=title.strip(),
				request=initial_request.strip(),
				plan_root=str(orchestrator_config.plan_root),
				max_revisions=self.max_revisions,
			)
			self._tasks[task.id] = task
			await self.tasks.save(task)

		logger.info(f"Started task {task.id}: {task.title}")
		self._emit(TransitionEvent(
			task_id=task.id,
			from_status="none",
			to_status=task.status.value,
			detail="task created",
		))
		return task

	async def advance(self, task_id: str) -> PhaseStatus:
		"""
		Move the current phase one step forward.

		Returns:
			The current phase's status after the step. Gate states are
			returned immediately; resolve_gate() continues from there.

		Raises:
			NotFound: If the task does not exist
			InvalidTransition: If the task is at an open gate, or is
				completed or failed
		"""
		async with self._lock_for(task_id):
			task = await self._load(task_id)
			try:
				return await self._advance(task)
			finally:
				await self.tasks.save(task)
				self._evict_if_finished(task)

	async def advance_until_gate(self, task_id: str, max_steps: int = 100) -> PhaseStatus:
		"""Advance until the task reaches a gate or a terminal state."""
		status = PhaseStatus.PENDING
		for _ in range(max_steps):
			status = await self.advance(task_id)
			task = await self.get_task(task_id)
			if status.is_gate or status == PhaseStatus.FAILED or task.status != TaskStatus.ACTIVE:
				return status
		return status

	async def resolve_gate(
		self,
		task_id: str,
		decision: GateDecision | str,
		notes: Optional[str] = None,
	) -> PhaseStatus:
		"""
		Resolve the open gate of a task's current phase.

		Raises:
			NotFound: If the task does not exist
			NoPendingGate: If the current phase has no open gate
		"""
		decision = GateDecision(decision)
		async with self._lock_for(task_id):
			task = await self._load(task_id)
			phase = task.current_phase
			if phase is None or phase.approval is None or not phase.approval.is_pending:
				raise NoPendingGate(f"Task {task_id} has no pending gate")

			request = self.gate.resolve(phase.approval.id, decision, notes)
			phase.approval_history.append(request)
			phase.approval = None

			try:
				if decision == GateDecision.APPROVE:
					return await self._approve(task, phase, request.kind)
				if decision == GateDecision.REVISE:
					if notes:
						phase.revision_notes.append(notes)
					target = PhaseStatus.PLANNING if request.kind == GateKind.PLAN else PhaseStatus.IMPLEMENTING
					return self._transition(task, phase, target, f"revision requested at {request.kind.value} gate")
				reason = f"rejected at {request.kind.value} gate"
				if notes:
					reason = f"{reason}: {notes}"
				return self._fail(task, phase, reason)
			finally:
				await self.tasks.save(task)
				self._evict_if_finished(task)

	async def get_task(self, task_id: str) -> Task:
		"""
		Get a task, including halted ones.

		Raises:
			NotFound: If the task does not exist
		"""
		return await self._load(task_id)

	async def list_tasks(self, status: Optional[TaskStatus] = None) -> list[Task]:
		return await self.tasks.list(status)

	# ------------------------------------------------------------------
	# Internals
	# ------------------------------------------------------------------

	def _lock_for(self, task_id: str) -> asyncio.Lock:
		lock = self._locks.get(task_id)
		if lock is None:
			lock = asyncio.Lock()
			self._locks[task_id] = lock
		return lock

	async def _load(self, task_id: str) -> Task:
		task = self._tasks.get(task_id)
		if task is not None:
			return task

		task = await self.tasks.get(task_id)
		if task is None:
			raise NotFound(f"Task not found: {task_id}")

		for phase in task.phases:
			for request in phase.approval_history:
				self.gate.restore(request)
			if phase.approval is not None:
				self.gate.restore(phase.approval)
		if not task.is_finished:
			self._tasks[task.id] = task
		return task

	def _evict_if_finished(self, task: Task) -> None:
		if task.is_finished:
			self._tasks.pop(task.id, None)
			self._locks.pop(task.id, None)

	def _emit(self, event: TransitionEvent) -> None:
		phase = f" phase {event.phase_number}" if event.phase_number is not None else ""
		logger.info(f"{event.task_id}{phase}: {event.from_status} -> {event.to_status} {event.detail}".rstrip())
		if self.event_hook:
			try:
				self.event_hook(event)
			except Exception as e:
				logger.error(f"Transition hook failed: {e}")

	def _transition(self, task: Task, phase: Phase, status: PhaseStatus, detail: str = "") -> PhaseStatus:
		previous = phase.status
		phase.status = status
		self._emit(TransitionEvent(
			task_id=task.id,
			phase_number=phase.number,
			from_status=previous.value,
			to_status=status.value,
			detail=detail,
		))
		return status

	def _set_task_status(self, task: Task, status: TaskStatus, detail: str = "") -> None:
		previous = task.status
		task.status = status
		self._emit(TransitionEvent(
			task_id=task.id,
			from_status=previous.value,
			to_status=status.value,
			detail=detail,
		))

	def _fail(self, task: Task, phase: Phase, reason: str) -> PhaseStatus:
		phase.failure_reason = reason
		phase.completed_at = datetime.now().isoformat()
		self._transition(task, phase, PhaseStatus.FAILED, reason)
		task.failure_reason = f"Phase {phase.number}: {reason}"
		self._set_task_status(task, TaskStatus.FAILED, task.failure_reason)
		logger.warning(f"Task {task.id} halted: {task.failure_reason}")
		return PhaseStatus.FAILED

	def _require_predecessor_committed(self, task: Task, phase: Phase) -> None:
		previous = task.get_phase(phase.number - 1)
		if previous is not None and previous.status != PhaseStatus.COMMITTED:
			raise InvalidTransition(
				f"Phase {phase.number} cannot start before phase {previous.number} is committed"
			)

	def _context(self, task: Task, phase: Phase, *extra: str) -> list[str]:
		context = [f"Task request: {task.request}"]
		if phase.objective:
			context.append(f"Phase objective: {phase.objective}")
		context.extend(e for e in extra if e)
		context.extend(f"Revision notes: {note}" for note in phase.revision_notes)
		return context

	async def _advance(self, task: Task) -> PhaseStatus:
		if task.is_finished:
			raise InvalidTransition(f"Task {task.id} is {task.status.value}")

		if task.status == TaskStatus.PLANNING:
			return await self._decompose(task)

		phase = task.current_phase
		if phase is None:
			raise InvalidTransition(f"Task {task.id} has no current phase")
		if phase.status.is_gate:
			raise InvalidTransition(
				f"Phase {phase.number} of {task.id} is {phase.status.value}; resolve the gate first"
			)
		if phase.status.is_terminal:
			raise InvalidTransition(f"Phase {phase.number} of {task.id} is {phase.status.value}")

		return await self._steps[phase.status](task, phase)

	async def _decompose(self, task: Task) -> PhaseStatus:
		request = CapabilityRequest(
			capability=PLANNER,
			instructions=(
				f"Break the following request into ordered implementation phases: {task.title}. "
				'Reply with JSON {"phases": [{"title": ..., "objective": ...}], "summary": ...}.'
			),
			context=[f"Task request: {task.request}"],
		)
		result = await self.dispatcher.invoke(PLANNER, request, self.dispatch_timeout, sink=task.dispatches)
		if not result.ok:
			task.failure_reason = f"Planning failed: {result.payload}"
			self._set_task_status(task, TaskStatus.FAILED, task.failure_reason)
			return PhaseStatus.FAILED

		breakdown = documents.parse_phase_breakdown(result.payload, task.title, task.request)
		task.phases = [
			Phase(number=i, title=item.title, objective=item.objective)
			for i, item in enumerate(breakdown.phases, start=1)
		]
		task.current_phase_index = 0

		artifact_id = await self.artifacts.write(
			task.id,
			ArtifactKind.PLAN,
			documents.render_plan(task, breakdown.summary),
			plan_root=Path(task.plan_root),
		)
		task.artifact_ids.append(artifact_id)
		self._set_task_status(task, TaskStatus.ACTIVE, f"{len(task.phases)} phase(s) planned")
		return task.phases[0].status

	async def _begin_planning(self, task: Task, phase: Phase) -> PhaseStatus:
		self._require_predecessor_committed(task, phase)
		phase.started_at = datetime.now().isoformat()
		return self._transition(task, phase, PhaseStatus.PLANNING)

	async def _plan(self, task: Task, phase: Phase) -> PhaseStatus:
		request = CapabilityRequest(
			capability=PLANNER,
			instructions=f"Write a detailed implementation plan for phase {phase.number}: {phase.title}",
			context=self._context(task, phase, phase.plan_text and f"Previous plan: {phase.plan_text}"),
		)
		result = await self.dispatcher.invoke(PLANNER, request, self.dispatch_timeout, phase=phase)
		if not result.ok:
			return self._fail(task, phase, f"planning dispatch failed: {result.payload}")

		phase.plan_text = result.payload
		phase.revision_notes.clear()
		return self._transition(task, phase, PhaseStatus.STRESS_TESTING)

	async def _stress_test(self, task: Task, phase: Phase) -> PhaseStatus:
		phase.findings = []
		if self.stress_test_capabilities:
			request = CapabilityRequest(
				capability=self.stress_test_capabilities[0],
				instructions=(
					f"Stress test the plan for phase {phase.number}: {phase.title}. "
					"List concrete gaps, risks and unstated assumptions."
				),
				context=self._context(task, phase, f"Plan: {phase.plan_text}"),
			)
			results = await self.dispatcher.invoke_parallel(
				[(name, request) for name in self.stress_test_capabilities],
				timeout=self.dispatch_timeout,
				phase=phase,
			)
			for name, result in zip(self.stress_test_capabilities, results):
				if result.ok:
					phase.findings.append(f"{name}: {result.payload.strip()}")
				else:
					phase.findings.append(f"{name} unavailable ({result.outcome.value}): {result.payload}")

		approval = self.gate.open(
			phase.phase_id(task.id),
			documents.render_plan_gate_summary(task, phase),
			GateKind.PLAN,
		)
		phase.approval = approval
		return self._transition(task, phase, PhaseStatus.AWAITING_PLAN_APPROVAL, f"gate {approval.id}")

	async def _implement(self, task: Task, phase: Phase) -> PhaseStatus:
		self._require_predecessor_committed(task, phase)
		request = CapabilityRequest(
			capability=IMPLEMENTER,
			instructions=f"Implement phase {phase.number}: {phase.title}",
			context=self._context(task, phase, f"Plan: {phase.plan_text}"),
		)
		result = await self.dispatcher.invoke(IMPLEMENTER, request, self.dispatch_timeout, phase=phase)
		if not result.ok:
			return self._fail(task, phase, f"implementation dispatch failed: {result.payload}")

		phase.revision_notes.clear()
		return self._transition(task, phase, PhaseStatus.REVIEWING)

	async def _review(self, task: Task, phase: Phase) -> PhaseStatus:
		implementations = phase.dispatches_for(PhaseStatus.IMPLEMENTING)
		latest = implementations[-1].result.payload if implementations else ""
		request = CapabilityRequest(
			capability=REVIEWER,
			instructions=(
				f"Review the implementation of phase {phase.number}: {phase.title}. "
				'Reply with JSON {"verdict": "APPROVED" | "NEEDS_REVISION" | "FAILED", '
				'"summary": ..., "issues": [...]}.'
			),
			context=self._context(task, phase, f"Plan: {phase.plan_text}", f"Implementation report: {latest}"),
		)
		result = await self.dispatcher.invoke(REVIEWER, request, self.dispatch_timeout, phase=phase)
		if not result.ok:
			return self._fail(task, phase, f"review dispatch failed: {result.payload}")

		review = documents.parse_review(result.payload)
		phase.review_verdicts.append(review.verdict)

		if review.verdict == ReviewVerdict.APPROVED:
			return self._transition(task, phase, PhaseStatus.PRESERVING, "review approved")

		if review.verdict == ReviewVerdict.FAILED:
			return self._fail(task, phase, f"review failed: {review.summary or 'no summary'}")

		phase.revision_count += 1
		if phase.revision_count > task.max_revisions:
			return self._fail(
				task, phase,
				f"still needs revision after {task.max_revisions} revision cycle(s)",
			)

		feedback = "; ".join(review.issues) or review.summary
		if feedback:
			phase.revision_notes.append(feedback)
		return self._transition(
			task, phase, PhaseStatus.IMPLEMENTING,
			f"revision {phase.revision_count}/{task.max_revisions}",
		)

	async def _preserve(self, task: Task, phase: Phase) -> PhaseStatus:
		artifact_id = await self.artifacts.write(
			task.id,
			ArtifactKind.PRESERVATION,
			documents.render_preservation(task, phase),
			phase_number=phase.number,
			plan_root=Path(task.plan_root),
		)
		phase.artifact_ids.append(artifact_id)

		approval = self.gate.open(
			phase.phase_id(task.id),
			documents.render_commit_gate_summary(task, phase),
			GateKind.COMMIT,
		)
		phase.approval = approval
		return self._transition(task, phase, PhaseStatus.AWAITING_COMMIT_APPROVAL, f"gate {approval.id}")

	async def _approve(self, task: Task, phase: Phase, kind: GateKind) -> PhaseStatus:
		if kind == GateKind.PLAN:
			self._require_predecessor_committed(task, phase)
			return self._transition(task, phase, PhaseStatus.IMPLEMENTING, "plan approved")

		phase.completed_at = datetime.now().isoformat()
		status = self._transition(task, phase, PhaseStatus.COMMITTED, "commit approved")
		task.current_phase_index += 1
		if task.current_phase_index < len(task.phases):
			return status

		# The commit gate is already consumed, so a failed write halts the task
		try:
			artifact_id = await self.artifacts.write(
				task.id,
				ArtifactKind.COMPLETION,
				documents.render_completion(task),
				plan_root=Path(task.plan_root),
			)
		except (OSError, sqlite3.Error, OrchestratorError) as e:
			task.failure_reason = f"Phase {phase.number}: could not write completion report: {e}"
			logger.error(f"Task {task.id} halted: {task.failure_reason}")
			self._set_task_status(task, TaskStatus.FAILED, task.failure_reason)
			return status

		task.artifact_ids.append(artifact_id)
		self._set_task_status(task, TaskStatus.COMPLETED, "all phases committed")
		return status
