"""
Task Models - Pydantic schemas for orchestrated tasks.

Defines tasks, their ordered phases, the dispatch records each phase
accumulates, and the approval requests that gate phase progress.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def _now() -> str:
	return datetime.now().isoformat()


class TaskStatus(str, Enum):
	"""Status of a task."""
	PLANNING = "planning"
	ACTIVE = "active"
	COMPLETED = "completed"
	FAILED = "failed"


class PhaseStatus(str, Enum):
	"""Lifecycle state of a phase."""
	PENDING = "pending"
	PLANNING = "planning"
	STRESS_TESTING = "stress_testing"
	AWAITING_PLAN_APPROVAL = "awaiting_plan_approval"
	IMPLEMENTING = "implementing"
	REVIEWING = "reviewing"
	PRESERVING = "preserving"
	AWAITING_COMMIT_APPROVAL = "awaiting_commit_approval"
	COMMITTED = "committed"
	FAILED = "failed"

	@property
	def is_gate(self) -> bool:
		return self in (PhaseStatus.AWAITING_PLAN_APPROVAL, PhaseStatus.AWAITING_COMMIT_APPROVAL)

	@property
	def is_terminal(self) -> bool:
		return self in (PhaseStatus.COMMITTED, PhaseStatus.FAILED)


class ReviewVerdict(str, Enum):
	"""Verdict returned by the review capability."""
	APPROVED = "APPROVED"
	NEEDS_REVISION = "NEEDS_REVISION"
	FAILED = "FAILED"


class DispatchOutcome(str, Enum):
	"""Outcome of a single capability invocation."""
	SUCCESS = "success"
	FAILURE = "failure"
	TIMEOUT = "timeout"


class FailureKind(str, Enum):
	"""Why a capability call failed."""
	TIMEOUT = "timeout"
	ERROR = "error"
	UNKNOWN_CAPABILITY = "unknown_capability"
	NOT_PERMITTED = "not_permitted"


class GateKind(str, Enum):
	"""Which checkpoint an approval request guards."""
	PLAN = "plan"
	COMMIT = "commit"


class GateDecision(str, Enum):
	"""Decision a human supplies to resolve a gate."""
	APPROVE = "approve"
	REVISE = "revise"
	REJECT = "reject"


class ApprovalOutcome(str, Enum):
	"""Resolution state of an approval request."""
	PENDING = "pending"
	APPROVED = "approved"
	REVISE = "revise"
	REJECTED = "rejected"


class CapabilityRequest(BaseModel):
	"""A request sent to a capability."""
	model_config = ConfigDict(frozen=True)

	capability: str = Field(description="Registered capability name")
	instructions: str = Field(description="What the capability should do")
	context: list[str] = Field(default_factory=list, description="Supporting context snippets")


class CapabilityResult(BaseModel):
	"""A structured result returned by a capability."""
	model_config = ConfigDict(frozen=True)

	status: str = Field(description="'success' or 'failure'")
	payload: str = Field(default="")
	error_kind: Optional[FailureKind] = Field(default=None)

	@classmethod
	def success(cls, payload: str) -> "CapabilityResult":
		return cls(status="success", payload=payload)

	@classmethod
	def failure(cls, kind: FailureKind, detail: str) -> "CapabilityResult":
		return cls(status="failure", payload=detail, error_kind=kind)

	@property
	def ok(self) -> bool:
		return self.status == "success"

	@property
	def outcome(self) -> DispatchOutcome:
		if self.ok:
			return DispatchOutcome.SUCCESS
		if self.error_kind == FailureKind.TIMEOUT:
			return DispatchOutcome.TIMEOUT
		return DispatchOutcome.FAILURE


class DispatchRecord(BaseModel):
	"""One capability invocation issued by a phase."""
	model_config = ConfigDict(frozen=True)

	id: str
	capability: str
	request: CapabilityRequest
	result: CapabilityResult
	step: Optional[PhaseStatus] = Field(default=None, description="Phase state at dispatch time")
	started_at: str
	finished_at: str
	attempts: int = 1

	@property
	def outcome(self) -> DispatchOutcome:
		return self.result.outcome


class ApprovalRequest(BaseModel):
	"""A human checkpoint guarding a phase."""
	id: str
	phase_id: str
	kind: GateKind
	summary: str
	outcome: ApprovalOutcome = Field(default=ApprovalOutcome.PENDING)
	notes: Optional[str] = Field(default=None)
	opened_at: str = Field(default_factory=_now)
	resolved_at: Optional[str] = Field(default=None)

	@property
	def is_pending(self) -> bool:
		return self.outcome == ApprovalOutcome.PENDING


class Phase(BaseModel):
	"""One step of a task's plan."""
	number: int = Field(description="1-based ordinal, unique within a task")
	title: str
	objective: str = Field(default="")
	status: PhaseStatus = Field(default=PhaseStatus.PENDING)

	plan_text: str = Field(default="", description="Detailed plan produced during planning")
	findings: list[str] = Field(default_factory=list, description="Stress-test findings")
	review_verdicts: list[ReviewVerdict] = Field(default_factory=list)
	revision_notes: list[str] = Field(default_factory=list, description="Notes for the next working step")
	revision_count: int = Field(default=0)
	failure_reason: Optional[str] = Field(default=None)

	artifact_ids: list[str] = Field(default_factory=list)
	dispatches: list[DispatchRecord] = Field(default_factory=list)
	approval: Optional[ApprovalRequest] = Field(default=None, description="Open gate, if any")
	approval_history: list[ApprovalRequest] = Field(default_factory=list)

	started_at: Optional[str] = Field(default=None)
	completed_at: Optional[str] = Field(default=None)

	def phase_id(self, task_id: str) -> str:
		return f"{task_id}/phase-{self.number}"

	def dispatches_for(self, step: PhaseStatus) -> list[DispatchRecord]:
		"""Dispatch records issued while the phase was in the given state."""
		return [d for d in self.dispatches if d.step == step]


class Task(BaseModel):
	"""A named unit of orchestrated work."""
	id: str
	title: str
	request: str
	status: TaskStatus = Field(default=TaskStatus.PLANNING)
	phases: list[Phase] = Field(default_factory=list)
	current_phase_index: int = Field(default=0)
	plan_root: str = Field(description="Directory artifacts are mirrored under")
	max_revisions: int = Field(default=3)
	artifact_ids: list[str] = Field(default_factory=list, description="Task-level artifacts")
	dispatches: list[DispatchRecord] = Field(default_factory=list, description="Task-level dispatches")
	failure_reason: Optional[str] = Field(default=None)
	created_at: str = Field(default_factory=_now)
	updated_at: str = Field(default_factory=_now)

	@property
	def is_finished(self) -> bool:
		return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)

	@property
	def current_phase(self) -> Optional[Phase]:
		if 0 <= self.current_phase_index < len(self.phases):
			return self.phases[self.current_phase_index]
		return None

	def get_phase(self, number: int) -> Optional[Phase]:
		for phase in self.phases:
			if phase.number == number:
				return phase
		return None

	def get_progress(self) -> dict:
		"""Calculate overall progress."""
		committed = len([p for p in self.phases if p.status == PhaseStatus.COMMITTED])
		total = len(self.phases)
		return {
			"total_phases": total,
			"committed_phases": committed,
			"current_phase": self.current_phase.number if self.current_phase else None,
			"percent_complete": round(committed / total * 100, 1) if total > 0 else 0,
		}


def slugify(title: str) -> str:
	"""Derive a task identifier from a user-supplied title."""
	slug = re.sub(r"[^a-z0-9]+", "-", title.strip().lower()).strip("-")
	return slug[:60].rstrip("-") or "task"
