"""Tasks module - Task, phase and dispatch models with persistent storage."""

from .models import (
	ApprovalOutcome,
	ApprovalRequest,
	CapabilityRequest,
	CapabilityResult,
	DispatchOutcome,
	DispatchRecord,
	FailureKind,
	GateDecision,
	GateKind,
	Phase,
	PhaseStatus,
	ReviewVerdict,
	Task,
	TaskStatus,
)
from .store import TaskStore

__all__ = [
	"ApprovalOutcome",
	"ApprovalRequest",
	"CapabilityRequest",
	"CapabilityResult",
	"DispatchOutcome",
	"DispatchRecord",
	"FailureKind",
	"GateDecision",
	"GateKind",
	"Phase",
	"PhaseStatus",
	"ReviewVerdict",
	"Task",
	"TaskStatus",
	"TaskStore",
]
