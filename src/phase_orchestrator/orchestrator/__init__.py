"""Orchestrator module - Dispatch, approval gates and the phase state machine."""

from .batch import BatchProcessor
from .capabilities import Capability, CapabilityKind, CapabilityRegistry
from .dispatcher import Dispatcher
from .gate import ApprovalGate
from .machine import PhaseStateMachine

__all__ = [
	"ApprovalGate",
	"BatchProcessor",
	"Capability",
	"CapabilityKind",
	"CapabilityRegistry",
	"Dispatcher",
	"PhaseStateMachine",
]
