"""
Capability Registry - The fixed roster of subagent personas.

Each capability is one variant of a closed set of kinds. Discovery and
review roles are read-only; implementation and content roles mutate the
workspace and are only dispatched while a phase is implementing.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from ..errors import UnknownCapability
from ..tasks.models import CapabilityRequest, CapabilityResult

logger = logging.getLogger(__name__)

CapabilityHandler = Callable[[CapabilityRequest], Awaitable[Union[CapabilityResult, str]]]


class CapabilityKind(str, Enum):
	"""Closed set of capability variants."""
	RESEARCH = "research"
	EXPLORE = "explore"
	PLAN = "plan"
	STRESS_TEST = "stress_test"
	IMPLEMENT = "implement"
	REVIEW = "review"
	CONTENT = "content"
	STYLE = "style"


MUTATING_KINDS = frozenset({
	CapabilityKind.IMPLEMENT,
	CapabilityKind.CONTENT,
	CapabilityKind.STYLE,
})


@dataclass(frozen=True)
class Capability:
	"""A registered capability."""
	name: str
	kind: CapabilityKind
	description: str
	system_prompt: str = ""

	@property
	def mutating(self) -> bool:
		return self.kind in MUTATING_KINDS


DEFAULT_CAPABILITIES = [
	Capability(
		name="researcher",
		kind=CapabilityKind.RESEARCH,
		description="Gathers external documentation and prior art",
		system_prompt="You research a topic and report findings with references. Do not modify files.",
	),
	Capability(
		name="explorer",
		kind=CapabilityKind.EXPLORE,
		description="Maps the relevant parts of the codebase",
		system_prompt=(
			"You explore the codebase and answer inside <results> with <files>, <answer> "
			"and <next_steps>. Do not modify files."
		),
	),
	Capability(
		name="planner",
		kind=CapabilityKind.PLAN,
		description="Breaks a request into ordered phases and plans each phase",
		system_prompt=(
			"You produce implementation plans. When asked for a breakdown, reply with JSON "
			'{"phases": [{"title": ..., "objective": ...}]}. Do not modify files.'
		),
	),
	Capability(
		name="stress-tester",
		kind=CapabilityKind.STRESS_TEST,
		description="Challenges a plan for gaps, risks and unstated assumptions",
		system_prompt="You stress test plans and list concrete risks and gaps. Do not modify files.",
	),
	Capability(
		name="implementer",
		kind=CapabilityKind.IMPLEMENT,
		description="Implements a planned phase",
		system_prompt="You implement the given phase plan, then summarize what changed.",
	),
	Capability(
		name="reviewer",
		kind=CapabilityKind.REVIEW,
		description="Reviews an implementation and returns a verdict",
		system_prompt=(
			'You review changes and reply with JSON {"verdict": "APPROVED" | "NEEDS_REVISION" '
			'| "FAILED", "summary": ..., "issues": [...]}. Do not modify files.'
		),
	),
	Capability(
		name="content-writer",
		kind=CapabilityKind.CONTENT,
		description="Writes documentation and copy",
		system_prompt="You write and edit documentation files for the given phase.",
	),
	Capability(
		name="stylist",
		kind=CapabilityKind.STYLE,
		description="Applies styling and accessibility fixes",
		system_prompt="You apply styling and accessibility changes for the given phase.",
	),
]


@dataclass
class CapabilityRegistry:
	"""
	Static registry of capabilities and their handlers.

	Handlers are async callables taking a CapabilityRequest and returning
	either a CapabilityResult or a plain payload string.
	"""
	capabilities: dict[str, Capability] = field(default_factory=dict)
	handlers: dict[str, CapabilityHandler] = field(default_factory=dict)
	default_handler: Optional[CapabilityHandler] = None

	@classmethod
	def default(cls, handler: Optional[CapabilityHandler] = None) -> "CapabilityRegistry":
		"""Registry holding the default roster, all served by one handler."""
		registry = cls(default_handler=handler)
		for capability in DEFAULT_CAPABILITIES:
			registry.register(capability)
		return registry

	def register(self, capability: Capability, handler: Optional[CapabilityHandler] = None) -> None:
		self.capabilities[capability.name] = capability
		if handler is not None:
			self.handlers[capability.name] = handler

	def set_handler(self, name: str, handler: CapabilityHandler) -> None:
		self.get(name)
		self.handlers[name] = handler

	def get(self, name: str) -> Capability:
		"""
		Look up a capability.

		Raises:
			UnknownCapability: If the name is not registered
		"""
		capability = self.capabilities.get(name)
		if capability is None:
			raise UnknownCapability(f"Unknown capability: {name}")
		return capability

	def handler_for(self, name: str) -> CapabilityHandler:
		self.get(name)
		handler = self.handlers.get(name, self.default_handler)
		if handler is None:
			raise UnknownCapability(f"No handler registered for capability: {name}")
		return handler

	def names(self) -> list[str]:
		return list(self.capabilities)

	def describe(self) -> list[dict]:
		return [
			{
				"name": c.name,
				"kind": c.kind.value,
				"mutating": c.mutating,
				"description": c.description,
			}
			for c in self.capabilities.values()
		]
