"""Shared test fixtures and helpers for phase-orchestrator tests."""

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union
from unittest.mock import MagicMock

from phase_orchestrator.artifacts.store import ArtifactStore
from phase_orchestrator.config import Config
from phase_orchestrator.orchestrator.capabilities import CapabilityRegistry
from phase_orchestrator.orchestrator.dispatcher import Dispatcher
from phase_orchestrator.orchestrator.gate import ApprovalGate
from phase_orchestrator.orchestrator.machine import PhaseStateMachine
from phase_orchestrator.tasks.models import CapabilityRequest
from phase_orchestrator.tasks.store import TaskStore

Reply = Union[str, BaseException, Callable[[CapabilityRequest], str]]


def breakdown(*titles: str) -> str:
	"""Planner reply splitting a request into the given phases."""
	return json.dumps({
		"phases": [{"title": t, "objective": f"Deliver {t.lower()}"} for t in titles],
		"summary": f"{len(titles)} phase plan",
	})


def verdict(value: str, *issues: str) -> str:
	"""Reviewer reply with a verdict and optional issues."""
	return json.dumps({"verdict": value, "summary": f"Review: {value}", "issues": list(issues)})


class ScriptedHandler:
	"""
	Capability handler replaying scripted replies per capability.

	Replies are consumed in order; once a script runs out, the last reply
	is repeated. A reply may be a string, an exception to raise, or a
	callable receiving the request. Every request is recorded.
	"""

	def __init__(self, scripts: Optional[dict[str, list[Reply]]] = None, delays: Optional[dict[str, float]] = None):
		self.scripts = {name: list(replies) for name, replies in (scripts or {}).items()}
		self.delays = delays or {}
		self.calls: list[CapabilityRequest] = []

	def calls_for(self, capability: str) -> list[CapabilityRequest]:
		return [c for c in self.calls if c.capability == capability]

	async def __call__(self, request: CapabilityRequest) -> str:
		self.calls.append(request)
		delay = self.delays.get(request.capability, 0)
		if delay:
			await asyncio.sleep(delay)

		script = self.scripts.get(request.capability)
		if not script:
			return f"{request.capability} done"
		reply = script.pop(0) if len(script) > 1 else script[0]

		if isinstance(reply, BaseException):
			raise reply
		if callable(reply):
			return reply(request)
		return reply


def happy_scripts(*titles: str) -> dict[str, list[Reply]]:
	"""Scripts that drive every phase straight through review."""
	return {
		"planner": [breakdown(*titles), "Detailed plan"],
		"stress-tester": ["No blocking risks"],
		"implementer": ["Implemented"],
		"reviewer": [verdict("APPROVED")],
	}


@dataclass
class MachineSetup:
	"""A state machine wired to stores under a temp directory."""
	machine: PhaseStateMachine
	handler: ScriptedHandler
	dispatcher: Dispatcher
	gate: ApprovalGate
	tasks: TaskStore
	artifacts: ArtifactStore
	events: list
	project: Path

	async def close(self) -> None:
		await self.tasks.close()
		await self.artifacts.close()


async def build_machine(
	tmp_path: Path,
	handler: Optional[ScriptedHandler] = None,
	**machine_kwargs,
) -> MachineSetup:
	"""Wire a PhaseStateMachine with real stores and a scripted handler."""
	handler = handler or ScriptedHandler(happy_scripts("Build"))
	registry = CapabilityRegistry.default(handler)
	dispatcher = Dispatcher(registry, default_timeout=5.0, retry_backoff_seconds=0.0)

	tasks = TaskStore(str(tmp_path / "data" / "tasks.db"))
	await tasks.init()
	artifacts = ArtifactStore(str(tmp_path / "data" / "artifacts.db"))
	await artifacts.init()

	project = tmp_path / "project"
	project.mkdir(exist_ok=True)

	events: list = []
	gate = ApprovalGate()
	machine = PhaseStateMachine(
		dispatcher,
		gate,
		artifacts,
		tasks,
		config=Config(config_dir=tmp_path / "config", data_dir=tmp_path / "data"),
		project_path=str(project),
		event_hook=events.append,
		**machine_kwargs,
	)
	return MachineSetup(
		machine=machine,
		handler=handler,
		dispatcher=dispatcher,
		gate=gate,
		tasks=tasks,
		artifacts=artifacts,
		events=events,
		project=project,
	)


def capture_tools(config: MagicMock, register_fn: Callable) -> dict:
	"""Register tools on a mock MCP and return the captured tool functions.

	Args:
		config: Mock config object to pass to the registration function
		register_fn: The registration function (e.g., register_task_tools)

	Returns:
		Dict mapping tool name to the tool function
	"""
	captured = {}

	class MockMCP:
		def tool(self):
			def decorator(fn):
				captured[fn.__name__] = fn
				return fn
			return decorator

	register_fn(MockMCP(), config)
	return captured
