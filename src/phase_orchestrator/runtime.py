"""
Runtime - Builds a ready-to-use orchestrator from configuration.

Shared by the MCP server and the CLI so both see the same task, artifact
and transition databases.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .artifacts.store import ArtifactStore
from .config import Config, get_config
from .instrumentation import TransitionStore
from .orchestrator.capabilities import CapabilityHandler, CapabilityRegistry
from .orchestrator.claude_handler import ClaudeCliHandler
from .orchestrator.dispatcher import Dispatcher
from .orchestrator.gate import ApprovalGate
from .orchestrator.machine import PhaseStateMachine
from .tasks.store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
	"""The wired components of one orchestrator process."""
	config: Config
	registry: CapabilityRegistry
	dispatcher: Dispatcher
	gate: ApprovalGate
	tasks: TaskStore
	artifacts: ArtifactStore
	events: TransitionStore
	machine: PhaseStateMachine

	async def close(self) -> None:
		await self.tasks.close()
		await self.artifacts.close()


async def build_runtime(
	config: Optional[Config] = None,
	project_path: str = ".",
	handler: Optional[CapabilityHandler] = None,
) -> Runtime:
	"""
	Wire stores, registry, dispatcher, gate and state machine.

	Args:
		config: Configuration (defaults to the global config)
		project_path: Project the capabilities work in
		handler: Default capability handler. Defaults to the Claude CLI.
	"""
	config = config or get_config()

	registry = CapabilityRegistry.default()
	registry.default_handler = handler or ClaudeCliHandler(
		registry,
		project_path=project_path,
		model=config.claude_model,
	)

	dispatcher = Dispatcher(
		registry,
		default_timeout=config.dispatch_timeout,
		read_only_retries=config.read_only_retries,
		retry_backoff_seconds=config.retry_backoff_seconds,
		max_concurrency=config.max_concurrency,
	)

	tasks = TaskStore(str(config.tasks_db_path))
	await tasks.init()
	artifacts = ArtifactStore(str(config.artifacts_db_path))
	await artifacts.init()
	events = TransitionStore(str(config.events_db_path))
	gate = ApprovalGate()

	machine = PhaseStateMachine(
		dispatcher,
		gate,
		artifacts,
		tasks,
		config=config,
		project_path=project_path,
		event_hook=events.record,
	)

	logger.info(f"Runtime ready (data: {config.data_dir})")
	return Runtime(
		config=config,
		registry=registry,
		dispatcher=dispatcher,
		gate=gate,
		tasks=tasks,
		artifacts=artifacts,
		events=events,
		machine=machine,
	)


# Global runtime singleton
_runtime: Optional[Runtime] = None


async def get_runtime() -> Runtime:
	"""Get or create the global runtime."""
	global _runtime
	if _runtime is None:
		_runtime = await build_runtime()
	return _runtime
