"""Task lifecycle tools."""

import json

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..errors import OrchestratorError
from ..runtime import get_runtime
from ..tasks.models import GateDecision, Task, TaskStatus


def _phase_overview(task: Task) -> list[dict]:
	return [
		{
			"number": phase.number,
			"title": phase.title,
			"status": phase.status.value,
			"revision_count": phase.revision_count,
			"dispatches": len(phase.dispatches),
			"failure_reason": phase.failure_reason,
		}
		for phase in task.phases
	]


def _task_response(task: Task) -> dict:
	phase = task.current_phase
	response = {
		"task_id": task.id,
		"title": task.title,
		"status": task.status.value,
		"plan_root": task.plan_root,
		"progress": task.get_progress(),
		"phases": _phase_overview(task),
	}
	if phase is not None:
		response["current_phase"] = {"number": phase.number, "status": phase.status.value}
		if phase.approval is not None:
			response["pending_gate"] = {
				"id": phase.approval.id,
				"kind": phase.approval.kind.value,
				"summary": phase.approval.summary,
			}
	if task.failure_reason:
		response["failure_reason"] = task.failure_reason
	return response


def register_task_tools(mcp: FastMCP, config: Config) -> None:
	"""Register task lifecycle tools."""

	@mcp.tool()
	async def start_task(title: str, request: str, project_path: str = "") -> str:
		"""
		Start a new orchestrated task.

		Args:
			title: Short task title (used to derive the task ID)
			request: What the user asked for
			project_path: Project whose AGENTS.md decides the plans directory
		"""
		runtime = await get_runtime()
		try:
			task = await runtime.machine.start_task(title, request, project_path or None)
		except OrchestratorError as e:
			return json.dumps({"error": str(e)})

		return json.dumps({
			"success": True,
			"task_id": task.id,
			"status": task.status.value,
			"plan_root": task.plan_root,
			"hint": "Use advance_task to decompose the request into phases",
		}, indent=2)

	@mcp.tool()
	async def advance_task(task_id: str, until_gate: bool = False) -> str:
		"""
		Advance a task's current phase.

		Args:
			task_id: Task ID
			until_gate: Keep advancing until an approval gate or a terminal state
		"""
		runtime = await get_runtime()
		try:
			if until_gate:
				status = await runtime.machine.advance_until_gate(task_id)
			else:
				status = await runtime.machine.advance(task_id)
			task = await runtime.machine.get_task(task_id)
		except OrchestratorError as e:
			return json.dumps({"error": str(e), "task_id": task_id})

		return json.dumps({
			"phase_status": status.value,
			**_task_response(task),
		}, indent=2)

	@mcp.tool()
	async def resolve_task_gate(task_id: str, decision: str, notes: str = "") -> str:
		"""
		Resolve the open approval gate of a task.

		Args:
			task_id: Task ID
			decision: One of approve, revise, reject
			notes: Revision notes or rejection reason
		"""
		try:
			gate_decision = GateDecision(decision.strip().lower())
		except ValueError:
			return json.dumps({
				"error": f"Invalid decision: {decision}",
				"valid": [d.value for d in GateDecision],
			})

		runtime = await get_runtime()
		try:
			status = await runtime.machine.resolve_gate(task_id, gate_decision, notes or None)
			task = await runtime.machine.get_task(task_id)
		except OrchestratorError as e:
			return json.dumps({"error": str(e), "task_id": task_id})

		return json.dumps({
			"phase_status": status.value,
			**_task_response(task),
		}, indent=2)

	@mcp.tool()
	async def task_status(task_id: str = "", status: str = "") -> str:
		"""
		Get a task's status, or list tasks when no ID is given.

		Args:
			task_id: Task ID (empty = list tasks)
			status: Filter for the listing (planning, active, completed, failed)
		"""
		runtime = await get_runtime()

		if task_id:
			try:
				task = await runtime.machine.get_task(task_id)
			except OrchestratorError as e:
				return json.dumps({"error": str(e)})
			return json.dumps(_task_response(task), indent=2)

		task_status_filter = None
		if status:
			try:
				task_status_filter = TaskStatus(status)
			except ValueError:
				return json.dumps({
					"error": f"Invalid status: {status}",
					"valid": [s.value for s in TaskStatus],
				})

		tasks = await runtime.machine.list_tasks(task_status_filter)
		return json.dumps({
			"count": len(tasks),
			"tasks": [
				{
					"task_id": t.id,
					"title": t.title,
					"status": t.status.value,
					"progress": t.get_progress(),
				}
				for t in tasks
			],
		}, indent=2)

	@mcp.tool()
	async def list_capabilities() -> str:
		"""List the capabilities tasks can dispatch to."""
		runtime = await get_runtime()
		capabilities = runtime.registry.describe()
		return json.dumps({
			"count": len(capabilities),
			"capabilities": capabilities,
		}, indent=2)
