"""Artifact tools."""

import json

from mcp.server.fastmcp import FastMCP

from ..artifacts.models import ArtifactKind
from ..config import Config
from ..errors import OrchestratorError
from ..runtime import get_runtime


def register_artifact_tools(mcp: FastMCP, config: Config) -> None:
	"""Register artifact tools."""

	@mcp.tool()
	async def list_task_artifacts(task_id: str) -> str:
		"""
		List every artifact of a task, superseded ones included.

		Args:
			task_id: Task ID
		"""
		runtime = await get_runtime()
		artifacts = await runtime.artifacts.list(task_id)

		latest: dict[str, str] = {}
		for artifact in artifacts:
			latest[artifact.path] = artifact.id

		return json.dumps({
			"task_id": task_id,
			"count": len(artifacts),
			"artifacts": [
				{
					"id": a.id,
					"kind": a.kind.value,
					"phase_number": a.phase_number,
					"path": a.path,
					"created_at": a.created_at,
					"supersedes": a.supersedes,
					"current": latest[a.path] == a.id,
				}
				for a in artifacts
			],
		}, indent=2)

	@mcp.tool()
	async def read_task_artifact(task_id: str, kind: str, phase_number: int = 0) -> str:
		"""
		Read the latest artifact of a kind.

		Args:
			task_id: Task ID
			kind: One of plan, preservation, completion
			phase_number: Phase number (preservation artifacts only)
		"""
		try:
			artifact_kind = ArtifactKind(kind)
		except ValueError:
			return json.dumps({
				"error": f"Invalid kind: {kind}",
				"valid": [k.value for k in ArtifactKind],
			})

		runtime = await get_runtime()
		try:
			content = await runtime.artifacts.read(
				task_id,
				artifact_kind,
				phase_number if phase_number > 0 else None,
			)
		except OrchestratorError as e:
			return json.dumps({"error": str(e)})

		return json.dumps({
			"task_id": task_id,
			"kind": artifact_kind.value,
			"content": content,
		}, indent=2)
