"""Tests for the MCP tools."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from phase_orchestrator.config import Config
from phase_orchestrator.runtime import build_runtime
from phase_orchestrator.tools.artifacts import register_artifact_tools
from phase_orchestrator.tools.tasks import register_task_tools

from .helpers import ScriptedHandler, capture_tools, happy_scripts

TASKS = "phase_orchestrator.tools.tasks.get_runtime"
ARTIFACTS = "phase_orchestrator.tools.artifacts.get_runtime"


async def _runtime(tmp_path: Path):
	project = tmp_path / "project"
	project.mkdir()
	config = Config(config_dir=tmp_path / "config", data_dir=tmp_path / "data")
	return await build_runtime(
		config,
		project_path=str(project),
		handler=ScriptedHandler(happy_scripts("Backend")),
	)


class TestTaskTools:
	"""Task lifecycle tools."""

	def test_registers_expected_tools(self):
		tools = capture_tools(MagicMock(), register_task_tools)
		assert set(tools) == {
			"start_task",
			"advance_task",
			"resolve_task_gate",
			"task_status",
			"list_capabilities",
		}

	@pytest.mark.asyncio
	async def test_full_flow(self, tmp_path: Path):
		runtime = await _runtime(tmp_path)
		tools = capture_tools(MagicMock(), register_task_tools)
		try:
			with patch(TASKS, return_value=runtime):
				started = json.loads(await tools["start_task"]("Demo", "Build a demo app"))
				assert started["success"] is True
				assert started["task_id"] == "demo"

				advanced = json.loads(await tools["advance_task"]("demo", until_gate=True))
				assert advanced["phase_status"] == "awaiting_plan_approval"
				assert advanced["pending_gate"]["kind"] == "plan"

				resolved = json.loads(await tools["resolve_task_gate"]("demo", "approve"))
				assert resolved["phase_status"] == "implementing"

				await tools["advance_task"]("demo", until_gate=True)
				done = json.loads(await tools["resolve_task_gate"]("demo", "APPROVE"))
				assert done["phase_status"] == "committed"
				assert done["status"] == "completed"

				status = json.loads(await tools["task_status"]("demo"))
				assert status["progress"]["committed_phases"] == 1

			events = runtime.events.query(task_id="demo")
			assert events[-1].to_status == "completed"
		finally:
			await runtime.close()

	@pytest.mark.asyncio
	async def test_errors_become_json(self, tmp_path: Path):
		runtime = await _runtime(tmp_path)
		tools = capture_tools(MagicMock(), register_task_tools)
		try:
			with patch(TASKS, return_value=runtime):
				result = json.loads(await tools["advance_task"]("missing"))
				assert "not found" in result["error"]

				result = json.loads(await tools["start_task"]("", "Build"))
				assert "error" in result

				await tools["start_task"]("Demo", "Build a demo app")
				result = json.loads(await tools["resolve_task_gate"]("demo", "approve"))
				assert "no pending gate" in result["error"]

				result = json.loads(await tools["resolve_task_gate"]("demo", "maybe"))
				assert result["valid"] == ["approve", "revise", "reject"]
		finally:
			await runtime.close()

	@pytest.mark.asyncio
	async def test_task_listing(self, tmp_path: Path):
		runtime = await _runtime(tmp_path)
		tools = capture_tools(MagicMock(), register_task_tools)
		try:
			with patch(TASKS, return_value=runtime):
				await tools["start_task"]("First", "one")
				await tools["start_task"]("Second", "two")

				listing = json.loads(await tools["task_status"]())
				assert listing["count"] == 2

				planning = json.loads(await tools["task_status"](status="planning"))
				assert planning["count"] == 2

				invalid = json.loads(await tools["task_status"](status="sleeping"))
				assert "error" in invalid
		finally:
			await runtime.close()

	@pytest.mark.asyncio
	async def test_list_capabilities(self, tmp_path: Path):
		runtime = await _runtime(tmp_path)
		tools = capture_tools(MagicMock(), register_task_tools)
		try:
			with patch(TASKS, return_value=runtime):
				result = json.loads(await tools["list_capabilities"]())
			names = [c["name"] for c in result["capabilities"]]
			assert "implementer" in names
			implementer = next(c for c in result["capabilities"] if c["name"] == "implementer")
			assert implementer["mutating"] is True
		finally:
			await runtime.close()


class TestArtifactTools:
	"""Artifact tools."""

	@pytest.mark.asyncio
	async def test_list_and_read(self, tmp_path: Path):
		runtime = await _runtime(tmp_path)
		tools = capture_tools(MagicMock(), register_artifact_tools)
		try:
			task = await runtime.machine.start_task("Demo", "Build a demo app")
			await runtime.machine.advance(task.id)

			with patch(ARTIFACTS, return_value=runtime):
				listing = json.loads(await tools["list_task_artifacts"]("demo"))
				assert listing["count"] == 1
				assert listing["artifacts"][0]["path"] == "demo/plan.md"
				assert listing["artifacts"][0]["current"] is True

				plan = json.loads(await tools["read_task_artifact"]("demo", "plan"))
				assert "### Phase 1: Backend" in plan["content"]

				missing = json.loads(await tools["read_task_artifact"]("demo", "completion"))
				assert "error" in missing

				invalid = json.loads(await tools["read_task_artifact"]("demo", "diary"))
				assert "valid" in invalid
		finally:
			await runtime.close()
