"""
Claude CLI Handler - Serves capabilities through `claude --print`.

Each call is an independent subprocess: the capability's persona goes in
as the system prompt, the request's instructions and context as the
prompt. Timeouts are enforced by the dispatcher; a cancelled call kills
its subprocess.
"""

import asyncio
import logging
import os
from typing import Optional

from ..errors import DispatchError
from ..tasks.models import CapabilityRequest
from .capabilities import CapabilityRegistry

logger = logging.getLogger(__name__)


def build_prompt(request: CapabilityRequest) -> str:
	"""Render a capability request as a single prompt."""
	parts = [request.instructions.strip()]
	if request.context:
		parts.append("")
		parts.append("Context:")
		parts.extend(f"- {item}" for item in request.context)
	return "\n".join(parts)


class ClaudeCliHandler:
	"""
	Capability handler backed by the Claude Code CLI in print mode.

	Register one instance as the registry's default handler; the persona is
	looked up per request from the registry.
	"""

	def __init__(
		self,
		registry: CapabilityRegistry,
		project_path: str = ".",
		model: str = "opus",
		executable: str = "claude",
		skip_permissions: bool = False,
	):
		self.registry = registry
		self.project_path = os.path.expanduser(project_path)
		self.model = model
		self.executable = executable
		self.skip_permissions = skip_permissions

	def command(self, request: CapabilityRequest) -> list[str]:
		"""Build the argv for one request."""
		capability = self.registry.get(request.capability)
		argv = [self.executable, "--print", "--model", self.model]
		if capability.system_prompt:
			argv.extend(["--append-system-prompt", capability.system_prompt])
		if self.skip_permissions and capability.mutating:
			argv.append("--dangerously-skip-permissions")
		argv.append(build_prompt(request))
		return argv

	async def __call__(self, request: CapabilityRequest) -> str:
		"""
		Run a request and return Claude's response text.

		Raises:
			DispatchError: If the CLI is missing or exits with an error
		"""
		argv = self.command(request)
		logger.info(f"Running {request.capability} via claude CLI ({len(argv[-1])} chars)")

		try:
			process = await asyncio.create_subprocess_exec(
				*argv,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
				cwd=self.project_path,
			)
		except FileNotFoundError as exc:
			raise DispatchError(
				"Claude CLI not found. Is it installed?",
				capability=request.capability,
				retriable=False,
			) from exc

		stdout: Optional[bytes] = None
		stderr: Optional[bytes] = None
		try:
			stdout, stderr = await process.communicate()
		except asyncio.CancelledError:
			process.kill()
			await process.wait()
			raise

		stdout_text = stdout.decode(errors="replace") if stdout else ""
		stderr_text = stderr.decode(errors="replace") if stderr else ""

		if process.returncode != 0:
			error_msg = stderr_text.strip() or f"Exit code {process.returncode}"
			logger.error(f"Claude CLI error for {request.capability}: {error_msg}")
			raise DispatchError(f"Claude CLI failed: {error_msg}", capability=request.capability)

		logger.info(f"Response received from {request.capability} ({len(stdout_text)} chars)")
		return stdout_text
