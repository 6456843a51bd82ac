"""MCP tool registration - modular tool definitions."""

import logging

from mcp.server.fastmcp import FastMCP

from ..config import Config
from .artifacts import register_artifact_tools
from .tasks import register_task_tools

logger = logging.getLogger(__name__)


def register_all_tools(mcp: FastMCP, config: Config) -> None:
	"""Register all MCP tools."""
	register_task_tools(mcp, config)
	register_artifact_tools(mcp, config)
	logger.debug("Registered task and artifact tools")
