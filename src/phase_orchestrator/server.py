"""phase-orchestrator MCP server."""

from mcp.server.fastmcp import FastMCP

from .config import get_config
from .logging_config import setup_logging
from .tools import register_all_tools

config = get_config()
setup_logging(log_dir=config.log_dir)

mcp = FastMCP("phase-orchestrator")
register_all_tools(mcp, config)
