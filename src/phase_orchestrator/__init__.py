"""phase-orchestrator: phased subagent orchestration with human approval gates."""

__version__ = "0.1.0"
