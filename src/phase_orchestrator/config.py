"""Configuration system using platformdirs for cross-platform paths."""

import logging
import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import platformdirs

logger = logging.getLogger(__name__)

APP_NAME = "phase-orchestrator"
APP_AUTHOR = "phase-orchestrator"

DEFAULT_PLAN_ROOT = "plans"
PROJECT_CONFIG_FILE = ".phase-orchestrator.toml"
AGENTS_FILE = "AGENTS.md"

# Matches lines such as "Plans directory: `docs/plans`" or "plan_dir = .plans"
_AGENTS_PLAN_DIR = re.compile(
	r"^\s*[-*]?\s*\**plans?[ _-]?(?:dir|directory|folder|root)\**\s*[:=]\s*`?([^`\s]+)`?",
	re.IGNORECASE,
)


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	tasks_db_path: Path = field(init=False)
	artifacts_db_path: Path = field(init=False)
	events_db_path: Path = field(init=False)
	log_dir: Path = field(init=False)

	# Orchestration settings
	default_plan_root: str = DEFAULT_PLAN_ROOT
	max_revisions: int = 3
	max_concurrency: int = 10
	dispatch_timeout: float = 600.0
	read_only_retries: int = 2
	retry_backoff_seconds: float = 0.5
	stress_test_capabilities: list[str] = field(default_factory=lambda: ["stress-tester"])
	claude_model: str = "opus"

	def __post_init__(self) -> None:
		self.tasks_db_path = self.data_dir / "tasks.db"
		self.artifacts_db_path = self.data_dir / "artifacts.db"
		self.events_db_path = self.data_dir / "events.db"
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class OrchestratorConfig:
	"""Per-task settings resolved once when the task is created."""
	plan_root: Path


def _apply_env_overrides(config: Config) -> Config:
	"""Apply PHASE_ORCHESTRATOR_* environment variable overrides."""
	path_map = {
		"PHASE_ORCHESTRATOR_CONFIG_DIR": "config_dir",
		"PHASE_ORCHESTRATOR_DATA_DIR": "data_dir",
	}
	for env_key, attr in path_map.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, Path(val))

	typed_map = {
		"PHASE_ORCHESTRATOR_PLAN_ROOT": ("default_plan_root", str),
		"PHASE_ORCHESTRATOR_MAX_REVISIONS": ("max_revisions", int),
		"PHASE_ORCHESTRATOR_MAX_CONCURRENCY": ("max_concurrency", int),
		"PHASE_ORCHESTRATOR_DISPATCH_TIMEOUT": ("dispatch_timeout", float),
		"PHASE_ORCHESTRATOR_CLAUDE_MODEL": ("claude_model", str),
	}
	for env_key, (attr, cast) in typed_map.items():
		val = os.getenv(env_key)
		if val:
			try:
				setattr(config, attr, cast(val))
			except ValueError:
				logger.warning(f"Ignoring invalid value for {env_key}: {val!r}")

	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	path_fields = {"config_dir", "data_dir"}
	for key, val in data.items():
		if hasattr(config, key):
			if key in path_fields:
				setattr(config, key, Path(os.path.expanduser(val)))
			else:
				setattr(config, key, val)

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config


def _plan_root_from_project_toml(project: Path) -> str | None:
	toml_path = project / PROJECT_CONFIG_FILE
	if not toml_path.exists():
		return None
	with open(toml_path, "rb") as f:
		data = tomllib.load(f)
	root = data.get("plans", {}).get("root")
	return str(root) if root else None


def _plan_root_from_agents_md(project: Path) -> str | None:
	agents_path = project / AGENTS_FILE
	if not agents_path.exists():
		return None
	for line in agents_path.read_text(encoding="utf-8").splitlines():
		match = _AGENTS_PLAN_DIR.match(line)
		if match:
			return match.group(1).rstrip("/")
	return None


def resolve_orchestrator_config(
	project_path: str | Path = ".",
	config: Config | None = None,
) -> OrchestratorConfig:
	"""
	Resolve the plan directory for a project.

	Lookup order: .phase-orchestrator.toml [plans] root, then a plans
	directory line in AGENTS.md, then the global default. Relative roots
	are anchored at the project path.
	"""
	project = Path(project_path).expanduser().resolve()
	default_root = config.default_plan_root if config else DEFAULT_PLAN_ROOT

	root = _plan_root_from_project_toml(project)
	if root is None:
		root = _plan_root_from_agents_md(project)
	if root is None:
		root = default_root

	plan_root = Path(os.path.expanduser(root))
	if not plan_root.is_absolute():
		plan_root = project / plan_root

	logger.debug(f"Resolved plan root for {project}: {plan_root}")
	return OrchestratorConfig(plan_root=plan_root)


# Singleton
_config: Config | None = None


def get_config() -> Config:
	"""Get or create the global config instance."""
	global _config
	if _config is None:
		_config = load_config()
	return _config
