"""Artifact models - immutable documents persisted for each task."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ArtifactKind(str, Enum):
	"""Logical kind of a persisted document."""
	PLAN = "plan"
	PRESERVATION = "preservation"
	COMPLETION = "completion"

	@property
	def is_phase_level(self) -> bool:
		return self == ArtifactKind.PRESERVATION


class Artifact(BaseModel):
	"""
	A persisted document.

	Artifacts are never mutated. A second write at the same logical path
	creates a new artifact whose `supersedes` points at the previous one.
	"""
	model_config = ConfigDict(frozen=True)

	id: str
	task_id: str
	kind: ArtifactKind
	phase_number: Optional[int] = Field(default=None)
	path: str = Field(description="Logical path relative to the plan root")
	content: str
	created_at: str = Field(default_factory=lambda: datetime.now().isoformat())
	supersedes: Optional[str] = Field(default=None, description="Artifact replaced at the same path")


def artifact_path(task_id: str, kind: ArtifactKind, phase_number: Optional[int] = None) -> str:
	"""
	Deterministic logical path for an artifact.

	Raises:
		ValueError: If a phase-level kind lacks a phase number or a
			task-level kind carries one.
	"""
	if kind.is_phase_level:
		if phase_number is None or phase_number < 1:
			raise ValueError(f"{kind.value} artifacts require a phase number >= 1")
		return f"{task_id}/phase-{phase_number}-preserve.md"

	if phase_number is not None:
		raise ValueError(f"{kind.value} artifacts are task-level and take no phase number")
	if kind == ArtifactKind.PLAN:
		return f"{task_id}/plan.md"
	return f"{task_id}/complete.md"
