"""Artifacts module - Append-only plan, preservation and completion documents."""

from .models import Artifact, ArtifactKind, artifact_path
from .store import ArtifactStore

__all__ = [
	"Artifact",
	"ArtifactKind",
	"ArtifactStore",
	"artifact_path",
]
