"""
Artifact Store - SQLite-backed append-only document storage.

Features:
- Every write creates a new record, nothing is overwritten
- Deterministic logical paths ({task}/plan.md, {task}/phase-N-preserve.md, {task}/complete.md)
- Latest-wins reads with full history for audit
- Optional mirroring of the latest content to the plan directory on disk
"""

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

import aiosqlite

from ..errors import InvalidRequest, NotFound
from .models import Artifact, ArtifactKind, artifact_path

logger = logging.getLogger(__name__)


class ArtifactStore:
	"""
	Append-only artifact storage.

	Usage:
		store = ArtifactStore("data/artifacts.db")
		await store.init()

		artifact_id = await store.write("demo", ArtifactKind.PLAN, "# Plan", plan_root=Path("plans"))
		content = await store.read("demo", ArtifactKind.PLAN)
		history = await store.list("demo")
	"""

	def __init__(self, db_path: str):
		"""Initialize the artifact store."""
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self._db: Optional[aiosqlite.Connection] = None

	async def init(self):
		"""Initialize the database schema."""
		self._db = await aiosqlite.connect(str(self.db_path))
		self._db.row_factory = aiosqlite.Row

		await self._db.execute("""
			CREATE TABLE IF NOT EXISTS artifacts (
				seq INTEGER PRIMARY KEY AUTOINCREMENT,
				id TEXT UNIQUE NOT NULL,
				task_id TEXT NOT NULL,
				kind TEXT NOT NULL,
				phase_number INTEGER,
				path TEXT NOT NULL,
				content TEXT NOT NULL,
				created_at TEXT NOT NULL,
				supersedes TEXT
			)
		""")

		await self._db.execute("""
			CREATE INDEX IF NOT EXISTS idx_artifacts_task ON artifacts(task_id)
		""")

		await self._db.execute("""
			CREATE INDEX IF NOT EXISTS idx_artifacts_path ON artifacts(path)
		""")

		await self._db.commit()
		logger.info(f"Artifact store initialized: {self.db_path}")

	async def close(self):
		"""Close the database connection."""
		if self._db:
			await self._db.close()
			self._db = None

	@staticmethod
	def _from_row(row: aiosqlite.Row) -> Artifact:
		return Artifact(
			id=row["id"],
			task_id=row["task_id"],
			kind=ArtifactKind(row["kind"]),
			phase_number=row["phase_number"],
			path=row["path"],
			content=row["content"],
			created_at=row["created_at"],
			supersedes=row["supersedes"],
		)

	async def _latest_at(self, path: str) -> Optional[aiosqlite.Row]:
		async with self._db.execute(
			"SELECT * FROM artifacts WHERE path = ? ORDER BY seq DESC LIMIT 1",
			(path,)
		) as cursor:
			return await cursor.fetchone()

	async def write(
		self,
		task_id: str,
		kind: ArtifactKind,
		content: str,
		phase_number: Optional[int] = None,
		plan_root: Optional[Path] = None,
	) -> str:
		"""
		Persist a new artifact.

		Args:
			task_id: Owning task
			kind: Logical kind
			content: Document text
			phase_number: Phase ordinal for phase-level kinds
			plan_root: When given, the content is also written to plan_root/path

		Returns:
			Artifact ID

		Raises:
			InvalidRequest: If the kind and phase number do not fit together
		"""
		if not self._db:
			await self.init()

		try:
			path = artifact_path(task_id, kind, phase_number)
		except ValueError as e:
			raise InvalidRequest(str(e)) from e

		previous = await self._latest_at(path)
		artifact = Artifact(
			id=str(uuid.uuid4())[:12],
			task_id=task_id,
			kind=kind,
			phase_number=phase_number,
			path=path,
			content=content,
			created_at=datetime.now().isoformat(),
			supersedes=previous["id"] if previous else None,
		)

		await self._db.execute(
			"""
			INSERT INTO artifacts (id, task_id, kind, phase_number, path, content, created_at, supersedes)
			VALUES (?, ?, ?, ?, ?, ?, ?, ?)
			""",
			(
				artifact.id,
				artifact.task_id,
				artifact.kind.value,
				artifact.phase_number,
				artifact.path,
				artifact.content,
				artifact.created_at,
				artifact.supersedes,
			)
		)
		await self._db.commit()

		if plan_root is not None:
			target = Path(plan_root) / path
			target.parent.mkdir(parents=True, exist_ok=True)
			target.write_text(content, encoding="utf-8")

		if artifact.supersedes:
			logger.info(f"Wrote artifact {artifact.id} at {path} (supersedes {artifact.supersedes})")
		else:
			logger.info(f"Wrote artifact {artifact.id} at {path}")

		return artifact.id

	async def read(
		self,
		task_id: str,
		kind: ArtifactKind,
		phase_number: Optional[int] = None,
	) -> str:
		"""
		Read the latest content at a logical path.

		Raises:
			NotFound: If nothing has been written there
		"""
		if not self._db:
			await self.init()

		try:
			path = artifact_path(task_id, kind, phase_number)
		except ValueError as e:
			raise InvalidRequest(str(e)) from e

		row = await self._latest_at(path)
		if not row:
			raise NotFound(f"No artifact at {path}")
		return row["content"]

	async def get(self, artifact_id: str) -> Artifact:
		"""Get a single artifact by ID, superseded or not."""
		if not self._db:
			await self.init()

		async with self._db.execute(
			"SELECT * FROM artifacts WHERE id = ?",
			(artifact_id,)
		) as cursor:
			row = await cursor.fetchone()

		if not row:
			raise NotFound(f"Artifact not found: {artifact_id}")
		return self._from_row(row)

	async def list(self, task_id: str) -> list[Artifact]:
		"""
		List every artifact of a task in creation order.

		Superseded artifacts are included.
		"""
		if not self._db:
			await self.init()

		async with self._db.execute(
			"SELECT * FROM artifacts WHERE task_id = ? ORDER BY seq ASC",
			(task_id,)
		) as cursor:
			rows = await cursor.fetchall()

		return [self._from_row(row) for row in rows]
