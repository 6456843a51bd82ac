"""
Task Store - SQLite-backed task persistence.

Tasks are saved after every transition so a task waiting at an approval
gate survives a process restart. Tasks are never deleted.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import aiosqlite

from .models import Task, TaskStatus

logger = logging.getLogger(__name__)


class TaskStore:
	"""
	SQLite-backed task storage.

	Usage:
		store = TaskStore("data/tasks.db")
		await store.init()

		task_id = await store.reserve_id("demo")
		await store.save(task)
		task = await store.get(task_id)
	"""

	def __init__(self, db_path: str):
		"""Initialize the task store."""
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self._db: Optional[aiosqlite.Connection] = None

	async def init(self):
		"""Initialize the database schema."""
		self._db = await aiosqlite.connect(str(self.db_path))
		self._db.row_factory = aiosqlite.Row

		await self._db.execute("""
			CREATE TABLE IF NOT EXISTS tasks (
				id TEXT PRIMARY KEY,
				title TEXT NOT NULL,
				status TEXT NOT NULL,
				data TEXT NOT NULL,
				created_at TEXT NOT NULL,
				updated_at TEXT NOT NULL
			)
		""")

		await self._db.execute("""
			CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)
		""")

		await self._db.commit()
		logger.info(f"Task store initialized: {self.db_path}")

	async def close(self):
		"""Close the database connection."""
		if self._db:
			await self._db.close()
			self._db = None

	async def exists(self, task_id: str) -> bool:
		if not self._db:
			await self.init()

		async with self._db.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,)) as cursor:
			return await cursor.fetchone() is not None

	async def reserve_id(self, slug: str, taken: Optional[set[str]] = None) -> str:
		"""
		Return a task ID based on slug that is not yet stored.

		Args:
			slug: Preferred identifier
			taken: Extra IDs to avoid (tasks created but not yet saved)
		"""
		taken = taken or set()
		candidate = slug
		suffix = 2
		while candidate in taken or await self.exists(candidate):
			candidate = f"{slug}-{suffix}"
			suffix += 1
		return candidate

	async def save(self, task: Task) -> None:
		"""Insert or replace the stored snapshot of a task."""
		if not self._db:
			await self.init()

		task.updated_at = datetime.now().isoformat()
		await self._db.execute(
			"""
			INSERT INTO tasks (id, title, status, data, created_at, updated_at)
			VALUES (?, ?, ?, ?, ?, ?)
			ON CONFLICT(id) DO UPDATE SET
				status = excluded.status,
				data = excluded.data,
				updated_at = excluded.updated_at
			""",
			(
				task.id,
				task.title,
				task.status.value,
				task.model_dump_json(),
				task.created_at,
				task.updated_at,
			)
		)
		await self._db.commit()

	async def get(self, task_id: str) -> Optional[Task]:
		"""Get a task by ID."""
		if not self._db:
			await self.init()

		async with self._db.execute("SELECT data FROM tasks WHERE id = ?", (task_id,)) as cursor:
			row = await cursor.fetchone()

		if not row:
			return None
		return Task.model_validate_json(row["data"])

	async def list(self, status: Optional[TaskStatus] = None) -> list[Task]:
		"""List tasks, most recently updated first."""
		if not self._db:
			await self.init()

		if status:
			query = "SELECT data FROM tasks WHERE status = ? ORDER BY updated_at DESC"
			params: tuple = (status.value,)
		else:
			query = "SELECT data FROM tasks ORDER BY updated_at DESC"
			params = ()

		async with self._db.execute(query, params) as cursor:
			rows = await cursor.fetchall()

		return [Task.model_validate_json(row["data"]) for row in rows]
