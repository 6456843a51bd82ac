"""
Instrumentation layer for state machine transitions.

Records every phase and task transition to SQLite for observability,
debugging and post-mortems of halted tasks.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class TransitionEvent:
	"""A single state transition."""
	task_id: str
	from_status: str
	to_status: str
	phase_number: Optional[int] = None  # None for task-level transitions
	detail: str = ""
	timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

	def to_dict(self) -> dict[str, Any]:
		return {
			"task_id": self.task_id,
			"phase_number": self.phase_number,
			"from_status": self.from_status,
			"to_status": self.to_status,
			"detail": self.detail,
			"timestamp": self.timestamp,
		}


@dataclass
class StatusCount:
	"""How often a status was entered."""
	status: str
	count: int
	last_entered: str


class TransitionStore:
	"""SQLite-backed storage for transition events."""

	def __init__(self, db_path: str = ""):
		if not db_path:
			from .config import get_config
			db_path = str(get_config().events_db_path)
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self._ensure_table()

	def _ensure_table(self) -> None:
		"""Create the transitions table if it doesn't exist."""
		with sqlite3.connect(str(self.db_path)) as conn:
			conn.execute("""
				CREATE TABLE IF NOT EXISTS transitions (
					id INTEGER PRIMARY KEY AUTOINCREMENT,
					task_id TEXT NOT NULL,
					phase_number INTEGER,
					from_status TEXT NOT NULL,
					to_status TEXT NOT NULL,
					detail TEXT DEFAULT '',
					timestamp TEXT NOT NULL
				)
			""")
			conn.execute("""
				CREATE INDEX IF NOT EXISTS idx_transitions_task ON transitions(task_id)
			""")

	def _connect(self) -> sqlite3.Connection:
		conn = sqlite3.connect(str(self.db_path))
		conn.row_factory = sqlite3.Row
		return conn

	def record(self, event: TransitionEvent) -> None:
		"""Insert a transition event."""
		with self._connect() as conn:
			conn.execute(
				"""
				INSERT INTO transitions
				(task_id, phase_number, from_status, to_status, detail, timestamp)
				VALUES (?, ?, ?, ?, ?, ?)
				""",
				(
					event.task_id,
					event.phase_number,
					event.from_status,
					event.to_status,
					event.detail,
					event.timestamp,
				),
			)

	def query(
		self,
		task_id: Optional[str] = None,
		phase_number: Optional[int] = None,
		limit: int = 200,
	) -> list[TransitionEvent]:
		"""Query transitions in the order they happened."""
		conditions: list[str] = []
		params: list[Any] = []

		if task_id:
			conditions.append("task_id = ?")
			params.append(task_id)
		if phase_number is not None:
			conditions.append("phase_number = ?")
			params.append(phase_number)

		where = " AND ".join(conditions) if conditions else "1=1"

		with self._connect() as conn:
			cursor = conn.execute(
				f"SELECT * FROM transitions WHERE {where} ORDER BY id ASC LIMIT ?",
				[*params, limit],
			)
			rows = cursor.fetchall()

		return [
			TransitionEvent(
				task_id=row["task_id"],
				phase_number=row["phase_number"],
				from_status=row["from_status"],
				to_status=row["to_status"],
				detail=row["detail"],
				timestamp=row["timestamp"],
			)
			for row in rows
		]

	def status_counts(self, task_id: Optional[str] = None) -> list[StatusCount]:
		"""How often each status was entered, most frequent first."""
		where = "WHERE task_id = ?" if task_id else ""
		params = [task_id] if task_id else []
		with self._connect() as conn:
			cursor = conn.execute(
				f"""
				SELECT to_status, COUNT(*) as count, MAX(timestamp) as last_entered
				FROM transitions {where}
				GROUP BY to_status
				ORDER BY count DESC
				""",
				params,
			)
			rows = cursor.fetchall()

		return [
			StatusCount(status=row["to_status"], count=row["count"], last_entered=row["last_entered"])
			for row in rows
		]


# Global store singleton
_store: Optional[TransitionStore] = None


def get_transition_store(db_path: str = "") -> TransitionStore:
	"""Get or create the global transition store."""
	global _store
	if _store is None:
		_store = TransitionStore(db_path)
	return _store
