"""
Approval Queue - Ready tasks awaiting manual approval.

Agents without auto-execute enqueue ready, authorized tasks here instead of
executing them. Entries are unique per (agent, task) and removed atomically
by id, so two approvers cannot both claim the same entry.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from ..strategy.task import TaskPriority, parse_datetime, utcnow

if TYPE_CHECKING:
    from ..data.database import DatabasePool

logger = logging.getLogger(__name__)


@dataclass
class QueueEntry:
    """A task waiting for approval."""
    agent_id: str
    task_id: str
    priority: TaskPriority = TaskPriority.MEDIUM
    queued_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agentId": self.agent_id,
            "taskId": self.task_id,
            "queuedAt": self.queued_at.isoformat(),
            "priority": self.priority.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'QueueEntry':
        return cls(
            id=str(data["id"]),
            agent_id=data["agentId"],
            task_id=data["taskId"],
            queued_at=parse_datetime(data.get("queuedAt")) or utcnow(),
            priority=TaskPriority(data.get("priority") or "medium"),
        )


def _queue_order(entry: QueueEntry) -> tuple:
    return (-entry.priority.rank, entry.queued_at)


class ApprovalQueue(ABC):
    """Injected queue abstraction shared by coordinator instances."""

    @abstractmethod
    async def enqueue(self, entry: QueueEntry) -> QueueEntry:
        """
        Add an entry.

        Idempotent per (agent_id, task_id): re-enqueueing returns the
        existing entry unchanged.
        """

    @abstractmethod
    async def dequeue(self, entry_id: str) -> Optional[QueueEntry]:
        """Atomically remove and return an entry; None if already taken."""

    @abstractmethod
    async def list_by_agent(self, agent_id: str) -> list[QueueEntry]:
        """Entries for an agent, highest priority first, then oldest."""

    async def remove_task(self, agent_id: str, task_id: str) -> Optional[QueueEntry]:
        """Drop the entry for a task, if queued."""
        for entry in await self.list_by_agent(agent_id):
            if entry.task_id == task_id:
                return await self.dequeue(entry.id)
        return None


class InMemoryApprovalQueue(ApprovalQueue):
    """Single-process queue guarded by an asyncio lock."""

    def __init__(self):
        self._entries: dict[str, QueueEntry] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def enqueue(self, entry: QueueEntry) -> QueueEntry:
        async with self._lock:
            for existing in self._entries.values():
                if existing.agent_id == entry.agent_id and existing.task_id == entry.task_id:
                    return existing
            self._entries[entry.id] = entry
            logger.info(f"Queued task {entry.task_id} for approval (agent {entry.agent_id})")
            return entry

    async def dequeue(self, entry_id: str) -> Optional[QueueEntry]:
        async with self._lock:
            return self._entries.pop(entry_id, None)

    async def list_by_agent(self, agent_id: str) -> list[QueueEntry]:
        async with self._lock:
            entries = [e for e in self._entries.values() if e.agent_id == agent_id]
        return sorted(entries, key=_queue_order)


QUEUE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS approval_queue (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
    task_id TEXT NOT NULL,
    priority TEXT NOT NULL,
    queued_at TIMESTAMPTZ NOT NULL,
    UNIQUE (agent_id, task_id)
);

CREATE INDEX IF NOT EXISTS idx_approval_queue_agent ON approval_queue (agent_id);
"""


class PostgresApprovalQueue(ApprovalQueue):
    """
    PostgreSQL-backed queue.

    ``ON CONFLICT DO NOTHING`` keeps enqueue idempotent; ``DELETE ... RETURNING``
    makes dequeue atomic across processes.
    """

    def __init__(self, db: 'DatabasePool'):
        self.db = db

    async def ensure_schema(self) -> None:
        await self.db.execute(QUEUE_SCHEMA_SQL)

    @staticmethod
    def _row_to_entry(row) -> QueueEntry:
        return QueueEntry(
            id=row['id'],
            agent_id=row['agent_id'],
            task_id=row['task_id'],
            priority=TaskPriority(row['priority']),
            queued_at=parse_datetime(row['queued_at']),
        )

    async def enqueue(self, entry: QueueEntry) -> QueueEntry:
        await self.db.execute(
            """
            INSERT INTO approval_queue (id, agent_id, task_id, priority, queued_at)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (agent_id, task_id) DO NOTHING
            """,
            entry.id, entry.agent_id, entry.task_id, entry.priority.value, entry.queued_at,
        )
        row = await self.db.fetchrow(
            "SELECT * FROM approval_queue WHERE agent_id = $1 AND task_id = $2",
            entry.agent_id, entry.task_id,
        )
        stored = self._row_to_entry(row) if row else entry
        if stored.id == entry.id:
            logger.info(f"Queued task {entry.task_id} for approval (agent {entry.agent_id})")
        return stored

    async def dequeue(self, entry_id: str) -> Optional[QueueEntry]:
        row = await self.db.fetchrow(
            "DELETE FROM approval_queue WHERE id = $1 RETURNING *", entry_id
        )
        return self._row_to_entry(row) if row else None

    async def list_by_agent(self, agent_id: str) -> list[QueueEntry]:
        rows = await self.db.fetch(
            "SELECT * FROM approval_queue WHERE agent_id = $1", agent_id
        )
        return sorted((self._row_to_entry(r) for r in rows), key=_queue_order)
