"""
Metrics & Error Journal - Per-agent execution statistics and bounded error log.

Every durable execution attempt updates the counters; failed attempts are
appended to a FIFO ring buffer capped at MAX_ERROR_HISTORY entries.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from ..strategy.task import parse_datetime, utcnow

logger = logging.getLogger(__name__)

MAX_ERROR_HISTORY = 50


@dataclass
class ErrorEntry:
    """One recorded execution failure."""
    timestamp: datetime
    task_id: Optional[str]
    error: str
    resolved: bool = False

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "taskId": self.task_id,
            "error": self.error,
            "resolved": self.resolved,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ErrorEntry':
        return cls(
            timestamp=parse_datetime(data.get("timestamp")) or utcnow(),
            task_id=data.get("taskId"),
            error=data.get("error") or "",
            resolved=bool(data.get("resolved", False)),
        )


class ErrorJournal:
    """FIFO ring buffer of execution errors; oldest entries are evicted first."""

    def __init__(
        self,
        entries: Optional[Iterable[ErrorEntry]] = None,
        max_entries: int = MAX_ERROR_HISTORY,
    ):
        self.max_entries = max_entries
        self._entries: deque[ErrorEntry] = deque(entries or [], maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    @property
    def entries(self) -> list[ErrorEntry]:
        return list(self._entries)

    def record(self, task_id: Optional[str], error: str, now: Optional[datetime] = None) -> ErrorEntry:
        """Append an unresolved error, evicting the oldest beyond capacity."""
        entry = ErrorEntry(timestamp=now or utcnow(), task_id=task_id, error=error)
        self._entries.append(entry)
        return entry

    def unresolved(self) -> list[ErrorEntry]:
        return [e for e in self._entries if not e.resolved]

    def resolve_all(self, task_id: Optional[str] = None) -> int:
        """
        Mark errors resolved.

        Args:
            task_id: Only resolve errors for this task (all tasks if None)

        Returns:
            Number of entries newly marked resolved
        """
        count = 0
        for entry in self._entries:
            if entry.resolved:
                continue
            if task_id is not None and entry.task_id != task_id:
                continue
            entry.resolved = True
            count += 1
        return count

    def to_list(self) -> list[dict]:
        return [entry.to_dict() for entry in self._entries]

    @classmethod
    def from_list(cls, data: Optional[list], max_entries: int = MAX_ERROR_HISTORY) -> 'ErrorJournal':
        return cls((ErrorEntry.from_dict(d) for d in data or []), max_entries=max_entries)


@dataclass
class ExecutionMetrics:
    """Derived execution statistics for an agent."""
    total_tasks_executed: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    uptime: float = 0.0  # success percentage
    average_execution_time_ms: float = 0.0
    last_active_at: Optional[datetime] = None

    def record(self, success: bool, execution_time_ms: int = 0, now: Optional[datetime] = None) -> None:
        """
        Count one execution attempt.

        Args:
            success: Whether the attempt succeeded
            execution_time_ms: Attempt latency for the running average
            now: Activity timestamp
        """
        previous_total = self.total_tasks_executed
        self.total_tasks_executed += 1
        if success:
            self.successful_executions += 1
        else:
            self.failed_executions += 1

        self.uptime = self.success_rate()
        self.average_execution_time_ms = (
            (self.average_execution_time_ms * previous_total + execution_time_ms)
            / self.total_tasks_executed
        )
        self.last_active_at = now or utcnow()

    def success_rate(self) -> float:
        """successful / total * 100, or 0 when nothing has run."""
        if self.total_tasks_executed == 0:
            return 0.0
        return self.successful_executions / self.total_tasks_executed * 100

    def to_dict(self) -> dict:
        return {
            "totalTasksExecuted": self.total_tasks_executed,
            "successfulExecutions": self.successful_executions,
            "failedExecutions": self.failed_executions,
            "uptime": self.uptime,
            "averageExecutionTime": self.average_execution_time_ms,
            "lastActiveDate": self.last_active_at.isoformat() if self.last_active_at else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'ExecutionMetrics':
        data = data or {}
        return cls(
            total_tasks_executed=int(data.get("totalTasksExecuted") or 0),
            successful_executions=int(data.get("successfulExecutions") or 0),
            failed_executions=int(data.get("failedExecutions") or 0),
            uptime=float(data.get("uptime") or 0.0),
            average_execution_time_ms=float(data.get("averageExecutionTime") or 0.0),
            last_active_at=parse_datetime(data.get("lastActiveDate")),
        )
