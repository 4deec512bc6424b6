"""
Strategy model - Multi-phase plan of investment tasks.

A Strategy owns an ordered list of Phases, each owning an ordered list of
Tasks. Strategies are versioned: superseding a strategy archives it rather
than deleting it.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Iterator, Optional

from .task import Task, TaskStatus, parse_datetime, utcnow

logger = logging.getLogger(__name__)


class StrategyExecutionStatus(Enum):
    """Execution progress of a strategy's action plan."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PAUSED = "paused"
    FAILED = "failed"


class StrategyStatus(Enum):
    """Strategy document lifecycle."""
    GENERATED = "generated"
    APPLIED = "applied"
    MODIFIED = "modified"
    ARCHIVED = "archived"


@dataclass
class Phase:
    """Named, ordered group of tasks with an expected duration."""
    phase_number: int
    name: str = ""
    duration: Optional[str] = None  # e.g. "2 weeks"
    tasks: list[Task] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "phaseNumber": self.phase_number,
            "phaseName": self.name,
            "duration": self.duration,
            "tasks": [task.to_dict() for task in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: dict, default_number: int = 1) -> 'Phase':
        return cls(
            phase_number=int(data.get("phaseNumber") or default_number),
            name=data.get("phaseName") or "",
            duration=data.get("duration"),
            tasks=[Task.from_dict(t) for t in data.get("tasks") or []],
        )


@dataclass
class StrategyExecutionMetrics:
    """Counters derived from task statuses."""
    tasks_total: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    tasks_cancelled: int = 0
    tasks_pending: int = 0
    last_execution_date: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "tasksTotal": self.tasks_total,
            "tasksCompleted": self.tasks_completed,
            "tasksFailed": self.tasks_failed,
            "tasksCancelled": self.tasks_cancelled,
            "tasksPending": self.tasks_pending,
            "lastExecutionDate": (
                self.last_execution_date.isoformat() if self.last_execution_date else None
            ),
        }


@dataclass
class Strategy:
    """
    Multi-phase investment plan.

    Task status is mutated only through the execution coordinator; the
    strategy derives its execution metrics and status from its tasks.
    """
    id: str
    name: str
    budget: float
    risk_tolerance: str = "moderate"
    phases: list[Phase] = field(default_factory=list)
    execution_status: StrategyExecutionStatus = StrategyExecutionStatus.NOT_STARTED
    status: StrategyStatus = StrategyStatus.GENERATED
    primary_strategy: str = "custom"
    frequency: str = "daily"
    user_id: Optional[str] = None
    executor_agent_id: Optional[str] = None
    version: int = 1
    parent_strategy_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    # -------------------------------------------------------------------------
    # Task access
    # -------------------------------------------------------------------------

    def iter_tasks(self) -> Iterator[Task]:
        for phase in self.phases:
            yield from phase.tasks

    def find_task(self, task_id: str) -> Optional[Task]:
        for task in self.iter_tasks():
            if task.id == task_id:
                return task
        return None

    def pending_tasks(self) -> list[Task]:
        return [task for task in self.iter_tasks() if task.is_pending]

    def token_symbols(self) -> list[str]:
        """Token symbols referenced by tasks, in first-seen order."""
        symbols: list[str] = []
        for task in self.iter_tasks():
            if task.token_symbol and task.token_symbol not in symbols:
                symbols.append(task.token_symbol)
        return symbols

    def prepare_tasks(self, now: Optional[datetime] = None) -> None:
        """
        Make every task executable-ready.

        Assigns ``task_<uuid>`` ids where missing and records plan order
        in ``sequence`` for creation-order tie breaks.
        """
        now = now or utcnow()
        for index, task in enumerate(self.iter_tasks()):
            if not task.id:
                task.id = f"task_{uuid.uuid4()}"
            if task.created_at is None:
                task.created_at = now
            task.sequence = index
        self.updated_at = now

    # -------------------------------------------------------------------------
    # Derived state
    # -------------------------------------------------------------------------

    @property
    def execution_metrics(self) -> StrategyExecutionMetrics:
        metrics = StrategyExecutionMetrics()
        for task in self.iter_tasks():
            metrics.tasks_total += 1
            if task.status == TaskStatus.EXECUTED:
                metrics.tasks_completed += 1
            elif task.status == TaskStatus.FAILED:
                metrics.tasks_failed += 1
            elif task.status == TaskStatus.CANCELLED:
                metrics.tasks_cancelled += 1
            else:
                metrics.tasks_pending += 1
            if task.executed_at and (
                metrics.last_execution_date is None
                or task.executed_at > metrics.last_execution_date
            ):
                metrics.last_execution_date = task.executed_at
        return metrics

    def refresh_execution_status(self) -> StrategyExecutionStatus:
        """
        Recompute execution status from task statuses.

        Paused strategies stay paused until resumed.
        """
        if self.execution_status == StrategyExecutionStatus.PAUSED:
            return self.execution_status

        metrics = self.execution_metrics
        attempted = metrics.tasks_completed + metrics.tasks_failed + metrics.tasks_cancelled

        if metrics.tasks_pending > 0:
            new_status = (
                StrategyExecutionStatus.IN_PROGRESS if attempted
                else StrategyExecutionStatus.NOT_STARTED
            )
        elif metrics.tasks_total == 0:
            new_status = StrategyExecutionStatus.NOT_STARTED
        elif metrics.tasks_completed > 0:
            new_status = StrategyExecutionStatus.COMPLETED
        else:
            new_status = StrategyExecutionStatus.FAILED

        if new_status != self.execution_status:
            logger.info(
                f"Strategy {self.id} execution status: "
                f"{self.execution_status.value} -> {new_status.value}"
            )
            self.execution_status = new_status
        return self.execution_status

    def pause(self) -> None:
        self.execution_status = StrategyExecutionStatus.PAUSED

    def resume(self) -> None:
        if self.execution_status == StrategyExecutionStatus.PAUSED:
            # Drop the sticky pause, then derive the real status
            self.execution_status = StrategyExecutionStatus.IN_PROGRESS
            self.refresh_execution_status()

    # -------------------------------------------------------------------------
    # Versioning
    # -------------------------------------------------------------------------

    def mark_applied(self) -> None:
        self.status = StrategyStatus.APPLIED

    def create_new_version(self, phases: list[Phase], **changes) -> 'Strategy':
        """
        Supersede this strategy with a new version.

        The current strategy is archived; the successor links back through
        ``parent_strategy_id``.
        """
        now = utcnow()
        successor = replace(
            self,
            id=changes.pop("id", None) or str(uuid.uuid4()),
            phases=phases,
            version=self.version + 1,
            parent_strategy_id=self.id,
            status=StrategyStatus.MODIFIED,
            execution_status=StrategyExecutionStatus.NOT_STARTED,
            executor_agent_id=None,
            created_at=now,
            updated_at=now,
            **changes,
        )
        successor.prepare_tasks(now)
        self.status = StrategyStatus.ARCHIVED
        self.updated_at = now
        logger.info(f"Strategy {self.id} archived, superseded by {successor.id} (v{successor.version})")
        return successor

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agentName": self.name,
            "userId": self.user_id,
            "primaryStrategy": self.primary_strategy,
            "riskTolerance": self.risk_tolerance,
            "defaultBudget": self.budget,
            "frequency": self.frequency,
            "actionPlan": {"phases": [phase.to_dict() for phase in self.phases]},
            "executionStatus": self.execution_status.value,
            "executionMetrics": self.execution_metrics.to_dict(),
            "status": self.status.value,
            "executorAgentId": self.executor_agent_id,
            "version": self.version,
            "parentStrategyId": self.parent_strategy_id,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Strategy':
        plan = data.get("actionPlan") or {}
        phases = [
            Phase.from_dict(p, default_number=i + 1)
            for i, p in enumerate(plan.get("phases") or [])
        ]
        return cls(
            id=str(data.get("id") or data.get("_id") or uuid.uuid4()),
            name=data.get("agentName") or data.get("name") or "",
            user_id=data.get("userId"),
            primary_strategy=data.get("primaryStrategy") or "custom",
            risk_tolerance=data.get("riskTolerance") or "moderate",
            budget=float(data.get("defaultBudget") or data.get("budget") or 0.0),
            frequency=data.get("frequency") or "daily",
            phases=phases,
            execution_status=StrategyExecutionStatus(data.get("executionStatus") or "not_started"),
            status=StrategyStatus(data.get("status") or "generated"),
            executor_agent_id=data.get("executorAgentId"),
            version=int(data.get("version") or 1),
            parent_strategy_id=data.get("parentStrategyId"),
            created_at=parse_datetime(data.get("createdAt")) or utcnow(),
            updated_at=parse_datetime(data.get("updatedAt")) or utcnow(),
        )
