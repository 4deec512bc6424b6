"""
Task model - Atomic unit of work inside a strategy phase.

Contains:
- TaskType / TaskPriority / TaskStatus enums
- TriggerConditions gating task readiness
- ExecutionResult recorded on executed/failed transitions
- Task with a monotonic status state machine
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from ..errors import InvalidTransitionError

logger = logging.getLogger(__name__)


class TaskType(Enum):
    """Kinds of actionable work a strategy can contain."""
    BUY = "BUY"
    SELL = "SELL"
    SWAP = "SWAP"
    STAKE = "STAKE"
    MONITOR = "MONITOR"
    REBALANCE = "REBALANCE"
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"
    DCA = "DCA"


class TaskPriority(Enum):
    """Task priority. Higher rank runs first."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.HIGH: 3,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 1,
}


class TaskStatus(Enum):
    """Task lifecycle status."""
    PENDING = "pending"
    SCHEDULED = "scheduled"      # Held for a later slot, not evaluated
    EXECUTED = "executed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    TaskStatus.EXECUTED,
    TaskStatus.FAILED,
    TaskStatus.CANCELLED,
})

# Allowed status transitions. Terminal states have no outgoing edges.
TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({
        TaskStatus.SCHEDULED,
        TaskStatus.EXECUTED,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
    }),
    TaskStatus.SCHEDULED: frozenset({
        TaskStatus.EXECUTED,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
    }),
    TaskStatus.EXECUTED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

_NUMBER_CLEANUP = re.compile(r'[\s$,]')


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (or pass a datetime through) as aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value)
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_allocation(allocation: Any, budget: Optional[float] = None) -> Optional[float]:
    """
    Parse a task allocation into a numeric amount.

    Accepts plain amounts ("600", "$1,200", 250.0) and percentages ("10%").
    Percentages resolve against ``budget`` when given, otherwise to the bare
    percentage number.

    Args:
        allocation: Raw allocation value from the plan
        budget: Strategy budget used to resolve percentages

    Returns:
        Amount, or None when no allocation is set

    Raises:
        ValueError: If the allocation is present but not numeric
    """
    if allocation is None:
        return None
    if isinstance(allocation, bool):
        raise ValueError(f"Invalid allocation: {allocation!r}")
    if isinstance(allocation, (int, float)):
        return float(allocation)

    text = _NUMBER_CLEANUP.sub('', str(allocation))
    if not text:
        return None

    if text.endswith('%'):
        pct = float(text[:-1])
        if budget is not None:
            return float(budget) * pct / 100.0
        return pct

    return float(text)


@dataclass
class TriggerConditions:
    """Market predicates gating task readiness."""
    price_above: Optional[float] = None
    price_below: Optional[float] = None
    volume_threshold: Optional[float] = None
    # Informational annotations from the plan, never evaluated
    market_condition: Optional[str] = None
    time_condition: Optional[str] = None

    def is_empty(self) -> bool:
        """True when no evaluable condition is set."""
        return (
            self.price_above is None
            and self.price_below is None
            and self.volume_threshold is None
        )

    def to_dict(self) -> dict:
        data = {
            "priceAbove": self.price_above,
            "priceBelow": self.price_below,
            "volumeThreshold": self.volume_threshold,
            "marketCondition": self.market_condition,
            "timeCondition": self.time_condition,
        }
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'TriggerConditions':
        data = data or {}
        return cls(
            price_above=_optional_float(data.get("priceAbove")),
            price_below=_optional_float(data.get("priceBelow")),
            volume_threshold=_optional_float(data.get("volumeThreshold")),
            market_condition=data.get("marketCondition"),
            time_condition=data.get("timeCondition"),
        )


@dataclass
class ExecutionResult:
    """Result recorded on a task when it reaches executed or failed."""
    success: bool
    amount_executed: float = 0.0
    price_executed: float = 0.0
    gas_used: float = 0.0
    transaction_hash: Optional[str] = None
    error_message: Optional[str] = None
    simulated: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "transactionHash": self.transaction_hash,
            "amountExecuted": self.amount_executed,
            "priceExecuted": self.price_executed,
            "gasUsed": self.gas_used,
            "errorMessage": self.error_message,
            "simulated": self.simulated,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ExecutionResult':
        return cls(
            success=bool(data.get("success", False)),
            transaction_hash=data.get("transactionHash"),
            amount_executed=float(data.get("amountExecuted") or 0.0),
            price_executed=float(data.get("priceExecuted") or 0.0),
            gas_used=float(data.get("gasUsed") or 0.0),
            error_message=data.get("errorMessage"),
            simulated=bool(data.get("simulated", False)),
        )


@dataclass
class Task:
    """
    A single actionable step of a strategy phase.

    Status only moves forward along TASK_TRANSITIONS; executed and failed
    transitions must carry an ExecutionResult.
    """
    id: str
    task_type: TaskType
    token_symbol: Optional[str] = None
    allocation: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    trigger_conditions: TriggerConditions = field(default_factory=TriggerConditions)
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    target_price: Optional[float] = None
    scheduled_for: Optional[datetime] = None
    executed_at: Optional[datetime] = None
    execution_result: Optional[ExecutionResult] = None
    execution_instructions: Optional[str] = None
    sequence: int = 0

    @property
    def is_pending(self) -> bool:
        return self.status == TaskStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def can_transition_to(self, new_status: TaskStatus) -> bool:
        return new_status in TASK_TRANSITIONS[self.status]

    def transition_to(
        self,
        new_status: TaskStatus,
        result: Optional[ExecutionResult] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Move the task to a new status.

        Args:
            new_status: Target status
            result: Execution result (required for executed/failed)
            now: Transition timestamp (defaults to current UTC time)

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        if not self.can_transition_to(new_status):
            raise InvalidTransitionError(
                f"Task {self.id} cannot move from {self.status.value} to {new_status.value}",
                task_id=self.id,
            )

        if new_status in (TaskStatus.EXECUTED, TaskStatus.FAILED):
            if result is None:
                raise InvalidTransitionError(
                    f"Task {self.id} transition to {new_status.value} requires an execution result",
                    task_id=self.id,
                )
            self.execution_result = result
            self.executed_at = now or utcnow()

        logger.debug(f"Task {self.id}: {self.status.value} -> {new_status.value}")
        self.status = new_status

    def allocation_amount(self, budget: Optional[float] = None) -> Optional[float]:
        """Numeric allocation (see parse_allocation)."""
        return parse_allocation(self.allocation, budget)

    def sort_key(self) -> tuple:
        """Ready-queue ordering: priority desc, then creation order."""
        return (-self.priority.rank, self.created_at, self.sequence)

    def to_dict(self) -> dict:
        """Serialize to the plan's camelCase shape."""
        return {
            "taskId": self.id,
            "taskType": self.task_type.value,
            "tokenSymbol": self.token_symbol,
            "targetPrice": self.target_price,
            "allocation": self.allocation,
            "priority": self.priority.value,
            "triggerConditions": self.trigger_conditions.to_dict(),
            "executionInstructions": self.execution_instructions,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "scheduledFor": self.scheduled_for.isoformat() if self.scheduled_for else None,
            "executedAt": self.executed_at.isoformat() if self.executed_at else None,
            "executionResult": self.execution_result.to_dict() if self.execution_result else None,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Task':
        """
        Build a task from a plan dictionary.

        Missing id, createdAt or status are left for prepare_tasks to fill
        in; here they default to empty id, now and pending.
        """
        allocation = data.get("allocation")
        result = data.get("executionResult")
        return cls(
            id=data.get("taskId") or "",
            task_type=TaskType(str(data["taskType"]).upper()),
            token_symbol=data.get("tokenSymbol"),
            allocation=str(allocation) if allocation is not None else None,
            priority=TaskPriority(data.get("priority") or "medium"),
            trigger_conditions=TriggerConditions.from_dict(data.get("triggerConditions")),
            status=TaskStatus(data.get("status") or "pending"),
            created_at=parse_datetime(data.get("createdAt")) or utcnow(),
            target_price=_optional_float(data.get("targetPrice")),
            scheduled_for=parse_datetime(data.get("scheduledFor")),
            executed_at=parse_datetime(data.get("executedAt")),
            execution_result=ExecutionResult.from_dict(result) if result else None,
            execution_instructions=data.get("executionInstructions"),
            sequence=int(data.get("sequence") or 0),
        )


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)
