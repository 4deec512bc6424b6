"""
Executor Agent - Authorized actor that evaluates and triggers task execution.

The agent owns:
- A capability profile (authorization limits)
- Execution settings (auto-execute, schedule window, retry policy)
- Runtime execution state (idle/monitoring/executing/paused/error),
  metrics and a bounded error journal
- A lifecycle status (created/configured/active/paused/stopped/error)

Exactly one strategy is linked to each agent.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time as dt_time, timedelta, timezone
from enum import Enum
from typing import Optional, TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..errors import InvalidTransitionError, ValidationError
from ..strategy.task import Task, parse_datetime, utcnow
from .journal import ErrorJournal, ExecutionMetrics, MAX_ERROR_HISTORY

if TYPE_CHECKING:
    from ..strategy.strategy import Strategy

logger = logging.getLogger(__name__)


class AgentStatus(Enum):
    """Agent lifecycle status."""
    CREATED = "created"
    CONFIGURED = "configured"
    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"
    ERROR = "error"


AGENT_TRANSITIONS: dict[AgentStatus, frozenset[AgentStatus]] = {
    AgentStatus.CREATED: frozenset({AgentStatus.CONFIGURED, AgentStatus.STOPPED}),
    AgentStatus.CONFIGURED: frozenset({AgentStatus.ACTIVE, AgentStatus.STOPPED}),
    AgentStatus.ACTIVE: frozenset({AgentStatus.PAUSED, AgentStatus.STOPPED, AgentStatus.ERROR}),
    AgentStatus.PAUSED: frozenset({AgentStatus.ACTIVE, AgentStatus.STOPPED}),
    # Leaving error requires an explicit reset
    AgentStatus.ERROR: frozenset({AgentStatus.ACTIVE, AgentStatus.CONFIGURED, AgentStatus.STOPPED}),
    AgentStatus.STOPPED: frozenset(),
}


class ExecutionStateStatus(Enum):
    """Runtime state within a cycle."""
    IDLE = "idle"
    MONITORING = "monitoring"
    EXECUTING = "executing"
    PAUSED = "paused"
    ERROR = "error"


FREQUENCY_SECONDS = {
    "hourly": 3600,
    "daily": 86400,
    "weekly": 7 * 86400,
    "monthly": 30 * 86400,
}

# Expected duration of one settlement, used for currentTask.expectedCompletion
EXPECTED_TASK_DURATION = timedelta(minutes=5)


@dataclass
class Capabilities:
    """Declarative authorization limits."""
    can_execute_trades: bool = True
    can_manage_portfolio: bool = True
    can_monitor_market: bool = True
    max_transaction_amount: float = 1000.0  # USD
    allowed_tokens: frozenset[str] = field(default_factory=frozenset)
    risk_level: str = "moderate"

    def __post_init__(self):
        self.allowed_tokens = frozenset(self.allowed_tokens)

    def to_dict(self) -> dict:
        return {
            "canExecuteTrades": self.can_execute_trades,
            "canManagePortfolio": self.can_manage_portfolio,
            "canMonitorMarket": self.can_monitor_market,
            "maxTransactionAmount": self.max_transaction_amount,
            "allowedTokens": sorted(self.allowed_tokens),
            "riskLevel": self.risk_level,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'Capabilities':
        data = data or {}
        return cls(
            can_execute_trades=bool(data.get("canExecuteTrades", True)),
            can_manage_portfolio=bool(data.get("canManagePortfolio", True)),
            can_monitor_market=bool(data.get("canMonitorMarket", True)),
            max_transaction_amount=float(data.get("maxTransactionAmount", 1000.0)),
            allowed_tokens=frozenset(data.get("allowedTokens") or []),
            risk_level=data.get("riskLevel") or "moderate",
        )


@dataclass
class RetryPolicy:
    """
    Retry configuration for whatever drives repeated invocation.

    The coordinator never retries on its own; the scheduler consults this
    policy to decide when an agent has failed for good.
    """
    max_retries: int = 3
    retry_delay_ms: int = 300000

    @property
    def retry_delay_seconds(self) -> float:
        return self.retry_delay_ms / 1000.0

    def is_exhausted(self, consecutive_failures: int) -> bool:
        """True once failures exceed the allowed retries."""
        return consecutive_failures > self.max_retries

    def to_dict(self) -> dict:
        return {"maxRetries": self.max_retries, "retryDelay": self.retry_delay_ms}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'RetryPolicy':
        data = data or {}
        return cls(
            max_retries=int(data.get("maxRetries", 3)),
            retry_delay_ms=int(data.get("retryDelay", 300000)),
        )


@dataclass
class ExecutionSchedule:
    """When the scheduler may run cycles for an agent."""
    enabled: bool = False
    frequency: str = "daily"
    window_start: Optional[str] = None  # "09:00"
    window_end: Optional[str] = None    # "17:00"
    timezone: str = "UTC"

    @property
    def interval_seconds(self) -> int:
        return FREQUENCY_SECONDS.get(self.frequency, FREQUENCY_SECONDS["daily"])

    @staticmethod
    def _parse_bound(value: str) -> dt_time:
        try:
            return dt_time.fromisoformat(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid schedule time window bound {value!r}, expected HH:MM")

    def _window_bounds(self) -> tuple[dt_time, dt_time]:
        return self._parse_bound(self.window_start), self._parse_bound(self.window_end)

    def validate(self) -> None:
        """
        Raises:
            ValidationError: If a time window bound is not an HH:MM time
        """
        for bound in (self.window_start, self.window_end):
            if bound:
                self._parse_bound(bound)

    def is_within_window(self, now: Optional[datetime] = None) -> bool:
        """
        Check whether ``now`` falls inside the configured time window.

        Windows that wrap midnight (e.g. 22:00-04:00) are supported. A
        missing bound means the window is open.
        """
        if not self.window_start or not self.window_end:
            return True

        now = now or utcnow()
        tz = timezone.utc
        if self.timezone.upper() != "UTC":
            try:
                tz = ZoneInfo(self.timezone)
            except (ZoneInfoNotFoundError, ValueError):
                logger.warning(f"Unknown schedule timezone {self.timezone!r}, using UTC")

        local = now.astimezone(tz).time()
        start, end = self._window_bounds()
        if start <= end:
            return start <= local <= end
        return local >= start or local <= end

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "frequency": self.frequency,
            "timeWindow": {"start": self.window_start, "end": self.window_end},
            "timezone": self.timezone,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'ExecutionSchedule':
        data = data or {}
        window = data.get("timeWindow") or {}
        return cls(
            enabled=bool(data.get("enabled", False)),
            frequency=data.get("frequency") or "daily",
            window_start=window.get("start"),
            window_end=window.get("end"),
            timezone=data.get("timezone") or "UTC",
        )


@dataclass
class ExecutionSettings:
    """How the agent dispatches ready tasks."""
    auto_execute: bool = False  # Manual approval by default
    schedule: ExecutionSchedule = field(default_factory=ExecutionSchedule)
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    def to_dict(self) -> dict:
        return {
            "autoExecute": self.auto_execute,
            "executionSchedule": self.schedule.to_dict(),
            "retryPolicy": self.retry_policy.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'ExecutionSettings':
        data = data or {}
        return cls(
            auto_execute=bool(data.get("autoExecute", False)),
            schedule=ExecutionSchedule.from_dict(data.get("executionSchedule")),
            retry_policy=RetryPolicy.from_dict(data.get("retryPolicy")),
        )


@dataclass
class CurrentTask:
    """Task currently being executed."""
    task_id: str
    task_type: str
    started_at: datetime
    expected_completion: datetime

    def to_dict(self) -> dict:
        return {
            "taskId": self.task_id,
            "taskType": self.task_type,
            "startedAt": self.started_at.isoformat(),
            "expectedCompletion": self.expected_completion.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CurrentTask':
        return cls(
            task_id=data["taskId"],
            task_type=data.get("taskType") or "",
            started_at=parse_datetime(data.get("startedAt")) or utcnow(),
            expected_completion=parse_datetime(data.get("expectedCompletion")) or utcnow(),
        )


@dataclass
class LastExecution:
    """Summary of the most recent execution attempt."""
    timestamp: datetime
    task_id: str
    success: bool
    details: str = ""

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "taskId": self.task_id,
            "success": self.success,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'LastExecution':
        return cls(
            timestamp=parse_datetime(data.get("timestamp")) or utcnow(),
            task_id=data.get("taskId") or "",
            success=bool(data.get("success", False)),
            details=data.get("details") or "",
        )


@dataclass
class ExecutionState:
    """Runtime execution state, metrics and error journal."""
    status: ExecutionStateStatus = ExecutionStateStatus.IDLE
    current_task: Optional[CurrentTask] = None
    last_execution: Optional[LastExecution] = None
    error_journal: ErrorJournal = field(default_factory=ErrorJournal)
    metrics: ExecutionMetrics = field(default_factory=ExecutionMetrics)

    @property
    def error_history(self) -> list:
        return self.error_journal.entries

    def begin_monitoring(self) -> None:
        self.status = ExecutionStateStatus.MONITORING

    def begin_execution(self, task: Task, now: Optional[datetime] = None) -> None:
        now = now or utcnow()
        self.status = ExecutionStateStatus.EXECUTING
        self.current_task = CurrentTask(
            task_id=task.id,
            task_type=task.task_type.value,
            started_at=now,
            expected_completion=now + EXPECTED_TASK_DURATION,
        )

    def finish_execution(self) -> None:
        """executing -> idle once the attempt's result is recorded."""
        self.status = ExecutionStateStatus.IDLE
        self.current_task = None

    def fail_execution(self) -> None:
        """executing -> error after an exception; clears the current task."""
        self.status = ExecutionStateStatus.ERROR
        self.current_task = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "currentTask": self.current_task.to_dict() if self.current_task else None,
            "lastExecution": self.last_execution.to_dict() if self.last_execution else None,
            "errorHistory": self.error_journal.to_list(),
            "metrics": self.metrics.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict], max_errors: int = MAX_ERROR_HISTORY) -> 'ExecutionState':
        data = data or {}
        current = data.get("currentTask")
        last = data.get("lastExecution")
        return cls(
            status=ExecutionStateStatus(data.get("status") or "idle"),
            current_task=CurrentTask.from_dict(current) if current else None,
            last_execution=LastExecution.from_dict(last) if last else None,
            error_journal=ErrorJournal.from_list(data.get("errorHistory"), max_entries=max_errors),
            metrics=ExecutionMetrics.from_dict(data.get("metrics")),
        )


@dataclass
class ExecutorAgent:
    """
    Executor agent aggregate.

    Removal is a soft delete: ``is_active`` is cleared and the agent is
    stopped, but the record is kept.
    """
    id: str
    name: str
    linked_strategy_id: str
    capabilities: Capabilities = field(default_factory=Capabilities)
    execution_settings: ExecutionSettings = field(default_factory=ExecutionSettings)
    execution_state: ExecutionState = field(default_factory=ExecutionState)
    status: AgentStatus = AgentStatus.CREATED
    description: str = ""
    user_id: Optional[str] = None
    network: str = "sei-evm"
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_active_at: Optional[datetime] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def can_transition_to(self, new_status: AgentStatus) -> bool:
        return new_status in AGENT_TRANSITIONS[self.status]

    def transition_to(self, new_status: AgentStatus) -> None:
        """
        Change lifecycle status.

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        if new_status == self.status:
            return
        if not self.can_transition_to(new_status):
            raise InvalidTransitionError(
                f"Agent {self.id} cannot move from {self.status.value} to {new_status.value}"
            )

        logger.info(f"Agent {self.id}: {self.status.value} -> {new_status.value}")
        self.status = new_status
        self.updated_at = utcnow()

        if new_status == AgentStatus.PAUSED:
            self.execution_state.status = ExecutionStateStatus.PAUSED
        elif new_status == AgentStatus.ACTIVE:
            self.execution_state.status = ExecutionStateStatus.IDLE
            self.execution_state.current_task = None
        elif new_status == AgentStatus.ERROR:
            self.execution_state.status = ExecutionStateStatus.ERROR
            self.execution_state.current_task = None

    def reset(self, target: AgentStatus = AgentStatus.ACTIVE) -> int:
        """
        Manual reset out of the error state.

        Args:
            target: ACTIVE or CONFIGURED

        Returns:
            Number of journal entries marked resolved
        """
        if self.status != AgentStatus.ERROR:
            raise InvalidTransitionError(f"Agent {self.id} is not in error state")
        if target not in (AgentStatus.ACTIVE, AgentStatus.CONFIGURED):
            raise InvalidTransitionError(f"Agent {self.id} cannot reset to {target.value}")

        self.transition_to(target)
        self.execution_state.status = ExecutionStateStatus.IDLE
        self.execution_state.current_task = None
        return self.execution_state.error_journal.resolve_all()

    def deactivate(self) -> None:
        """Soft delete."""
        if self.status != AgentStatus.STOPPED:
            self.transition_to(AgentStatus.STOPPED)
        self.is_active = False
        self.updated_at = utcnow()

    @property
    def is_running(self) -> bool:
        return self.is_active and self.status == AgentStatus.ACTIVE

    # -------------------------------------------------------------------------
    # Journal
    # -------------------------------------------------------------------------

    def record_attempt(
        self,
        task_id: str,
        success: bool,
        details: str = "",
        error: Optional[str] = None,
        execution_time_ms: int = 0,
        now: Optional[datetime] = None,
    ) -> None:
        """Update metrics, last execution and (on failure) the error journal."""
        now = now or utcnow()
        self.execution_state.metrics.record(success, execution_time_ms, now)
        self.execution_state.last_execution = LastExecution(
            timestamp=now, task_id=task_id, success=success, details=details,
        )
        if not success:
            self.execution_state.error_journal.record(task_id, error or details or "execution failed", now)
        self.last_active_at = now
        self.updated_at = now

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def for_strategy(
        cls,
        strategy: 'Strategy',
        budget_fraction: float = 0.1,
        network: str = "sei-evm",
        retry_policy: Optional[RetryPolicy] = None,
        name: Optional[str] = None,
    ) -> 'ExecutorAgent':
        """
        Derive an agent profile from a strategy.

        Per-transaction cap is ``budget * budget_fraction``; allowed tokens
        are the tokens the strategy's tasks reference. Auto-execute starts
        disabled.
        """
        return cls(
            id=str(uuid.uuid4()),
            name=name or f"Executor - {strategy.name or strategy.primary_strategy}",
            description=f"Automated execution agent for {strategy.primary_strategy} strategy",
            linked_strategy_id=strategy.id,
            user_id=strategy.user_id,
            network=network,
            capabilities=Capabilities(
                max_transaction_amount=strategy.budget * budget_fraction,
                allowed_tokens=frozenset(strategy.token_symbols()),
                risk_level=strategy.risk_tolerance,
            ),
            execution_settings=ExecutionSettings(
                auto_execute=False,
                schedule=ExecutionSchedule(enabled=True, frequency=strategy.frequency),
                retry_policy=retry_policy or RetryPolicy(),
            ),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "userId": self.user_id,
            "linkedStrategyId": self.linked_strategy_id,
            "network": self.network,
            "capabilities": self.capabilities.to_dict(),
            "executionSettings": self.execution_settings.to_dict(),
            "executionState": self.execution_state.to_dict(),
            "status": self.status.value,
            "isActive": self.is_active,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "lastActiveAt": self.last_active_at.isoformat() if self.last_active_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict, max_errors: int = MAX_ERROR_HISTORY) -> 'ExecutorAgent':
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            description=data.get("description") or "",
            user_id=data.get("userId"),
            linked_strategy_id=str(data["linkedStrategyId"]),
            network=data.get("network") or "sei-evm",
            capabilities=Capabilities.from_dict(data.get("capabilities")),
            execution_settings=ExecutionSettings.from_dict(data.get("executionSettings")),
            execution_state=ExecutionState.from_dict(data.get("executionState"), max_errors=max_errors),
            status=AgentStatus(data.get("status") or "created"),
            is_active=bool(data.get("isActive", True)),
            created_at=parse_datetime(data.get("createdAt")) or utcnow(),
            updated_at=parse_datetime(data.get("updatedAt")) or utcnow(),
            last_active_at=parse_datetime(data.get("lastActiveAt")),
        )
