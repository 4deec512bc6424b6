"""
Orchestration module - Task execution coordination.

- ExecutionCoordinator: Monitor/evaluate/authorize/execute loop per agent
- ApprovalQueue: Tasks awaiting manual approval
- ExecutionScheduler: Timer-driven cycles with retry policy
"""

from .approval_queue import (
    ApprovalQueue,
    InMemoryApprovalQueue,
    PostgresApprovalQueue,
    QueueEntry,
)
from .coordinator import (
    ExecutionCoordinator,
    ExecutionOutcome,
    MonitorResult,
)
from .scheduler import (
    AgentCycle,
    ExecutionScheduler,
    SchedulerState,
)

__all__ = [
    'ApprovalQueue',
    'InMemoryApprovalQueue',
    'PostgresApprovalQueue',
    'QueueEntry',
    'ExecutionCoordinator',
    'ExecutionOutcome',
    'MonitorResult',
    'AgentCycle',
    'ExecutionScheduler',
    'SchedulerState',
]
