"""
Strategy module - Strategy/Phase/Task data model and task state machine.
"""

from .task import (
    ExecutionResult,
    Task,
    TaskPriority,
    TaskStatus,
    TaskType,
    TriggerConditions,
    TASK_TRANSITIONS,
    parse_allocation,
)
from .strategy import (
    Phase,
    Strategy,
    StrategyExecutionMetrics,
    StrategyExecutionStatus,
    StrategyStatus,
)

__all__ = [
    # Tasks
    'ExecutionResult',
    'Task',
    'TaskPriority',
    'TaskStatus',
    'TaskType',
    'TriggerConditions',
    'TASK_TRANSITIONS',
    'parse_allocation',
    # Strategies
    'Phase',
    'Strategy',
    'StrategyExecutionMetrics',
    'StrategyExecutionStatus',
    'StrategyStatus',
]
