"""
StratAgent Agents Module.

Contains the executor agent aggregate and its bookkeeping:
- ExecutorAgent: Capability profile, execution settings and lifecycle status
- ExecutionState: Runtime state within a cycle
- ErrorJournal / ExecutionMetrics: Bounded error history and statistics
"""

from .journal import ErrorEntry, ErrorJournal, ExecutionMetrics, MAX_ERROR_HISTORY
from .executor_agent import (
    AgentStatus,
    AGENT_TRANSITIONS,
    Capabilities,
    CurrentTask,
    ExecutionSchedule,
    ExecutionSettings,
    ExecutionState,
    ExecutionStateStatus,
    ExecutorAgent,
    LastExecution,
    RetryPolicy,
)

__all__ = [
    'ErrorEntry',
    'ErrorJournal',
    'ExecutionMetrics',
    'MAX_ERROR_HISTORY',
    'AgentStatus',
    'AGENT_TRANSITIONS',
    'Capabilities',
    'CurrentTask',
    'ExecutionSchedule',
    'ExecutionSettings',
    'ExecutionState',
    'ExecutionStateStatus',
    'ExecutorAgent',
    'LastExecution',
    'RetryPolicy',
]
