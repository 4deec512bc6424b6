"""StratAgent source modules."""

# Re-export commonly used components for convenience
from .errors import (
    ErrorKind,
    StratAgentError,
    ValidationError,
    InvalidTransitionError,
    AuthorizationError,
    ConditionNotMetError,
    DataUnavailableError,
    SettlementError,
    PersistenceError,
)
from .orchestration import ExecutionCoordinator, ExecutionScheduler

__all__ = [
    # Errors
    'ErrorKind',
    'StratAgentError',
    'ValidationError',
    'InvalidTransitionError',
    'AuthorizationError',
    'ConditionNotMetError',
    'DataUnavailableError',
    'SettlementError',
    'PersistenceError',
    # Orchestration
    'ExecutionCoordinator',
    'ExecutionScheduler',
]
