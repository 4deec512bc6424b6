"""
Error taxonomy for strategy execution.

Per-task errors (authorization, conditions, data, settlement) are raised by
the coordinator's checks and by settlement backends, and converted into
outcome entries before they leave the coordinator. Agent-level and
infrastructure errors (validation of ids, persistence) propagate to the
caller.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Outcome classification mirroring the exception hierarchy."""
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    CONDITION_NOT_MET = "condition_not_met"
    DATA_UNAVAILABLE = "data_unavailable"
    SETTLEMENT = "settlement"
    PERSISTENCE = "persistence"
    CONFLICT = "conflict"


class StratAgentError(Exception):
    """Base class for all execution core errors."""
    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, task_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.task_id = task_id


class ValidationError(StratAgentError):
    """Bad or missing identifier, or a request that cannot apply to the target."""
    kind = ErrorKind.VALIDATION


class InvalidTransitionError(ValidationError):
    """Raised when a status transition is not allowed by the state machine."""
    pass


class AuthorizationError(StratAgentError):
    """Capability, allowlist or amount limit violation. Task stays pending."""
    kind = ErrorKind.AUTHORIZATION


class ConditionNotMetError(StratAgentError):
    """Trigger conditions unsatisfied. Task stays pending."""
    kind = ErrorKind.CONDITION_NOT_MET


class DataUnavailableError(StratAgentError):
    """Market data missing for the task's token. Retried on the next cycle."""
    kind = ErrorKind.DATA_UNAVAILABLE


class SettlementError(StratAgentError):
    """Execution attempt failed. Task transitions to failed."""
    kind = ErrorKind.SETTLEMENT


class PersistenceError(StratAgentError):
    """Store failure. Fatal to the current call."""
    kind = ErrorKind.PERSISTENCE
