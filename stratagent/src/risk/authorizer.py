"""
Capability Authorizer - Checks a task against an agent's capability profile.

Each TaskType maps to a TaskTypeRule in TASK_TYPE_RULES; adding a task type
means adding a rule here. Every rule is checked, then the token allowlist and
the per-transaction amount cap. Unparseable allocations are denied.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, TYPE_CHECKING

from ..strategy.task import Task, TaskType, parse_allocation

if TYPE_CHECKING:
    from ..agents.executor_agent import Capabilities

logger = logging.getLogger(__name__)


class TaskCategory(Enum):
    """Capability group a task type belongs to."""
    TRADE = "trade"
    PORTFOLIO = "portfolio"
    MONITOR = "monitor"


@dataclass(frozen=True)
class TaskTypeRule:
    """Authorization requirements for one task type."""
    category: TaskCategory
    requires_trade_permission: bool = False


TASK_TYPE_RULES: dict[TaskType, TaskTypeRule] = {
    TaskType.BUY: TaskTypeRule(TaskCategory.TRADE, requires_trade_permission=True),
    TaskType.SELL: TaskTypeRule(TaskCategory.TRADE, requires_trade_permission=True),
    TaskType.SWAP: TaskTypeRule(TaskCategory.TRADE, requires_trade_permission=True),
    TaskType.STAKE: TaskTypeRule(TaskCategory.PORTFOLIO),
    TaskType.REBALANCE: TaskTypeRule(TaskCategory.PORTFOLIO),
    TaskType.STOP_LOSS: TaskTypeRule(TaskCategory.PORTFOLIO),
    TaskType.TAKE_PROFIT: TaskTypeRule(TaskCategory.PORTFOLIO),
    TaskType.DCA: TaskTypeRule(TaskCategory.PORTFOLIO),
    TaskType.MONITOR: TaskTypeRule(TaskCategory.MONITOR),
}


def rule_for(task_type: TaskType) -> TaskTypeRule:
    """Look up the rule for a task type; unknown types raise KeyError."""
    return TASK_TYPE_RULES[task_type]


def explain(capabilities: 'Capabilities', task: Task, budget: Optional[float] = None) -> list[str]:
    """
    List every rule the task violates.

    Args:
        capabilities: Agent capability profile
        task: Task to check
        budget: Strategy budget for percentage allocations

    Returns:
        Violation messages; empty when the task is authorized
    """
    violations = []

    try:
        rule = rule_for(task.task_type)
    except KeyError:
        return [f"Unsupported task type {task.task_type!r}"]

    if rule.requires_trade_permission and not capabilities.can_execute_trades:
        violations.append(f"Agent cannot execute trades ({task.task_type.value})")

    if task.token_symbol and task.token_symbol not in capabilities.allowed_tokens:
        violations.append(f"Token {task.token_symbol} not in allowed tokens")

    try:
        amount = parse_allocation(task.allocation, budget)
    except ValueError:
        violations.append(f"Unparseable allocation {task.allocation!r}")
    else:
        if amount is not None and amount > capabilities.max_transaction_amount:
            violations.append(
                f"Allocation {amount} exceeds max transaction amount "
                f"{capabilities.max_transaction_amount}"
            )

    return violations


def authorize(capabilities: 'Capabilities', task: Task, budget: Optional[float] = None) -> bool:
    """True when the task passes every capability rule."""
    violations = explain(capabilities, task, budget)
    if violations:
        logger.debug(f"Task {task.id} denied: {'; '.join(violations)}")
        return False
    return True
