"""
Condition Evaluator - Deterministic trigger checks against a market snapshot.

Pure functions, no I/O. All present conditions must hold (logical AND).
A token missing from the snapshot fails closed.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from ..data.market_data import MarketSnapshot, TokenQuote
from ..errors import ErrorKind
from ..strategy.task import Task, TriggerConditions

logger = logging.getLogger(__name__)


REASON_NO_CONDITIONS = "No conditions specified"
REASON_DATA_UNAVAILABLE = "Token data not available"
REASON_ALL_MET = "All conditions met"


@dataclass(frozen=True)
class ConditionCheck:
    """Result of evaluating a task's trigger conditions."""
    can_execute: bool
    reason: str
    data_unavailable: bool = False

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        if self.can_execute:
            return None
        if self.data_unavailable:
            return ErrorKind.DATA_UNAVAILABLE
        return ErrorKind.CONDITION_NOT_MET

    def to_dict(self) -> dict:
        return {
            'canExecute': self.can_execute,
            'reason': self.reason,
            'dataUnavailable': self.data_unavailable,
        }


def evaluate(conditions: Optional[TriggerConditions], quote: Optional[TokenQuote]) -> ConditionCheck:
    """
    Evaluate trigger conditions against one token's market data.

    Args:
        conditions: Task trigger conditions (None or empty means always ready)
        quote: Snapshot entry for the task's token, None if absent

    Returns:
        ConditionCheck with the first failing condition as reason
    """
    if conditions is None or conditions.is_empty():
        return ConditionCheck(True, REASON_NO_CONDITIONS)

    if quote is None:
        return ConditionCheck(False, REASON_DATA_UNAVAILABLE, data_unavailable=True)

    price = quote.price_usd

    # Strict comparisons on both price bounds
    if conditions.price_above is not None and not price > conditions.price_above:
        return ConditionCheck(False, f"Price {price} not above {conditions.price_above}")

    if conditions.price_below is not None and not price < conditions.price_below:
        return ConditionCheck(False, f"Price {price} not below {conditions.price_below}")

    if conditions.volume_threshold is not None and quote.volume_24h < conditions.volume_threshold:
        return ConditionCheck(
            False,
            f"Volume {quote.volume_24h} below threshold {conditions.volume_threshold}",
        )

    return ConditionCheck(True, REASON_ALL_MET)


class ConditionEvaluator:
    """Applies ``evaluate`` to tasks using a shared per-cycle snapshot."""

    def evaluate_task(self, task: Task, snapshot: MarketSnapshot) -> ConditionCheck:
        quote = snapshot.get(task.token_symbol)
        check = evaluate(task.trigger_conditions, quote)
        if not check.can_execute:
            logger.debug(f"Task {task.id} not ready: {check.reason}")
        return check

    def ready_tasks(self, tasks: Iterable[Task], snapshot: MarketSnapshot) -> list[Task]:
        """
        Filter pending tasks whose conditions hold, in execution order.

        Order is priority (high first), then creation time, then plan order.
        """
        ready = [
            task for task in tasks
            if task.is_pending and self.evaluate_task(task, snapshot).can_execute
        ]
        ready.sort(key=lambda t: t.sort_key())
        return ready
