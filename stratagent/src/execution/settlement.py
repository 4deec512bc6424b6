"""
Settlement Executors - Carry out (or simulate) a task's on-chain effect.

The coordinator only depends on the SettlementExecutor contract:
- execute(task, context): perform the action, return a SettlementOutcome
- simulate(task, snapshot, budget): dry run, returns an outcome with simulated=True

Signing and broadcasting are outside this package. PaperSettlementExecutor
fills tasks against the cycle's market snapshot with configurable slippage,
gas and fill delay.
"""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..data.market_data import MarketSnapshot
from ..strategy.task import ExecutionResult, Task, TaskType

logger = logging.getLogger(__name__)


@dataclass
class SettlementOutcome:
    """Result of a settlement attempt."""
    success: bool
    transaction_hash: Optional[str] = None
    amount_executed: float = 0.0
    price_executed: float = 0.0
    gas_used: float = 0.0
    error_message: Optional[str] = None
    simulated: bool = False
    execution_time_ms: int = 0

    def to_execution_result(self) -> ExecutionResult:
        return ExecutionResult(
            success=self.success,
            amount_executed=self.amount_executed,
            price_executed=self.price_executed,
            gas_used=self.gas_used,
            transaction_hash=self.transaction_hash,
            error_message=self.error_message,
            simulated=self.simulated,
        )

    def to_dict(self) -> dict:
        data = self.to_execution_result().to_dict()
        data["executionTimeMs"] = self.execution_time_ms
        return data


@dataclass(frozen=True)
class AgentContext:
    """What a settlement executor knows about the acting agent."""
    agent_id: str
    network: str
    strategy_id: str
    budget: Optional[float] = None
    snapshot: Optional[MarketSnapshot] = None


class SettlementExecutor(ABC):
    """Contract for settlement backends."""

    @abstractmethod
    async def execute(self, task: Task, context: AgentContext) -> SettlementOutcome:
        """
        Perform the task's action.

        Raise SettlementError when the backend rejects the action. Any
        exception, including infrastructure failures, is recorded by the
        coordinator as a failed attempt.
        """

    @abstractmethod
    async def simulate(
        self, task: Task, snapshot: MarketSnapshot, budget: Optional[float] = None,
    ) -> SettlementOutcome:
        """
        Dry run without side effects. Returned outcome has simulated=True.

        Percentage allocations resolve against budget, as in execute.
        """


# Buying pays up, selling receives less
_ADVERSE_UP = frozenset({TaskType.BUY, TaskType.DCA, TaskType.STAKE})
_ADVERSE_DOWN = frozenset({TaskType.SELL, TaskType.STOP_LOSS, TaskType.TAKE_PROFIT, TaskType.SWAP})


class PaperSettlementExecutor(SettlementExecutor):
    """
    Simulated settlement for paper runs.

    Fills at the snapshot price (or the task's target price when the token
    has no quote) adjusted by slippage. MONITOR tasks settle without a fill.
    """

    def __init__(self, config: Optional[dict] = None):
        """
        Initialize paper settlement.

        Args:
            config: Execution configuration (from execution.yaml); reads the
                ``paper_settlement`` section:
                - fill_delay_ms: Simulated confirmation latency
                - simulated_slippage_pct: Adverse price move applied to fills
                - gas_used: Gas units reported per fill
        """
        config = config or {}
        paper_config = config.get("paper_settlement", {})
        self.fill_delay_ms = int(paper_config.get("fill_delay_ms", 0))
        self.slippage_pct = float(paper_config.get("simulated_slippage_pct", 0.1))
        self.gas_used = float(paper_config.get("gas_used", 21000))

        self._total_settled = 0
        self._total_failed = 0
        self._stats_lock = asyncio.Lock()

        logger.info(
            f"PaperSettlementExecutor initialized: delay={self.fill_delay_ms}ms, "
            f"slippage={self.slippage_pct}%"
        )

    def _fill_price(self, task: Task, snapshot: Optional[MarketSnapshot]) -> Optional[float]:
        quote = snapshot.get(task.token_symbol) if snapshot else None
        base = quote.price_usd if quote else task.target_price
        if base is None:
            return None

        slip = self.slippage_pct / 100.0
        if task.task_type in _ADVERSE_UP:
            return base * (1 + slip)
        if task.task_type in _ADVERSE_DOWN:
            return base * (1 - slip)
        return base

    def _fill(
        self,
        task: Task,
        snapshot: Optional[MarketSnapshot],
        budget: Optional[float],
        simulated: bool,
    ) -> SettlementOutcome:
        if task.task_type == TaskType.MONITOR:
            return SettlementOutcome(
                success=True,
                transaction_hash=None if simulated else f"paper_tx_{uuid.uuid4().hex}",
                simulated=simulated,
            )

        try:
            amount = task.allocation_amount(budget) or 0.0
        except ValueError:
            return SettlementOutcome(
                success=False,
                error_message=f"Invalid allocation {task.allocation!r}",
                simulated=simulated,
            )

        price = self._fill_price(task, snapshot)
        if price is None and task.token_symbol:
            return SettlementOutcome(
                success=False,
                error_message=f"No price available for {task.token_symbol}",
                simulated=simulated,
            )

        return SettlementOutcome(
            success=True,
            transaction_hash=None if simulated else f"paper_tx_{uuid.uuid4().hex}",
            amount_executed=amount,
            price_executed=round(price or 0.0, 8),
            gas_used=self.gas_used,
            simulated=simulated,
        )

    async def execute(self, task: Task, context: AgentContext) -> SettlementOutcome:
        start_time = time.perf_counter()

        if self.fill_delay_ms > 0:
            await asyncio.sleep(self.fill_delay_ms / 1000)

        outcome = self._fill(task, context.snapshot, context.budget, simulated=False)
        outcome.execution_time_ms = int((time.perf_counter() - start_time) * 1000)

        async with self._stats_lock:
            if outcome.success:
                self._total_settled += 1
            else:
                self._total_failed += 1

        if outcome.success:
            logger.info(
                f"Paper settlement {task.task_type.value} {task.token_symbol or ''} "
                f"amount={outcome.amount_executed} @ {outcome.price_executed} "
                f"tx={outcome.transaction_hash}"
            )
        else:
            logger.warning(f"Paper settlement failed for task {task.id}: {outcome.error_message}")
        return outcome

    async def simulate(
        self, task: Task, snapshot: MarketSnapshot, budget: Optional[float] = None,
    ) -> SettlementOutcome:
        outcome = self._fill(task, snapshot, budget, simulated=True)
        logger.debug(f"Simulated task {task.id}: success={outcome.success}")
        return outcome

    def get_stats(self) -> dict:
        return {
            "total_settled": self._total_settled,
            "total_failed": self._total_failed,
            "slippage_pct": self.slippage_pct,
            "fill_delay_ms": self.fill_delay_ms,
        }
