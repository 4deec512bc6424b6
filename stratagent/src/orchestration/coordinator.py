"""
Execution Coordinator - Monitor, evaluate, authorize and execute strategy tasks.

The Coordinator:
- Pulls one market snapshot per cycle (bounded timeout, empty on failure)
- Filters an agent's pending tasks through the condition evaluator
- Orders ready tasks by priority, then creation order
- Gates each task through the capability authorizer
- Auto-executes via the settlement executor, or queues for manual approval
- Commits task transitions with compare-and-set on ``pending``
- Updates agent metrics, last execution and the error journal

Cycles for the same agent are serialized by a per-agent lock. Errors while
processing one task become failed outcomes; errors loading the agent or
strategy, and persistence failures, propagate to the caller.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..agents.executor_agent import (
    AgentStatus,
    Capabilities,
    ExecutionSettings,
    ExecutionStateStatus,
    ExecutorAgent,
    RetryPolicy,
)
from ..data.market_data import (
    DEFAULT_TIMEOUT_SECONDS,
    MarketDataProvider,
    MarketSnapshot,
    fetch_snapshot_with_timeout,
    normalize_network,
)
from ..data.store import StrategyStore
from ..errors import (
    AuthorizationError,
    ConditionNotMetError,
    DataUnavailableError,
    ErrorKind,
    PersistenceError,
    SettlementError,
    ValidationError,
)
from ..execution.settlement import AgentContext, SettlementExecutor
from ..risk.authorizer import explain
from ..risk.conditions import ConditionEvaluator
from ..strategy.strategy import Strategy
from ..strategy.task import ExecutionResult, Task, TaskStatus, utcnow
from .approval_queue import ApprovalQueue, InMemoryApprovalQueue, QueueEntry

logger = logging.getLogger(__name__)


@dataclass
class ExecutionOutcome:
    """
    Result of processing one task.

    ``attempted`` is True when a settlement result was durably recorded
    (task moved to executed/failed and agent metrics updated).
    """
    task_id: str
    success: bool
    attempted: bool = False
    simulated: bool = False
    reason: str = ""
    error_kind: Optional[ErrorKind] = None
    result: Optional[ExecutionResult] = None

    def to_dict(self) -> dict:
        return {
            "taskId": self.task_id,
            "success": self.success,
            "attempted": self.attempted,
            "simulated": self.simulated,
            "reason": self.reason,
            "errorKind": self.error_kind.value if self.error_kind else None,
            "result": self.result.to_dict() if self.result else None,
        }


@dataclass
class MonitorResult:
    """
    Summary of one monitor-and-execute cycle.

    ``ready_tasks_count`` counts every task whose trigger conditions held,
    including those the authorizer then denied (listed in
    ``denied_task_ids``).
    """
    agent_id: str
    ready_tasks_count: int = 0
    execution_results: list[ExecutionOutcome] = field(default_factory=list)
    queued_tasks_count: int = 0
    denied_task_ids: list[str] = field(default_factory=list)
    auto_executed: bool = False
    snapshot_timestamp: Optional[datetime] = None
    market_sentiment: Optional[str] = None
    skipped: bool = False
    reason: str = ""

    @property
    def settlement_errors(self) -> int:
        return sum(
            1 for outcome in self.execution_results
            if not outcome.success and outcome.error_kind == ErrorKind.SETTLEMENT
        )

    def to_dict(self) -> dict:
        return {
            "agentId": self.agent_id,
            "readyTasksCount": self.ready_tasks_count,
            "executionResults": [o.to_dict() for o in self.execution_results],
            "queuedTasksCount": self.queued_tasks_count,
            "deniedTaskIds": list(self.denied_task_ids),
            "autoExecuted": self.auto_executed,
            "snapshotTimestamp": (
                self.snapshot_timestamp.isoformat() if self.snapshot_timestamp else None
            ),
            "marketSentiment": self.market_sentiment,
            "skipped": self.skipped,
            "reason": self.reason,
        }


class ExecutionCoordinator:
    """
    Drives strategy tasks through evaluation, authorization and settlement.

    The coordinator never retries on its own; repeated invocation is the
    scheduler's job.
    """

    def __init__(
        self,
        store: StrategyStore,
        market_data: MarketDataProvider,
        settlement: SettlementExecutor,
        approval_queue: Optional[ApprovalQueue] = None,
        config: Optional[dict] = None,
        evaluator: Optional[ConditionEvaluator] = None,
    ):
        """
        Initialize ExecutionCoordinator.

        Args:
            store: Strategy/agent persistence
            market_data: Snapshot provider
            settlement: Settlement executor for real and simulated runs
            approval_queue: Queue for tasks awaiting approval
            config: Execution configuration (from execution.yaml)
            evaluator: Condition evaluator (default instance if None)
        """
        self.store = store
        self.market_data = market_data
        self.settlement = settlement
        self.queue = approval_queue or InMemoryApprovalQueue()
        self.evaluator = evaluator or ConditionEvaluator()
        self.config = config or {}

        coordinator_config = self.config.get('coordinator', {})
        self._snapshot_timeout = float(
            coordinator_config.get('snapshot_timeout_seconds', DEFAULT_TIMEOUT_SECONDS)
        )
        self._persist_dry_runs = bool(
            coordinator_config.get('dry_run', {}).get('persist_results', False)
        )

        agent_config = self.config.get('agents', {})
        self._budget_fraction = float(agent_config.get('budget_fraction', 0.1))
        self._default_network = normalize_network(agent_config.get('default_network'))
        retry_config = agent_config.get('retry_policy', {})
        self._default_retry_policy = RetryPolicy(
            max_retries=int(retry_config.get('max_retries', 3)),
            retry_delay_ms=int(retry_config.get('retry_delay_ms', 300000)),
        )

        self._agent_locks: dict[str, asyncio.Lock] = {}

        # Statistics
        self._total_cycles = 0
        self._total_executions = 0
        self._total_simulations = 0
        self._total_queued = 0
        self._total_denied = 0
        self._total_conflicts = 0

    @property
    def persist_dry_runs(self) -> bool:
        return self._persist_dry_runs

    def _lock_for(self, agent_id: str) -> asyncio.Lock:
        lock = self._agent_locks.get(agent_id)
        if lock is None:
            lock = asyncio.Lock()
            self._agent_locks[agent_id] = lock
        return lock

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def _get_agent(self, agent_id: str) -> ExecutorAgent:
        agent = await self.store.get_agent(agent_id)
        if agent is None:
            raise ValidationError(f"Executor agent {agent_id} not found")
        return agent

    async def _load(self, agent_id: str) -> tuple[ExecutorAgent, Strategy]:
        agent = await self._get_agent(agent_id)
        strategy = await self.store.get_strategy(agent.linked_strategy_id)
        if strategy is None:
            raise ValidationError(
                f"Strategy {agent.linked_strategy_id} linked to agent {agent_id} not found"
            )
        return agent, strategy

    async def _fetch_snapshot(self, network: str) -> MarketSnapshot:
        return await fetch_snapshot_with_timeout(self.market_data, network, self._snapshot_timeout)

    @staticmethod
    def _authorize(agent: ExecutorAgent, strategy: Strategy, task: Task) -> None:
        """Raises AuthorizationError naming every violated rule."""
        violations = explain(agent.capabilities, task, strategy.budget)
        if violations:
            raise AuthorizationError("; ".join(violations), task_id=task.id)

    def _require_ready(self, task: Task, snapshot: MarketSnapshot) -> None:
        """Raises DataUnavailableError or ConditionNotMetError unless the task can run now."""
        check = self.evaluator.evaluate_task(task, snapshot)
        if check.can_execute:
            return
        if check.data_unavailable:
            raise DataUnavailableError(check.reason, task_id=task.id)
        raise ConditionNotMetError(check.reason, task_id=task.id)

    # -------------------------------------------------------------------------
    # Core operations
    # -------------------------------------------------------------------------

    async def execute_task(self, agent_id: str, task_id: str, dry_run: bool = False) -> ExecutionOutcome:
        """
        Execute (or simulate) a single task against a fresh snapshot.

        Args:
            agent_id: Owning executor agent
            task_id: Task in the agent's linked strategy
            dry_run: Simulate instead of settling

        Returns:
            ExecutionOutcome; authorization and condition failures leave
            the task pending

        Raises:
            ValidationError: Unknown agent/task, inactive agent, or task
                not pending
            PersistenceError: Store failure
        """
        async with self._lock_for(agent_id):
            agent, strategy = await self._load(agent_id)
            if not agent.is_active or agent.status == AgentStatus.STOPPED:
                raise ValidationError(f"Executor agent {agent_id} is not active")

            task = strategy.find_task(task_id)
            if task is None:
                raise ValidationError(f"Task {task_id} not found in strategy {strategy.id}", task_id=task_id)
            if not task.is_pending:
                raise ValidationError(
                    f"Task {task_id} is {task.status.value}, only pending tasks can execute",
                    task_id=task_id,
                )

            try:
                self._authorize(agent, strategy, task)
                snapshot = await self._fetch_snapshot(agent.network)
                self._require_ready(task, snapshot)
            except (AuthorizationError, ConditionNotMetError, DataUnavailableError) as e:
                if isinstance(e, AuthorizationError):
                    self._total_denied += 1
                    logger.info(f"Task {task_id} not authorized for agent {agent_id}: {e.message}")
                return ExecutionOutcome(
                    task_id=task_id,
                    success=False,
                    reason=e.message,
                    error_kind=e.kind,
                )

            if dry_run:
                return await self._simulate(agent, strategy, task, snapshot)
            return await self._settle(agent, strategy, task, snapshot)

    async def monitor_and_execute(self, agent_id: str) -> MonitorResult:
        """
        Run one monitoring cycle for an agent.

        No-op unless the agent is active. Ready, authorized tasks are
        executed when auto-execute is on, otherwise queued for approval
        with their status left pending.

        Raises:
            ValidationError: Unknown agent or linked strategy
            PersistenceError: Store failure
        """
        async with self._lock_for(agent_id):
            agent, strategy = await self._load(agent_id)

            if not agent.is_running:
                logger.debug(f"Agent {agent_id} is {agent.status.value}, skipping cycle")
                return MonitorResult(
                    agent_id=agent_id,
                    queued_tasks_count=len(await self.queue.list_by_agent(agent_id)),
                    skipped=True,
                    reason=f"Agent status is {agent.status.value}",
                )

            self._total_cycles += 1
            agent.execution_state.begin_monitoring()

            snapshot = await self._fetch_snapshot(agent.network)
            ready = self.evaluator.ready_tasks(strategy.pending_tasks(), snapshot)
            auto_execute = agent.execution_settings.auto_execute

            result = MonitorResult(
                agent_id=agent_id,
                ready_tasks_count=len(ready),
                auto_executed=auto_execute,
                snapshot_timestamp=snapshot.timestamp,
                market_sentiment=snapshot.sentiment(),
            )

            for task in ready:
                try:
                    try:
                        self._authorize(agent, strategy, task)
                    except AuthorizationError as e:
                        self._total_denied += 1
                        result.denied_task_ids.append(task.id)
                        logger.info(f"Task {task.id} denied for agent {agent_id}: {e.message}")
                        continue

                    if auto_execute:
                        result.execution_results.append(
                            await self._settle(agent, strategy, task, snapshot)
                        )
                    else:
                        await self.queue.enqueue(
                            QueueEntry(agent_id=agent_id, task_id=task.id, priority=task.priority)
                        )
                        self._total_queued += 1

                except PersistenceError:
                    raise
                except Exception as e:
                    logger.error(f"Error processing task {task.id} for agent {agent_id}: {e}", exc_info=True)
                    result.execution_results.append(ExecutionOutcome(
                        task_id=task.id,
                        success=False,
                        reason=str(e),
                        error_kind=getattr(e, 'kind', ErrorKind.SETTLEMENT),
                    ))

            if agent.execution_state.status == ExecutionStateStatus.MONITORING:
                agent.execution_state.finish_execution()
            agent.last_active_at = utcnow()
            await self.store.save_agent(agent)

            result.queued_tasks_count = len(await self.queue.list_by_agent(agent_id))
            logger.info(
                f"Cycle for agent {agent_id}: ready={result.ready_tasks_count} "
                f"executed={len(result.execution_results)} queued={result.queued_tasks_count} "
                f"denied={len(result.denied_task_ids)} sentiment={result.market_sentiment}"
            )
            return result

    async def list_pending_approvals(self, agent_id: str) -> list[QueueEntry]:
        """Tasks queued for an agent, highest priority first."""
        return await self.queue.list_by_agent(agent_id)

    async def approve_task(self, entry_id: str) -> ExecutionOutcome:
        """
        Approve a queued task: atomically claim the entry, then execute it.

        Conditions and authorization are re-checked against a fresh
        snapshot; if they no longer hold the task stays pending.

        Raises:
            ValidationError: Entry unknown or already claimed
        """
        entry = await self.queue.dequeue(entry_id)
        if entry is None:
            raise ValidationError(f"Approval entry {entry_id} not found or already processed")
        logger.info(f"Task {entry.task_id} approved for agent {entry.agent_id}")
        return await self.execute_task(entry.agent_id, entry.task_id, dry_run=False)

    async def reject_task(self, entry_id: str) -> bool:
        """
        Reject a queued task: claim the entry and cancel the task.

        Returns:
            True if the task was cancelled, False if it had already left
            pending
        """
        entry = await self.queue.dequeue(entry_id)
        if entry is None:
            raise ValidationError(f"Approval entry {entry_id} not found or already processed")
        logger.info(f"Task {entry.task_id} rejected for agent {entry.agent_id}")
        return await self._cancel(entry.agent_id, entry.task_id)

    async def cancel_task(self, agent_id: str, task_id: str) -> bool:
        """
        Cancel a pending task and drop any approval entry for it.

        Raises:
            ValidationError: Unknown task or task not pending
        """
        await self.queue.remove_task(agent_id, task_id)
        return await self._cancel(agent_id, task_id)

    async def _cancel(self, agent_id: str, task_id: str) -> bool:
        async with self._lock_for(agent_id):
            agent, strategy = await self._load(agent_id)
            task = strategy.find_task(task_id)
            if task is None:
                raise ValidationError(f"Task {task_id} not found in strategy {strategy.id}", task_id=task_id)
            if not task.is_pending:
                raise ValidationError(
                    f"Task {task_id} is {task.status.value}, only pending tasks can be cancelled",
                    task_id=task_id,
                )
            changed = await self.store.update_task_status(
                strategy.id, task_id, TaskStatus.PENDING, TaskStatus.CANCELLED,
            )
            if changed:
                logger.info(f"Task {task_id} cancelled")
            else:
                self._total_conflicts += 1
            return changed

    # -------------------------------------------------------------------------
    # Settlement
    # -------------------------------------------------------------------------

    def _context_for(self, agent: ExecutorAgent, strategy: Strategy, snapshot: MarketSnapshot) -> AgentContext:
        return AgentContext(
            agent_id=agent.id,
            network=agent.network,
            strategy_id=strategy.id,
            budget=strategy.budget,
            snapshot=snapshot,
        )

    async def _settle(
        self,
        agent: ExecutorAgent,
        strategy: Strategy,
        task: Task,
        snapshot: MarketSnapshot,
    ) -> ExecutionOutcome:
        """Settle one task for real and record the attempt."""
        now = utcnow()
        agent.execution_state.begin_execution(task, now)
        await self.store.save_agent(agent)

        start_time = time.perf_counter()
        try:
            settlement = await self.settlement.execute(task, self._context_for(agent, strategy, snapshot))
        except asyncio.CancelledError:
            # Outcome unknown: the task stays pending, the agent needs a reset
            logger.error(f"Settlement cancelled for task {task.id}, agent {agent.id} moved to error")
            agent.execution_state.error_journal.record(task.id, "Settlement cancelled before completion")
            agent.execution_state.fail_execution()
            agent.updated_at = utcnow()
            await self.store.save_agent(agent)
            raise
        except Exception as e:
            elapsed_ms = int((time.perf_counter() - start_time) * 1000)
            if isinstance(e, SettlementError):
                logger.warning(f"Settlement rejected task {task.id}: {e.message}")
            else:
                logger.error(f"Settlement raised for task {task.id}: {e}", exc_info=True)
            result = ExecutionResult(success=False, error_message=str(e))
            outcome = await self._commit(agent, strategy, task, result, elapsed_ms)
            agent.execution_state.fail_execution()
            await self.store.save_agent(agent)
            return outcome

        elapsed_ms = settlement.execution_time_ms or int((time.perf_counter() - start_time) * 1000)
        outcome = await self._commit(agent, strategy, task, settlement.to_execution_result(), elapsed_ms)
        agent.execution_state.finish_execution()
        await self.store.save_agent(agent)
        return outcome

    async def _simulate(
        self,
        agent: ExecutorAgent,
        strategy: Strategy,
        task: Task,
        snapshot: MarketSnapshot,
    ) -> ExecutionOutcome:
        """
        Dry run.

        With ``dry_run.persist_results`` off (default) nothing durable
        changes. With it on, the simulated result is committed like a real
        execution, flagged simulated.
        """
        self._total_simulations += 1
        try:
            settlement = await self.settlement.simulate(task, snapshot, budget=strategy.budget)
        except Exception as e:
            logger.error(f"Simulation raised for task {task.id}: {e}", exc_info=True)
            return ExecutionOutcome(
                task_id=task.id,
                success=False,
                simulated=True,
                reason=str(e),
                error_kind=ErrorKind.SETTLEMENT,
            )

        result = settlement.to_execution_result()
        result.simulated = True

        if not self._persist_dry_runs:
            return ExecutionOutcome(
                task_id=task.id,
                success=result.success,
                simulated=True,
                reason="Simulated" if result.success else (result.error_message or "Simulation failed"),
                error_kind=None if result.success else ErrorKind.SETTLEMENT,
                result=result,
            )

        outcome = await self._commit(agent, strategy, task, result, settlement.execution_time_ms)
        outcome.simulated = True
        await self.store.save_agent(agent)
        return outcome

    async def _commit(
        self,
        agent: ExecutorAgent,
        strategy: Strategy,
        task: Task,
        result: ExecutionResult,
        execution_time_ms: int,
    ) -> ExecutionOutcome:
        """
        Compare-and-set the task out of pending, then update agent metrics.

        A lost race leaves metrics untouched and yields a conflict outcome.
        """
        now = utcnow()
        new_status = TaskStatus.EXECUTED if result.success else TaskStatus.FAILED

        changed = await self.store.update_task_status(
            strategy.id, task.id, TaskStatus.PENDING, new_status, result, now,
        )
        if not changed:
            self._total_conflicts += 1
            logger.warning(f"Task {task.id} changed concurrently; {new_status.value} result discarded")
            return ExecutionOutcome(
                task_id=task.id,
                success=False,
                reason="Task status changed concurrently",
                error_kind=ErrorKind.CONFLICT,
                result=result,
            )

        task.transition_to(new_status, result, now)
        details = (
            f"{task.task_type.value} {task.token_symbol or ''} tx={result.transaction_hash}".strip()
            if result.success else (result.error_message or "execution failed")
        )
        agent.record_attempt(
            task.id,
            result.success,
            details=details,
            error=result.error_message,
            execution_time_ms=execution_time_ms,
            now=now,
        )
        self._total_executions += 1

        if result.success:
            logger.info(f"Task {task.id} executed by agent {agent.id}")
        else:
            logger.warning(f"Task {task.id} failed for agent {agent.id}: {result.error_message}")

        return ExecutionOutcome(
            task_id=task.id,
            success=result.success,
            attempted=True,
            simulated=result.simulated,
            reason="Executed" if result.success else (result.error_message or "Execution failed"),
            error_kind=None if result.success else ErrorKind.SETTLEMENT,
            result=result,
        )

    # -------------------------------------------------------------------------
    # Agent management
    # -------------------------------------------------------------------------

    async def create_agent_for_strategy(
        self,
        strategy: Strategy,
        network: Optional[str] = None,
        name: Optional[str] = None,
    ) -> ExecutorAgent:
        """
        Create and persist an executor agent for a strategy.

        Prepares the strategy's tasks, derives the capability profile and
        links the two. The agent starts in ``created`` with auto-execute off.
        """
        if strategy.executor_agent_id:
            raise ValidationError(
                f"Strategy {strategy.id} already has executor agent {strategy.executor_agent_id}"
            )

        strategy.prepare_tasks()
        agent = ExecutorAgent.for_strategy(
            strategy,
            budget_fraction=self._budget_fraction,
            network=normalize_network(network) if network else self._default_network,
            retry_policy=RetryPolicy(
                max_retries=self._default_retry_policy.max_retries,
                retry_delay_ms=self._default_retry_policy.retry_delay_ms,
            ),
            name=name,
        )
        strategy.executor_agent_id = agent.id
        strategy.mark_applied()

        await self.store.save_strategy(strategy)
        await self.store.save_agent(agent)
        logger.info(
            f"Created executor agent {agent.id} for strategy {strategy.id}: "
            f"max_tx={agent.capabilities.max_transaction_amount}, "
            f"tokens={sorted(agent.capabilities.allowed_tokens)}"
        )
        return agent

    async def _update_agent(self, agent_id: str, mutate) -> ExecutorAgent:
        async with self._lock_for(agent_id):
            agent = await self._get_agent(agent_id)
            mutate(agent)
            agent.updated_at = utcnow()
            await self.store.save_agent(agent)
            return agent

    async def configure_agent(
        self,
        agent_id: str,
        capabilities: Optional[Capabilities] = None,
        execution_settings: Optional[ExecutionSettings] = None,
    ) -> ExecutorAgent:
        """
        Replace capability/settings blocks; a created agent becomes configured.

        Raises:
            ValidationError: If the execution schedule window is malformed
        """
        if execution_settings is not None:
            execution_settings.schedule.validate()

        def mutate(agent: ExecutorAgent) -> None:
            if capabilities is not None:
                agent.capabilities = capabilities
            if execution_settings is not None:
                agent.execution_settings = execution_settings
            if agent.status == AgentStatus.CREATED:
                agent.transition_to(AgentStatus.CONFIGURED)

        return await self._update_agent(agent_id, mutate)

    async def set_agent_status(self, agent_id: str, status: AgentStatus) -> ExecutorAgent:
        """
        Move an agent along its lifecycle.

        Leaving ``error`` requires ``reset_agent``.

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        def mutate(agent: ExecutorAgent) -> None:
            if agent.status == AgentStatus.ERROR and status != AgentStatus.STOPPED:
                raise ValidationError(f"Agent {agent_id} is in error state; reset it first")
            agent.transition_to(status)

        return await self._update_agent(agent_id, mutate)

    async def set_auto_execute(self, agent_id: str, enabled: bool) -> ExecutorAgent:
        def mutate(agent: ExecutorAgent) -> None:
            agent.execution_settings.auto_execute = enabled

        agent = await self._update_agent(agent_id, mutate)
        logger.info(f"Agent {agent_id} auto-execute {'enabled' if enabled else 'disabled'}")
        return agent

    async def reset_agent(self, agent_id: str, target: AgentStatus = AgentStatus.ACTIVE) -> int:
        """
        Reset an agent out of error.

        Returns:
            Number of journal entries marked resolved
        """
        resolved = []

        def mutate(agent: ExecutorAgent) -> None:
            resolved.append(agent.reset(target))

        await self._update_agent(agent_id, mutate)
        logger.info(f"Agent {agent_id} reset to {target.value}, {resolved[0]} errors resolved")
        return resolved[0]

    async def mark_agent_error(self, agent_id: str, reason: str) -> ExecutorAgent:
        """Put an active agent into error and journal the reason."""
        def mutate(agent: ExecutorAgent) -> None:
            agent.transition_to(AgentStatus.ERROR)
            agent.execution_state.error_journal.record(None, reason)

        agent = await self._update_agent(agent_id, mutate)
        logger.error(f"Agent {agent_id} moved to error: {reason}")
        return agent

    async def deactivate_agent(self, agent_id: str) -> ExecutorAgent:
        """Soft delete: stop the agent, mark it inactive, drop its queue entries."""
        agent = await self._update_agent(agent_id, lambda a: a.deactivate())
        for entry in await self.queue.list_by_agent(agent_id):
            await self.queue.dequeue(entry.id)
        logger.info(f"Agent {agent_id} deactivated")
        return agent

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_tasks(self, agent_id: str, status: Optional[TaskStatus] = None) -> dict:
        """Tasks of the agent's strategy with a per-status summary."""
        _, strategy = await self._load(agent_id)
        tasks = list(strategy.iter_tasks())

        summary = {"total": len(tasks)}
        for task_status in TaskStatus:
            summary[task_status.value] = sum(1 for t in tasks if t.status == task_status)

        if status is not None:
            tasks = [t for t in tasks if t.status == status]

        return {
            "strategyId": strategy.id,
            "tasks": [t.to_dict() for t in tasks],
            "summary": summary,
        }

    async def get_performance(self, agent_id: str) -> dict:
        """Agent metrics, journal and strategy progress in one summary."""
        agent, strategy = await self._load(agent_id)
        state = agent.execution_state
        metrics = state.metrics

        return {
            "agentId": agent.id,
            "status": agent.status.value,
            "metrics": metrics.to_dict(),
            "successRate": metrics.success_rate(),
            "lastExecution": state.last_execution.to_dict() if state.last_execution else None,
            "unresolvedErrors": len(state.error_journal.unresolved()),
            "recentErrors": state.error_journal.to_list()[-5:],
            "strategy": {
                "id": strategy.id,
                "executionStatus": strategy.execution_status.value,
                "executionMetrics": strategy.execution_metrics.to_dict(),
            },
        }

    def get_status(self) -> dict:
        return {
            "dry_run_persists_results": self._persist_dry_runs,
            "snapshot_timeout_seconds": self._snapshot_timeout,
            "statistics": {
                "total_cycles": self._total_cycles,
                "total_executions": self._total_executions,
                "total_simulations": self._total_simulations,
                "total_queued": self._total_queued,
                "total_denied": self._total_denied,
                "total_conflicts": self._total_conflicts,
            },
        }
