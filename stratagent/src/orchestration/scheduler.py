"""
Execution Scheduler - Timer-driven monitor cycles for active agents.

The scheduler:
- Polls the store for active agents every check interval
- Runs ``monitor_and_execute`` for agents whose cycle is due and whose
  execution schedule window is open
- Limits concurrent cycles with a semaphore and bounds each with a timeout
- Applies each agent's retry policy: after a failed cycle the next attempt
  waits ``retryDelay``; once failures exceed ``maxRetries`` the agent is
  moved to error
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, TYPE_CHECKING

from ..agents.executor_agent import ExecutorAgent
from ..errors import StratAgentError
from ..strategy.task import utcnow
from .coordinator import MonitorResult

if TYPE_CHECKING:
    from ..data.store import StrategyStore
    from .coordinator import ExecutionCoordinator

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    """Scheduler operational state."""
    RUNNING = "running"
    PAUSED = "paused"      # Loop alive, no cycles started
    STOPPED = "stopped"


@dataclass
class AgentCycle:
    """Per-agent scheduling bookkeeping."""
    agent_id: str
    last_run: Optional[datetime] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    _running: bool = field(default=False, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def is_due(self, now: datetime, interval_seconds: float, retry_delay_seconds: float) -> bool:
        if self._running:
            return False
        if self.last_run is None:
            return True
        wait = retry_delay_seconds if self.consecutive_failures else interval_seconds
        return (now - self.last_run).total_seconds() >= wait


class ExecutionScheduler:
    """Runs coordinator cycles on each agent's schedule."""

    def __init__(
        self,
        coordinator: 'ExecutionCoordinator',
        store: 'StrategyStore',
        config: Optional[dict] = None,
    ):
        """
        Initialize ExecutionScheduler.

        Args:
            coordinator: Coordinator running the cycles
            store: Store listing active agents
            config: Execution configuration; reads the ``scheduler`` section:
                - check_interval_seconds: Loop tick
                - cycle_interval_seconds: Override for every agent's
                  schedule frequency (None uses the agent's)
                - max_concurrent_agents: Parallel cycles
                - cycle_timeout_seconds: Bound on one cycle
        """
        self.coordinator = coordinator
        self.store = store

        scheduler_config = (config or {}).get('scheduler', {})
        self.check_interval = float(scheduler_config.get('check_interval_seconds', 5))
        override = scheduler_config.get('cycle_interval_seconds')
        self.cycle_interval_override = float(override) if override is not None else None
        self.max_concurrent_agents = int(scheduler_config.get('max_concurrent_agents', 5))
        self.cycle_timeout = float(scheduler_config.get('cycle_timeout_seconds', 120))

        self._state = SchedulerState.STOPPED
        self._cycles: dict[str, AgentCycle] = {}
        self._main_loop_task: Optional[asyncio.Task] = None

        # Statistics
        self._total_cycles = 0
        self._total_failures = 0
        self._total_agents_errored = 0

    @property
    def state(self) -> SchedulerState:
        return self._state

    def _cycle_for(self, agent_id: str) -> AgentCycle:
        cycle = self._cycles.get(agent_id)
        if cycle is None:
            cycle = AgentCycle(agent_id=agent_id)
            self._cycles[agent_id] = cycle
        return cycle

    def _interval_for(self, agent: ExecutorAgent) -> float:
        if self.cycle_interval_override is not None:
            return self.cycle_interval_override
        return agent.execution_settings.schedule.interval_seconds

    async def start(self) -> None:
        if self._main_loop_task is not None:
            return
        self._state = SchedulerState.RUNNING
        self._main_loop_task = asyncio.create_task(self._main_loop())
        logger.info("ExecutionScheduler started")

    async def stop(self) -> None:
        self._state = SchedulerState.STOPPED
        if self._main_loop_task:
            self._main_loop_task.cancel()
            try:
                await self._main_loop_task
            except asyncio.CancelledError:
                pass
            self._main_loop_task = None
        logger.info("ExecutionScheduler stopped")

    def pause(self) -> None:
        if self._state == SchedulerState.RUNNING:
            self._state = SchedulerState.PAUSED
            logger.info("ExecutionScheduler paused")

    def resume(self) -> None:
        if self._state == SchedulerState.PAUSED:
            self._state = SchedulerState.RUNNING
            logger.info("ExecutionScheduler resumed")

    async def _main_loop(self) -> None:
        while self._state != SchedulerState.STOPPED:
            try:
                if self._state == SchedulerState.RUNNING:
                    await self.run_due_cycles()
                await asyncio.sleep(self.check_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Scheduler main loop error: {e}", exc_info=True)
                await asyncio.sleep(self.check_interval)

    async def run_due_cycles(self, now: Optional[datetime] = None) -> list[MonitorResult]:
        """
        Run every due cycle once.

        Returns:
            Results of the cycles that completed
        """
        now = now or utcnow()
        agents = await self.store.list_agents(active_only=True)

        due = []
        for agent in agents:
            if not agent.is_running:
                continue
            schedule = agent.execution_settings.schedule
            if not schedule.enabled:
                continue
            try:
                if not schedule.is_within_window(now):
                    logger.debug(f"Agent {agent.id} outside execution window")
                    continue
            except StratAgentError as e:
                logger.error(f"Skipping agent {agent.id}: {e}")
                continue
            cycle = self._cycle_for(agent.id)
            if cycle.is_due(now, self._interval_for(agent), agent.execution_settings.retry_policy.retry_delay_seconds):
                due.append(agent)

        if not due:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrent_agents)

        async def run(agent: ExecutorAgent) -> Optional[MonitorResult]:
            async with semaphore:
                return await self._run_cycle(agent, now)

        results = await asyncio.gather(*[run(a) for a in due])
        return [r for r in results if r is not None]

    async def run_once(self, agent_id: str) -> Optional[MonitorResult]:
        """Force an immediate cycle for one agent regardless of schedule."""
        agent = await self.store.get_agent(agent_id)
        if agent is None:
            return None
        return await self._run_cycle(agent, utcnow())

    async def _run_cycle(self, agent: ExecutorAgent, now: datetime) -> Optional[MonitorResult]:
        cycle = self._cycle_for(agent.id)
        async with cycle._lock:
            if cycle._running:
                logger.debug(f"Cycle for agent {agent.id} already running, skipping")
                return None
            cycle._running = True

        result = None
        error = None
        try:
            result = await asyncio.wait_for(
                self.coordinator.monitor_and_execute(agent.id),
                timeout=self.cycle_timeout,
            )
            self._total_cycles += 1
            if result.settlement_errors:
                error = f"{result.settlement_errors} settlement error(s) in cycle"
        except asyncio.TimeoutError:
            error = f"Cycle timed out after {self.cycle_timeout}s"
            logger.error(f"Cycle for agent {agent.id}: {error}")
        except StratAgentError as e:
            error = e.message
            logger.error(f"Cycle for agent {agent.id} failed: {e}")
        except Exception as e:
            error = str(e)
            logger.error(f"Cycle for agent {agent.id} failed: {e}", exc_info=True)
        finally:
            cycle.last_run = now
            cycle._running = False

        if error is None:
            cycle.consecutive_failures = 0
            cycle.last_error = None
            return result

        await self._record_failure(agent, cycle, error)
        return result

    async def _record_failure(self, agent: ExecutorAgent, cycle: AgentCycle, error: str) -> None:
        self._total_failures += 1
        cycle.consecutive_failures += 1
        cycle.last_error = error

        policy = agent.execution_settings.retry_policy
        if not policy.is_exhausted(cycle.consecutive_failures):
            logger.warning(
                f"Agent {agent.id} cycle failed ({cycle.consecutive_failures}/{policy.max_retries} retries): "
                f"{error}; retrying in {policy.retry_delay_seconds}s"
            )
            return

        try:
            await self.coordinator.mark_agent_error(
                agent.id, f"Retries exhausted after {cycle.consecutive_failures} failed cycles: {error}"
            )
            self._total_agents_errored += 1
        except StratAgentError as e:
            logger.error(f"Could not move agent {agent.id} to error: {e}")
        cycle.consecutive_failures = 0

    def get_status(self) -> dict:
        return {
            "state": self._state.value,
            "check_interval_seconds": self.check_interval,
            "agents": [
                {
                    "agent_id": c.agent_id,
                    "last_run": c.last_run.isoformat() if c.last_run else None,
                    "consecutive_failures": c.consecutive_failures,
                    "last_error": c.last_error,
                }
                for c in self._cycles.values()
            ],
            "statistics": {
                "total_cycles": self._total_cycles,
                "total_failures": self._total_failures,
                "total_agents_errored": self._total_agents_errored,
            },
        }
