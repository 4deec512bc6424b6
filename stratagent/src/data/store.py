"""
Strategy Store - Persistence for strategies and executor agents.

Two implementations of the StrategyStore contract:
- InMemoryStore: dict-backed, returns deep copies so callers never share
  state with the store
- PostgresStore: aggregates stored as JSONB rows via DatabasePool

Task status changes go through ``update_task_status``, a compare-and-set
keyed on (task id, expected status). A lost race returns False.
"""

import asyncio
import copy
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, TYPE_CHECKING

import asyncpg

from ..agents.executor_agent import ExecutorAgent
from ..errors import PersistenceError, ValidationError
from ..strategy.strategy import Strategy
from ..strategy.task import ExecutionResult, TaskStatus, utcnow

if TYPE_CHECKING:
    from .database import DatabasePool

logger = logging.getLogger(__name__)


class StrategyStore(ABC):
    """Load/save strategies and agents; atomic single-task status updates."""

    @abstractmethod
    async def get_strategy(self, strategy_id: str) -> Optional[Strategy]:
        """Return a private copy of the strategy, or None."""

    @abstractmethod
    async def save_strategy(self, strategy: Strategy) -> None:
        """Insert or replace a strategy."""

    @abstractmethod
    async def get_agent(self, agent_id: str) -> Optional[ExecutorAgent]:
        """Return a private copy of the agent, or None."""

    @abstractmethod
    async def save_agent(self, agent: ExecutorAgent) -> None:
        """Insert or replace an agent."""

    @abstractmethod
    async def list_agents(self, active_only: bool = True) -> list[ExecutorAgent]:
        """All agents, optionally excluding soft-deleted ones."""

    @abstractmethod
    async def update_task_status(
        self,
        strategy_id: str,
        task_id: str,
        expected: TaskStatus,
        new_status: TaskStatus,
        result: Optional[ExecutionResult] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Compare-and-set a task's status.

        Returns:
            True if the task was in ``expected`` and moved to ``new_status``,
            False if its status had already changed

        Raises:
            ValidationError: Unknown strategy or task, or illegal transition
            PersistenceError: Store failure
        """


def _apply_transition(
    strategy: Strategy,
    task_id: str,
    expected: TaskStatus,
    new_status: TaskStatus,
    result: Optional[ExecutionResult],
    now: Optional[datetime],
) -> bool:
    task = strategy.find_task(task_id)
    if task is None:
        raise ValidationError(f"Task {task_id} not found in strategy {strategy.id}", task_id=task_id)
    if task.status != expected:
        logger.info(
            f"Task {task_id} status is {task.status.value}, expected {expected.value}; "
            f"update to {new_status.value} skipped"
        )
        return False

    now = now or utcnow()
    task.transition_to(new_status, result, now)
    strategy.refresh_execution_status()
    strategy.updated_at = now
    return True


class InMemoryStore(StrategyStore):
    """Process-local store for paper runs and tests."""

    def __init__(self):
        self._strategies: dict[str, Strategy] = {}
        self._agents: dict[str, ExecutorAgent] = {}
        self._lock = asyncio.Lock()

    async def get_strategy(self, strategy_id: str) -> Optional[Strategy]:
        strategy = self._strategies.get(strategy_id)
        return copy.deepcopy(strategy) if strategy else None

    async def save_strategy(self, strategy: Strategy) -> None:
        async with self._lock:
            self._strategies[strategy.id] = copy.deepcopy(strategy)

    async def get_agent(self, agent_id: str) -> Optional[ExecutorAgent]:
        agent = self._agents.get(agent_id)
        return copy.deepcopy(agent) if agent else None

    async def save_agent(self, agent: ExecutorAgent) -> None:
        async with self._lock:
            self._agents[agent.id] = copy.deepcopy(agent)

    async def list_agents(self, active_only: bool = True) -> list[ExecutorAgent]:
        return [
            copy.deepcopy(agent) for agent in self._agents.values()
            if agent.is_active or not active_only
        ]

    async def update_task_status(
        self,
        strategy_id: str,
        task_id: str,
        expected: TaskStatus,
        new_status: TaskStatus,
        result: Optional[ExecutionResult] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        async with self._lock:
            strategy = self._strategies.get(strategy_id)
            if strategy is None:
                raise ValidationError(f"Strategy {strategy_id} not found", task_id=task_id)
            # Work on a copy so a failed transition leaves the stored state intact
            working = copy.deepcopy(strategy)
            changed = _apply_transition(working, task_id, expected, new_status, result, now)
            if changed:
                self._strategies[strategy_id] = working
            return changed


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS strategies (
    id TEXT PRIMARY KEY,
    data JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS executor_agents (
    id TEXT PRIMARY KEY,
    linked_strategy_id TEXT NOT NULL,
    status TEXT NOT NULL,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    data JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_executor_agents_active ON executor_agents (is_active);
"""


def _decode_json(value) -> dict:
    # asyncpg returns JSONB as text unless a codec is registered
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class PostgresStore(StrategyStore):
    """
    PostgreSQL-backed store.

    Compare-and-set runs inside a transaction holding a row lock
    (``SELECT ... FOR UPDATE``) on the strategy.
    """

    def __init__(self, db: 'DatabasePool'):
        self.db = db

    async def ensure_schema(self) -> None:
        await self.db.execute(SCHEMA_SQL)
        logger.info("Strategy store schema ensured")

    async def get_strategy(self, strategy_id: str) -> Optional[Strategy]:
        row = await self.db.fetchrow("SELECT data FROM strategies WHERE id = $1", strategy_id)
        if row is None:
            return None
        return Strategy.from_dict(_decode_json(row['data']))

    async def save_strategy(self, strategy: Strategy) -> None:
        await self.db.execute(
            """
            INSERT INTO strategies (id, data, updated_at)
            VALUES ($1, $2::jsonb, $3)
            ON CONFLICT (id) DO UPDATE SET data = EXCLUDED.data, updated_at = EXCLUDED.updated_at
            """,
            strategy.id,
            json.dumps(strategy.to_dict()),
            strategy.updated_at,
        )

    async def get_agent(self, agent_id: str) -> Optional[ExecutorAgent]:
        row = await self.db.fetchrow("SELECT data FROM executor_agents WHERE id = $1", agent_id)
        if row is None:
            return None
        return ExecutorAgent.from_dict(_decode_json(row['data']))

    async def save_agent(self, agent: ExecutorAgent) -> None:
        await self.db.execute(
            """
            INSERT INTO executor_agents (id, linked_strategy_id, status, is_active, data, updated_at)
            VALUES ($1, $2, $3, $4, $5::jsonb, $6)
            ON CONFLICT (id) DO UPDATE SET
                linked_strategy_id = EXCLUDED.linked_strategy_id,
                status = EXCLUDED.status,
                is_active = EXCLUDED.is_active,
                data = EXCLUDED.data,
                updated_at = EXCLUDED.updated_at
            """,
            agent.id,
            agent.linked_strategy_id,
            agent.status.value,
            agent.is_active,
            json.dumps(agent.to_dict()),
            agent.updated_at,
        )

    async def list_agents(self, active_only: bool = True) -> list[ExecutorAgent]:
        if active_only:
            rows = await self.db.fetch(
                "SELECT data FROM executor_agents WHERE is_active ORDER BY id"
            )
        else:
            rows = await self.db.fetch("SELECT data FROM executor_agents ORDER BY id")
        return [ExecutorAgent.from_dict(_decode_json(row['data'])) for row in rows]

    async def update_task_status(
        self,
        strategy_id: str,
        task_id: str,
        expected: TaskStatus,
        new_status: TaskStatus,
        result: Optional[ExecutionResult] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        try:
            async with self.db.transaction() as conn:
                row = await conn.fetchrow(
                    "SELECT data FROM strategies WHERE id = $1 FOR UPDATE", strategy_id
                )
                if row is None:
                    raise ValidationError(f"Strategy {strategy_id} not found", task_id=task_id)

                strategy = Strategy.from_dict(_decode_json(row['data']))
                if not _apply_transition(strategy, task_id, expected, new_status, result, now):
                    return False

                await conn.execute(
                    "UPDATE strategies SET data = $2::jsonb, updated_at = $3 WHERE id = $1",
                    strategy_id,
                    json.dumps(strategy.to_dict()),
                    strategy.updated_at,
                )
                return True
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.error(f"Task status update failed for {task_id}: {e}")
            raise PersistenceError(f"Task status update failed: {e}", task_id=task_id) from e
