#!/usr/bin/env python3
"""
StratAgent Executor Runner

Main entry point for running strategy task execution with:
- Market snapshots from the configured provider
- Executor agents monitored by the scheduler
- Paper settlement (simulated fills)
- In-memory or PostgreSQL persistence

Usage:
    python -m stratagent.run_executor

Environment:
    Optional .env file with DATABASE_* and MARKET_DATA_URL.
    STRATEGY_FILE may point at a JSON strategy plan to load and activate
    on startup.
"""

import asyncio
import json
import logging
import os
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

# Load environment variables before any other imports
from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).parent.parent
ENV_FILE = PROJECT_ROOT / ".env"
if ENV_FILE.exists():
    load_dotenv(ENV_FILE)
    print(f"Loaded environment from {ENV_FILE}")

sys.path.insert(0, str(PROJECT_ROOT))

from stratagent.src.agents import AgentStatus
from stratagent.src.data import (
    DatabasePool,
    InMemoryStore,
    PostgresStore,
    create_pool_from_config,
    create_provider_from_config,
)
from stratagent.src.execution import PaperSettlementExecutor
from stratagent.src.orchestration import (
    ExecutionCoordinator,
    ExecutionScheduler,
    InMemoryApprovalQueue,
    PostgresApprovalQueue,
)
from stratagent.src.strategy import Strategy
from stratagent.src.utils.config import ConfigLoader

LOGS_DIR = PROJECT_ROOT / 'logs'
LOGS_DIR.mkdir(exist_ok=True)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(LOGS_DIR / 'executor.log', mode='a')
    ]
)
logger = logging.getLogger(__name__)


def print_banner(execution_config: dict):
    dry_run = execution_config.get("coordinator", {}).get("dry_run", {})
    print()
    print("=" * 60)
    print("  StratAgent Strategy Executor")
    print("=" * 60)
    print(f"  Settlement: PAPER (simulated)")
    print(f"  Dry runs persist results: {dry_run.get('persist_results', False)}")
    print(f"  Started: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')}")
    print("=" * 60)
    print()


async def init_database(configs: dict) -> DatabasePool:
    """Connect the pool and make sure the schema exists."""
    pool = create_pool_from_config(configs.get("database", {}).get("database", {}))
    await pool.connect()
    health = await pool.check_health()
    if health["status"] != "healthy":
        raise RuntimeError(f"Database health check failed: {health.get('error')}")
    logger.info("Database pool initialized")
    return pool


async def build_components(configs: dict, db_pool: Optional[DatabasePool] = None):
    """
    Wire store, queue, market data, settlement, coordinator and scheduler.

    Returns:
        (coordinator, scheduler, market_data_provider)
    """
    execution_config = configs.get("execution", {})

    if db_pool is not None:
        store = PostgresStore(db_pool)
        queue = PostgresApprovalQueue(db_pool)
        await store.ensure_schema()
        await queue.ensure_schema()
    else:
        store = InMemoryStore()
        queue = InMemoryApprovalQueue()

    provider = create_provider_from_config(execution_config.get("market_data", {}))
    settlement = PaperSettlementExecutor(execution_config)

    coordinator = ExecutionCoordinator(
        store=store,
        market_data=provider,
        settlement=settlement,
        approval_queue=queue,
        config=execution_config,
    )
    scheduler = ExecutionScheduler(coordinator, store, execution_config)
    return coordinator, scheduler, provider


async def load_strategy_file(coordinator: ExecutionCoordinator, path: Path) -> None:
    """Create and activate an executor agent for a strategy plan on disk."""
    with open(path, 'r') as f:
        strategy = Strategy.from_dict(json.load(f))

    agent = await coordinator.create_agent_for_strategy(strategy)
    await coordinator.configure_agent(agent.id)
    await coordinator.set_agent_status(agent.id, AgentStatus.ACTIVE)
    print(f"  Activated agent {agent.id} for strategy {strategy.id} ({len(list(strategy.iter_tasks()))} tasks)")


async def main():
    config_loader = ConfigLoader(PROJECT_ROOT / "config")
    configs = config_loader.load_all()
    execution_config = configs.get("execution", {})
    print_banner(execution_config)

    db_pool = None
    if execution_config.get("store", {}).get("backend", "memory") == "postgres":
        try:
            db_pool = await init_database(configs)
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            print(f"  Database connection failed: {e}")
            return 1

    coordinator, scheduler, provider = await build_components(configs, db_pool)

    strategy_file = os.getenv("STRATEGY_FILE")
    if strategy_file:
        try:
            await load_strategy_file(coordinator, Path(strategy_file))
        except (OSError, ValueError, KeyError) as e:
            logger.error(f"Could not load strategy file {strategy_file}: {e}")
            return 1

    shutdown_event = asyncio.Event()

    def shutdown_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGINT, shutdown_handler)
    signal.signal(signal.SIGTERM, shutdown_handler)

    try:
        await scheduler.start()
        print("  Executor running, press Ctrl+C to stop")
        await shutdown_event.wait()
    except Exception as e:
        logger.exception(f"Error in main loop: {e}")
        return 1
    finally:
        print("\nShutting down...")
        await scheduler.stop()
        await provider.close()
        if db_pool is not None:
            await db_pool.disconnect()
        logger.info(f"Final coordinator status: {coordinator.get_status()}")
        print("Shutdown complete")

    return 0


if __name__ == "__main__":
    try:
        exit_code = asyncio.run(main())
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(130)
