"""
Shared test fixtures for StratAgent tests.

This module provides common fixtures used across multiple test files
to reduce code duplication and ensure consistent test data. Plain
builders live in factories.py.
"""

import pytest
import tempfile
from pathlib import Path

from stratagent.src.data.market_data import StaticMarketDataProvider, TokenQuote
from stratagent.src.data.store import InMemoryStore
from stratagent.src.execution.settlement import PaperSettlementExecutor
from stratagent.src.orchestration.approval_queue import InMemoryApprovalQueue
from stratagent.src.orchestration.coordinator import ExecutionCoordinator

from stratagent.tests.factories import make_agent, make_strategy, make_task


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def temp_config_dir():
    """Create a temporary config directory with standard test config files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir)

        (config_path / "execution.yaml").write_text("""
coordinator:
  snapshot_timeout_seconds: 5
  dry_run:
    persist_results: false
agents:
  budget_fraction: 0.1
  default_network: sei
  retry_policy:
    max_retries: 3
    retry_delay_ms: 300000
market_data:
  provider: http
  base_url: http://market.test
  timeout_seconds: 5
scheduler:
  check_interval_seconds: 1
  max_concurrent_agents: 2
store:
  backend: memory
paper_settlement:
  fill_delay_ms: 0
  simulated_slippage_pct: 0.5
""")

        (config_path / "database.yaml").write_text("""
database:
  connection:
    host: localhost
    port: 5432
    database: test_db
    user: test_user
    password: test_pass
""")

        yield config_path


@pytest.fixture
def execution_config():
    """Execution config dict with paper settlement, no slippage and no fill delay."""
    return {
        "coordinator": {
            "snapshot_timeout_seconds": 1,
            "dry_run": {"persist_results": False},
        },
        "agents": {"budget_fraction": 0.1},
        "paper_settlement": {"fill_delay_ms": 0, "simulated_slippage_pct": 0.0, "gas_used": 21000},
    }


# =============================================================================
# Component Fixtures
# =============================================================================

@pytest.fixture
def btc_task():
    """BUY 600 of BTC once price is above 30000."""
    return make_task(price_above=30000)


@pytest.fixture
def market_data():
    """Static provider quoting BTC at 31000."""
    return StaticMarketDataProvider([TokenQuote("BTC", 31000.0, volume_24h=5_000_000.0, change_24h=1.5)])


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def approval_queue():
    return InMemoryApprovalQueue()


@pytest.fixture
def settlement(execution_config):
    return PaperSettlementExecutor(execution_config)


@pytest.fixture
def coordinator(store, market_data, settlement, approval_queue, execution_config):
    return ExecutionCoordinator(
        store=store,
        market_data=market_data,
        settlement=settlement,
        approval_queue=approval_queue,
        config=execution_config,
    )


@pytest.fixture
def seed(store):
    """Persist a strategy and its agent; returns an async helper."""
    async def _seed(tasks: list, **agent_kwargs):
        strategy = make_strategy(tasks)
        agent = make_agent(strategy_id=strategy.id, **agent_kwargs)
        strategy.executor_agent_id = agent.id
        await store.save_strategy(strategy)
        await store.save_agent(agent)
        return agent, strategy

    return _seed
