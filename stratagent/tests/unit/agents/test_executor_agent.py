"""
Unit tests for the ExecutorAgent aggregate.

Tests validate:
- Lifecycle transitions and their effect on execution state
- Reset out of error
- Soft delete
- Attempt recording (metrics, last execution, journal)
- Derivation from a strategy
- Schedule window checks
- Dictionary round trip
"""

import pytest
from datetime import datetime, timezone

from stratagent.src.agents.executor_agent import (
    AgentStatus,
    Capabilities,
    ExecutionSchedule,
    ExecutionStateStatus,
    ExecutorAgent,
    RetryPolicy,
)
from stratagent.src.errors import InvalidTransitionError, ValidationError
from stratagent.src.strategy.strategy import Phase, Strategy
from stratagent.src.strategy.task import Task, TaskType


NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def agent():
    return ExecutorAgent(id="agent-1", name="Test agent", linked_strategy_id="s1")


def _activate(agent: ExecutorAgent) -> ExecutorAgent:
    agent.transition_to(AgentStatus.CONFIGURED)
    agent.transition_to(AgentStatus.ACTIVE)
    return agent


# =============================================================================
# Lifecycle Tests
# =============================================================================

class TestAgentLifecycle:
    """Tests for lifecycle status transitions."""

    def test_starts_created_and_not_running(self, agent):
        assert agent.status == AgentStatus.CREATED
        assert not agent.is_running

    def test_created_cannot_jump_to_active(self, agent):
        with pytest.raises(InvalidTransitionError):
            agent.transition_to(AgentStatus.ACTIVE)

    def test_activate_sets_idle(self, agent):
        _activate(agent)
        assert agent.is_running
        assert agent.execution_state.status == ExecutionStateStatus.IDLE

    def test_pause_sets_paused_state(self, agent):
        _activate(agent).transition_to(AgentStatus.PAUSED)
        assert agent.execution_state.status == ExecutionStateStatus.PAUSED
        assert not agent.is_running

    def test_error_clears_current_task(self, agent):
        _activate(agent)
        agent.execution_state.begin_execution(Task(id="t1", task_type=TaskType.BUY), NOW)
        agent.transition_to(AgentStatus.ERROR)

        assert agent.execution_state.status == ExecutionStateStatus.ERROR
        assert agent.execution_state.current_task is None

    def test_stopped_is_final(self, agent):
        agent.transition_to(AgentStatus.STOPPED)
        for target in (AgentStatus.ACTIVE, AgentStatus.CONFIGURED, AgentStatus.PAUSED):
            assert not agent.can_transition_to(target)

    def test_same_status_is_noop(self, agent):
        agent.transition_to(AgentStatus.CREATED)
        assert agent.status == AgentStatus.CREATED


# =============================================================================
# Reset Tests
# =============================================================================

class TestAgentReset:
    """Tests for manual reset out of error."""

    def test_reset_resolves_journal(self, agent):
        _activate(agent)
        agent.record_attempt("t1", success=False, error="insufficient gas", now=NOW)
        agent.record_attempt("t2", success=False, error="rpc down", now=NOW)
        agent.transition_to(AgentStatus.ERROR)

        resolved = agent.reset()

        assert resolved == 2
        assert agent.status == AgentStatus.ACTIVE
        assert agent.execution_state.status == ExecutionStateStatus.IDLE
        assert agent.execution_state.error_journal.unresolved() == []

    def test_reset_to_configured(self, agent):
        _activate(agent).transition_to(AgentStatus.ERROR)
        agent.reset(AgentStatus.CONFIGURED)
        assert agent.status == AgentStatus.CONFIGURED

    def test_reset_requires_error_state(self, agent):
        _activate(agent)
        with pytest.raises(InvalidTransitionError, match="not in error state"):
            agent.reset()

    def test_reset_rejects_other_targets(self, agent):
        _activate(agent).transition_to(AgentStatus.ERROR)
        with pytest.raises(InvalidTransitionError):
            agent.reset(AgentStatus.PAUSED)


# =============================================================================
# Soft Delete Tests
# =============================================================================

class TestDeactivate:

    def test_deactivate_stops_and_hides(self, agent):
        _activate(agent)
        agent.deactivate()

        assert agent.status == AgentStatus.STOPPED
        assert agent.is_active is False
        assert not agent.is_running

    def test_deactivate_already_stopped(self, agent):
        agent.transition_to(AgentStatus.STOPPED)
        agent.deactivate()
        assert agent.is_active is False


# =============================================================================
# Attempt Recording Tests
# =============================================================================

class TestRecordAttempt:
    """Tests for metrics and journal updates."""

    def test_success_updates_metrics_only(self, agent):
        agent.record_attempt("t1", success=True, details="BUY BTC", execution_time_ms=40, now=NOW)

        metrics = agent.execution_state.metrics
        assert metrics.total_tasks_executed == 1
        assert metrics.successful_executions == 1
        assert metrics.uptime == 100.0
        assert agent.execution_state.last_execution.task_id == "t1"
        assert agent.execution_state.last_execution.success is True
        assert len(agent.execution_state.error_journal) == 0
        assert agent.last_active_at == NOW

    def test_failure_is_journaled(self, agent):
        agent.record_attempt("t1", success=False, error="slippage too high", now=NOW)

        entries = agent.execution_state.error_history
        assert len(entries) == 1
        assert entries[0].task_id == "t1"
        assert entries[0].error == "slippage too high"
        assert entries[0].resolved is False
        assert agent.execution_state.metrics.failed_executions == 1


# =============================================================================
# Construction Tests
# =============================================================================

class TestForStrategy:
    """Tests for deriving an agent from a strategy."""

    @pytest.fixture
    def strategy(self):
        return Strategy(
            id="s1",
            name="Majors",
            budget=5000,
            risk_tolerance="conservative",
            frequency="hourly",
            user_id="user-7",
            phases=[Phase(1, tasks=[
                Task(id="a", task_type=TaskType.BUY, token_symbol="BTC"),
                Task(id="b", task_type=TaskType.BUY, token_symbol="ETH"),
                Task(id="c", task_type=TaskType.MONITOR),
            ])],
        )

    def test_capabilities_from_strategy(self, strategy):
        agent = ExecutorAgent.for_strategy(strategy, budget_fraction=0.1)

        assert agent.linked_strategy_id == "s1"
        assert agent.user_id == "user-7"
        assert agent.capabilities.max_transaction_amount == 500.0
        assert agent.capabilities.allowed_tokens == frozenset({"BTC", "ETH"})
        assert agent.capabilities.risk_level == "conservative"
        assert agent.status == AgentStatus.CREATED

    def test_manual_approval_by_default(self, strategy):
        agent = ExecutorAgent.for_strategy(strategy)

        assert agent.execution_settings.auto_execute is False
        assert agent.execution_settings.schedule.enabled is True
        assert agent.execution_settings.schedule.interval_seconds == 3600

    def test_custom_retry_policy_and_network(self, strategy):
        agent = ExecutorAgent.for_strategy(
            strategy, network="eth", retry_policy=RetryPolicy(max_retries=1, retry_delay_ms=1000),
        )
        assert agent.network == "eth"
        assert agent.execution_settings.retry_policy.retry_delay_seconds == 1.0


# =============================================================================
# Schedule and Retry Policy Tests
# =============================================================================

class TestExecutionSchedule:
    """Tests for schedule windows."""

    def test_no_window_is_always_open(self):
        assert ExecutionSchedule().is_within_window(NOW)

    def test_inside_window(self):
        schedule = ExecutionSchedule(window_start="09:00", window_end="17:00")
        assert schedule.is_within_window(NOW)

    def test_outside_window(self):
        schedule = ExecutionSchedule(window_start="13:00", window_end="17:00")
        assert not schedule.is_within_window(NOW)

    def test_window_wrapping_midnight(self):
        schedule = ExecutionSchedule(window_start="22:00", window_end="04:00")
        assert schedule.is_within_window(datetime(2025, 1, 15, 23, 30, tzinfo=timezone.utc))
        assert schedule.is_within_window(datetime(2025, 1, 15, 3, 0, tzinfo=timezone.utc))
        assert not schedule.is_within_window(NOW)

    def test_unknown_frequency_defaults_to_daily(self):
        assert ExecutionSchedule(frequency="fortnightly").interval_seconds == 86400

    def test_malformed_window_raises_validation_error(self):
        schedule = ExecutionSchedule(window_start="9am", window_end="5pm")

        with pytest.raises(ValidationError, match="9am"):
            schedule.validate()
        with pytest.raises(ValidationError, match="expected HH:MM"):
            schedule.is_within_window(NOW)

    def test_validate_accepts_partial_window(self):
        ExecutionSchedule(window_start="09:00").validate()
        ExecutionSchedule(window_start="09:00", window_end="17:30").validate()


class TestRetryPolicy:

    def test_exhausted_after_max_retries(self):
        policy = RetryPolicy(max_retries=2)
        assert not policy.is_exhausted(2)
        assert policy.is_exhausted(3)

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_retries == 3
        assert policy.retry_delay_seconds == 300.0


# =============================================================================
# Serialization Tests
# =============================================================================

class TestAgentSerialization:

    def test_round_trip(self, agent):
        agent.capabilities = Capabilities(max_transaction_amount=250, allowed_tokens={"SEI"})
        _activate(agent)
        agent.record_attempt("t1", success=False, error="boom", now=NOW)

        restored = ExecutorAgent.from_dict(agent.to_dict())

        assert restored.status == AgentStatus.ACTIVE
        assert restored.capabilities.allowed_tokens == frozenset({"SEI"})
        assert restored.capabilities.max_transaction_amount == 250.0
        assert restored.execution_state.metrics.failed_executions == 1
        assert restored.execution_state.error_history[0].error == "boom"
        assert restored.last_active_at == NOW
