"""
Unit tests for the Task model.

Tests validate:
- Status state machine (forward-only, terminal states)
- Allocation parsing (amounts, currency strings, percentages)
- Ready-queue sort order
- Plan dictionary round trip
"""

import pytest
from datetime import datetime, timedelta, timezone

from stratagent.src.errors import InvalidTransitionError, ValidationError
from stratagent.src.strategy.task import (
    ExecutionResult,
    Task,
    TaskPriority,
    TaskStatus,
    TaskType,
    TriggerConditions,
    TASK_TRANSITIONS,
    parse_allocation,
    parse_datetime,
)


NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def task():
    return Task(id="t1", task_type=TaskType.BUY, token_symbol="BTC", allocation="600", created_at=NOW)


# =============================================================================
# State Machine Tests
# =============================================================================

class TestTaskTransitions:
    """Tests for the forward-only task status machine."""

    def test_new_task_is_pending(self, task):
        assert task.status == TaskStatus.PENDING
        assert task.is_pending
        assert not task.is_terminal

    def test_pending_to_executed_records_result(self, task):
        """Executing stores the result and the execution time."""
        result = ExecutionResult(success=True, amount_executed=600, price_executed=31000)
        task.transition_to(TaskStatus.EXECUTED, result, now=NOW)

        assert task.status == TaskStatus.EXECUTED
        assert task.execution_result is result
        assert task.executed_at == NOW
        assert task.is_terminal

    def test_executed_requires_result(self, task):
        with pytest.raises(InvalidTransitionError, match="requires an execution result"):
            task.transition_to(TaskStatus.EXECUTED)
        assert task.status == TaskStatus.PENDING

    def test_failed_requires_result(self, task):
        with pytest.raises(InvalidTransitionError):
            task.transition_to(TaskStatus.FAILED)

    def test_cancel_needs_no_result(self, task):
        task.transition_to(TaskStatus.CANCELLED)
        assert task.status == TaskStatus.CANCELLED
        assert task.execution_result is None
        assert task.executed_at is None

    def test_scheduled_can_still_execute(self, task):
        task.transition_to(TaskStatus.SCHEDULED)
        task.transition_to(TaskStatus.EXECUTED, ExecutionResult(success=True))
        assert task.status == TaskStatus.EXECUTED

    @pytest.mark.parametrize("terminal", [TaskStatus.EXECUTED, TaskStatus.FAILED, TaskStatus.CANCELLED])
    def test_terminal_states_have_no_exits(self, terminal):
        """No transition out of executed, failed or cancelled."""
        assert TASK_TRANSITIONS[terminal] == frozenset()
        assert terminal.is_terminal

    def test_executed_cannot_return_to_pending(self, task):
        task.transition_to(TaskStatus.EXECUTED, ExecutionResult(success=True))
        with pytest.raises(InvalidTransitionError, match="cannot move from executed to pending"):
            task.transition_to(TaskStatus.PENDING)

    def test_failed_cannot_be_retried_in_place(self, task):
        task.transition_to(TaskStatus.FAILED, ExecutionResult(success=False, error_message="boom"))
        with pytest.raises(InvalidTransitionError):
            task.transition_to(TaskStatus.EXECUTED, ExecutionResult(success=True))

    def test_scheduled_cannot_go_back_to_pending(self, task):
        task.transition_to(TaskStatus.SCHEDULED)
        assert not task.can_transition_to(TaskStatus.PENDING)

    def test_invalid_transition_is_validation_error(self, task):
        """Callers catching ValidationError also see transition errors."""
        task.transition_to(TaskStatus.CANCELLED)
        with pytest.raises(ValidationError) as exc_info:
            task.transition_to(TaskStatus.EXECUTED, ExecutionResult(success=True))
        assert exc_info.value.task_id == "t1"


# =============================================================================
# Allocation Parsing Tests
# =============================================================================

class TestParseAllocation:
    """Tests for parse_allocation."""

    @pytest.mark.parametrize("raw,expected", [
        ("600", 600.0),
        ("$1,200", 1200.0),
        (" 250.5 ", 250.5),
        (75, 75.0),
        (12.5, 12.5),
    ])
    def test_plain_amounts(self, raw, expected):
        assert parse_allocation(raw) == expected

    def test_percentage_resolves_against_budget(self):
        assert parse_allocation("10%", budget=5000) == 500.0

    def test_percentage_without_budget_is_bare_number(self):
        assert parse_allocation("10%") == 10.0

    def test_missing_allocation(self):
        assert parse_allocation(None) is None
        assert parse_allocation("") is None

    @pytest.mark.parametrize("raw", ["lots", "abc%", True])
    def test_unparseable_raises(self, raw):
        with pytest.raises(ValueError):
            parse_allocation(raw)

    def test_task_allocation_amount(self, task):
        assert task.allocation_amount() == 600.0


# =============================================================================
# Ordering Tests
# =============================================================================

class TestTaskOrdering:
    """Tests for the ready-queue sort key."""

    def test_priority_before_creation_time(self):
        older_low = Task(id="a", task_type=TaskType.BUY, priority=TaskPriority.LOW, created_at=NOW)
        newer_high = Task(
            id="b", task_type=TaskType.BUY, priority=TaskPriority.HIGH,
            created_at=NOW + timedelta(hours=1),
        )
        ordered = sorted([older_low, newer_high], key=Task.sort_key)
        assert [t.id for t in ordered] == ["b", "a"]

    def test_equal_priority_orders_by_creation_time(self):
        first = Task(id="first", task_type=TaskType.BUY, created_at=NOW)
        second = Task(id="second", task_type=TaskType.BUY, created_at=NOW + timedelta(seconds=1))
        ordered = sorted([second, first], key=Task.sort_key)
        assert [t.id for t in ordered] == ["first", "second"]

    def test_identical_timestamps_fall_back_to_plan_order(self):
        a = Task(id="a", task_type=TaskType.BUY, created_at=NOW, sequence=1)
        b = Task(id="b", task_type=TaskType.BUY, created_at=NOW, sequence=0)
        ordered = sorted([a, b], key=Task.sort_key)
        assert [t.id for t in ordered] == ["b", "a"]

    def test_priority_rank(self):
        assert TaskPriority.HIGH.rank > TaskPriority.MEDIUM.rank > TaskPriority.LOW.rank


# =============================================================================
# Serialization Tests
# =============================================================================

class TestTaskSerialization:
    """Tests for to_dict/from_dict."""

    def test_from_plan_dict(self):
        data = {
            "taskId": "task_1",
            "taskType": "buy",
            "tokenSymbol": "SEI",
            "allocation": 250,
            "priority": "high",
            "triggerConditions": {"priceBelow": "0.5", "marketCondition": "dip"},
            "createdAt": "2025-01-15T12:00:00Z",
        }
        task = Task.from_dict(data)

        assert task.task_type == TaskType.BUY
        assert task.allocation == "250"
        assert task.priority == TaskPriority.HIGH
        assert task.trigger_conditions.price_below == 0.5
        assert task.trigger_conditions.market_condition == "dip"
        assert task.created_at == NOW
        assert task.status == TaskStatus.PENDING

    def test_round_trip_preserves_result(self, task):
        task.transition_to(
            TaskStatus.EXECUTED,
            ExecutionResult(success=True, transaction_hash="0xabc", amount_executed=600),
            now=NOW,
        )
        restored = Task.from_dict(task.to_dict())

        assert restored.status == TaskStatus.EXECUTED
        assert restored.execution_result.transaction_hash == "0xabc"
        assert restored.executed_at == NOW

    def test_trigger_conditions_drop_unset_keys(self):
        conditions = TriggerConditions(price_above=100)
        assert conditions.to_dict() == {"priceAbove": 100}
        assert not conditions.is_empty()
        assert TriggerConditions(market_condition="bullish").is_empty()

    def test_parse_datetime_naive_is_utc(self):
        parsed = parse_datetime("2025-01-15T12:00:00")
        assert parsed.tzinfo is not None
        assert parsed == NOW
