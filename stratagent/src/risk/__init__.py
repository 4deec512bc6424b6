"""
StratAgent Risk Module.

Deterministic, I/O-free gates applied before any task executes:
- Condition evaluator: trigger conditions against a market snapshot
- Capability authorizer: task against an agent's capability profile
"""

from .conditions import ConditionCheck, ConditionEvaluator, evaluate
from .authorizer import TASK_TYPE_RULES, TaskCategory, TaskTypeRule, authorize, explain

__all__ = [
    'ConditionCheck',
    'ConditionEvaluator',
    'evaluate',
    'TASK_TYPE_RULES',
    'TaskCategory',
    'TaskTypeRule',
    'authorize',
    'explain',
]
