"""
Execution module - Settlement of ready tasks.

- SettlementExecutor: Contract for real and simulated settlement
- PaperSettlementExecutor: Simulated fills with slippage and gas
"""

from .settlement import (
    AgentContext,
    PaperSettlementExecutor,
    SettlementExecutor,
    SettlementOutcome,
)

__all__ = [
    'AgentContext',
    'PaperSettlementExecutor',
    'SettlementExecutor',
    'SettlementOutcome',
]
