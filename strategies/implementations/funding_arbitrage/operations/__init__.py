"""Convenience exports for the funding arbitrage operations layer."""

from .execution_coordinator import ExecutionCoordinator
from .opportunity_analyzer import OpportunityAnalyzer
from .strategy_locks import StrategyLockRegistry

__all__ = [
    "ExecutionCoordinator",
    "OpportunityAnalyzer",
    "StrategyLockRegistry",
]
