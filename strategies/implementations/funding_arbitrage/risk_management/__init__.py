"""
Risk management for funding arbitrage.

- limit_engine: pre-trade limits (pure decision function) + BookReader
- kill_switch: per-strategy kill predicates evaluated by the supervisor
- exposure_monitor: portfolio snapshots and emergency exposure reduction
"""

from .exposure_monitor import RISK_LIMIT_ENFORCEMENT, ExposureMonitor
from .kill_switch import KillReason, KillSwitchEvaluator
from .limit_engine import KILL_SWITCH_EVENT, BookReader, RiskLimitEngine

__all__ = [
    'RiskLimitEngine',
    'BookReader',
    'KILL_SWITCH_EVENT',
    'KillSwitchEvaluator',
    'KillReason',
    'ExposureMonitor',
    'RISK_LIMIT_ENFORCEMENT',
]
