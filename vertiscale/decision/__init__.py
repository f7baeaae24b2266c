"""
Decision layer for the autoscaler.

This module provides:
- Rules file models (metric rules, scheduled actions, size guards)
- Decision engine that turns them into scale intents
"""

from vertiscale.decision.engine import DecisionEngine, MetricsSource, RuleMatch
from vertiscale.decision.rules import (
    RuleSet,
    ScaleRule,
    ScaleSchedule,
    SizeGuard,
    load_rules,
)

__all__ = [
    # Engine
    "DecisionEngine",
    "MetricsSource",
    "RuleMatch",
    # Rules
    "RuleSet",
    "ScaleRule",
    "ScaleSchedule",
    "SizeGuard",
    "load_rules",
]
