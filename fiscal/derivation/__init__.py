"""
Fiscal Derivation - Public API
==============================
"""

from fiscal.derivation.engine import DerivationRuleEngine
from fiscal.derivation.rules import (
    CatchAllRule,
    DerivationDecision,
    DerivationRule,
    GrandTotalThresholdRule,
    RecipientOverrideRule,
    default_rules,
    evaluate_rules,
)
from fiscal.derivation.weight import WeightEstimator

__all__ = [
    "CatchAllRule",
    "DerivationDecision",
    "DerivationRule",
    "DerivationRuleEngine",
    "GrandTotalThresholdRule",
    "RecipientOverrideRule",
    "WeightEstimator",
    "default_rules",
    "evaluate_rules",
]
