"""
Fiscal Derivation - Rules
=========================
Ordered rules deciding whether an accepted invoice needs a waybill.

Each rule answers True (derive), False (do not derive) or None (no
opinion). The first non-None answer wins; with no answer at all nothing
is derived.

Default rule set:
    1. RecipientOverrideRule   per-recipient yes/no
    2. GrandTotalThresholdRule grand_total > threshold -> True
    3. CatchAllRule            configured default
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Protocol

from fiscal.documents.models import FiscalDocument


class DerivationRule(Protocol):
    name: str

    def evaluate(self, invoice: FiscalDocument) -> Optional[bool]:
        ...


@dataclass(frozen=True)
class DerivationDecision:
    requires_waybill: bool
    rule: str


@dataclass(frozen=True)
class RecipientOverrideRule:
    overrides: Mapping[str, bool] = field(default_factory=dict)
    name: str = "recipient_override"

    def evaluate(self, invoice: FiscalDocument) -> Optional[bool]:
        return self.overrides.get(invoice.recipient_tax_id)


@dataclass(frozen=True)
class GrandTotalThresholdRule:
    threshold: Decimal
    name: str = "grand_total_threshold"

    def __post_init__(self) -> None:
        if self.threshold < 0:
            raise ValueError("threshold must be >= 0.")

    def evaluate(self, invoice: FiscalDocument) -> Optional[bool]:
        if invoice.totals.grand_total > self.threshold:
            return True
        return None


@dataclass(frozen=True)
class CatchAllRule:
    default: bool = False
    name: str = "catch_all"

    def evaluate(self, invoice: FiscalDocument) -> Optional[bool]:
        return self.default


def evaluate_rules(rules: Iterable[DerivationRule], invoice: FiscalDocument) -> DerivationDecision:
    for rule in rules:
        answer = rule.evaluate(invoice)
        if answer is not None:
            return DerivationDecision(requires_waybill=bool(answer), rule=rule.name)
    return DerivationDecision(requires_waybill=False, rule="none")


def default_rules(
    threshold: Decimal,
    default_requires_waybill: bool = False,
    recipient_overrides: Optional[Mapping[str, bool]] = None,
) -> tuple[DerivationRule, ...]:
    return (
        RecipientOverrideRule(dict(recipient_overrides or {})),
        GrandTotalThresholdRule(threshold),
        CatchAllRule(default_requires_waybill),
    )
