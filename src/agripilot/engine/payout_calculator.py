"""
AgriPilot Payout Calculator

Turns a fired trigger into payout components.

    fix_payout       = fix_payout_amount x (area_hectares if is_payout_per_hectare else 1)
    threshold_payout = payout_base_rate x coverage_amount x max(over) x over_threshold_multiplier
    claim_amount     = min(fix_payout + threshold_payout, payout_cap)

The threshold component is driven by the single worst fired condition.
All amounts are integer minor units, rounded half-up, never negative.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from ..models import (
    BasePolicy,
    CapExceededWarning,
    ConditionResult,
    Farm,
    PayoutBreakdown,
    RegisteredPolicy,
)
from ..money import round_minor

logger = logging.getLogger(__name__)


def apply_cap(total: int, payout_cap: Optional[int]) -> tuple[int, Optional[CapExceededWarning]]:
    """Clamp a total to [0, cap]. No cap means no ceiling."""
    total = max(total, 0)
    if payout_cap is not None and total > payout_cap:
        return payout_cap, CapExceededWarning(uncapped_amount=total, payout_cap=payout_cap)
    return total, None


@dataclass
class PayoutCalculator:
    """
    Usage:
        calculator = PayoutCalculator()
        breakdown = calculator.calculate(base, registered, farm, outcome.fired_conditions)
    """

    def fix_payout(self, base_policy: BasePolicy, farm: Farm) -> int:
        if base_policy.is_payout_per_hectare:
            return max(round_minor(Decimal(base_policy.fix_payout_amount) * farm.area_hectares), 0)
        return max(base_policy.fix_payout_amount, 0)

    def threshold_payout(
        self,
        base_policy: BasePolicy,
        registered_policy: RegisteredPolicy,
        over_threshold_value: Optional[float],
    ) -> int:
        if over_threshold_value is None:
            return 0
        amount = (
            base_policy.payout_base_rate
            * Decimal(registered_policy.coverage_amount)
            * Decimal(str(over_threshold_value))
            * base_policy.over_threshold_multiplier
        )
        return max(round_minor(amount), 0)

    def calculate(
        self,
        base_policy: BasePolicy,
        registered_policy: RegisteredPolicy,
        farm: Farm,
        fired_conditions: Sequence[ConditionResult],
    ) -> PayoutBreakdown:
        driver = _worst_condition(fired_conditions)
        over = driver.over_threshold_value if driver else None

        fix = self.fix_payout(base_policy, farm)
        threshold = self.threshold_payout(base_policy, registered_policy, over)
        return self._finish(
            base_policy,
            fix,
            threshold,
            over_threshold_value=over,
            driver_condition_id=driver.condition_id if driver else None,
            entity_id=registered_policy.id,
        )

    def from_components(
        self,
        base_policy: BasePolicy,
        fix_payout: int,
        threshold_payout: int,
        over_threshold_value: Optional[float] = None,
    ) -> PayoutBreakdown:
        """Apply the same clamping and cap to explicitly supplied components."""
        return self._finish(
            base_policy,
            max(fix_payout, 0),
            max(threshold_payout, 0),
            over_threshold_value=over_threshold_value,
        )

    def _finish(
        self,
        base_policy: BasePolicy,
        fix: int,
        threshold: int,
        over_threshold_value: Optional[float] = None,
        driver_condition_id: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> PayoutBreakdown:
        claim_amount, cap_warning = apply_cap(fix + threshold, base_policy.payout_cap)
        if cap_warning is not None:
            logger.warning(
                "CapExceededWarning: payout %d capped at %d %s",
                cap_warning.uncapped_amount,
                cap_warning.payout_cap,
                base_policy.coverage_currency,
                extra={"registered_policy_id": entity_id, "base_policy_id": base_policy.id},
            )
        return PayoutBreakdown(
            fix_payout=fix,
            threshold_payout=threshold,
            claim_amount=claim_amount,
            currency=base_policy.coverage_currency,
            over_threshold_value=over_threshold_value,
            cap_exceeded=cap_warning,
            driver_condition_id=driver_condition_id,
        )


def _worst_condition(results: Sequence[ConditionResult]) -> Optional[ConditionResult]:
    scored = [r for r in results if r.has_fired and r.over_threshold_value is not None]
    if not scored:
        return None
    return max(scored, key=lambda r: r.over_threshold_value)
