# services/tariffs.py
"""
Tiered water tariff computation.

Pure functions only: given a consumption, a classification, the member's
discount flags and a validated `BillSettings`, produce the amounts. Nothing
here touches the database, so previews and the persisted bill go through the
exact same arithmetic.

Rules:
- the bracket is the active tier whose [min, max] range contains the
  consumption (inclusive on both ends);
- a flat bracket charges its flat amount;
- a per-unit bracket charges the minimum charge (flat amount of the lowest
  flat bracket) plus (consumption - that bracket's max) * unit rate;
- senior discount applies only on the configured tiers; otherwise a PWD
  discount applies when the member has one;
- every money value is rounded half-up to centavos.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, Optional

from errors import NoTariffFoundError, ValidationError
from schemas import BillSettings, TariffTierSchema

Q2 = Decimal("0.01")
Q3 = Decimal("0.001")
ZERO = Decimal("0")


def D(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    if x is None or x == "":
        return ZERO
    try:
        return Decimal(str(x))
    except InvalidOperation:
        raise ValidationError(f"Not a number: {x!r}")


def money(x) -> Decimal:
    return D(x).quantize(Q2, rounding=ROUND_HALF_UP)


def qty(x) -> Decimal:
    return D(x).quantize(Q3, rounding=ROUND_HALF_UP)


def fmt_rate(rate) -> str:
    # 5.00 -> "5", 2.50 -> "2.5"
    return format(D(rate).normalize(), "f")


@dataclass(frozen=True)
class BillComputation:
    classification: str
    consumption: Decimal
    tier: TariffTierSchema
    minimum_charge: Decimal
    threshold: Decimal
    excess_consumption: Decimal
    excess_amount: Decimal
    base_amount: Decimal
    discount: Decimal
    discount_reason: str
    final_amount: Decimal

    def tariff_snapshot(self) -> dict:
        """JSON-safe copy of the bracket used (decimals as strings)."""
        t = self.tier
        return {
            "classification": t.classification,
            "tier": t.tier,
            "min_consumption": str(qty(t.min_consumption)),
            "max_consumption": str(qty(t.max_consumption)),
            "charge_type": t.charge_type,
            "flat_amount": str(money(t.flat_amount)),
            "unit_rate": str(money(t.unit_rate)),
            "description": t.description,
        }

    def breakdown(self) -> dict:
        return {
            "consumption": str(qty(self.consumption)),
            "minimum_charge": str(self.minimum_charge),
            "threshold": str(qty(self.threshold)),
            "excess_consumption": str(qty(self.excess_consumption)),
            "excess_rate": str(money(self.tier.unit_rate)) if self.tier.charge_type == "per_unit" else "0.00",
            "excess_amount": str(self.excess_amount),
            "base_amount": str(self.base_amount),
            "discount": str(self.discount),
            "discount_reason": self.discount_reason,
            "final_amount": str(self.final_amount),
        }


def active_tiers(tiers: Iterable[TariffTierSchema]) -> list[TariffTierSchema]:
    return sorted((t for t in tiers if t.is_active), key=lambda t: t.min_consumption)


def find_tier(tiers: Iterable[TariffTierSchema], consumption: Decimal) -> Optional[TariffTierSchema]:
    for t in active_tiers(tiers):
        if t.min_consumption <= consumption <= t.max_consumption:
            return t
    return None


def minimum_bracket(tiers: Iterable[TariffTierSchema]) -> Optional[TariffTierSchema]:
    """Lowest active flat bracket; its flat amount is the minimum charge."""
    for t in active_tiers(tiers):
        if t.charge_type == "flat":
            return t
    return None


def compute_bill(
    consumption,
    classification: str,
    senior_eligible: bool,
    settings: BillSettings,
    pwd_discount_rate=ZERO,
) -> BillComputation:
    consumption = D(consumption)
    if not consumption.is_finite() or consumption < 0:
        raise ValidationError(f"Consumption must be a non-negative number, got {consumption}")
    if classification not in ("residential", "commercial"):
        raise ValidationError(f"Unknown classification: {classification}")

    tiers = settings.tariffs.for_classification(classification)
    tier = find_tier(tiers, consumption)
    if tier is None:
        raise NoTariffFoundError(
            f"No tariff found for {classification} consumption {fmt_rate(consumption)} m3",
            classification=classification,
            consumption=str(consumption),
        )

    if tier.charge_type == "flat":
        minimum = money(tier.flat_amount)
        threshold = D(tier.max_consumption)
        excess = ZERO
        excess_amount = money(0)
    else:
        floor = minimum_bracket(tiers)
        minimum = money(floor.flat_amount) if floor else money(0)
        threshold = D(floor.max_consumption) if floor else ZERO
        excess = max(ZERO, consumption - threshold)
        excess_amount = money(excess * D(tier.unit_rate))
    base = money(minimum + excess_amount)

    discount = money(0)
    reason = ""
    policy = settings.senior_discount
    pwd_rate = D(pwd_discount_rate)
    if senior_eligible and tier.tier in policy.applicable_tiers and D(policy.discount_rate) > 0:
        discount = money(base * D(policy.discount_rate) / 100)
        reason = f"Senior Citizen Discount ({fmt_rate(policy.discount_rate)}%)"
    elif pwd_rate > 0:
        discount = money(base * pwd_rate / 100)
        reason = f"PWD Discount ({fmt_rate(pwd_rate)}%)"

    final = money(max(ZERO, base - discount))
    return BillComputation(
        classification=classification,
        consumption=consumption,
        tier=tier,
        minimum_charge=minimum,
        threshold=threshold,
        excess_consumption=excess,
        excess_amount=excess_amount,
        base_amount=base,
        discount=discount,
        discount_reason=reason,
        final_amount=final,
    )
