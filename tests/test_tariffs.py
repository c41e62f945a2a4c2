from decimal import Decimal

import pydantic
import pytest

from errors import NoTariffFoundError, ValidationError
from schemas import BillSettings, DiscountPolicy, TariffSchedule, TariffTierSchema
from services.settings_provider import default_settings
from services.tariffs import compute_bill, money


@pytest.fixture
def defaults() -> BillSettings:
    return default_settings()


@pytest.mark.parametrize(
    "classification, consumption, expected, tier",
    [
        ("residential", 0, "74.00", "0-5"),
        ("residential", 5, "74.00", "0-5"),
        ("residential", 6, "90.20", "6-10"),
        ("residential", 10, "155.00", "6-10"),
        ("residential", 11, "180.20", "11-20"),
        ("residential", 41, "873.20", "41+"),
        ("commercial", 15, "442.50", "0-15"),
        ("commercial", 16, "475.00", "16-30"),
        ("commercial", 31, "1008.90", "31+"),
    ],
)
def test_reference_values(defaults, classification, consumption, expected, tier):
    c = compute_bill(consumption, classification, False, defaults)
    assert c.tier.tier == tier
    assert c.base_amount == Decimal(expected)
    assert c.final_amount == Decimal(expected)
    assert c.discount == Decimal("0.00")


def test_per_unit_charges_excess_over_minimum_bracket(defaults):
    c = compute_bill(41, "residential", False, defaults)
    assert c.minimum_charge == Decimal("74.00")
    assert c.excess_consumption == Decimal("36")
    assert c.excess_amount == Decimal("799.20")
    bd = c.breakdown()
    assert bd["excess_rate"] == "22.20"
    assert bd["minimum_charge"] == "74.00"


def test_senior_discount_on_eligible_tier(defaults):
    c = compute_bill(35, "residential", True, defaults)
    assert c.base_amount == Decimal("695.00")
    assert c.discount == Decimal("34.75")
    assert c.final_amount == Decimal("660.25")
    assert c.discount_reason == "Senior Citizen Discount (5%)"


def test_senior_discount_not_applied_outside_listed_tiers(defaults):
    c = compute_bill(25, "residential", True, defaults)
    assert c.tier.tier == "21-30"
    assert c.discount == Decimal("0.00")
    assert c.discount_reason == ""


def test_pwd_discount_applies_on_any_tier(defaults):
    c = compute_bill(5, "residential", False, defaults, pwd_discount_rate=Decimal("20"))
    assert c.discount == Decimal("14.80")
    assert c.final_amount == Decimal("59.20")
    assert c.discount_reason == "PWD Discount (20%)"


def test_senior_discount_takes_precedence_over_pwd(defaults):
    c = compute_bill(41, "residential", True, defaults, pwd_discount_rate=Decimal("20"))
    assert c.discount_reason.startswith("Senior Citizen")
    assert c.discount == money(Decimal("873.20") * 5 / 100)


def test_half_up_rounding(defaults):
    s = defaults.model_copy(update={"senior_discount": DiscountPolicy(discount_rate=Decimal("2.5"), applicable_tiers=["6-10"])})
    # 90.20 * 2.5% = 2.255 -> 2.26
    c = compute_bill(6, "residential", True, s)
    assert c.discount == Decimal("2.26")
    assert c.final_amount == Decimal("87.94")


def test_no_tariff_above_last_bracket(defaults):
    with pytest.raises(NoTariffFoundError):
        compute_bill(501, "residential", False, defaults)


def test_fractional_consumption_between_brackets(defaults):
    with pytest.raises(NoTariffFoundError):
        compute_bill(Decimal("5.5"), "residential", False, defaults)


def test_inactive_tier_is_ignored(defaults):
    tiers = [t.model_copy(update={"is_active": t.tier != "41+"}) for t in defaults.tariffs.residential]
    s = defaults.model_copy(update={"tariffs": TariffSchedule(residential=tiers, commercial=defaults.tariffs.commercial)})
    with pytest.raises(NoTariffFoundError):
        compute_bill(41, "residential", False, s)


def test_negative_consumption_rejected(defaults):
    with pytest.raises(ValidationError):
        compute_bill(-1, "residential", False, defaults)


def test_unknown_classification_rejected(defaults):
    with pytest.raises(ValidationError):
        compute_bill(5, "industrial", False, defaults)


def test_pure_per_unit_schedule_without_flat_bracket():
    schedule = TariffSchedule(
        residential=[
            TariffTierSchema(classification="residential", tier="all", min_consumption=0, max_consumption=100, unit_rate=Decimal("10"))
        ]
    )
    c = compute_bill(7, "residential", False, BillSettings(tariffs=schedule))
    assert c.minimum_charge == Decimal("0.00")
    assert c.base_amount == Decimal("70.00")


def test_overlapping_active_tiers_rejected():
    with pytest.raises(pydantic.ValidationError):
        TariffSchedule(
            residential=[
                TariffTierSchema(classification="residential", tier="a", min_consumption=0, max_consumption=10, charge_type="flat", flat_amount=1),
                TariffTierSchema(classification="residential", tier="b", min_consumption=10, max_consumption=20, unit_rate=1),
            ]
        )


def test_overlap_allowed_when_one_tier_inactive():
    s = TariffSchedule(
        residential=[
            TariffTierSchema(classification="residential", tier="a", min_consumption=0, max_consumption=10, charge_type="flat", flat_amount=1),
            TariffTierSchema(classification="residential", tier="b", min_consumption=10, max_consumption=20, unit_rate=1, is_active=False),
        ]
    )
    assert len(s.residential) == 2


def test_min_greater_than_max_rejected():
    with pytest.raises(pydantic.ValidationError):
        TariffTierSchema(classification="residential", tier="x", min_consumption=10, max_consumption=5)
