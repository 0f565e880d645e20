from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from loyalty.models.commission_rule import CommissionType
from loyalty.models.salon import Salon
from loyalty.models.user import Level, UserRole
from loyalty.services.commission_service import CommissionService


def evaluate(db, amount, role=UserRole.STYLIST, level=None, target_id=None, product_ids=(), now=None):
    return CommissionService.evaluate(db, Decimal(amount), role, level, target_id, product_ids, now)


def test_percentage_rule_matches(db, make_rule):
    rule = make_rule(value=10, priority=0)

    result = evaluate(db, "1000")

    assert result.rate == Decimal("10")
    assert result.amount == Decimal("100.00")
    assert result.rule_id == rule.id


def test_tiered_rule_without_matching_tier_is_skipped(db, make_rule):
    make_rule(type=CommissionType.TIERED, tiers=[{"min_amount": "2000", "max_amount": None, "rate": "5"}])

    result = evaluate(db, "500")

    assert result.rate == 0
    assert result.amount == 0
    assert result.rule_id is None


def test_tiered_rule_falls_through_to_next_rule(db, make_rule):
    make_rule(type=CommissionType.TIERED, priority=5, tiers=[{"min_amount": "2000", "max_amount": None, "rate": "5"}])
    fallback = make_rule(value=3, priority=0)

    result = evaluate(db, "500")

    assert result.rule_id == fallback.id
    assert result.amount == Decimal("15.00")


def test_tiered_rule_picks_bracket(db, make_rule):
    make_rule(
        type=CommissionType.TIERED,
        tiers=[
            {"min_amount": "0", "max_amount": "999", "rate": "5"},
            {"min_amount": "1000", "max_amount": None, "rate": "8"},
        ],
    )

    assert evaluate(db, "500").amount == Decimal("25.00")
    result = evaluate(db, "1500")
    assert result.rate == Decimal("8")
    assert result.amount == Decimal("120.00")


@pytest.mark.parametrize("specific_first", [True, False])
def test_higher_priority_specific_rule_wins(db, make_rule, stylist, specific_first):
    def generic():
        return make_rule(name="generic", value=5, priority=0)

    def specific():
        return make_rule(name="vip", value=15, priority=10, stylist_ids=[stylist.id])

    if specific_first:
        vip, _ = specific(), generic()
    else:
        _, vip = generic(), specific()

    result = evaluate(db, "1000", target_id=stylist.id)

    assert result.rule_id == vip.id
    assert result.amount == Decimal("150.00")


def test_equal_priority_keeps_insertion_order(db, make_rule):
    first = make_rule(name="first", value=4)
    make_rule(name="second", value=9)

    assert evaluate(db, "100").rule_id == first.id


def test_cap_is_enforced(db, make_rule):
    make_rule(value=10, max_commission=50)

    result = evaluate(db, "1000")

    assert result.amount == Decimal("50.00")
    assert result.rate == Decimal("10")


def test_fixed_rule_ignores_order_amount(db, make_rule):
    make_rule(type=CommissionType.FIXED, value=75)

    assert evaluate(db, "100").amount == Decimal("75.00")
    assert evaluate(db, "10000").amount == Decimal("75.00")


def test_validity_window(db, make_rule):
    now = datetime(2024, 6, 1, 12, 0)
    make_rule(name="future", value=20, priority=10, valid_from=now + timedelta(days=1))
    make_rule(name="past", value=15, priority=5, valid_until=now - timedelta(days=1))
    current = make_rule(name="current", value=10, valid_from=now - timedelta(days=1), valid_until=now + timedelta(days=1))

    assert evaluate(db, "100", now=now).rule_id == current.id


def test_minimum_order_amount(db, make_rule):
    make_rule(value=10, min_order_amount=500)

    assert evaluate(db, "499.99").amount == 0
    assert evaluate(db, "500").amount == Decimal("50.00")


def test_level_filter(db, make_rule):
    make_rule(value=10, allowed_levels=[Level.GOLD.value])

    assert evaluate(db, "100", level=Level.SILVER).amount == 0
    assert evaluate(db, "100", level=None).amount == 0
    assert evaluate(db, "100", level=Level.GOLD).amount == Decimal("10.00")


def test_role_filter(db, make_rule):
    make_rule(value=10, role_applicable=[UserRole.SALON_OWNER.value])

    assert evaluate(db, "100", role=UserRole.STYLIST).amount == 0
    assert evaluate(db, "100", role=UserRole.SALON_OWNER).amount == Decimal("10.00")


def test_product_filter_needs_intersection(db, make_rule):
    make_rule(value=10, product_ids=["111"])

    assert evaluate(db, "100", product_ids=["222"]).amount == 0
    assert evaluate(db, "100").amount == 0
    assert evaluate(db, "100", product_ids=["222", "111"]).amount == Decimal("10.00")


def test_inactive_rules_are_ignored(db, make_rule):
    make_rule(value=10, is_active=False)

    assert evaluate(db, "100").amount == 0


def test_amount_rounds_half_up_to_cents(db, make_rule):
    make_rule(value=Decimal("12.5"))

    assert evaluate(db, "33.33").amount == Decimal("4.17")


def test_dual_commission_for_salon_stylist(db, make_rule, stylist):
    make_rule(name="stylists", value=10, role_applicable=[UserRole.STYLIST.value])
    make_rule(name="salons", value=5, role_applicable=[UserRole.SALON_OWNER.value])

    dual = CommissionService.calculate_dual_commission(db, Decimal("1000"), stylist)

    assert dual.stylist.amount == Decimal("100.00")
    assert dual.salon.amount == Decimal("50.00")


def test_dual_commission_without_salon(db, make_rule, freelancer):
    make_rule(value=10)

    dual = CommissionService.calculate_dual_commission(db, Decimal("1000"), freelancer)

    assert dual.stylist.amount == Decimal("100.00")
    assert dual.salon.amount == 0
    assert dual.salon.rule_id is None


def test_salon_without_level_is_evaluated_at_lowest_level(db, make_rule, stylist, salon):
    db.execute(update(Salon).where(Salon.id == salon.id).values(level=None))
    db.commit()
    make_rule(
        name="bronze salons",
        value=2,
        role_applicable=[UserRole.SALON_OWNER.value],
        allowed_levels=[Level.BRONZE.value],
    )

    dual = CommissionService.calculate_dual_commission(db, Decimal("1000"), stylist)

    assert dual.salon.amount == Decimal("20.00")


def test_salon_side_ignores_stylist_specific_rules(db, make_rule, stylist):
    make_rule(value=10, stylist_ids=[stylist.id])

    dual = CommissionService.calculate_dual_commission(db, Decimal("1000"), stylist)

    assert dual.stylist.amount == Decimal("100.00")
    assert dual.salon.amount == 0


def test_snapshot_rate_defaults_without_rules(db, freelancer):
    assert CommissionService.snapshot_rate(db, freelancer) == Decimal("10")


def test_snapshot_rate_uses_role_rule(db, make_rule, freelancer):
    make_rule(value=12, role_applicable=[UserRole.STYLIST.value])

    assert CommissionService.snapshot_rate(db, freelancer) == Decimal("12")
