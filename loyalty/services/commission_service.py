"""Commission calculation.

Rules are tried in descending priority and the first one that survives
every skip-predicate wins. A rule whose filter lists are empty passes
every predicate, which is what makes it a catch-all default.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, List, Optional, Sequence

from sqlalchemy.orm import Session

from loyalty.core.config import settings
from loyalty.models.commission_rule import CommissionRule, CommissionType
from loyalty.models.salon import Salon
from loyalty.models.user import User, UserRole, LOWEST_LEVEL
from loyalty.services.commission_rule_service import CommissionRuleService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")


@dataclass
class CommissionTarget:
    role: str
    level: Optional[str] = None
    target_id: Optional[str] = None
    product_ids: Sequence[str] = field(default_factory=list)


@dataclass
class CommissionResult:
    rate: Decimal
    amount: Decimal
    rule_id: Optional[str] = None


@dataclass
class DualCommission:
    stylist: CommissionResult
    salon: CommissionResult


def _value(item) -> str:
    return str(getattr(item, "value", item))


def _constraint(values) -> List[str]:
    return [_value(v) for v in values or []]


def _decimal(value) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _naive_utc(moment: Optional[datetime]) -> Optional[datetime]:
    if moment is not None and moment.tzinfo is not None:
        return moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


# Skip-predicates, evaluated in this order. Each returns True when the rule does not apply.

def _not_yet_valid(rule: CommissionRule, amount: Decimal, target: CommissionTarget, now: datetime) -> bool:
    valid_from = _naive_utc(rule.valid_from)
    return valid_from is not None and valid_from > now


def _no_longer_valid(rule: CommissionRule, amount: Decimal, target: CommissionTarget, now: datetime) -> bool:
    valid_until = _naive_utc(rule.valid_until)
    return valid_until is not None and valid_until < now


def _below_minimum(rule: CommissionRule, amount: Decimal, target: CommissionTarget, now: datetime) -> bool:
    return amount < _decimal(rule.min_order_amount)


def _product_mismatch(rule: CommissionRule, amount: Decimal, target: CommissionTarget, now: datetime) -> bool:
    products = _constraint(rule.product_ids)
    return bool(products) and not set(products) & {_value(p) for p in target.product_ids}


def _individual_mismatch(rule: CommissionRule, amount: Decimal, target: CommissionTarget, now: datetime) -> bool:
    individuals = _constraint(rule.stylist_ids)
    return bool(individuals) and target.target_id not in individuals


def _level_mismatch(rule: CommissionRule, amount: Decimal, target: CommissionTarget, now: datetime) -> bool:
    levels = _constraint(rule.allowed_levels)
    return bool(levels) and (target.level is None or _value(target.level) not in levels)


def _role_mismatch(rule: CommissionRule, amount: Decimal, target: CommissionTarget, now: datetime) -> bool:
    roles = _constraint(rule.role_applicable)
    return bool(roles) and _value(target.role) not in roles


SKIP_PREDICATES: List[Callable[[CommissionRule, Decimal, CommissionTarget, datetime], bool]] = [
    _not_yet_valid,
    _no_longer_valid,
    _below_minimum,
    _product_mismatch,
    _individual_mismatch,
    _level_mismatch,
    _role_mismatch,
]


def _find_tier(tiers, amount: Decimal) -> Optional[dict]:
    for tier in tiers or []:
        max_amount = tier.get("max_amount")
        if amount >= _decimal(tier.get("min_amount")) and (max_amount is None or amount <= _decimal(max_amount)):
            return tier
    return None


def _raw_commission(rule: CommissionRule, amount: Decimal) -> Optional[CommissionResult]:
    """Rate and uncapped amount for a rule, or None when a tiered rule has no matching tier"""
    rule_type = CommissionType(_value(rule.type))

    if rule_type == CommissionType.PERCENTAGE:
        rate = _decimal(rule.value)
        return CommissionResult(rate=rate, amount=amount * rate / 100, rule_id=rule.id)

    if rule_type == CommissionType.FIXED:
        value = _decimal(rule.value)
        return CommissionResult(rate=value, amount=value, rule_id=rule.id)

    tier = _find_tier(rule.tiers, amount)
    if tier is None:
        return None
    rate = _decimal(tier.get("rate"))
    return CommissionResult(rate=rate, amount=amount * rate / 100, rule_id=rule.id)


def evaluate_rules(
    rules: Sequence[CommissionRule],
    order_amount,
    target: CommissionTarget,
    now: Optional[datetime] = None,
) -> CommissionResult:
    """First-match-wins evaluation over rules already ordered by priority"""
    now = _naive_utc(now) or datetime.utcnow()
    amount = _decimal(order_amount)

    for rule in rules:
        if any(skip(rule, amount, target, now) for skip in SKIP_PREDICATES):
            continue

        result = _raw_commission(rule, amount)
        if result is None:
            continue

        if rule.max_commission is not None and result.amount > _decimal(rule.max_commission):
            result.amount = _decimal(rule.max_commission)

        result.amount = result.amount.quantize(CENT, rounding=ROUND_HALF_UP)
        return result

    return CommissionResult(rate=ZERO, amount=ZERO)


class CommissionService:
    @staticmethod
    def evaluate(
        db: Session,
        order_amount,
        target_role,
        target_level=None,
        target_id: Optional[str] = None,
        product_ids: Sequence[str] = (),
        now: Optional[datetime] = None,
    ) -> CommissionResult:
        """Best matching rule for a single target"""
        rules = CommissionRuleService.find_active_rules_ordered_by_priority(db)
        target = CommissionTarget(
            role=_value(target_role),
            level=_value(target_level) if target_level is not None else None,
            target_id=target_id,
            product_ids=list(product_ids or []),
        )
        return evaluate_rules(rules, order_amount, target, now)

    @staticmethod
    def calculate_dual_commission(
        db: Session,
        order_amount,
        stylist: User,
        product_ids: Sequence[str] = (),
        now: Optional[datetime] = None,
    ) -> DualCommission:
        """Stylist commission plus, when the stylist belongs to a salon, the salon's share"""
        rules = CommissionRuleService.find_active_rules_ordered_by_priority(db)
        product_ids = list(product_ids or [])

        stylist_result = evaluate_rules(
            rules,
            order_amount,
            CommissionTarget(
                role=UserRole.STYLIST.value,
                level=_value(stylist.level) if stylist.level is not None else None,
                target_id=stylist.id,
                product_ids=product_ids,
            ),
            now,
        )

        if not stylist.salon_id:
            return DualCommission(stylist=stylist_result, salon=CommissionResult(rate=ZERO, amount=ZERO))

        salon = db.get(Salon, stylist.salon_id)
        salon_level = salon.level if salon is not None and salon.level is not None else LOWEST_LEVEL
        if salon is None:
            logger.warning("Salon %s for stylist %s not found, using %s level", stylist.salon_id, stylist.id, LOWEST_LEVEL.value)

        # Salon rules cannot target a specific salon id yet, so no target id is passed
        salon_result = evaluate_rules(
            rules,
            order_amount,
            CommissionTarget(
                role=UserRole.SALON_OWNER.value,
                level=_value(salon_level),
                target_id=None,
                product_ids=product_ids,
            ),
            now,
        )
        return DualCommission(stylist=stylist_result, salon=salon_result)

    @staticmethod
    def snapshot_rate(db: Session, referrer: User, now: Optional[datetime] = None) -> Decimal:
        """Informational rate recorded on a new referral; redemption recalculates from rules"""
        now = _naive_utc(now) or datetime.utcnow()
        role = _value(referrer.role) if referrer.role is not None else UserRole.STYLIST.value

        for rule in CommissionRuleService.find_active_rules_ordered_by_priority(db):
            if _not_yet_valid(rule, ZERO, None, now) or _no_longer_valid(rule, ZERO, None, now):
                continue

            individuals = _constraint(rule.stylist_ids)
            roles = _constraint(rule.role_applicable)
            targeted = (individuals and referrer.id in individuals) or (roles and role in roles)
            if targeted or (not individuals and not roles):
                if rule.value is not None:
                    return _decimal(rule.value)
                if rule.tiers:
                    return _decimal(rule.tiers[0].get("rate"))

        return _decimal(settings.DEFAULT_COMMISSION_RATE)
