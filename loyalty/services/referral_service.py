"""Referral lifecycle.

A referral moves PENDING -> REDEEMED -> PAYABLE -> CREDITED, with
PENDING -> EXPIRED and non-terminal -> CANCELLED as side exits. Every
status change is a conditional UPDATE keyed on the status the caller
observed, so duplicate or concurrent webhook deliveries cannot redeem
the same referral twice: the loser sees zero affected rows and reports
"already matched".
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from loyalty.core.config import settings
from loyalty.core.exceptions import ConflictError, NotFoundError
from loyalty.core.phone import normalize_phone
from loyalty.models.discount_code import DiscountCode, DiscountStatus, DiscountType
from loyalty.models.order import Order
from loyalty.models.referral import (
    CREDITABLE_STATUSES,
    Referral,
    ReferralStatus,
    can_transition,
)
from loyalty.models.salon import Salon
from loyalty.models.user import User
from loyalty.schemas.referral import ReferralCreate
from loyalty.services.audit_service import AuditService
from loyalty.services.commerce_gateway import CommerceGateway
from loyalty.services.commission_service import CommissionService
from loyalty.services.discount_service import DiscountService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class RedemptionOutcome(str, enum.Enum):
    MATCHED = "matched"
    ALREADY_MATCHED = "already_matched"
    NO_REFERRAL = "no_referral"    # code is ours but no referral is attached
    UNKNOWN_CODE = "unknown_code"  # code was not issued by us


@dataclass
class RedemptionResult:
    outcome: RedemptionOutcome
    referral: Optional[Referral] = None

    @property
    def matched(self) -> bool:
        return self.outcome == RedemptionOutcome.MATCHED


@dataclass
class BulkTransitionResult:
    requested: int
    transitioned_ids: List[str]

    @property
    def transitioned(self) -> int:
        return len(self.transitioned_ids)

    @property
    def skipped(self) -> int:
        return self.requested - self.transitioned


class ReferralService:
    def __init__(self, db: Session, gateway: Optional[CommerceGateway] = None) -> None:
        self.db = db
        self.discounts = DiscountService(db, gateway)

    # Creation

    def create(self, payload: ReferralCreate, referrer: User) -> Referral:
        """Issue a coupon for the customer and record a PENDING referral against it"""
        if referrer is None:
            raise NotFoundError("Referrer not found")

        commission_rate = CommissionService.snapshot_rate(self.db, referrer)
        address = payload.customer_address.model_dump() if payload.customer_address else None

        discount = self.discounts.issue(
            customer_phone=payload.customer_phone,
            type=payload.discount_type or DiscountType.PERCENTAGE,
            value=payload.discount_value if payload.discount_value is not None else Decimal(str(settings.DEFAULT_DISCOUNT_VALUE)),
            validity_days=payload.validity_days or settings.DEFAULT_VALIDITY_DAYS,
            product_id=payload.shopify_product_id,
            note=payload.note,
            customer_attrs={"name": payload.customer_name, "email": payload.customer_email, "address": address},
            commit=False,
        )

        try:
            referral = Referral(
                referrer_id=referrer.id,
                customer_id=discount.customer_id,
                discount_code_id=discount.id,
                status=ReferralStatus.PENDING,
                commission_rate=commission_rate,
                note=payload.note,
                extra={"customer_name": payload.customer_name, "customer_address": address},
            )
            self.db.add(referral)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(referral)
        logger.info("Created referral %s by %s for %s", referral.id, referrer.phone, discount.code)
        return referral

    # Redemption

    def match_by_discount_code(
        self,
        code: str,
        order_id: str,
        order_amount,
        product_ids: Sequence[str] = (),
    ) -> RedemptionResult:
        """Redeem the referral attached to a discount code used on an order"""
        discount = self.discounts.find_by_code(code)
        if discount is None:
            logger.debug("Discount code %s not issued by us (order %s)", code, order_id)
            return RedemptionResult(RedemptionOutcome.UNKNOWN_CODE)

        referral = self.db.query(Referral).filter(Referral.discount_code_id == discount.id).first()
        if referral is None:
            logger.debug("No referral for discount code %s (order %s)", code, order_id)
            self.discounts.record_order_usage(discount.id, order_id)
            return RedemptionResult(RedemptionOutcome.NO_REFERRAL)

        if referral.status != ReferralStatus.PENDING:
            logger.info(
                "Referral %s for code %s already %s (order %s)",
                referral.id, code, referral.status.value, order_id,
            )
            return RedemptionResult(RedemptionOutcome.ALREADY_MATCHED, referral)

        return self._redeem(referral, order_id, order_amount, product_ids)

    def match_by_customer(self, customer_id: str, order: Order) -> RedemptionResult:
        """Fallback when an order carries no recognized code.

        Picks the most recently created PENDING referral for the customer;
        with several pending referrals from different stylists the choice
        is effectively arbitrary.
        """
        already = self.db.query(Referral).filter(Referral.order_id == order.id).first()
        if already is not None:
            logger.info("Order %s already linked to referral %s", order.id, already.id)
            return RedemptionResult(RedemptionOutcome.ALREADY_MATCHED, already)

        referral = self.db.query(Referral).filter(
            Referral.customer_id == customer_id,
            Referral.status == ReferralStatus.PENDING,
        ).order_by(Referral.created_at.desc()).first()

        if referral is None:
            logger.debug("No pending referral for customer %s (order %s)", customer_id, order.id)
            return RedemptionResult(RedemptionOutcome.NO_REFERRAL)

        return self._redeem(referral, order.id, order.total, order.product_ids or [])

    def _redeem(self, referral: Referral, order_id: str, order_amount, product_ids: Sequence[str]) -> RedemptionResult:
        order_amount = Decimal(str(order_amount or 0))
        dual = CommissionService.calculate_dual_commission(self.db, order_amount, referral.referrer, product_ids)

        try:
            result = self.db.execute(
                update(Referral)
                .where(Referral.id == referral.id, Referral.status == ReferralStatus.PENDING)
                .values(
                    status=ReferralStatus.REDEEMED,
                    order_id=order_id,
                    order_amount=order_amount,
                    commission_amount=dual.stylist.amount,
                    suggested_commission=dual.stylist.amount,
                    suggested_salon_commission=dual.salon.amount,
                    actual_salon_commission=dual.salon.amount,
                    commission_rule_id=dual.stylist.rule_id,
                    updated_at=datetime.utcnow(),
                )
                .execution_options(synchronize_session="fetch")
            )

            if result.rowcount == 0:
                self.db.rollback()
                self.db.refresh(referral)
                logger.info("Referral %s was redeemed concurrently (order %s)", referral.id, order_id)
                return RedemptionResult(RedemptionOutcome.ALREADY_MATCHED, referral)

            # Same unit of work as the status change
            self.discounts.record_usage(referral.discount_code_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(referral)
        logger.info(
            "Referral %s redeemed by order %s, commission %s (salon %s)",
            referral.id, order_id, dual.stylist.amount, dual.salon.amount,
        )
        return RedemptionResult(RedemptionOutcome.MATCHED, referral)

    # Payout bookkeeping

    def bulk_credit(
        self,
        referral_ids: Iterable[str],
        stylist_payment_reference: Optional[str] = None,
        salon_payment_reference: Optional[str] = None,
        admin_id: Optional[str] = None,
    ) -> BulkTransitionResult:
        """Credit every REDEEMED/PAYABLE referral in the batch; others are skipped"""
        ids = list(dict.fromkeys(referral_ids))
        values = {"status": ReferralStatus.CREDITED, "credited_at": datetime.utcnow()}
        if stylist_payment_reference is not None:
            values["stylist_payment_reference"] = stylist_payment_reference
        if salon_payment_reference is not None:
            values["salon_payment_reference"] = salon_payment_reference

        credited = self._conditional_transition(ids, CREDITABLE_STATUSES, values)

        AuditService.log_action(
            self.db,
            action="referrals_bulk_credited",
            entity_type="referral",
            user_id=admin_id,
            changes={
                "requested": ids,
                "credited": credited,
                "stylist_payment_reference": stylist_payment_reference,
                "salon_payment_reference": salon_payment_reference,
            },
        )
        self.db.commit()

        logger.info("Bulk credit: %d of %d referrals credited", len(credited), len(ids))
        return BulkTransitionResult(requested=len(ids), transitioned_ids=credited)

    def mark_payable(self, referral_ids: Iterable[str], admin_id: Optional[str] = None) -> BulkTransitionResult:
        ids = list(dict.fromkeys(referral_ids))
        payable = self._conditional_transition(ids, (ReferralStatus.REDEEMED,), {"status": ReferralStatus.PAYABLE})

        AuditService.log_action(
            self.db,
            action="referrals_marked_payable",
            entity_type="referral",
            user_id=admin_id,
            changes={"requested": ids, "payable": payable},
        )
        self.db.commit()
        return BulkTransitionResult(requested=len(ids), transitioned_ids=payable)

    def _conditional_transition(self, ids: List[str], from_statuses, values: dict) -> List[str]:
        """Per-row UPDATE ... WHERE status IN from_statuses; returns the ids that moved"""
        moved = []
        values = {**values, "updated_at": datetime.utcnow()}
        for referral_id in ids:
            result = self.db.execute(
                update(Referral)
                .where(Referral.id == referral_id, Referral.status.in_(from_statuses))
                .values(**values)
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount:
                moved.append(referral_id)
        return moved

    def update_commission(
        self,
        referral_id: str,
        amount,
        salon_amount=None,
        status: Optional[ReferralStatus] = None,
        admin_id: Optional[str] = None,
    ) -> Referral:
        """Admin override: overwrite amounts and status without consulting the rules"""
        referral = self.find_by_id(referral_id)
        before = {
            "commission_amount": str(referral.commission_amount) if referral.commission_amount is not None else None,
            "actual_salon_commission": str(referral.actual_salon_commission) if referral.actual_salon_commission is not None else None,
            "status": referral.status.value,
        }

        referral.commission_amount = Decimal(str(amount))
        if salon_amount is not None:
            referral.actual_salon_commission = Decimal(str(salon_amount))
        if status is not None:
            referral.status = status
            if status == ReferralStatus.CREDITED and referral.credited_at is None:
                referral.credited_at = datetime.utcnow()

        AuditService.log_action(
            self.db,
            action="referral_commission_updated",
            entity_type="referral",
            entity_id=referral.id,
            user_id=admin_id,
            changes={
                "before": before,
                "after": {
                    "commission_amount": str(referral.commission_amount),
                    "actual_salon_commission": str(referral.actual_salon_commission) if referral.actual_salon_commission is not None else None,
                    "status": referral.status.value,
                },
            },
        )
        self.db.commit()
        self.db.refresh(referral)
        return referral

    # Side transitions

    def cancel(self, referral_id: str, admin_id: Optional[str] = None) -> Referral:
        referral = self.find_by_id(referral_id)
        current = referral.status

        if not can_transition(current, ReferralStatus.CANCELLED):
            raise ConflictError(
                f"Referral cannot be cancelled from {current.value}",
                details={"referral_id": referral_id, "status": current.value},
            )

        moved = self._conditional_transition([referral_id], (current,), {"status": ReferralStatus.CANCELLED})
        if not moved:
            self.db.rollback()
            raise ConflictError("Referral changed status concurrently", details={"referral_id": referral_id})

        AuditService.log_action(
            self.db,
            action="referral_cancelled",
            entity_type="referral",
            entity_id=referral_id,
            user_id=admin_id,
            changes={"from": current.value},
        )
        self.db.commit()
        self.db.refresh(referral)
        return referral

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        """Expire PENDING referrals whose discount code validity has passed"""
        now = now or datetime.utcnow()
        stale = self.db.query(Referral.id, Referral.discount_code_id).join(
            DiscountCode, DiscountCode.id == Referral.discount_code_id
        ).filter(
            Referral.status == ReferralStatus.PENDING,
            DiscountCode.expires_at.isnot(None),
            DiscountCode.expires_at < now,
        ).all()

        expired = 0
        for referral_id, discount_code_id in stale:
            if not self._conditional_transition([referral_id], (ReferralStatus.PENDING,), {"status": ReferralStatus.EXPIRED}):
                continue
            self.db.execute(
                update(DiscountCode)
                .where(DiscountCode.id == discount_code_id, DiscountCode.status == DiscountStatus.ACTIVE)
                .values(status=DiscountStatus.EXPIRED)
                .execution_options(synchronize_session="fetch")
            )
            expired += 1

        self.db.commit()
        if expired:
            logger.info("Expired %d stale referrals", expired)
        return expired

    # Queries

    def find_by_id(self, referral_id: str) -> Referral:
        referral = self.db.get(Referral, referral_id)
        if not referral:
            raise NotFoundError("Referral not found", details={"referral_id": referral_id})
        return referral

    def find_my_referrals(
        self,
        referrer_id: str,
        status: Optional[ReferralStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Referral], int]:
        query = self.db.query(Referral).filter(Referral.referrer_id == referrer_id)
        if status:
            query = query.filter(Referral.status == status)

        total = query.count()
        referrals = query.order_by(Referral.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return referrals, total

    def find_all_admin(
        self,
        status: Optional[ReferralStatus] = None,
        code: Optional[str] = None,
        stylist_phone: Optional[str] = None,
        salon_phone: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Referral], int]:
        query = self.db.query(Referral)

        if status:
            query = query.filter(Referral.status == status)
        if code:
            query = query.join(DiscountCode, DiscountCode.id == Referral.discount_code_id).filter(
                DiscountCode.code.in_({code, normalize_phone(code)})
            )
        if stylist_phone or salon_phone:
            query = query.join(User, User.id == Referral.referrer_id)
            if stylist_phone:
                query = query.filter(User.phone == normalize_phone(stylist_phone))
            if salon_phone:
                query = query.join(Salon, Salon.id == User.salon_id).filter(
                    Salon.phone == normalize_phone(salon_phone)
                )

        total = query.count()
        referrals = query.order_by(Referral.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return referrals, total

    def get_my_stats(self, referrer_id: str, now: Optional[datetime] = None) -> dict:
        now = now or datetime.utcnow()
        start_of_month = datetime(now.year, now.month, 1)

        counts = dict(
            self.db.query(Referral.status, func.count(Referral.id))
            .filter(Referral.referrer_id == referrer_id)
            .group_by(Referral.status)
            .all()
        )

        def commission_sum(*filters) -> Decimal:
            total = self.db.query(func.sum(Referral.commission_amount)).filter(
                Referral.referrer_id == referrer_id, *filters
            ).scalar()
            return Decimal(str(total)) if total is not None else ZERO

        this_month_referrals = self.db.query(func.count(Referral.id)).filter(
            Referral.referrer_id == referrer_id,
            Referral.created_at >= start_of_month,
        ).scalar() or 0

        return {
            "total_referrals": sum(counts.values()),
            "pending_referrals": counts.get(ReferralStatus.PENDING, 0),
            "redeemed_referrals": counts.get(ReferralStatus.REDEEMED, 0),
            "expired_referrals": counts.get(ReferralStatus.EXPIRED, 0),
            "total_earnings": commission_sum(Referral.status == ReferralStatus.CREDITED),
            "pending_credits": commission_sum(Referral.status.in_(CREDITABLE_STATUSES)),
            "this_month_referrals": this_month_referrals,
            "this_month_earnings": commission_sum(
                Referral.status == ReferralStatus.CREDITED,
                Referral.credited_at >= start_of_month,
            ),
        }
