from sqlalchemy import Column, String, DateTime, Numeric, ForeignKey, Text, Enum as SQLEnum, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum

from loyalty.core.database import Base


class ReferralStatus(str, enum.Enum):
    PENDING = "pending"
    REDEEMED = "redeemed"
    PAYABLE = "payable"
    CREDITED = "credited"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    ReferralStatus.CREDITED,
    ReferralStatus.EXPIRED,
    ReferralStatus.CANCELLED,
})

# Forward-only lifecycle
ALLOWED_TRANSITIONS = {
    ReferralStatus.PENDING: frozenset({
        ReferralStatus.REDEEMED,
        ReferralStatus.EXPIRED,
        ReferralStatus.CANCELLED,
    }),
    ReferralStatus.REDEEMED: frozenset({
        ReferralStatus.PAYABLE,
        ReferralStatus.CREDITED,
        ReferralStatus.CANCELLED,
    }),
    ReferralStatus.PAYABLE: frozenset({
        ReferralStatus.CREDITED,
        ReferralStatus.CANCELLED,
    }),
    ReferralStatus.CREDITED: frozenset(),
    ReferralStatus.EXPIRED: frozenset(),
    ReferralStatus.CANCELLED: frozenset(),
}

CREDITABLE_STATUSES = (ReferralStatus.REDEEMED, ReferralStatus.PAYABLE)


def can_transition(current: ReferralStatus, target: ReferralStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class Referral(Base):
    __tablename__ = "referrals"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    referrer_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    customer_id = Column(String, ForeignKey("customers.id"), nullable=False, index=True)
    discount_code_id = Column(String, ForeignKey("discount_codes.id"), nullable=False, index=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=True)
    commission_rule_id = Column(String, ForeignKey("commission_rules.id"), nullable=True)

    status = Column(SQLEnum(ReferralStatus), nullable=False, default=ReferralStatus.PENDING, index=True)

    # Commission
    order_amount = Column(Numeric(10, 2), nullable=True)
    commission_rate = Column(Numeric(5, 2), nullable=False, default=10)  # snapshot at creation
    commission_amount = Column(Numeric(10, 2), nullable=True)
    suggested_commission = Column(Numeric(10, 2), nullable=True)
    suggested_salon_commission = Column(Numeric(10, 2), nullable=True)
    actual_salon_commission = Column(Numeric(10, 2), nullable=True)

    # Payout
    credited_at = Column(DateTime, nullable=True)
    stylist_payment_reference = Column(String(255), nullable=True)
    salon_payment_reference = Column(String(255), nullable=True)

    note = Column(Text, nullable=True)
    extra = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    referrer = relationship("User", back_populates="referrals")
    customer = relationship("Customer")
    discount_code = relationship("DiscountCode")
    order = relationship("Order")
    commission_rule = relationship("CommissionRule")
