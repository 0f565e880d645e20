from sqlalchemy import Column, String, Boolean, DateTime, Numeric, Integer, ForeignKey, Text, Enum as SQLEnum, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum

from loyalty.core.database import Base


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class DiscountStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    USED = "used"
    DISABLED = "disabled"


class DiscountCode(Base):
    __tablename__ = "discount_codes"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    # Shopify references
    shopify_price_rule_id = Column(String, nullable=True)
    shopify_discount_code_id = Column(String, nullable=True)
    pricing_rule_id = Column(String, ForeignKey("pricing_rules.id"), nullable=True)

    # By convention the customer's normalized phone number
    code = Column(String(50), unique=True, nullable=False, index=True)

    type = Column(SQLEnum(DiscountType), nullable=False, default=DiscountType.PERCENTAGE)
    value = Column(Numeric(10, 2), nullable=False)

    # Customer targeting
    customer_id = Column(String, ForeignKey("customers.id"), nullable=True, index=True)
    customer_phone = Column(String(20), nullable=True, index=True)

    # Product targeting
    shopify_product_id = Column(String, nullable=True)

    # Usage
    usage_limit = Column(Integer, nullable=True, default=1)
    usage_count = Column(Integer, nullable=False, default=0)
    once_per_customer = Column(Boolean, default=True)
    minimum_amount = Column(Numeric(10, 2), nullable=True)

    # Validity
    starts_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=True)
    validity_days = Column(Integer, nullable=True)

    status = Column(SQLEnum(DiscountStatus), nullable=False, default=DiscountStatus.ACTIVE, index=True)

    note = Column(Text, nullable=True)
    extra = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    customer = relationship("Customer")
    pricing_rule = relationship("PricingRule")
