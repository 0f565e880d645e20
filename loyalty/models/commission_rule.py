from sqlalchemy import Column, String, Boolean, DateTime, Numeric, Integer, Text, Enum as SQLEnum, JSON
from datetime import datetime
import uuid
import enum

from loyalty.core.database import Base


class CommissionType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    TIERED = "tiered"


class CommissionRule(Base):
    __tablename__ = "commission_rules"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    type = Column(SQLEnum(CommissionType), nullable=False, default=CommissionType.PERCENTAGE)

    # Percentage or flat amount; unused for tiered rules
    value = Column(Numeric(10, 2), nullable=True)

    # Tiered breakpoints: [{"min_amount": 0, "max_amount": 999, "rate": 5}, ...]
    tiers = Column(JSON, nullable=True)

    # Selection filters; an empty list means "no constraint"
    role_applicable = Column(JSON, nullable=True, default=list)
    allowed_levels = Column(JSON, nullable=True, default=list)
    product_ids = Column(JSON, nullable=True, default=list)
    stylist_ids = Column(JSON, nullable=True, default=list)

    min_order_amount = Column(Numeric(10, 2), nullable=False, default=0)
    max_commission = Column(Numeric(10, 2), nullable=True)

    priority = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True)

    # Validity
    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
