from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint
from datetime import datetime
import uuid

from loyalty.core.database import Base


class OrderDiscountUsage(Base):
    """One row per discount code applied to an order; usage is counted once per pair"""
    __tablename__ = "order_discount_usages"
    __table_args__ = (
        UniqueConstraint("order_id", "discount_code_id", name="uq_order_discount_usage"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    discount_code_id = Column(String, ForeignKey("discount_codes.id"), nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
