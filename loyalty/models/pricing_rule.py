from sqlalchemy import Column, String, DateTime, Numeric, Integer
from datetime import datetime
import uuid

from loyalty.core.database import Base


class PricingRule(Base):
    """Local cache of a Shopify price rule shared by many discount codes"""
    __tablename__ = "pricing_rules"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    shopify_price_rule_id = Column(String, unique=True, nullable=False, index=True)

    title = Column(String(255), nullable=False)
    value_type = Column(String(20), nullable=False)
    value = Column(Numeric(10, 2), nullable=False)
    min_order_amount = Column(Numeric(10, 2), nullable=True)

    starts_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)
    usage_limit = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
