from sqlalchemy import Column, String, DateTime, Numeric, ForeignKey, Text, Enum as SQLEnum, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum

from loyalty.core.database import Base


class OrderSyncStatus(str, enum.Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FinancialStatus(str, enum.Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"
    VOIDED = "voided"


class FulfillmentStatus(str, enum.Enum):
    UNFULFILLED = "unfulfilled"
    PARTIAL = "partial"
    FULFILLED = "fulfilled"


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    shopify_id = Column(String, unique=True, nullable=True, index=True)
    order_number = Column(String(50), nullable=True)

    customer_id = Column(String, ForeignKey("customers.id"), nullable=True, index=True)

    sync_status = Column(SQLEnum(OrderSyncStatus), nullable=False, default=OrderSyncStatus.PENDING)
    financial_status = Column(SQLEnum(FinancialStatus), nullable=False, default=FinancialStatus.PENDING)
    fulfillment_status = Column(SQLEnum(FulfillmentStatus), nullable=False, default=FulfillmentStatus.UNFULFILLED)

    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    discount_total = Column(Numeric(12, 2), nullable=False, default=0)
    tax_total = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_total = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=True)

    # [{"code": "...", "amount": "...", "type": "percentage"}]
    discount_codes = Column(JSON, nullable=True)
    product_ids = Column(JSON, nullable=True)
    shipping_address = Column(JSON, nullable=True)
    billing_address = Column(JSON, nullable=True)

    note = Column(Text, nullable=True)
    cancel_reason = Column(String(100), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    customer = relationship("Customer")
