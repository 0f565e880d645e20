from sqlalchemy import Column, String, DateTime, Text
from datetime import datetime
import uuid
import enum

from loyalty.core.database import Base


class CustomerScope(str, enum.Enum):
    LOCAL = "local"
    GLOBAL = "global"  # also created in Shopify


class Customer(Base):
    __tablename__ = "customers"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    shopify_id = Column(String, unique=True, nullable=True, index=True)

    phone = Column(String(20), nullable=False, index=True)
    email = Column(String(255), nullable=True, index=True)
    name = Column(String(255), nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)

    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    pincode = Column(String(10), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
