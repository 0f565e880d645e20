from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum

from loyalty.core.database import Base


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    STYLIST = "STYLIST"
    FIELD_AGENT = "FIELD_AGENT"
    SALON_OWNER = "SALON_OWNER"


class Level(str, enum.Enum):
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"


LOWEST_LEVEL = Level.BRONZE


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=True)
    phone = Column(String(20), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=True)

    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.STYLIST)
    level = Column(SQLEnum(Level), nullable=True)

    # Salon the stylist works at; drives the salon half of the dual commission
    salon_id = Column(String, ForeignKey("salons.id"), nullable=True, index=True)

    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    salon = relationship("Salon", back_populates="stylists")
    referrals = relationship("Referral", back_populates="referrer")
