from sqlalchemy import Column, String, Boolean, DateTime, Text, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid

from loyalty.core.database import Base
from loyalty.models.user import Level


class Salon(Base):
    __tablename__ = "salons"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=True, index=True)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)

    level = Column(SQLEnum(Level), nullable=True, default=Level.SILVER)

    owner_id = Column(String, nullable=True, index=True)

    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    stylists = relationship("User", back_populates="salon")
