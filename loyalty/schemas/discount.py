from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from loyalty.models.discount_code import DiscountType, DiscountStatus


class DiscountCreate(BaseModel):
    customer_phone: str = Field(..., min_length=10, max_length=20)
    type: DiscountType = DiscountType.PERCENTAGE
    value: Decimal = Field(..., ge=0)
    validity_days: int = Field(..., ge=1, le=365)
    shopify_product_id: Optional[str] = None
    usage_limit: int = Field(1, ge=1)
    once_per_customer: bool = True
    minimum_amount: Optional[Decimal] = Field(None, ge=0)
    note: Optional[str] = None


class DiscountStatusUpdate(BaseModel):
    status: DiscountStatus


class DiscountResponse(BaseModel):
    id: str
    code: str
    type: DiscountType
    value: Decimal
    customer_id: Optional[str] = None
    customer_phone: Optional[str] = None
    shopify_price_rule_id: Optional[str] = None
    shopify_discount_code_id: Optional[str] = None
    shopify_product_id: Optional[str] = None
    usage_limit: Optional[int] = None
    usage_count: int
    starts_at: datetime
    expires_at: Optional[datetime] = None
    status: DiscountStatus
    note: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class DiscountListResponse(BaseModel):
    discounts: List[DiscountResponse]
    total: int
