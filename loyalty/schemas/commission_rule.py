from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from loyalty.models.commission_rule import CommissionType
from loyalty.models.user import Level, UserRole


class CommissionTier(BaseModel):
    min_amount: Decimal = Field(..., ge=0)
    max_amount: Optional[Decimal] = None
    rate: Decimal = Field(..., ge=0)


class CommissionRuleBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    type: CommissionType = CommissionType.PERCENTAGE
    value: Optional[Decimal] = Field(None, ge=0)
    tiers: Optional[List[CommissionTier]] = None
    role_applicable: List[UserRole] = []
    allowed_levels: List[Level] = []
    product_ids: List[str] = []
    stylist_ids: List[str] = []
    min_order_amount: Decimal = Field(Decimal("0"), ge=0)
    max_commission: Optional[Decimal] = Field(None, ge=0)
    priority: int = 0
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class CommissionRuleCreate(CommissionRuleBase):
    pass


class CommissionRuleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    type: Optional[CommissionType] = None
    value: Optional[Decimal] = Field(None, ge=0)
    tiers: Optional[List[CommissionTier]] = None
    role_applicable: Optional[List[UserRole]] = None
    allowed_levels: Optional[List[Level]] = None
    product_ids: Optional[List[str]] = None
    stylist_ids: Optional[List[str]] = None
    min_order_amount: Optional[Decimal] = Field(None, ge=0)
    max_commission: Optional[Decimal] = Field(None, ge=0)
    priority: Optional[int] = None
    is_active: Optional[bool] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class CommissionRuleResponse(CommissionRuleBase):
    id: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CommissionEvaluationRequest(BaseModel):
    order_amount: Decimal = Field(..., ge=0)
    target_role: UserRole = UserRole.STYLIST
    target_level: Optional[Level] = None
    target_id: Optional[str] = None
    product_ids: List[str] = []


class CommissionEvaluationResult(BaseModel):
    rate: Decimal
    amount: Decimal
    matched_rule_id: Optional[str] = None
