from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from loyalty.models.discount_code import DiscountType
from loyalty.models.referral import ReferralStatus


class CustomerAddress(BaseModel):
    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None


class ReferralCreate(BaseModel):
    customer_phone: str = Field(..., min_length=10, max_length=20)
    customer_name: Optional[str] = None
    customer_email: Optional[EmailStr] = None
    customer_address: Optional[CustomerAddress] = None
    shopify_product_id: Optional[str] = None
    discount_type: DiscountType = DiscountType.PERCENTAGE
    discount_value: Optional[Decimal] = Field(None, ge=0)
    validity_days: Optional[int] = Field(None, ge=1, le=365)
    note: Optional[str] = None


class ReferralResponse(BaseModel):
    id: str
    referrer_id: str
    customer_id: str
    discount_code_id: str
    order_id: Optional[str] = None
    commission_rule_id: Optional[str] = None
    status: ReferralStatus
    order_amount: Optional[Decimal] = None
    commission_rate: Decimal
    commission_amount: Optional[Decimal] = None
    suggested_commission: Optional[Decimal] = None
    suggested_salon_commission: Optional[Decimal] = None
    actual_salon_commission: Optional[Decimal] = None
    credited_at: Optional[datetime] = None
    stylist_payment_reference: Optional[str] = None
    salon_payment_reference: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ReferralListResponse(BaseModel):
    referrals: List[ReferralResponse]
    total: int


class ReferralStats(BaseModel):
    total_referrals: int
    pending_referrals: int
    redeemed_referrals: int
    expired_referrals: int
    total_earnings: Decimal
    pending_credits: Decimal
    this_month_referrals: int
    this_month_earnings: Decimal


class BulkCreditRequest(BaseModel):
    referral_ids: List[str] = Field(..., min_length=1)
    stylist_payment_reference: Optional[str] = None
    salon_payment_reference: Optional[str] = None


class BulkCreditResult(BaseModel):
    requested: int
    credited: int
    skipped: int
    credited_ids: List[str]


class ReferralIdsRequest(BaseModel):
    referral_ids: List[str] = Field(..., min_length=1)


class CommissionOverride(BaseModel):
    amount: Decimal = Field(..., ge=0)
    salon_amount: Optional[Decimal] = Field(None, ge=0)
    status: Optional[ReferralStatus] = None
