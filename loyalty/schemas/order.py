from pydantic import BaseModel
from typing import Any, Dict, List, Optional


class ShopifyDiscountCode(BaseModel):
    code: str
    amount: Optional[str] = None
    type: Optional[str] = None


class ShopifyCustomerRef(BaseModel):
    id: Optional[int] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class ShopifyLineItem(BaseModel):
    id: Optional[int] = None
    product_id: Optional[int] = None
    variant_id: Optional[int] = None
    title: Optional[str] = None
    quantity: int = 1
    price: str = "0"
    total_discount: str = "0"


class ShopifyOrderPayload(BaseModel):
    """Subset of the Shopify order webhook body the sync pipeline reads"""
    id: int
    name: Optional[str] = None
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    subtotal_price: str = "0"
    total_discounts: str = "0"
    total_tax: str = "0"
    total_price: str = "0"
    total_shipping_price_set: Optional[Dict[str, Any]] = None
    currency: Optional[str] = None
    discount_codes: List[ShopifyDiscountCode] = []
    customer: Optional[ShopifyCustomerRef] = None
    line_items: List[ShopifyLineItem] = []
    shipping_address: Optional[Dict[str, Any]] = None
    billing_address: Optional[Dict[str, Any]] = None
    note: Optional[str] = None
    cancelled_at: Optional[str] = None
    cancel_reason: Optional[str] = None

    class Config:
        extra = "ignore"
