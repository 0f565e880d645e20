from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import Optional

from loyalty.api.deps import get_gateway, page_size, require_role
from loyalty.core.database import get_db
from loyalty.models.discount_code import DiscountStatus
from loyalty.models.user import User, UserRole
from loyalty.schemas.discount import DiscountCreate, DiscountListResponse, DiscountResponse, DiscountStatusUpdate
from loyalty.services.commerce_gateway import CommerceGateway
from loyalty.services.discount_service import DiscountService

router = APIRouter()


@router.post("/", response_model=DiscountResponse, status_code=status.HTTP_201_CREATED)
async def create_discount(
    payload: DiscountCreate,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db),
    gateway: CommerceGateway = Depends(get_gateway)
):
    """Issue a standalone customer coupon (no referral attached)"""
    return DiscountService(db, gateway).issue(
        customer_phone=payload.customer_phone,
        type=payload.type,
        value=payload.value,
        validity_days=payload.validity_days,
        product_id=payload.shopify_product_id,
        note=payload.note,
        usage_limit=payload.usage_limit,
        once_per_customer=payload.once_per_customer,
        minimum_amount=payload.minimum_amount,
    )


@router.get("/", response_model=DiscountListResponse)
async def list_discounts(
    customer_phone: Optional[str] = None,
    status: Optional[DiscountStatus] = None,
    page: int = 1,
    limit: Optional[int] = None,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    discounts, total = DiscountService(db).list_discounts(
        customer_phone=customer_phone, status=status, page=max(page, 1), limit=page_size(limit)
    )
    return {"discounts": discounts, "total": total}


@router.get("/{discount_id}", response_model=DiscountResponse)
async def get_discount(
    discount_id: str,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    return DiscountService(db).find_by_id(discount_id)


@router.put("/{discount_id}/status", response_model=DiscountResponse)
async def update_discount_status(
    discount_id: str,
    payload: DiscountStatusUpdate,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    return DiscountService(db).update_status(discount_id, payload.status)


@router.post("/{discount_id}/disable", response_model=DiscountResponse)
async def disable_discount(
    discount_id: str,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db),
    gateway: CommerceGateway = Depends(get_gateway)
):
    return DiscountService(db, gateway).disable(discount_id)
