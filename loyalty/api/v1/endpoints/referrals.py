from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import Optional

from loyalty.api.deps import get_current_user, get_gateway, page_size
from loyalty.core.database import get_db
from loyalty.core.exceptions import AuthorizationError
from loyalty.models.referral import ReferralStatus
from loyalty.models.user import User, UserRole
from loyalty.schemas.referral import ReferralCreate, ReferralListResponse, ReferralResponse, ReferralStats
from loyalty.services.commerce_gateway import CommerceGateway
from loyalty.services.referral_service import ReferralService

router = APIRouter()


@router.post("/", response_model=ReferralResponse, status_code=status.HTTP_201_CREATED)
async def create_referral(
    payload: ReferralCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: CommerceGateway = Depends(get_gateway)
):
    """Refer a customer: issues their phone-number coupon"""
    return ReferralService(db, gateway).create(payload, current_user)


@router.get("/mine", response_model=ReferralListResponse)
async def list_my_referrals(
    status: Optional[ReferralStatus] = None,
    page: int = 1,
    limit: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    referrals, total = ReferralService(db).find_my_referrals(
        current_user.id, status=status, page=max(page, 1), limit=page_size(limit)
    )
    return {"referrals": referrals, "total": total}


@router.get("/stats", response_model=ReferralStats)
async def get_my_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return ReferralService(db).get_my_stats(current_user.id)


@router.get("/{referral_id}", response_model=ReferralResponse)
async def get_referral(
    referral_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    referral = ReferralService(db).find_by_id(referral_id)
    if current_user.role != UserRole.ADMIN and referral.referrer_id != current_user.id:
        raise AuthorizationError("Referral belongs to another referrer")
    return referral
