from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional

from loyalty.api.deps import page_size, require_role
from loyalty.core.database import get_db
from loyalty.models.referral import ReferralStatus
from loyalty.models.user import User, UserRole
from loyalty.schemas.referral import (
    BulkCreditRequest,
    BulkCreditResult,
    CommissionOverride,
    ReferralIdsRequest,
    ReferralListResponse,
    ReferralResponse,
)
from loyalty.services.referral_service import ReferralService

router = APIRouter()


@router.get("/referrals", response_model=ReferralListResponse)
async def list_referrals(
    status: Optional[ReferralStatus] = None,
    code: Optional[str] = None,
    stylist_phone: Optional[str] = None,
    salon_phone: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    referrals, total = ReferralService(db).find_all_admin(
        status=status,
        code=code,
        stylist_phone=stylist_phone,
        salon_phone=salon_phone,
        page=max(page, 1),
        limit=page_size(limit),
    )
    return {"referrals": referrals, "total": total}


@router.post("/referrals/credit", response_model=BulkCreditResult)
async def bulk_credit(
    payload: BulkCreditRequest,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    """Mark a payout batch as paid; ineligible referrals are skipped"""
    result = ReferralService(db).bulk_credit(
        payload.referral_ids,
        stylist_payment_reference=payload.stylist_payment_reference,
        salon_payment_reference=payload.salon_payment_reference,
        admin_id=current_user.id,
    )
    return BulkCreditResult(
        requested=result.requested,
        credited=result.transitioned,
        skipped=result.skipped,
        credited_ids=result.transitioned_ids,
    )


@router.post("/referrals/payable", response_model=BulkCreditResult)
async def mark_payable(
    payload: ReferralIdsRequest,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    result = ReferralService(db).mark_payable(payload.referral_ids, admin_id=current_user.id)
    return BulkCreditResult(
        requested=result.requested,
        credited=result.transitioned,
        skipped=result.skipped,
        credited_ids=result.transitioned_ids,
    )


@router.put("/referrals/{referral_id}/commission", response_model=ReferralResponse)
async def update_commission(
    referral_id: str,
    payload: CommissionOverride,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    """Override commission amounts; the rule engine is not consulted"""
    return ReferralService(db).update_commission(
        referral_id,
        amount=payload.amount,
        salon_amount=payload.salon_amount,
        status=payload.status,
        admin_id=current_user.id,
    )


@router.post("/referrals/{referral_id}/cancel", response_model=ReferralResponse)
async def cancel_referral(
    referral_id: str,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    return ReferralService(db).cancel(referral_id, admin_id=current_user.id)
