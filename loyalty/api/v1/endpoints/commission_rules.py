from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from loyalty.api.deps import get_current_user, require_role
from loyalty.core.database import get_db
from loyalty.models.user import User, UserRole
from loyalty.schemas.commission_rule import (
    CommissionEvaluationRequest,
    CommissionEvaluationResult,
    CommissionRuleCreate,
    CommissionRuleResponse,
    CommissionRuleUpdate,
)
from loyalty.services.commission_rule_service import CommissionRuleService
from loyalty.services.commission_service import CommissionService

router = APIRouter()


@router.get("/", response_model=List[CommissionRuleResponse])
async def list_rules(
    include_inactive: bool = True,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    return CommissionRuleService.list_rules(db, include_inactive=include_inactive)


@router.post("/", response_model=CommissionRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    payload: CommissionRuleCreate,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    return CommissionRuleService.create_rule(db, payload)


@router.post("/evaluate", response_model=CommissionEvaluationResult)
async def evaluate_commission(
    payload: CommissionEvaluationRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Simulate commission for an order amount without touching any referral"""
    result = CommissionService.evaluate(
        db,
        order_amount=payload.order_amount,
        target_role=payload.target_role,
        target_level=payload.target_level,
        target_id=payload.target_id,
        product_ids=payload.product_ids,
    )
    return CommissionEvaluationResult(rate=result.rate, amount=result.amount, matched_rule_id=result.rule_id)


@router.get("/{rule_id}", response_model=CommissionRuleResponse)
async def get_rule(
    rule_id: str,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    return CommissionRuleService.get_rule(db, rule_id)


@router.put("/{rule_id}", response_model=CommissionRuleResponse)
async def update_rule(
    rule_id: str,
    payload: CommissionRuleUpdate,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    return CommissionRuleService.update_rule(db, rule_id, payload)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: str,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    CommissionRuleService.delete_rule(db, rule_id)
