from fastapi import APIRouter

from loyalty.api.v1.endpoints import admin, commission_rules, discounts, referrals, webhooks

api_router = APIRouter()

api_router.include_router(referrals.router, prefix="/referrals", tags=["Referrals"])
api_router.include_router(discounts.router, prefix="/discounts", tags=["Discounts"])
api_router.include_router(commission_rules.router, prefix="/commission-rules", tags=["Commission Rules"])
api_router.include_router(admin.router, prefix="/admin", tags=["Admin"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
