from loyalty.services.referral_service import ReferralService
from loyalty.tasks.celery_app import celery_app
from loyalty.tasks.order_tasks import DatabaseTask


@celery_app.task(base=DatabaseTask, bind=True, name="referrals.expire_stale")
def expire_stale_referrals(self):
    expired = ReferralService(self.db).expire_stale()
    return {"status": "success", "expired": expired}
