from decimal import Decimal

from loyalty.api.v1.endpoints import webhooks
from loyalty.models.referral import ReferralStatus
from loyalty.models.user import UserRole
from loyalty.schemas.referral import ReferralCreate
from loyalty.services.referral_service import ReferralService

API = "/api/v1"


def as_user(user):
    return {"X-User-Id": user.id}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_create_referral(client, stylist):
    response = client.post(
        f"{API}/referrals/",
        json={"customer_phone": "9876543210", "customer_name": "Meera", "validity_days": 14},
        headers=as_user(stylist),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["referrer_id"] == stylist.id


def test_missing_user_header(client):
    response = client.get(f"{API}/referrals/mine")

    assert response.status_code == 401
    assert response.json()["error_code"] == "AUTH_ERROR"


def test_duplicate_referral_conflicts(client, stylist):
    body = {"customer_phone": "9876543210"}
    client.post(f"{API}/referrals/", json=body, headers=as_user(stylist))

    response = client.post(f"{API}/referrals/", json=body, headers=as_user(stylist))

    assert response.status_code == 409
    assert response.json()["error_code"] == "CONFLICT"
    assert response.json()["details"] == {"code": "+919876543210"}


def test_shopify_failure_is_a_bad_request(client, stylist, gateway):
    gateway.fail_on.add("create_price_rule")

    response = client.post(f"{API}/referrals/", json={"customer_phone": "9876543210"}, headers=as_user(stylist))

    assert response.status_code == 400
    assert response.json()["error_code"] == "BAD_REQUEST"


def test_invalid_validity_days(client, stylist):
    response = client.post(
        f"{API}/referrals/",
        json={"customer_phone": "9876543210", "validity_days": 400},
        headers=as_user(stylist),
    )

    assert response.status_code == 422


def test_unknown_referral(client, stylist):
    response = client.get(f"{API}/referrals/missing", headers=as_user(stylist))

    assert response.status_code == 404
    assert response.json()["error_code"] == "NOT_FOUND"


def test_other_stylists_referral_is_forbidden(client, db, gateway, stylist, freelancer):
    referral = ReferralService(db, gateway).create(ReferralCreate(customer_phone="9876543210"), stylist)

    response = client.get(f"{API}/referrals/{referral.id}", headers=as_user(freelancer))

    assert response.status_code == 403


def test_my_referrals_and_stats(client, db, gateway, stylist):
    ReferralService(db, gateway).create(ReferralCreate(customer_phone="9876543210"), stylist)

    listing = client.get(f"{API}/referrals/mine", headers=as_user(stylist)).json()
    stats = client.get(f"{API}/referrals/stats", headers=as_user(stylist)).json()

    assert listing["total"] == 1
    assert stats["pending_referrals"] == 1
    assert Decimal(str(stats["total_earnings"])) == 0


def test_admin_routes_require_admin(client, stylist):
    response = client.post(f"{API}/admin/referrals/credit", json={"referral_ids": ["x"]}, headers=as_user(stylist))

    assert response.status_code == 403
    assert response.json()["error_code"] == "AUTHZ_ERROR"


def test_admin_bulk_credit_and_override(client, db, gateway, stylist, admin):
    service = ReferralService(db, gateway)
    pending = service.create(ReferralCreate(customer_phone="9000000001"), stylist)
    redeemed = service.create(ReferralCreate(customer_phone="9000000002"), stylist)
    service.match_by_discount_code(redeemed.discount_code.code, "order-1", Decimal("1000"))

    response = client.post(
        f"{API}/admin/referrals/credit",
        json={"referral_ids": [pending.id, redeemed.id], "stylist_payment_reference": "UTR-9"},
        headers=as_user(admin),
    )
    assert response.status_code == 200
    assert response.json() == {"requested": 2, "credited": 1, "skipped": 1, "credited_ids": [redeemed.id]}

    response = client.put(
        f"{API}/admin/referrals/{pending.id}/commission",
        json={"amount": "25", "status": "cancelled"},
        headers=as_user(admin),
    )
    assert response.status_code == 200
    assert response.json()["status"] == ReferralStatus.CANCELLED.value
    assert Decimal(str(response.json()["commission_amount"])) == Decimal("25")


def test_admin_cancel_terminal_referral_conflicts(client, db, gateway, stylist, admin):
    referral = ReferralService(db, gateway).create(ReferralCreate(customer_phone="9000000001"), stylist)
    client.post(f"{API}/admin/referrals/{referral.id}/cancel", headers=as_user(admin))

    response = client.post(f"{API}/admin/referrals/{referral.id}/cancel", headers=as_user(admin))

    assert response.status_code == 409


def test_rule_validation_error(client, admin):
    response = client.post(
        f"{API}/commission-rules/",
        json={"name": "tiers", "type": "tiered"},
        headers=as_user(admin),
    )

    assert response.status_code == 422
    assert response.json()["error_code"] == "VALIDATION_ERROR"


def test_create_rule_and_evaluate(client, admin, stylist):
    created = client.post(
        f"{API}/commission-rules/",
        json={"name": "stylists", "value": "10", "max_commission": "75", "role_applicable": [UserRole.STYLIST.value]},
        headers=as_user(admin),
    )
    assert created.status_code == 201

    response = client.post(
        f"{API}/commission-rules/evaluate",
        json={"order_amount": "1000"},
        headers=as_user(stylist),
    )

    assert response.status_code == 200
    body = response.json()
    assert Decimal(str(body["amount"])) == Decimal("75")
    assert body["matched_rule_id"] == created.json()["id"]


def test_discount_endpoints(client, admin, gateway):
    created = client.post(
        f"{API}/discounts/",
        json={"customer_phone": "9876543210", "value": "15", "validity_days": 10},
        headers=as_user(admin),
    )
    assert created.status_code == 201
    discount_id = created.json()["id"]

    listing = client.get(f"{API}/discounts/", params={"customer_phone": "9876543210"}, headers=as_user(admin))
    assert listing.json()["total"] == 1

    disabled = client.post(f"{API}/discounts/{discount_id}/disable", headers=as_user(admin))
    assert disabled.json()["status"] == "disabled"
    assert gateway.called("delete_price_rule") == 1


def test_webhook_enqueues_sync(client, monkeypatch):
    queued = []

    class FakeResult:
        id = "task-1"

    def fake_delay(payload):
        queued.append(payload)
        return FakeResult()

    monkeypatch.setattr(webhooks.sync_order_from_shopify, "delay", fake_delay)

    response = client.post(
        f"{API}/webhooks/shopify/orders/create",
        json={"id": 7001, "total_price": "1000.00", "discount_codes": [{"code": "+919876543210"}]},
    )

    assert response.status_code == 202
    assert response.json() == {"status": "queued", "task_id": "task-1"}
    assert queued[0]["id"] == 7001
    assert queued[0]["discount_codes"][0]["code"] == "+919876543210"
