from datetime import timedelta
from decimal import Decimal

import pytest

from loyalty.core.config import settings
from loyalty.core.database import SessionLocal
from loyalty.core.exceptions import BadRequestError, ConflictError, NotFoundError
from loyalty.models.customer import Customer
from loyalty.models.discount_code import DiscountCode, DiscountStatus, DiscountType
from loyalty.models.order_discount_usage import OrderDiscountUsage
from loyalty.models.pricing_rule import PricingRule
from loyalty.services.discount_service import DiscountService


def issue(service, phone="9876543210", **kwargs):
    kwargs.setdefault("type", DiscountType.PERCENTAGE)
    kwargs.setdefault("value", Decimal("20"))
    kwargs.setdefault("validity_days", 30)
    return service.issue(customer_phone=phone, **kwargs)


def test_issue_uses_normalized_phone_as_code(db, gateway):
    discount = issue(DiscountService(db, gateway), phone="09876543210")

    assert discount.code == "+919876543210"
    assert discount.customer_phone == "+919876543210"
    assert discount.status == DiscountStatus.ACTIVE
    assert discount.usage_count == 0
    assert discount.expires_at - discount.starts_at == timedelta(days=30)
    assert gateway.called("create_customer") == 1
    assert gateway.called("create_price_rule") == 1
    assert gateway.calls[-1] == ("create_discount_code", discount.shopify_price_rule_id, "+919876543210")


def test_issue_reuses_existing_customer(db, gateway):
    customer = Customer(phone="+919876543210", shopify_id="555")
    db.add(customer)
    db.commit()

    discount = issue(DiscountService(db, gateway))

    assert discount.customer_id == customer.id
    assert gateway.called("create_customer") == 0


def test_duplicate_code_conflicts_before_calling_shopify(db, gateway):
    service = DiscountService(db, gateway)
    issue(service)
    calls = len(gateway.calls)

    with pytest.raises(ConflictError):
        issue(service, phone="+91 98765 43210")

    assert len(gateway.calls) == calls


def test_failed_code_creation_leaves_nothing_behind(db, gateway):
    gateway.fail_on.add("create_discount_code")

    with pytest.raises(BadRequestError):
        issue(DiscountService(db, gateway))

    assert db.query(DiscountCode).count() == 0
    assert db.query(Customer).count() == 0
    assert len(gateway.deleted_price_rules) == 1


def test_failed_customer_creation_aborts_issuance(db, gateway):
    gateway.fail_on.add("create_customer")

    with pytest.raises(BadRequestError):
        issue(DiscountService(db, gateway))

    assert gateway.called("create_price_rule") == 0
    assert db.query(DiscountCode).count() == 0


def test_shared_price_rule_is_reused(db, gateway, monkeypatch):
    monkeypatch.setattr(settings, "SHOPIFY_SHARED_PRICE_RULE_ID", "777")
    cached = PricingRule(shopify_price_rule_id="777", title="Salon Week", value_type="percentage", value=Decimal("15"))
    db.add(cached)
    db.commit()

    discount = issue(DiscountService(db, gateway))

    assert gateway.called("create_price_rule") == 0
    assert discount.shopify_price_rule_id == "777"
    assert discount.pricing_rule_id == cached.id


def test_shared_price_rule_survives_failure_and_disable(db, gateway, monkeypatch):
    monkeypatch.setattr(settings, "SHOPIFY_SHARED_PRICE_RULE_ID", "777")
    service = DiscountService(db, gateway)

    discount = issue(service)
    service.disable(discount.id)

    gateway.fail_on.add("create_discount_code")
    with pytest.raises(BadRequestError):
        issue(service, phone="9000000000")

    assert gateway.deleted_price_rules == []


def test_record_usage_marks_single_use_code_used(db, gateway):
    service = DiscountService(db, gateway)
    discount = issue(service)

    service.record_usage(discount.id)
    db.commit()
    db.refresh(discount)

    assert discount.usage_count == 1
    assert discount.status == DiscountStatus.USED


def test_record_usage_below_limit_stays_active(db, gateway):
    service = DiscountService(db, gateway)
    discount = issue(service, usage_limit=3)

    service.record_usage(discount.id)
    db.commit()
    db.refresh(discount)

    assert discount.usage_count == 1
    assert discount.status == DiscountStatus.ACTIVE


def test_find_by_code_accepts_unformatted_phone(db, gateway):
    service = DiscountService(db, gateway)
    discount = issue(service)

    assert service.find_by_code("9876543210").id == discount.id
    assert service.find_by_code("SUMMER10") is None


def test_disable_deletes_price_rule(db, gateway):
    service = DiscountService(db, gateway)
    discount = issue(service)

    disabled = service.disable(discount.id)

    assert disabled.status == DiscountStatus.DISABLED
    assert gateway.deleted_price_rules == [discount.shopify_price_rule_id]


def test_disable_tolerates_shopify_failure(db, gateway):
    service = DiscountService(db, gateway)
    discount = issue(service)
    gateway.fail_on.add("delete_price_rule")

    assert service.disable(discount.id).status == DiscountStatus.DISABLED


def test_list_and_filter(db, gateway):
    service = DiscountService(db, gateway)
    first = issue(service, phone="9000000001")
    issue(service, phone="9000000002")
    service.update_status(first.id, DiscountStatus.EXPIRED)

    discounts, total = service.list_discounts()
    assert total == 2

    discounts, total = service.list_discounts(status=DiscountStatus.EXPIRED)
    assert total == 1
    assert discounts[0].id == first.id

    discounts, total = service.list_discounts(customer_phone="9000000002")
    assert total == 1


def test_find_by_id_missing(db, gateway):
    with pytest.raises(NotFoundError):
        DiscountService(db, gateway).find_by_id("missing")


def test_concurrent_issuance_for_same_phone_conflicts(db, gateway):
    customer = Customer(phone="+919876543210", shopify_id="555")
    db.add(customer)
    db.commit()
    customer_id = customer.id

    create_discount_code = gateway.create_discount_code

    def racing_create_discount_code(price_rule_id, code):
        # Another request stores the same code while Shopify is being called
        other = SessionLocal()
        try:
            other.add(DiscountCode(code=code, value=Decimal("20"), customer_id=customer_id))
            other.commit()
        finally:
            other.close()
        return create_discount_code(price_rule_id, code)

    gateway.create_discount_code = racing_create_discount_code

    with pytest.raises(ConflictError):
        issue(DiscountService(db, gateway))

    assert db.query(DiscountCode).count() == 1
    assert len(gateway.deleted_price_rules) == 1


def test_record_order_usage_counts_each_order_once(db, gateway):
    service = DiscountService(db, gateway)
    discount = issue(service, usage_limit=5)

    assert service.record_order_usage(discount.id, "order-1") is True
    assert service.record_order_usage(discount.id, "order-1") is False
    assert service.record_order_usage(discount.id, "order-2") is True

    db.refresh(discount)
    assert discount.usage_count == 2
    assert db.query(OrderDiscountUsage).filter(OrderDiscountUsage.discount_code_id == discount.id).count() == 2
