"""Shopify order ingestion.

Webhook payloads are upserted by Shopify id, so redelivery is harmless.
Redemption runs when an order is first seen, and again when an update
reports it paid; the referral state machine makes the repeat a no-op.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Type

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from loyalty.models.customer import Customer
from loyalty.models.order import FinancialStatus, FulfillmentStatus, Order, OrderSyncStatus
from loyalty.schemas.order import ShopifyOrderPayload
from loyalty.services.commerce_gateway import CommerceGateway
from loyalty.services.customer_service import CustomerService
from loyalty.services.referral_service import RedemptionOutcome, ReferralService

logger = logging.getLogger(__name__)


@dataclass
class OrderSyncResult:
    order_id: str
    created: bool
    redemptions: Dict[str, str] = field(default_factory=dict)
    matched_by_customer: bool = False

    @property
    def matched_codes(self) -> List[str]:
        return [code for code, outcome in self.redemptions.items() if outcome == RedemptionOutcome.MATCHED.value]


def _money(value) -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, "") else Decimal("0")
    except InvalidOperation:
        logger.warning("Unparseable amount %r in order payload", value)
        return Decimal("0")


def _enum(enum_cls: Type, value: Optional[str], default):
    try:
        return enum_cls(value) if value else default
    except ValueError:
        logger.warning("Unknown %s value %r", enum_cls.__name__, value)
        return default


class OrderSyncService:
    def __init__(self, db: Session, gateway: Optional[CommerceGateway] = None) -> None:
        self.db = db
        self.customers = CustomerService(db, gateway)
        self.referrals = ReferralService(db, gateway)

    def sync_from_shopify(self, payload: ShopifyOrderPayload) -> OrderSyncResult:
        shopify_id = str(payload.id)
        order = self.db.query(Order).filter(Order.shopify_id == shopify_id).first()
        created = order is None
        was_paid = order is not None and order.financial_status == FinancialStatus.PAID

        customer = self._resolve_customer(payload)

        if created:
            order = Order(shopify_id=shopify_id)
            self.db.add(order)
        self._apply(order, payload, customer)

        try:
            self.db.commit()
        except IntegrityError:
            # Lost an insert race against a concurrent delivery of the same order
            self.db.rollback()
            order = self.db.query(Order).filter(Order.shopify_id == shopify_id).one()
            created = False
            was_paid = order.financial_status == FinancialStatus.PAID
            customer = self._resolve_customer(payload)
            self._apply(order, payload, customer)
            self.db.commit()

        self.db.refresh(order)
        logger.info("%s order %s (Shopify %s)", "Created" if created else "Updated", order.id, shopify_id)

        result = OrderSyncResult(order_id=order.id, created=created)

        became_paid = not was_paid and order.financial_status == FinancialStatus.PAID
        if created or became_paid:
            self._redeem(order, payload, result)
        return result

    def _resolve_customer(self, payload: ShopifyOrderPayload) -> Optional[Customer]:
        ref = payload.customer
        if ref is None:
            return None

        customer = None
        if ref.id is not None:
            customer = self.customers.find_by_shopify_id(str(ref.id))
        if customer is None and ref.phone:
            customer = self.customers.find_by_phone(ref.phone)
        if customer is None and ref.email:
            customer = self.customers.find_by_email(ref.email)

        if customer is None and ref.phone:
            customer = self.customers.create(
                {"phone": ref.phone, "email": ref.email},
                commit=False,
            )
            logger.info("Created local customer %s from Shopify order %s", customer.id, payload.id)

        if customer is not None and not customer.shopify_id and ref.id is not None:
            customer.shopify_id = str(ref.id)
        return customer

    def _apply(self, order: Order, payload: ShopifyOrderPayload, customer: Optional[Customer]) -> None:
        shipping = (payload.total_shipping_price_set or {}).get("shop_money", {}).get("amount")

        order.order_number = payload.name
        order.customer_id = customer.id if customer else order.customer_id
        order.financial_status = _enum(FinancialStatus, payload.financial_status, FinancialStatus.PENDING)
        order.fulfillment_status = _enum(FulfillmentStatus, payload.fulfillment_status, FulfillmentStatus.UNFULFILLED)
        order.subtotal = _money(payload.subtotal_price)
        order.discount_total = _money(payload.total_discounts)
        order.tax_total = _money(payload.total_tax)
        order.shipping_total = _money(shipping)
        order.total = _money(payload.total_price)
        order.currency = payload.currency
        order.discount_codes = [dc.model_dump() for dc in payload.discount_codes]
        order.product_ids = sorted({str(item.product_id) for item in payload.line_items if item.product_id is not None})
        order.shipping_address = payload.shipping_address
        order.billing_address = payload.billing_address
        order.note = payload.note

        if payload.cancelled_at:
            order.sync_status = OrderSyncStatus.CANCELLED
            order.cancel_reason = payload.cancel_reason
            order.cancelled_at = order.cancelled_at or datetime.utcnow()
        else:
            order.sync_status = OrderSyncStatus.SYNCED
        order.synced_at = datetime.utcnow()

    def _redeem(self, order: Order, payload: ShopifyOrderPayload, result: OrderSyncResult) -> None:
        """Code-first matching; the customer fallback runs only when no code was ours"""
        recognized = False

        for discount in payload.discount_codes:
            try:
                redemption = self.referrals.match_by_discount_code(
                    discount.code, order.id, order.total, order.product_ids or []
                )
            except Exception:
                # One bad code must not stop the others
                logger.exception("Failed to process discount code %s for order %s", discount.code, order.id)
                self.db.rollback()
                result.redemptions[discount.code] = "error"
                recognized = True
                continue

            result.redemptions[discount.code] = redemption.outcome.value
            if redemption.outcome != RedemptionOutcome.UNKNOWN_CODE:
                recognized = True

        if recognized or not order.customer_id:
            return

        redemption = self.referrals.match_by_customer(order.customer_id, order)
        result.matched_by_customer = redemption.matched
        if redemption.matched:
            logger.info("Order %s matched referral %s by customer", order.id, redemption.referral.id)
