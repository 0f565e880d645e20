import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from loyalty.core.config import settings
from loyalty.core.exceptions import BadRequestError, ConflictError, ExternalServiceError, NotFoundError
from loyalty.core.phone import normalize_phone
from loyalty.models.customer import Customer, CustomerScope
from loyalty.models.discount_code import DiscountCode, DiscountStatus, DiscountType
from loyalty.models.order_discount_usage import OrderDiscountUsage
from loyalty.models.pricing_rule import PricingRule
from loyalty.services.commerce_gateway import CommerceGateway, get_commerce_gateway
from loyalty.services.customer_service import CustomerService

logger = logging.getLogger(__name__)


class DiscountService:
    def __init__(self, db: Session, gateway: Optional[CommerceGateway] = None) -> None:
        self.db = db
        self.gateway = gateway
        self.customers = CustomerService(db, gateway)

    def _gateway(self) -> CommerceGateway:
        if self.gateway is None:
            self.gateway = get_commerce_gateway()
            self.customers.gateway = self.gateway
        return self.gateway

    def issue(
        self,
        customer_phone: str,
        type: DiscountType,
        value: Decimal,
        validity_days: int,
        product_id: Optional[str] = None,
        note: Optional[str] = None,
        usage_limit: int = 1,
        once_per_customer: bool = True,
        minimum_amount: Optional[Decimal] = None,
        customer_attrs: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> DiscountCode:
        """Create a single-customer coupon whose code is the customer's phone number.

        All-or-nothing: if Shopify rejects any step the session is rolled
        back and BadRequestError is raised, so no local record survives.
        """
        code = normalize_phone(customer_phone)

        if self.db.query(DiscountCode.id).filter(DiscountCode.code == code).first():
            raise ConflictError("Discount already exists for this customer", details={"code": code})

        starts_at = datetime.utcnow()
        expires_at = starts_at + timedelta(days=validity_days)
        created_price_rule_id = None

        try:
            customer = self._resolve_customer(code, customer_attrs)

            if not customer.shopify_id:
                logger.warning("Customer %s has no Shopify ID, discount will apply to all customers", customer.id)

            price_rule_id, pricing_rule = self._shared_price_rule()
            if price_rule_id is None:
                price_rule_id = self._gateway().create_price_rule(
                    title=f"Customer Discount - {code}",
                    value_type=DiscountType(type).value,
                    value=value,
                    customer_shopify_id=customer.shopify_id,
                    product_id=product_id,
                    validity_days=validity_days,
                    usage_limit=usage_limit,
                    once_per_customer=once_per_customer,
                    minimum_amount=minimum_amount,
                )
                created_price_rule_id = price_rule_id

            shopify_code_id = self._gateway().create_discount_code(price_rule_id, code)
            logger.info("Created discount %s in Shopify (PriceRule: %s)", code, price_rule_id)
        except ExternalServiceError as e:
            self.db.rollback()
            self._discard_price_rule(created_price_rule_id)
            logger.error("Failed to create discount %s in Shopify: %s", code, e.message)
            raise BadRequestError(
                f"Failed to create discount in Shopify: {e.message}",
                details={"code": code},
            ) from e

        discount = DiscountCode(
            code=code,
            type=type,
            value=value,
            customer_id=customer.id,
            customer_phone=code,
            shopify_price_rule_id=price_rule_id,
            shopify_discount_code_id=shopify_code_id,
            pricing_rule_id=pricing_rule.id if pricing_rule else None,
            shopify_product_id=product_id,
            usage_limit=usage_limit,
            usage_count=0,
            once_per_customer=once_per_customer,
            minimum_amount=minimum_amount,
            starts_at=starts_at,
            expires_at=expires_at,
            validity_days=validity_days,
            status=DiscountStatus.ACTIVE,
            note=note,
        )
        self.db.add(discount)
        try:
            self.db.flush()
        except IntegrityError as e:
            # A concurrent issuance for the same phone committed first
            self.db.rollback()
            self._discard_price_rule(created_price_rule_id)
            raise ConflictError("Discount already exists for this customer", details={"code": code}) from e
        logger.info("Created discount %s for customer %s", code, customer.id)

        if commit:
            self.db.commit()
            self.db.refresh(discount)
        return discount

    def _resolve_customer(self, phone: str, attrs: Optional[Dict[str, Any]]) -> Customer:
        customer = self.customers.find_by_phone(phone)
        if customer:
            return customer

        logger.info("Customer not found with phone %s, creating new customer", phone)
        self._gateway()
        return self.customers.create({**(attrs or {}), "phone": phone}, scope=CustomerScope.GLOBAL, commit=False)

    def _shared_price_rule(self) -> Tuple[Optional[str], Optional[PricingRule]]:
        shared_id = settings.SHOPIFY_SHARED_PRICE_RULE_ID
        if not shared_id:
            return None, None

        cached = self.db.query(PricingRule).filter(PricingRule.shopify_price_rule_id == shared_id).first()
        return shared_id, cached

    def _discard_price_rule(self, price_rule_id: Optional[str]) -> None:
        if not price_rule_id:
            return
        try:
            self._gateway().delete_price_rule(price_rule_id)
        except ExternalServiceError as e:
            logger.warning("Could not delete orphaned price rule %s: %s", price_rule_id, e.message)

    def find_by_id(self, discount_id: str) -> DiscountCode:
        discount = self.db.get(DiscountCode, discount_id)
        if not discount:
            raise NotFoundError("Discount not found", details={"discount_id": discount_id})
        return discount

    def find_by_code(self, code: str) -> Optional[DiscountCode]:
        discount = self.db.query(DiscountCode).filter(DiscountCode.code == code).first()
        if discount is None and code:
            # Codes are stored normalized; shoppers may type the number without the prefix
            discount = self.db.query(DiscountCode).filter(DiscountCode.code == normalize_phone(code)).first()
        return discount

    def list_discounts(
        self,
        customer_phone: Optional[str] = None,
        status: Optional[DiscountStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[DiscountCode], int]:
        query = self.db.query(DiscountCode)

        if customer_phone:
            query = query.filter(DiscountCode.customer_phone == normalize_phone(customer_phone))
        if status:
            query = query.filter(DiscountCode.status == status)

        total = query.count()
        discounts = query.order_by(DiscountCode.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return discounts, total

    def disable(self, discount_id: str) -> DiscountCode:
        discount = self.find_by_id(discount_id)

        # Shared price rules serve other codes and are never deleted from here
        if discount.shopify_price_rule_id and discount.shopify_price_rule_id != settings.SHOPIFY_SHARED_PRICE_RULE_ID:
            try:
                self._gateway().delete_price_rule(discount.shopify_price_rule_id)
            except ExternalServiceError as e:
                logger.warning("Failed to delete price rule %s in Shopify: %s", discount.shopify_price_rule_id, e.message)

        discount.status = DiscountStatus.DISABLED
        self.db.commit()
        self.db.refresh(discount)
        return discount

    def update_status(self, discount_id: str, status: DiscountStatus) -> DiscountCode:
        discount = self.find_by_id(discount_id)
        discount.status = status
        self.db.commit()
        self.db.refresh(discount)
        return discount

    def record_usage(self, discount_id: str) -> None:
        """Increment usage inside the caller's transaction; USED once the limit is reached"""
        self.db.execute(
            update(DiscountCode)
            .where(DiscountCode.id == discount_id)
            .values(usage_count=DiscountCode.usage_count + 1)
            .execution_options(synchronize_session="fetch")
        )
        self.db.execute(
            update(DiscountCode)
            .where(
                DiscountCode.id == discount_id,
                DiscountCode.status == DiscountStatus.ACTIVE,
                DiscountCode.usage_limit.isnot(None),
                DiscountCode.usage_count >= DiscountCode.usage_limit,
            )
            .values(status=DiscountStatus.USED)
            .execution_options(synchronize_session="fetch")
        )

    def record_order_usage(self, discount_id: str, order_id: str) -> bool:
        """Count a code used on an order once, however often the order is delivered.

        Commits on its own; returns False when this order was already counted.
        """
        already = self.db.query(OrderDiscountUsage.id).filter(
            OrderDiscountUsage.order_id == order_id,
            OrderDiscountUsage.discount_code_id == discount_id,
        ).first()
        if already:
            return False

        self.db.add(OrderDiscountUsage(order_id=order_id, discount_code_id=discount_id))
        self.record_usage(discount_id)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info("Usage of discount %s on order %s already recorded", discount_id, order_id)
            return False

        logger.info("Recorded usage of discount %s on order %s", discount_id, order_id)
        return True
