import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from loyalty.core.exceptions import ConflictError, ExternalServiceError, NotFoundError
from loyalty.core.phone import normalize_phone
from loyalty.models.customer import Customer, CustomerScope
from loyalty.services.commerce_gateway import CommerceGateway, get_commerce_gateway

logger = logging.getLogger(__name__)


class CustomerService:
    """Customer lookup and creation used by discount issuance and order sync"""

    def __init__(self, db: Session, gateway: Optional[CommerceGateway] = None) -> None:
        self.db = db
        self.gateway = gateway

    def get(self, customer_id: str) -> Customer:
        customer = self.db.get(Customer, customer_id)
        if not customer:
            raise NotFoundError("Customer not found", details={"customer_id": customer_id})
        return customer

    def find_by_phone(self, phone: str) -> Optional[Customer]:
        return self.db.query(Customer).filter(
            Customer.phone == normalize_phone(phone)
        ).order_by(Customer.created_at.asc()).first()

    def find_by_email(self, email: str) -> Optional[Customer]:
        return self.db.query(Customer).filter(Customer.email == email).first()

    def find_by_shopify_id(self, shopify_id: str) -> Optional[Customer]:
        return self.db.query(Customer).filter(Customer.shopify_id == str(shopify_id)).first()

    def create(self, attrs: Dict[str, Any], scope: CustomerScope = CustomerScope.LOCAL, commit: bool = True) -> Customer:
        """Create a customer locally, and first in Shopify when scope is GLOBAL.

        A Shopify failure raises a single ExternalServiceError and nothing
        is written locally.
        """
        phone = normalize_phone(attrs["phone"])
        email = attrs.get("email")

        existing = self.db.query(Customer).filter(Customer.phone == phone, Customer.email == email).first()
        if existing:
            raise ConflictError(
                "Customer with this phone and email already exists",
                details={"customer_id": existing.id},
            )

        shopify_id = None
        if scope == CustomerScope.GLOBAL:
            logger.info("Creating customer globally (Shopify + local) for phone %s", phone)
            gateway = self.gateway or get_commerce_gateway()
            try:
                shopify_id = gateway.create_customer({**attrs, "phone": phone})
            except ExternalServiceError as e:
                logger.error("Failed to create customer %s in Shopify: %s", phone, e.message)
                raise ExternalServiceError(
                    f"Failed to create customer in Shopify: {e.message}",
                    details={"phone": phone, **e.details},
                ) from e
        else:
            logger.info("Creating customer locally only for phone %s", phone)

        address = attrs.get("address") or {}
        customer = Customer(
            shopify_id=shopify_id,
            phone=phone,
            email=email,
            name=attrs.get("name"),
            first_name=attrs.get("first_name"),
            last_name=attrs.get("last_name"),
            address=", ".join(filter(None, [address.get("address1"), address.get("address2")])) or None,
            city=address.get("city"),
            state=address.get("state"),
            pincode=address.get("pincode"),
        )
        self.db.add(customer)
        self.db.flush()

        if commit:
            self.db.commit()
            self.db.refresh(customer)
        return customer
