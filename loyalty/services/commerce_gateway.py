"""Commerce platform boundary.

The referral engine only needs a handful of Shopify Admin API calls, so
they are collected behind ``CommerceGateway``. ``ShopifyGateway`` is the
production implementation; tests substitute an in-memory fake.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

import httpx

from loyalty.core.config import settings
from loyalty.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class CommerceGateway(Protocol):
    def create_customer(self, attrs: Dict[str, Any]) -> str: ...

    def create_price_rule(
        self,
        title: str,
        value_type: str,
        value: Decimal,
        customer_shopify_id: Optional[str] = None,
        product_id: Optional[str] = None,
        validity_days: Optional[int] = None,
        usage_limit: int = 1,
        once_per_customer: bool = True,
        minimum_amount: Optional[Decimal] = None,
    ) -> str: ...

    def create_discount_code(self, price_rule_id: str, code: str) -> str: ...

    def delete_price_rule(self, price_rule_id: str) -> None: ...

    def create_order(self, spec: Dict[str, Any]) -> Dict[str, Any]: ...


class ShopifyGateway:
    def __init__(
        self,
        shop_url: Optional[str] = None,
        access_token: Optional[str] = None,
        api_version: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ):
        shop_url = shop_url or settings.SHOPIFY_SHOP_URL
        access_token = access_token or settings.SHOPIFY_ACCESS_TOKEN
        api_version = api_version or settings.SHOPIFY_API_VERSION

        if client is None:
            if not shop_url or not access_token:
                raise ExternalServiceError("Shopify is not configured")
            client = httpx.Client(
                base_url=f"https://{shop_url}/admin/api/{api_version}",
                headers={
                    "X-Shopify-Access-Token": access_token,
                    "Content-Type": "application/json",
                },
                timeout=settings.SHOPIFY_TIMEOUT_SECONDS,
            )
        self.client = client

    def _request(self, method: str, endpoint: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = self.client.request(method, endpoint, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("Shopify %s %s failed with %s: %s", method, endpoint, e.response.status_code, e.response.text)
            raise ExternalServiceError(
                f"Shopify returned {e.response.status_code}",
                details={"endpoint": endpoint, "body": e.response.text},
            ) from e
        except httpx.HTTPError as e:
            logger.error("Shopify %s %s failed: %s", method, endpoint, e)
            raise ExternalServiceError(f"Shopify request failed: {e}", details={"endpoint": endpoint}) from e

        if not response.content:
            return {}
        return response.json()

    def create_customer(self, attrs: Dict[str, Any]) -> str:
        customer = {
            "first_name": attrs.get("first_name"),
            "last_name": attrs.get("last_name"),
            "email": attrs.get("email"),
            "phone": attrs.get("phone"),
            "verified_email": bool(attrs.get("email")),
        }
        address = attrs.get("address")
        if address:
            customer["addresses"] = [{
                "address1": address.get("address1"),
                "address2": address.get("address2"),
                "city": address.get("city"),
                "province": address.get("state"),
                "zip": address.get("pincode"),
            }]

        data = self._request("POST", "/customers.json", {"customer": customer})
        shopify_id = str(data["customer"]["id"])
        logger.info("Created customer %s in Shopify", shopify_id)
        return shopify_id

    def create_price_rule(
        self,
        title: str,
        value_type: str,
        value: Decimal,
        customer_shopify_id: Optional[str] = None,
        product_id: Optional[str] = None,
        validity_days: Optional[int] = None,
        usage_limit: int = 1,
        once_per_customer: bool = True,
        minimum_amount: Optional[Decimal] = None,
    ) -> str:
        starts_at = datetime.utcnow()
        ends_at = starts_at + timedelta(days=validity_days) if validity_days else None

        price_rule: Dict[str, Any] = {
            "title": title,
            "target_type": "line_item",
            "target_selection": "entitled" if product_id else "all",
            "allocation_method": "across",
            "value_type": value_type,
            "value": f"-{value}",
            "customer_selection": "prerequisite" if customer_shopify_id else "all",
            "starts_at": starts_at.isoformat() + "Z",
            "ends_at": ends_at.isoformat() + "Z" if ends_at else None,
            "usage_limit": usage_limit,
            "once_per_customer": once_per_customer,
        }
        if customer_shopify_id:
            price_rule["prerequisite_customer_ids"] = [int(customer_shopify_id)]
        if product_id:
            price_rule["entitled_product_ids"] = [int(product_id)]
        if minimum_amount:
            price_rule["prerequisite_subtotal_range"] = {"greater_than_or_equal_to": str(minimum_amount)}

        data = self._request("POST", "/price_rules.json", {"price_rule": price_rule})
        price_rule_id = str(data["price_rule"]["id"])
        logger.info("Created price rule %s in Shopify", price_rule_id)
        return price_rule_id

    def create_discount_code(self, price_rule_id: str, code: str) -> str:
        data = self._request(
            "POST",
            f"/price_rules/{price_rule_id}/discount_codes.json",
            {"discount_code": {"code": code}},
        )
        logger.info("Created discount code %s in Shopify", code)
        return str(data["discount_code"]["id"])

    def delete_price_rule(self, price_rule_id: str) -> None:
        self._request("DELETE", f"/price_rules/{price_rule_id}.json")
        logger.info("Deleted price rule %s", price_rule_id)

    def create_order(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        data = self._request("POST", "/orders.json", {"order": spec})
        return data["order"]


def get_commerce_gateway() -> CommerceGateway:
    """FastAPI dependency / task helper returning the configured gateway"""
    return ShopifyGateway()
