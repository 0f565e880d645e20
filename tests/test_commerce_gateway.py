import json
from decimal import Decimal

import httpx
import pytest

from loyalty.core.exceptions import ExternalServiceError
from loyalty.services.commerce_gateway import ShopifyGateway


def gateway_for(handler):
    client = httpx.Client(base_url="https://shop.test/admin/api/2024-01", transport=httpx.MockTransport(handler))
    return ShopifyGateway(client=client)


def test_create_price_rule_payload():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"price_rule": {"id": 555}})

    price_rule_id = gateway_for(handler).create_price_rule(
        title="Customer Discount - +919876543210",
        value_type="percentage",
        value=Decimal("20"),
        customer_shopify_id="42",
        product_id="8123",
        validity_days=30,
    )

    rule = seen["body"]["price_rule"]
    assert price_rule_id == "555"
    assert seen["path"].endswith("/price_rules.json")
    assert rule["value"] == "-20"
    assert rule["customer_selection"] == "prerequisite"
    assert rule["prerequisite_customer_ids"] == [42]
    assert rule["entitled_product_ids"] == [8123]
    assert rule["usage_limit"] == 1


def test_create_customer_maps_address():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"customer": {"id": 77}})

    shopify_id = gateway_for(handler).create_customer({
        "phone": "+919876543210",
        "address": {"address1": "12 MG Road", "state": "MH", "pincode": "411001"},
    })

    address = seen["body"]["customer"]["addresses"][0]
    assert shopify_id == "77"
    assert address["province"] == "MH"
    assert address["zip"] == "411001"


def test_http_error_becomes_external_failure():
    gateway = gateway_for(lambda request: httpx.Response(422, json={"errors": {"code": ["must be unique"]}}))

    with pytest.raises(ExternalServiceError) as exc:
        gateway.create_discount_code("555", "+919876543210")

    assert exc.value.status_code == 502
    assert "422" in exc.value.message


def test_transport_error_becomes_external_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExternalServiceError):
        gateway_for(handler).delete_price_rule("555")


def test_unconfigured_gateway():
    with pytest.raises(ExternalServiceError):
        ShopifyGateway(shop_url=None, access_token=None)
