import os

os.environ["DATABASE_URL"] = "sqlite://"

from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from loyalty.api.deps import get_gateway
from loyalty.core.database import Base, SessionLocal, engine, get_db, init_db
from loyalty.core.exceptions import ExternalServiceError
from loyalty.models.commission_rule import CommissionRule, CommissionType
from loyalty.models.salon import Salon
from loyalty.models.user import Level, User, UserRole


class FakeCommerceGateway:
    """In-memory stand-in for Shopify that records every call"""

    def __init__(self):
        self.calls: List[tuple] = []
        self.fail_on: set = set()
        self.deleted_price_rules: List[str] = []
        self._next_id = 1000

    def _id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    def _record(self, name: str, *args):
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise ExternalServiceError(f"{name} rejected", details={"method": name})

    def called(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def create_customer(self, attrs: Dict[str, Any]) -> str:
        self._record("create_customer", attrs.get("phone"))
        return self._id()

    def create_price_rule(self, title: str, value_type: str, value: Decimal, customer_shopify_id: Optional[str] = None, **kwargs) -> str:
        self._record("create_price_rule", title)
        return self._id()

    def create_discount_code(self, price_rule_id: str, code: str) -> str:
        self._record("create_discount_code", price_rule_id, code)
        return self._id()

    def delete_price_rule(self, price_rule_id: str) -> None:
        self._record("delete_price_rule", price_rule_id)
        self.deleted_price_rules.append(price_rule_id)

    def create_order(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        self._record("create_order")
        return {"id": self._id(), **spec}


@pytest.fixture
def db():
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway():
    return FakeCommerceGateway()


@pytest.fixture
def salon(db):
    salon = Salon(name="Glow Studio", phone="+919800000001", level=Level.SILVER)
    db.add(salon)
    db.commit()
    return salon


@pytest.fixture
def stylist(db, salon):
    user = User(name="Asha", phone="+919900000001", role=UserRole.STYLIST, level=Level.GOLD, salon_id=salon.id)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def freelancer(db):
    user = User(name="Ravi", phone="+919900000002", role=UserRole.STYLIST, level=Level.BRONZE)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def admin(db):
    user = User(name="Ops", phone="+919900000009", role=UserRole.ADMIN)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def make_rule(db):
    def _make_rule(**kwargs) -> CommissionRule:
        kwargs.setdefault("name", "rule")
        kwargs.setdefault("type", CommissionType.PERCENTAGE)
        rule = CommissionRule(**kwargs)
        db.add(rule)
        db.commit()
        return rule
    return _make_rule


@pytest.fixture
def client(db, gateway):
    from loyalty.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
