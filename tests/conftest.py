"""
Shared fixtures: an in-memory Mongo, a seeded store, and fake Razorpay and
Shiprocket endpoints.
"""
import fnmatch
import time
from typing import Any, Dict, List, Optional

import httpx
import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import database
from cache import Cache, NullCache
from dependencies import get_gateway_factory
from main import app
from security import create_token, hash_password
from shiprocket import ShiprocketClient


class FakeGateway:
    """Stands in for `RazorpayGateway`; flip `valid` to reject signatures."""

    key_id = "rzp_test_key"

    def __init__(self):
        self.valid = True
        self.created: List[dict] = []
        self.verified: List[dict] = []

    def create_order(self, amount, currency="INR", receipt=None):
        order = {"order_id": f"order_TEST{len(self.created) + 1}", "amount": int(amount), "currency": currency}
        self.created.append(order)
        return order

    def verify_payment(self, payload):
        self.verified.append(payload)
        return self.valid


class FakeCarrier:
    """`httpx.MockTransport` handler answering like the Shiprocket API."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.fail_create = 0

    def count(self, suffix: str) -> int:
        return sum(1 for r in self.requests if r.url.path.endswith(suffix))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/auth/login"):
            return httpx.Response(200, json={"token": "sr-token", "expires_in": 3600})
        if path.endswith("/orders/create/adhoc"):
            if self.fail_create:
                self.fail_create -= 1
                return httpx.Response(500, json={"message": "Upstream unavailable"})
            return httpx.Response(200, json={"order_id": 987654, "shipment_id": 123456, "status": "NEW"})
        if path.endswith("/orders/cancel"):
            return httpx.Response(200, json={"message": "Order cancelled"})
        if "/orders/show/" in path:
            return httpx.Response(200, json={"data": {"id": int(path.rsplit("/", 1)[1]), "status": "NEW"}})
        if path.endswith("/courier/serviceability/"):
            return httpx.Response(200, json={"status": 200, "data": {
                "available_courier_companies": [{"courier_name": "Delhivery", "rate": 62.0}],
            }})
        return httpx.Response(404, json={"message": "Not found"})


class MemoryCache(Cache):
    """Dict-backed cache so HTTP tests can observe hits and rate limits."""

    available = True

    def __init__(self):
        self.data: Dict[str, Any] = {}
        self.expiry: Dict[str, float] = {}

    async def get(self, key: str) -> Optional[Any]:
        return self.data.get(key)

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        self.data[key] = value
        self.expiry[key] = time.time() + ttl
        return True

    async def delete(self, key: str) -> bool:
        self.expiry.pop(key, None)
        return self.data.pop(key, None) is not None

    async def expire(self, key: str, ttl: int) -> bool:
        self.expiry[key] = time.time() + ttl
        return True

    async def ttl(self, key: str) -> int:
        return int(self.expiry[key] - time.time()) if key in self.expiry else -1

    async def incr(self, key: str) -> Optional[int]:
        self.data[key] = int(self.data.get(key, 0)) + 1
        return self.data[key]

    async def keys(self, pattern: str) -> List[str]:
        return [k for k in self.data if fnmatch.fnmatchcase(k, pattern)]

    async def ping(self) -> bool:
        return True


@pytest.fixture
def db(monkeypatch):
    mongo = mongomock.MongoClient()["test_store"]
    database.set_database(mongo)
    monkeypatch.setattr(config, "SHIPMENT_DISPATCH_ON_CREATE", False)
    monkeypatch.setattr(config, "SHIPMENT_WORKER_ENABLED", False)
    yield mongo
    database.set_database(None)


@pytest.fixture
def store_settings(db):
    doc = {
        "site_name": "Vaidya Naturals",
        "maintenance_mode": False,
        "support_email": "care@vaidya.example",
        "razorpay_key_id": "rzp_test_key",
        "razorpay_key_secret": "rzp_test_secret",
        "shiprocket_api_key": "ops@vaidya.example",
        "shiprocket_api_secret": "sr-password",
        "shiprocket_source_pincode": "110001",
        "shiprocket_pickup_location": "Warehouse",
        "shiprocket_channel_id": 0,
        "tax_enabled": False,
        "tax_percentage": 0,
    }
    db["setting"].insert_one(doc)
    return doc


@pytest.fixture
def products(db):
    ids = {}
    catalogue = [
        ("ashwagandha-capsules", "Ashwagandha Capsules", "ASH-60", 300.0),
        ("triphala-churna", "Triphala Churna", "TRI-100", 150.0),
    ]
    for slug, name, sku, price in catalogue:
        ids[slug] = str(db["product"].insert_one({
            "name": name,
            "slug": slug,
            "sku": sku,
            "price": price,
            "images": [],
            "inventory": 10,
            "featured": slug == "ashwagandha-capsules",
            "bestseller": False,
            "is_active": True,
            "created_at": database.utcnow(),
            "updated_at": database.utcnow(),
        }).inserted_id)
    return ids


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def carrier():
    return FakeCarrier()


@pytest.fixture
def shiprocket(carrier):
    return ShiprocketClient(transport=httpx.MockTransport(carrier))


@pytest.fixture
def client(db, gateway, shiprocket):
    app.dependency_overrides[get_gateway_factory] = lambda: (lambda: gateway)
    app.state.shiprocket = shiprocket
    app.state.cache = NullCache()
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.cache = NullCache()


@pytest.fixture
def memory_cache(client):
    cache = MemoryCache()
    app.state.cache = cache
    return cache


def _insert_user(db, email: str, is_admin: bool) -> dict:
    doc = {
        "name": email.split("@")[0].title(),
        "email": email,
        "hashed_password": hash_password("secret123"),
        "is_active": True,
        "is_admin": is_admin,
    }
    doc["_id"] = db["user"].insert_one(doc).inserted_id
    return doc


@pytest.fixture
def admin_headers(db):
    return {"Authorization": f"Bearer {create_token(_insert_user(db, 'admin@vaidya.example', True))}"}


@pytest.fixture
def customer(db):
    return _insert_user(db, "asha@example.com", False)


@pytest.fixture
def customer_headers(customer):
    return {"Authorization": f"Bearer {create_token(customer)}"}


@pytest.fixture
def make_order():
    def build(items, payment_method="cod", payment=None, **overrides):
        order = {
            "billing_customer_name": "Asha",
            "billing_last_name": "Menon",
            "billing_address": "12 Temple Road, Indiranagar",
            "billing_city": "Bengaluru",
            "billing_state": "Karnataka",
            "billing_country": "India",
            "billing_pincode": "560038",
            "billing_email": "asha@example.com",
            "billing_phone": "9876543210",
            "shipping_is_billing": True,
            "payment_method": payment_method,
        }
        order.update(overrides)
        body = {"order": order, "items": [{"product_id": pid, "quantity": qty} for pid, qty in items]}
        if payment is not None:
            body["payment"] = payment
        return body
    return build
