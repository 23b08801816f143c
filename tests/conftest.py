"""Pytest fixtures: the three services on one in-memory Mongo database."""
import os
import tempfile

# Must be set before the services read their settings
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["MEDIA_ROOT"] = tempfile.mkdtemp(prefix="storefront-media-")

from datetime import datetime

import httpx
import pytest
from mongomock_motor import AsyncMongoMockClient

from shared.utils import settings, create_access_token, ROLE_ADMIN, ROLE_CUSTOMER
from services.auth_service.main import app as auth_app
from services.catalog_service.main import app as catalog_app
from services.orders_service.main import app as orders_app
from storefront_client.api import StorefrontApi

AUTH_URL = "http://auth.test"
CATALOG_URL = "http://catalog.test"
ORDERS_URL = "http://orders.test"

SHIPPING_INFO = {
    "full_name": "Rosa Quispe",
    "phone": "987 654 321",
    "district": "Miraflores",
    "street_type": "Av.",
    "street_name": "Larco",
    "number": "123",
    "interior": "",
    "reference": "Frente al parque",
}


class ServiceRouter(httpx.AsyncBaseTransport):
    """Dispatches each request to the in-process app that owns its host."""

    def __init__(self):
        self.routes = {
            "auth.test": httpx.ASGITransport(app=auth_app),
            "catalog.test": httpx.ASGITransport(app=catalog_app),
            "orders.test": httpx.ASGITransport(app=orders_app),
        }

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self.routes[request.url.host].handle_async_request(request)


@pytest.fixture
def shipping():
    return dict(SHIPPING_INFO)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db():
    client = AsyncMongoMockClient()
    database = client[settings.MONGO_DB]
    for app in (auth_app, catalog_app, orders_app):
        app.mongodb_client = client
        app.mongodb = database
    return database


def _client(app, base_url):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=base_url)


@pytest.fixture
async def auth_api(db):
    async with _client(auth_app, AUTH_URL) as client:
        yield client


@pytest.fixture
async def catalog_api(db):
    async with _client(catalog_app, CATALOG_URL) as client:
        yield client


@pytest.fixture
async def orders_api(db):
    async with _client(orders_app, ORDERS_URL) as client:
        yield client


@pytest.fixture
async def storefront_api(db):
    api = StorefrontApi(auth_url=AUTH_URL, catalog_url=CATALOG_URL, orders_url=ORDERS_URL, transport=ServiceRouter())
    yield api
    await api.aclose()


async def make_user(db, user_id: str, email: str, role: str) -> dict:
    await db.users.insert_one({
        "_id": user_id,
        "email": email,
        "full_name": "",
        "phone": None,
        "role": role,
        "created_at": datetime.utcnow(),
    })
    token = create_access_token({"sub": user_id, "email": email})
    return {"id": user_id, "email": email, "headers": {"Authorization": f"Bearer {token}"}}


@pytest.fixture
async def customer(db):
    return await make_user(db, "customer-1", "rosa@tienda.pe", ROLE_CUSTOMER)


@pytest.fixture
async def other_customer(db):
    return await make_user(db, "customer-2", "lucia@tienda.pe", ROLE_CUSTOMER)


@pytest.fixture
async def admin(db):
    return await make_user(db, "admin-1", "admin@tienda.pe", ROLE_ADMIN)


@pytest.fixture
async def products(db):
    """Three active products keyed by a short name."""
    rows = {
        "labial": {"name": "Labial Mate", "brand": "Esika", "price": 35.9, "stock": 3, "is_offer": False, "is_new": True},
        "base": {"name": "Base Líquida", "brand": "Natura", "price": 59.9, "stock": 10, "is_offer": True, "is_new": False},
        "perfume": {"name": "Perfume Floral", "brand": "Yanbal", "price": 120.0, "stock": 1, "is_offer": False, "is_new": False},
    }
    created = {}
    for offset, (key, row) in enumerate(rows.items()):
        doc = {
            **row,
            "description": "",
            "image": None,
            "images": [],
            "rating": 5.0,
            "reviews": 0,
            "is_active": True,
            "created_at": datetime(2024, 1, 1 + offset),
        }
        result = await db.products.insert_one(doc)
        created[key] = str(result.inserted_id)
    return created
