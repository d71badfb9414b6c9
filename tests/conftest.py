import asyncio
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from mongomock_motor import AsyncMongoMockClient

from shared.utils import settings
from shared.security_config import limiter

# Shared limiter instance; counters would leak between tests
limiter.enabled = False

def make_token(sub: str, role: str = "user") -> str:
    payload = {"sub": sub, "role": role, "exp": datetime.utcnow() + timedelta(hours=1)}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def run(coro):
    return asyncio.run(coro)

@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {make_token('admin-1', 'admin')}"}

@pytest.fixture
def user_headers():
    return {"Authorization": f"Bearer {make_token('user-1')}"}

@pytest.fixture
def other_user_headers():
    return {"Authorization": f"Bearer {make_token('user-2')}"}

@pytest.fixture
def internal_headers():
    return {"X-Internal-Key": settings.INTERNAL_API_KEY}

# Apps are built at import time; startup (real Mongo) is never run because the
# clients are not used as context managers.

@pytest.fixture
def products_app():
    from services.products_service.app.main import app
    app.mongodb = AsyncMongoMockClient().products_db
    return app

@pytest.fixture
def products_client(products_app):
    return TestClient(products_app)

@pytest.fixture
def coupons_app():
    from services.coupons_service.app.main import app
    app.mongodb = AsyncMongoMockClient().coupons_db
    return app

@pytest.fixture
def coupons_client(coupons_app):
    return TestClient(coupons_app)

@pytest.fixture
def orders_app():
    from services.orders_service.app.main import app
    app.mongodb = AsyncMongoMockClient().orders_db
    return app

@pytest.fixture
def orders_client(orders_app):
    return TestClient(orders_app)

@pytest.fixture
def payments_app():
    from services.payments_service.app.main import app
    app.mongodb = AsyncMongoMockClient().payments_db
    yield app
    app.dependency_overrides.clear()

@pytest.fixture
def payments_client(payments_app):
    return TestClient(payments_app)
