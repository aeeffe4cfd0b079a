"""
Shared fixtures.

MongoDB and Redis are replaced with in-memory fakes through FastAPI
dependency overrides; storage, mail and the payment gateway get stubs.
"""
import fakeredis
import mongomock
import pytest
from fastapi.testclient import TestClient

from cache import ProductCache, get_cache
from database import create_document, get_db
from mailer import get_mailer
from main import app
from payment_gateway import PaymentGateway, get_payment_gateway
from rate_limit import rate_limiter
from schemas import Product, User
from security import create_token, hash_password
from storage import ImageStorage, get_storage


class FakeStorage(ImageStorage):
    def __init__(self):
        self.saved = []

    def _put(self, upload, key):
        self.saved.append(key)
        return f"https://cdn.test/{key}"


class FakeMailer:
    admin_address = "admin@example.com"

    def __init__(self):
        self.sent = []

    def send(self, to, subject, html):
        self.sent.append({"to": to, "subject": subject, "html": html})


@pytest.fixture
def mongo_db():
    return mongomock.MongoClient()["shopsmart_test"]


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def cache(redis_client):
    return ProductCache(redis_client)


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def gateway():
    return PaymentGateway(key_id="rzp_test_key", key_secret="rzp_test_secret", base_url="https://gateway.test/v1")


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    rate_limiter.reset()
    yield
    rate_limiter.reset()


@pytest.fixture
def client(mongo_db, cache, storage, mailer, gateway):
    app.dependency_overrides[get_db] = lambda: mongo_db
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(mongo_db):
    """Insert a user and return (user_id, auth headers)."""
    counter = {"n": 0}

    def _make(role="user", password="pass123", name="Test User"):
        counter["n"] += 1
        user = User(
            name=name,
            email=f"{role}{counter['n']}@example.com",
            password=hash_password(password),
            role=role,
        )
        user_id = create_document(mongo_db, "user", user)
        token = create_token(user_id, role)
        return user_id, {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def make_product(mongo_db):
    def _make(owner_id, name="Trolley", price=20.0, stock=30, category="Bags"):
        product = Product(
            name=name,
            image_url="https://cdn.test/products/trolley.png",
            price=price,
            company="Company1",
            available_options=["green"],
            category=category,
            stock=stock,
            owner_id=owner_id,
        )
        return create_document(mongo_db, "product", product)

    return _make


@pytest.fixture
def image_file():
    return ("trolley.png", b"\x89PNG\r\n\x1a\n" + b"\x00" * 16, "image/png")
