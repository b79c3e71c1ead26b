import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main
import security
from schemas import User as UserSchema

PASSWORD = "secret123"


@pytest.fixture
def mongo(monkeypatch):
    mock_db = mongomock.MongoClient()["flame_crumble_test"]
    for module in (database, main, security):
        monkeypatch.setattr(module, "db", mock_db)
    return mock_db


def make_user(email, role="user", password=PASSWORD, name="Test User", phone="9876543210"):
    user = UserSchema(
        name=name,
        email=email,
        password_hash=security.hash_password(password),
        phone=phone,
        role=role,
        is_verified=True,
    )
    return database.create_document("user", user)


def login(client, email, password=PASSWORD):
    res = client.post("/api/auth/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    return res.json()


def make_product(**overrides):
    product = {
        "name": "Vanilla Dream Candle",
        "description": "Soy wax, vanilla bean.",
        "price": 29.99,
        "category": "candles",
        "image": "/images/candle.jpg",
        "stock": 10,
    }
    product.update(overrides)
    return database.create_document("product", product)


@pytest.fixture
def anon_client(mongo):
    return TestClient(main.app)


@pytest.fixture
def user_client(mongo):
    make_user("alice@flameandcrumble.com", name="Alice")
    client = TestClient(main.app)
    login(client, "alice@flameandcrumble.com")
    return client


@pytest.fixture
def other_client(mongo):
    make_user("bob@flameandcrumble.com", name="Bob")
    client = TestClient(main.app)
    login(client, "bob@flameandcrumble.com")
    return client


@pytest.fixture
def admin_client(mongo):
    make_user("admin@flameandcrumble.com", role="admin", name="Admin")
    client = TestClient(main.app)
    login(client, "admin@flameandcrumble.com")
    return client


@pytest.fixture
def candle(mongo):
    return make_product(
        variants=[{"name": "Large", "price": 39.99, "stock": 3}],
    )


@pytest.fixture
def cookies(mongo):
    return make_product(
        name="Oatmeal Raisin Cookies",
        description="Box of twelve.",
        price=12.0,
        category="cookies",
        image="/images/cookies.jpg",
        stock=50,
    )
