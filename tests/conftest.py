import os

# must be set before the app modules read their configuration
os.environ["DATABASE_URL"] = ""
os.environ["DATABASE_NAME"] = ""
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from types import SimpleNamespace

import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import database
from database import create_document
from main import app
from schemas import Product, User
from security import create_token, hash_password


@pytest.fixture(autouse=True)
def mongo(monkeypatch, tmp_path):
    mock_db = mongomock.MongoClient()["food_ordering_test"]
    monkeypatch.setattr(database, "db", mock_db)
    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path / "uploads"))
    database.ensure_indexes()
    return mock_db


@pytest.fixture
def client():
    return TestClient(app)


def make_user(name="Jane Customer", email="jane@example.com", phone="5551234567", password="secret123", is_admin=False, is_active=True):
    user_id = create_document("user", User(
        name=name,
        email=email,
        phone=phone,
        password_hash=hash_password(password),
        is_admin=is_admin,
        is_active=is_active,
    ))
    return SimpleNamespace(
        id=user_id,
        email=email,
        password=password,
        headers={"Authorization": f"Bearer {create_token(user_id)}"},
    )


def make_product(name="Burger", price=10.0, category="fast food", image="burger.png"):
    return create_document("product", Product(name=name, category=category, price=price, image=image))


@pytest.fixture
def customer():
    return make_user()


@pytest.fixture
def other_customer():
    return make_user(name="Bob Other", email="bob@example.com", phone="5559876543")


@pytest.fixture
def admin():
    return make_user(name="Ada Admin", email="admin@example.com", phone="5550000000", password="adminpass1", is_admin=True)


@pytest.fixture
def contact():
    return {
        "name": "Jane Customer",
        "email": "jane@example.com",
        "phone": "5551234567",
        "address": "12 Main Street",
        "payment_method": "cash on delivery",
    }
