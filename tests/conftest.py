"""Shared fixtures: an in-memory Mongo per test, wired into the app through the get_db override."""

import mongomock
import pytest
from fastapi.testclient import TestClient

import accounts
import catalog
from database import ensure_indexes, get_db
from main import app
from security import create_access_token


@pytest.fixture(scope="function")
def db():
    """Fresh in-memory database for each test."""
    database = mongomock.MongoClient()["shop_test"]
    ensure_indexes(database)
    return database


@pytest.fixture(scope="function")
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(db, email, role="customer", password="secret123"):
    user = accounts.register_user(db, {
        "first_name": "Test",
        "last_name": "User",
        "email": email,
        "password": password,
    })
    if role != "customer":
        db["user"].update_one({"_id": user["_id"]}, {"$set": {"role": role}})
        user = accounts.get_user(db, user["_id"])
    return user


def auth_header(user):
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def customer(db):
    return make_user(db, "customer@example.com")


@pytest.fixture
def admin(db):
    return make_user(db, "admin@example.com", role="admin")


@pytest.fixture
def customer_headers(customer):
    return auth_header(customer)


@pytest.fixture
def admin_headers(admin):
    return auth_header(admin)


@pytest.fixture
def category(db):
    return catalog.create_category(db, {"name": "Cards", "description": "Payment cards"})


def make_product(db, category, name="Glass Credit Card", sku="GC-001", price=50.0, stock=20, **extra):
    data = {
        "name": name,
        "sku": sku,
        "description": "Minimal, premium glass-morphic card for everyday use.",
        "price": price,
        "category": str(category["_id"]),
        "brand": "Frost",
        "stock": stock,
    }
    data.update(extra)
    return catalog.create_product(db, data)


@pytest.fixture
def product(db, category):
    return make_product(db, category)


@pytest.fixture
def address():
    return {
        "full_name": "Test User",
        "phone": "0123456789",
        "street": "1 Main St",
        "city": "Hanoi",
        "postal_code": "100000",
        "country": "Vietnam",
    }
