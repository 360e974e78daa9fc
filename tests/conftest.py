import itertools

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import cart
import catalog
import cron
import database
import mailer
import main
import orders
import security
import tickets
import users
from schemas import Product as ProductSchema, User as UserSchema

DB_MODULES = (database, security, users, tickets, catalog, cart, orders, cron, main)

_counter = itertools.count(1)


@pytest.fixture
def mock_db(monkeypatch):
    db = mongomock.MongoClient().koi_test
    for module in DB_MODULES:
        monkeypatch.setattr(module, "db", db)
    return db


@pytest.fixture
def sent_emails(monkeypatch):
    sent = []

    def fake_send(to, subject, html):
        sent.append({"to": to, "subject": subject, "html": html})

    monkeypatch.setattr(mailer, "send_email", fake_send)
    return sent


@pytest.fixture
def client(mock_db, sent_emails):
    return TestClient(main.app)


@pytest.fixture
def make_user(mock_db):
    def _make(role="client", name=None, password="secret123"):
        n = next(_counter)
        email = f"{role}{n}@example.com"
        user_id = database.create_document("user", UserSchema(
            name=name or f"{role.title()} {n}",
            email=email,
            password_hash=security.hash_password(password),
            role=role,
        ))
        doc = mock_db["user"].find_one({"_id": ObjectId(user_id)})
        token = security.create_token(doc)
        return {
            "id": user_id,
            "email": email,
            "token": token,
            "headers": {"Authorization": f"Bearer {token}"},
        }

    return _make


@pytest.fixture
def make_product(mock_db):
    def _make(**overrides):
        data = {
            "title": "KOI Hoodie",
            "description": "Heavy fleece",
            "brand": "KOI",
            "category_id": "cat-1",
            "price": 100.0,
            "discount": 0,
            "colors": ["black"],
            "sizes": ["M"],
            "images": [{"url": "https://img.example.com/hoodie.jpg", "public_id": "products/hoodie"}],
        }
        data.update(overrides)
        return database.create_document("product", ProductSchema(**data))

    return _make
