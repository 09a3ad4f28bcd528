import os

os.environ["FEED_POLL_INTERVAL"] = "0.02"

import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import database

# every module imports `db` from database, so swap it in before the app loads
database.db = mongomock.MongoClient()["marketplace_test"]

from main import app  # noqa: E402


@pytest.fixture
def mongo():
    return database.db


@pytest.fixture
def client(tmp_path, monkeypatch):
    for name in database.db.list_collection_names():
        database.db.drop_collection(name)
    monkeypatch.setattr(config, "STORAGE_DIR", str(tmp_path))
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(client):
    counter = {"n": 0}

    def _make(name="User", role=None, **location):
        counter["n"] += 1
        email = f"user{counter['n']}@example.com"
        r = client.post("/api/auth/register", json={"name": name, "email": email, "password": "secret123"})
        assert r.status_code == 200, r.text
        r = client.post("/api/auth/login", json={"email": email, "password": "secret123"})
        assert r.status_code == 200, r.text
        body = r.json()
        user = {"id": body["id"], "token": body["token"], "headers": {"Authorization": f"Bearer {body['token']}"}}
        changes = dict(location)
        if role:
            changes["role"] = role
        if changes:
            r = client.patch("/api/profiles/me", json=changes, headers=user["headers"])
            assert r.status_code == 200, r.text
        return user

    return _make


@pytest.fixture
def categories(client):
    return {c["name"]: c["id"] for c in client.get("/api/categories").json()["items"]}


@pytest.fixture
def make_product(client, categories):
    def _make(seller, category="Electronics", **fields):
        body = {
            "title": "Laptop",
            "description": "Barely used",
            "price": 100.0,
            "category_id": categories[category],
            "condition": "good",
        }
        body.update(fields)
        r = client.post("/api/products", json=body, headers=seller["headers"])
        assert r.status_code == 201, r.text
        return r.json()

    return _make
