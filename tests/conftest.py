import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

import main
from database import DocumentStore


@pytest.fixture
def store(tmp_path, monkeypatch):
    store = DocumentStore(str(tmp_path / "db.json"))
    monkeypatch.setattr(main, "db", store)
    return store


@pytest.fixture
def client(store):
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def signup_and_login(client):
    def _login(email="a@x.com", password="pw1"):
        client.post("/api/auth/signup", json={"email": email, "password": password})
        res = client.post("/api/auth/login", json={"email": email, "password": password})
        assert res.status_code == 200
        return {"x-session-token": res.json()["sessionToken"]}
    return _login
