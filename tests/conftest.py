import os
import uuid

os.environ.setdefault("ENVIRONMENT", "test")

import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from passlib.context import CryptContext  # noqa: E402

import auth  # noqa: E402
import catalog  # noqa: E402
import config  # noqa: E402
import database  # noqa: E402
import users  # noqa: E402
from main import app  # noqa: E402


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    monkeypatch.setattr(auth, "pwd_context", CryptContext(schemes=["bcrypt"], bcrypt__rounds=4))


@pytest.fixture(autouse=True)
def upload_dir(monkeypatch, tmp_path):
    path = tmp_path / "uploads"
    monkeypatch.setattr(config, "UPLOAD_DIR", str(path))
    return path


@pytest.fixture()
def db():
    mock_db = mongomock.MongoClient()["storefront_test_" + uuid.uuid4().hex]
    database.ensure_indexes(mock_db)
    return mock_db


@pytest.fixture()
def client(db):
    app.dependency_overrides[database.get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db):
    def _make(email="budi@example.com", role="user", password="secret123", name="Budi"):
        user = users.create_user(db, name, email, password, role=role)
        token = auth.create_access_token(user)
        return user, {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture()
def customer(make_user):
    return make_user()


@pytest.fixture()
def admin(make_user):
    return make_user(email="admin@example.com", role="admin", name="Admin")


@pytest.fixture()
def make_product(db):
    def _make(name="Kopi Robusta", price=1000, stock=5, **kwargs):
        return catalog.create_product(db, name, price, stock, **kwargs)

    return _make
