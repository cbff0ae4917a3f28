import mongomock
import pytest
from fastapi.testclient import TestClient

import catalog
import config
from database import create_document, ensure_indexes, get_db
from main import app
from schemas import User
from security import create_token, hash_password

PASSWORD = "secret123"


@pytest.fixture
def db():
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db, tmp_path, monkeypatch):
    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path / "uploads"))
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(db):
    def _make(email="jane@shop.com", role="user", **fields):
        user = User(
            first_name=fields.pop("first_name", "Jane"),
            last_name=fields.pop("last_name", "Doe"),
            email=email,
            password=hash_password(PASSWORD),
            role=role,
            **fields,
        )
        user_id = create_document(db, "user", user)
        token = create_token({"id": user_id, "role": role})
        return {"_id": user_id, "role": role, "email": email, "token": token, "headers": auth(token)}
    return _make


@pytest.fixture
def shopper(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(email="boss@shop.com", role="admin")


@pytest.fixture
def make_product(db):
    def _make(name="Cotton Tee", price=100.0, sizes=("S", "M", "L"), **fields):
        data = {
            "name": name,
            "description": "Soft cotton",
            "price": price,
            "category": fields.pop("category", "Men"),
            "sub_category": fields.pop("sub_category", "Topwear"),
            "sizes": list(sizes),
            "stock": fields.pop("stock", 10),
            "image": fields.pop("image", ["/uploads/tee.png"]),
            **fields,
        }
        return catalog.create_product(db, data)
    return _make


@pytest.fixture
def address():
    return {
        "firstName": "Jane",
        "lastName": "Doe",
        "email": "jane@shop.com",
        "street": "12 Market St",
        "city": "Manila",
        "zipcode": "1000",
        "phone": "09171234567",
    }
