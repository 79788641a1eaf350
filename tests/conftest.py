import pytest
from fastapi.testclient import TestClient

import main
from database import PRODUCTS, JsonStore, timestamp
from sessions import SessionStore

PASSWORD = "secret123"


@pytest.fixture
def store(tmp_path):
    return JsonStore(str(tmp_path / "data"))


@pytest.fixture
def sessions():
    return SessionStore()


@pytest.fixture
def app(store, sessions):
    main.app.dependency_overrides[main.get_store] = lambda: store
    main.app.dependency_overrides[main.get_sessions] = lambda: sessions
    yield main.app
    main.app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_product():
    def _make(product_id, **fields):
        product = {
            "id": product_id,
            "name": f"Product {product_id}",
            "description": f"Description of {product_id}",
            "price": 10.0,
            "originalPrice": 10.0,
            "category": "General",
            "subcategory": "",
            "brand": "",
            "images": [f"https://img.example.com/{product_id}.jpg"],
            "stock": 10,
            "rating": 0,
            "reviews": 0,
            "featured": False,
            "tags": [],
            "specifications": {},
            "createdAt": timestamp(),
        }
        product.update(fields)
        return product
    return _make


@pytest.fixture
def add_products(store):
    def _add(*products):
        records = store.read(PRODUCTS)
        records.extend(products)
        assert store.write(PRODUCTS, records)
        return list(products)
    return _add


@pytest.fixture
def register():
    def _register(client, name, email, password=PASSWORD):
        resp = client.post("/api/auth/register", json={
            "name": name,
            "email": email,
            "password": password,
            "confirmPassword": password,
        })
        assert resp.status_code == 201, resp.text
        return resp.json()["user"]
    return _register


@pytest.fixture
def admin_client(app, register):
    client = TestClient(app)
    client.user = register(client, "Ada Admin", "admin@example.com")
    return client


@pytest.fixture
def customer_client(app, register, admin_client):
    client = TestClient(app)
    client.user = register(client, "Carl Customer", "carl@example.com")
    return client


@pytest.fixture
def other_customer_client(app, register, admin_client):
    client = TestClient(app)
    client.user = register(client, "Olga Other", "olga@example.com")
    return client
