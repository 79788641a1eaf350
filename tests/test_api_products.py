import pytest

import main
from database import PRODUCTS, find_by_id

NEW_PRODUCT = {
    "name": " Desk Lamp ",
    "description": "Adjustable LED lamp",
    "price": 29.5,
    "category": "Home",
    "stock": 7,
    "tags": ["lighting"],
    "specifications": {"Power": "8 W"},
}


def test_list_products_paginates(client, add_products, make_product):
    add_products(*[make_product(f"p{i}") for i in range(14)])

    resp = client.get("/api/products")
    assert resp.status_code == 200
    body = resp.json()
    assert len(body["products"]) == 12
    assert body["pagination"] == {"total": 14, "page": 1, "pageSize": 12, "totalPages": 2}

    body = client.get("/api/products", params={"page": 5, "limit": 5}).json()
    assert body["products"] == []
    assert body["pagination"] == {"total": 14, "page": 5, "pageSize": 5, "totalPages": 3}


def test_list_products_filters_and_sorts(client, add_products, make_product):
    add_products(
        make_product("a", price=5, category="Toys", featured=True),
        make_product("b", price=50, category="Toys"),
        make_product("c", price=20, category="Books", featured=True),
        make_product("d", price=15, category="toys", featured=True),
    )
    resp = client.get("/api/products", params={
        "category": "TOYS", "featured": "true", "sort": "price-desc", "maxPrice": 40,
    })
    assert [p["id"] for p in resp.json()["products"]] == ["d", "a"]


def test_invalid_page_is_a_validation_error(client):
    resp = client.get("/api/products", params={"page": 0})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Validation error"


def test_categories(client, add_products, make_product):
    add_products(
        make_product("a", category="Toys", subcategory="Puzzles", brand="Acme"),
        make_product("b", category="Books", subcategory="Puzzles", brand="Acme"),
    )
    assert client.get("/api/products/categories").json() == {
        "categories": ["Toys", "Books"],
        "subcategories": ["Puzzles"],
        "brands": ["Acme"],
    }


def test_get_product_with_related(client, add_products, make_product):
    add_products(
        make_product("a", category="Toys"),
        make_product("b", category="Toys"),
        make_product("c", category="Books"),
    )
    body = client.get("/api/products/a").json()
    assert body["product"]["id"] == "a"
    assert [p["id"] for p in body["relatedProducts"]] == ["b"]

    resp = client.get("/api/products/missing")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Not Found", "message": "Product not found"}


def test_admin_creates_product(admin_client, store):
    resp = admin_client.post("/api/products", json=NEW_PRODUCT)
    assert resp.status_code == 201
    product = resp.json()["product"]
    assert product["name"] == "Desk Lamp"
    assert product["originalPrice"] == 29.5
    assert product["rating"] == 0
    assert product["reviews"] == 0
    assert product["featured"] is False
    assert product["subcategory"] == ""
    assert product["createdAt"].endswith("Z")
    assert store.read(PRODUCTS) == [product]


def test_create_product_requires_fields(admin_client):
    resp = admin_client.post("/api/products", json={"name": "Lamp"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Missing fields"


def test_create_product_requires_admin(client, customer_client):
    assert client.post("/api/products", json=NEW_PRODUCT).status_code == 401
    resp = customer_client.post("/api/products", json=NEW_PRODUCT)
    assert resp.status_code == 403
    assert resp.json() == {"error": "Access denied", "message": "Admin privileges required"}


def test_update_product_preserves_identity(admin_client, store, add_products, make_product):
    original = add_products(make_product("a", price=10))[0]

    resp = admin_client.put("/api/products/a", json={
        "price": 12.5, "stock": 3, "id": "hijack", "createdAt": "1999-01-01T00:00:00.000Z",
    })
    assert resp.status_code == 200
    product = find_by_id(store.read(PRODUCTS), "a")
    assert product["price"] == 12.5
    assert product["stock"] == 3
    assert product["name"] == original["name"]
    assert product["createdAt"] == original["createdAt"]
    assert product["updatedAt"].endswith("Z")
    assert find_by_id(store.read(PRODUCTS), "hijack") is None


def test_update_product_rejects_negative_stock(admin_client, add_products, make_product):
    add_products(make_product("a"))
    assert admin_client.put("/api/products/a", json={"stock": -1}).status_code == 400


@pytest.mark.parametrize("field", ["price", "stock", "name"])
def test_update_product_rejects_null_fields(admin_client, store, add_products, make_product, field):
    original = add_products(make_product("a", price=10, stock=4))[0]

    resp = admin_client.put("/api/products/a", json={field: None})

    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid fields"
    assert field in resp.json()["message"]
    assert find_by_id(store.read(PRODUCTS), "a") == original
    assert admin_client.get("/api/products", params={"sort": "price-asc"}).status_code == 200
    assert admin_client.post("/api/cart/add", json={"productId": "a"}).status_code == 200


def test_update_and_delete_missing_product(admin_client):
    assert admin_client.put("/api/products/nope", json={"price": 1}).status_code == 404
    assert admin_client.delete("/api/products/nope").status_code == 404


def test_delete_product(admin_client, store, add_products, make_product):
    add_products(make_product("a"), make_product("b"))
    resp = admin_client.delete("/api/products/a")
    assert resp.status_code == 200
    assert [p["id"] for p in store.read(PRODUCTS)] == ["b"]


def test_seed_data_only_fills_an_empty_catalog(store):
    assert main.seed_data(store) == len(main.SAMPLE_PRODUCTS)
    products = store.read(PRODUCTS)
    assert all(p["originalPrice"] >= p["price"] for p in products)
    assert main.seed_data(store) == 0
    assert store.read(PRODUCTS) == products


def test_seed_catalog_uses_local_images():
    for product in main.SAMPLE_PRODUCTS:
        assert all(image.startswith("/images/products/") for image in product["images"])
