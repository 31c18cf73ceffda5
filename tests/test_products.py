import os

import config
import database
from database import count_documents, get_document_by_id

from conftest import make_product

PNG = ("pizza.png", b"\x89PNG\r\n\x1a\nfake", "image/png")


def _form(**overrides):
    data = {"name": "Pizza", "category": "main dish", "price": "12.5", "description": "Cheesy"}
    data.update(overrides)
    return data


def test_admin_creates_product_with_image(client, admin):
    res = client.post("/products", data=_form(), files={"image": PNG}, headers=admin.headers)
    assert res.status_code == 201
    product = res.json()
    assert product["name"] == "Pizza"
    assert product["price"] == 12.5
    assert product["image"].endswith(".png")
    assert os.path.exists(os.path.join(config.UPLOAD_DIR, product["image"]))
    assert count_documents("activitylog", {"resource": "product", "action": "create"}) == 1


def test_product_mutations_require_admin(client, customer):
    res = client.post("/products", data=_form(), files={"image": PNG}, headers=customer.headers)
    assert res.status_code == 403
    assert client.post("/products", data=_form(), files={"image": PNG}).status_code == 401


def test_create_product_requires_image(client, admin):
    res = client.post("/products", data=_form(), headers=admin.headers)
    assert res.status_code == 400
    assert res.json()["detail"] == "Product image is required"


def test_create_product_rejects_unknown_category_and_bad_extension(client, admin):
    res = client.post("/products", data=_form(category="snacks"), files={"image": PNG}, headers=admin.headers)
    assert res.status_code == 400
    res = client.post("/products", data=_form(), files={"image": ("x.exe", b"MZ", "application/octet-stream")}, headers=admin.headers)
    assert res.status_code == 400


def test_duplicate_product_name_conflicts(client, admin):
    make_product(name="Pizza")
    res = client.post("/products", data=_form(), files={"image": PNG}, headers=admin.headers)
    assert res.status_code == 400
    assert "already exists" in res.json()["detail"]


def test_list_products_filters_and_paginates(client):
    make_product(name="Burger", category="fast food")
    make_product(name="Cheeseburger", category="fast food")
    make_product(name="Cola", category="drinks", price=2)

    res = client.get("/products", params={"category": "fast food"})
    assert res.json()["total"] == 2

    res = client.get("/products", params={"search": "burger"})
    assert {p["name"] for p in res.json()["products"]} == {"Burger", "Cheeseburger"}

    res = client.get("/products", params={"limit": 2, "page": 2})
    body = res.json()
    assert body["total"] == 3
    assert body["total_pages"] == 2
    assert body["current_page"] == 2
    assert len(body["products"]) == 1


def test_categories_list(client):
    make_product(name="Burger", category="fast food")
    make_product(name="Cola", category="drinks")
    assert client.get("/products/categories/list").json() == ["drinks", "fast food"]


def test_get_product_not_found(client):
    assert client.get("/products/64b000000000000000000000").status_code == 404
    assert client.get("/products/not-an-id").status_code == 404


def test_update_product(client, admin):
    product_id = make_product(name="Burger", price=10)
    res = client.put(f"/products/{product_id}", data={"price": "11.5"}, headers=admin.headers)
    assert res.status_code == 200
    assert res.json()["price"] == 11.5
    assert res.json()["name"] == "Burger"


def test_update_product_name_clash(client, admin):
    make_product(name="Burger")
    cola = make_product(name="Cola", category="drinks")
    res = client.put(f"/products/{cola}", data={"name": "Burger"}, headers=admin.headers)
    assert res.status_code == 400


def test_delete_product(client, admin):
    product_id = make_product()
    assert client.delete(f"/products/{product_id}", headers=admin.headers).status_code == 200
    assert get_document_by_id("product", product_id) is None
    assert client.delete(f"/products/{product_id}", headers=admin.headers).status_code == 404


def test_search_treats_pattern_characters_literally(client):
    make_product(name="Fries (large)")
    make_product(name="Fries")
    res = client.get("/products", params={"search": "("})
    assert res.status_code == 200
    assert [p["name"] for p in res.json()["products"]] == ["Fries (large)"]
    assert client.get("/products", params={"search": "[*"}).json()["total"] == 0


def test_missing_database_is_a_generic_server_error(client, monkeypatch):
    monkeypatch.setattr(database, "db", None)
    res = client.get("/products")
    assert res.status_code == 500
    assert res.json() == {"detail": "Server error"}
