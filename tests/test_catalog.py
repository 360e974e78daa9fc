from bson import ObjectId

import catalog
import media


def test_slugify():
    assert catalog.slugify("  Winter   Drop ") == "winter-drop"
    assert catalog.slugify("Hoodies") == "hoodies"


def test_category_crud(client, make_user):
    admin = make_user("admin")

    res = client.post("/api/products/categories", json={"name": " Winter Drop ", "kind": "collection"},
                      headers=admin["headers"])
    assert res.status_code == 201
    category = res.json()
    assert category["name"] == "Winter Drop"
    assert category["slug"] == "winter-drop"
    assert category["kind"] == "collection"
    assert category["description"] == ""

    res = client.post("/api/products/categories", json={"name": "winter drop"}, headers=admin["headers"])
    assert res.status_code == 400
    assert res.json() == {"error": "Category already exists"}

    res = client.put(f"/api/products/categories/{category['id']}",
                     json={"name": "Spring Drop", "description": "Light layers", "kind": "collection"},
                     headers=admin["headers"])
    assert res.status_code == 200
    assert res.json()["slug"] == "spring-drop"
    assert res.json()["description"] == "Light layers"

    assert client.get(f"/api/products/categories/{category['id']}").json()["name"] == "Spring Drop"

    res = client.delete(f"/api/products/categories/{category['id']}", headers=admin["headers"])
    assert res.json() == {"message": "Category deleted"}
    assert client.get(f"/api/products/categories/{category['id']}").status_code == 404
    res = client.delete(f"/api/products/categories/{category['id']}", headers=admin["headers"])
    assert res.status_code == 404


def test_category_validation_and_permissions(client, make_user):
    admin, shopper = make_user("admin"), make_user("client")

    res = client.post("/api/products/categories", json={"name": "Hats"}, headers=shopper["headers"])
    assert res.status_code == 403
    assert res.json() == {"error": "Admin only"}

    assert client.post("/api/products/categories", json={"name": "Hats"}).status_code == 401

    res = client.post("/api/products/categories", json={"name": " a "}, headers=admin["headers"])
    assert res.status_code == 400
    assert res.json()["error"].startswith("name:")


def test_list_categories_by_kind(client, make_user):
    admin = make_user("admin")
    for name, kind in (("Hoodies", "category"), ("Tees", "category"), ("Winter Drop", "collection")):
        client.post("/api/products/categories", json={"name": name, "kind": kind}, headers=admin["headers"])

    assert len(client.get("/api/products/categories").json()) == 3
    collections = client.get("/api/products/categories", params={"kind": "collection"}).json()
    assert [c["slug"] for c in collections] == ["winter-drop"]


def _product_body(**overrides):
    body = {
        "title": "Wave Tee",
        "description": "Boxy cotton tee",
        "brand": "KOI",
        "category_id": "cat-1",
        "collection_id": "",
        "price": 35,
        "discount": 10,
        "colors": ["white", " ", "black"],
        "sizes": ["M", ""],
        "variants": [{"color": "white", "size": "M", "stock": 3}],
        "images": [{"url": "https://img.example.com/tee.jpg", "public_id": "products/tee"}],
    }
    body.update(overrides)
    return body


def test_create_update_and_get_product(client, make_user):
    admin = make_user("admin")
    res = client.post("/api/products", json=_product_body(), headers=admin["headers"])
    assert res.status_code == 201
    product = res.json()
    assert product["colors"] == ["white", "black"]
    assert product["sizes"] == ["M"]
    assert product["collection_id"] is None
    assert product["status"] == "active"

    res = client.put(f"/api/products/{product['id']}", json=_product_body(price=40, status="inactive"),
                     headers=admin["headers"])
    assert res.status_code == 200
    assert res.json()["price"] == 40
    assert res.json()["status"] == "inactive"

    assert client.get(f"/api/products/{product['id']}").json()["price"] == 40
    assert client.get(f"/api/products/{ObjectId()}").status_code == 404
    res = client.put(f"/api/products/{ObjectId()}", json=_product_body(), headers=admin["headers"])
    assert res.status_code == 404


def test_create_product_validation(client, make_user):
    admin = make_user("admin")
    res = client.post("/api/products", json=_product_body(discount=150), headers=admin["headers"])
    assert res.status_code == 400
    assert res.json()["error"].startswith("discount:")

    res = client.post("/api/products", json=_product_body(price=-1), headers=admin["headers"])
    assert res.status_code == 400

    body = _product_body()
    del body["brand"]
    assert client.post("/api/products", json=body, headers=admin["headers"]).status_code == 400


def test_list_products_paginates_and_sorts(client, make_product):
    make_product(title="Cheap Cap", price=10.0)
    make_product(title="Mid Tee", price=30.0)
    make_product(title="Pricey Hoodie", price=90.0)

    res = client.get("/api/products", params={"sort": "price_asc", "limit": 2}).json()
    assert res["total"] == 3
    assert res["pages"] == 2
    assert res["page"] == 1
    assert [p["title"] for p in res["items"]] == ["Cheap Cap", "Mid Tee"]

    res = client.get("/api/products", params={"sort": "price_asc", "limit": 2, "page": 2}).json()
    assert [p["title"] for p in res["items"]] == ["Pricey Hoodie"]

    res = client.get("/api/products", params={"sort": "price_desc"}).json()
    assert [p["price"] for p in res["items"]] == [90.0, 30.0, 10.0]

    assert client.get("/api/products", params={"sort": "random"}).status_code == 400


def test_list_products_filters(client, make_product):
    make_product(title="KOI Hoodie (Black)", category_id="hoodies", collection_id="winter")
    make_product(title="KOI Tee", category_id="tees")
    make_product(title="Old Hoodie", category_id="hoodies", status="inactive")

    def titles(**params):
        return {p["title"] for p in client.get("/api/products", params=params).json()["items"]}

    assert titles(search="hoodie") == {"KOI Hoodie (Black)", "Old Hoodie"}
    assert titles(search="(black)") == {"KOI Hoodie (Black)"}
    assert titles(search=".*") == set()
    assert titles(category_id="tees") == {"KOI Tee"}
    assert titles(collection_id="winter") == {"KOI Hoodie (Black)"}
    assert titles(category_id="hoodies", status="active") == {"KOI Hoodie (Black)"}


def test_delete_product_removes_hosted_images(client, make_user, make_product, monkeypatch):
    admin = make_user("admin")
    destroyed = []
    monkeypatch.setattr(media, "destroy", destroyed.append)
    pid = make_product(images=[
        {"url": "https://img.example.com/a.jpg", "public_id": "products/a"},
        {"url": "https://img.example.com/b.jpg", "public_id": None},
    ])

    res = client.delete(f"/api/products/{pid}", headers=admin["headers"])
    assert res.json() == {"message": "Product deleted"}
    assert destroyed == ["products/a"]
    assert client.get(f"/api/products/{pid}").status_code == 404


def test_delete_product_survives_image_host_errors(client, make_user, make_product, monkeypatch):
    admin = make_user("admin")

    def failing_destroy(public_id):
        raise media.MediaError("host down")

    monkeypatch.setattr(media, "destroy", failing_destroy)
    pid = make_product()
    assert client.delete(f"/api/products/{pid}", headers=admin["headers"]).status_code == 200


def test_admin_stats(client, make_user, make_product, mock_db):
    admin = make_user("admin")
    owner = make_user("client")
    make_product()
    client.post("/api/tickets", json={"title": "Help", "description": "d"}, headers=owner["headers"])

    res = client.get("/api/admin/stats", headers=admin["headers"]).json()
    assert res["users"] == 2
    assert res["products"] == 1
    assert res["orders"] == 0
    assert res["tickets"] == {"open": 1, "in_progress": 0, "resolved": 0, "closed": 0}
