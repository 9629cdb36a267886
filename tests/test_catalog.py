import config


NEW_PRODUCT = {
    "name": "Brahmi Tablets",
    "slug": "brahmi-tablets",
    "sku": "BRA-60",
    "price": 275.0,
    "inventory": 25,
    "featured": True,
}


class TestProducts:
    def test_list_and_filter(self, client, products):
        body = client.get("/api/products?sort=price_asc").json()
        assert body["total"] == 2
        assert [p["slug"] for p in body["items"]] == ["triphala-churna", "ashwagandha-capsules"]
        body = client.get("/api/products?q=tri").json()
        assert [p["slug"] for p in body["items"]] == ["triphala-churna"]
        body = client.get("/api/products?min_price=200").json()
        assert [p["slug"] for p in body["items"]] == ["ashwagandha-capsules"]

    def test_lookup_by_slug_or_id(self, client, products):
        pid = products["triphala-churna"]
        assert client.get("/api/products/triphala-churna").json()["id"] == pid
        assert client.get(f"/api/products/{pid}").json()["slug"] == "triphala-churna"
        assert client.get("/api/products/unknown").status_code == 404

    def test_featured(self, client, products):
        assert [p["slug"] for p in client.get("/api/products/featured").json()] == ["ashwagandha-capsules"]

    def test_admin_crud(self, client, db, products, admin_headers, customer_headers):
        assert client.post("/api/products", headers=customer_headers, json=NEW_PRODUCT).status_code == 403
        resp = client.post("/api/products", headers=admin_headers, json=NEW_PRODUCT)
        assert resp.status_code == 201
        pid = resp.json()["id"]
        assert client.post("/api/products", headers=admin_headers, json=NEW_PRODUCT).status_code == 400

        resp = client.put(f"/api/products/{pid}", headers=admin_headers, json={"price": 250})
        assert resp.json()["price"] == 250
        assert client.delete(f"/api/products/{pid}", headers=admin_headers).json()["deleted"] is True
        assert client.get(f"/api/products/{pid}").status_code == 404

    def test_negative_price_rejected(self, client, db, admin_headers):
        resp = client.post("/api/products", headers=admin_headers, json=dict(NEW_PRODUCT, price=-1))
        assert resp.status_code == 400


class TestResponseCache:
    def test_miss_then_hit(self, client, products, memory_cache):
        first = client.get("/api/products")
        assert first.headers["X-Cache"] == "MISS"
        second = client.get("/api/products")
        assert second.headers["X-Cache"] == "HIT"
        assert second.json() == first.json()

    def test_query_is_part_of_key(self, client, products, memory_cache):
        client.get("/api/products?page=1")
        assert client.get("/api/products?page=2").headers["X-Cache"] == "MISS"

    def test_admin_write_invalidates(self, client, products, memory_cache, admin_headers):
        client.get("/api/products")
        client.post("/api/products", headers=admin_headers, json=NEW_PRODUCT)
        resp = client.get("/api/products")
        assert resp.headers["X-Cache"] == "MISS"
        assert resp.json()["total"] == 3

    def test_without_cache_always_miss(self, client, products):
        client.get("/api/products")
        assert client.get("/api/products").headers["X-Cache"] == "MISS"


class TestCategoriesAndCollections:
    def test_category_products(self, client, db, products, admin_headers):
        resp = client.post("/api/categories", headers=admin_headers,
                           json={"name": "Immunity", "slug": "immunity"})
        assert resp.status_code == 201
        category_id = resp.json()["id"]
        client.put(f"/api/products/{products['ashwagandha-capsules']}", headers=admin_headers,
                   json={"category_id": category_id})
        listed = client.get("/api/categories/immunity/products").json()
        assert [p["slug"] for p in listed] == ["ashwagandha-capsules"]
        assert client.get("/api/categories/missing").status_code == 404

    def test_collection_membership(self, client, db, products, admin_headers):
        client.post("/api/collections", headers=admin_headers, json={"name": "Daily Rituals", "slug": "daily"})
        resp = client.post("/api/collections/daily/products", headers=admin_headers,
                           json={"product_id": "triphala-churna"})
        assert resp.json()["product_id"] == products["triphala-churna"]
        listed = client.get("/api/collections/daily/products").json()
        assert [p["slug"] for p in listed] == ["triphala-churna"]

        url = f"/api/collections/daily/products/{products['triphala-churna']}"
        assert client.delete(url, headers=admin_headers).json() == {"success": True}
        assert client.delete(url, headers=admin_headers).status_code == 404

    def test_delete_collection(self, client, db, admin_headers):
        cid = client.post("/api/collections", headers=admin_headers,
                          json={"name": "Seasonal", "slug": "seasonal"}).json()["id"]
        assert client.delete(f"/api/collections/{cid}", headers=admin_headers).status_code == 204
        assert client.get("/api/collections/seasonal").status_code == 404


class TestRateLimit:
    def test_headers_and_429(self, client, products, memory_cache, monkeypatch):
        monkeypatch.setattr(config, "RATE_LIMIT_MAX", 2)
        first = client.get("/api/categories")
        assert first.headers["X-RateLimit-Limit"] == "2"
        assert first.headers["X-RateLimit-Remaining"] == "1"
        assert client.get("/api/categories").status_code == 200
        blocked = client.get("/api/categories")
        assert blocked.status_code == 429
        assert int(blocked.headers["Retry-After"]) >= 1
        assert blocked.json()["error"] == "Too Many Requests"

    def test_health_not_limited(self, client, db, memory_cache, monkeypatch):
        monkeypatch.setattr(config, "RATE_LIMIT_MAX", 1)
        for _ in range(3):
            assert client.get("/").status_code == 200

    def test_fails_open_without_redis(self, client, products, monkeypatch):
        monkeypatch.setattr(config, "RATE_LIMIT_MAX", 1)
        for _ in range(3):
            resp = client.get("/api/categories")
            assert resp.status_code == 200
            assert resp.headers["X-RateLimit-Remaining"] == "1"
