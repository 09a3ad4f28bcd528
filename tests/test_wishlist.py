def test_toggle_twice_restores_membership(client, make_user, make_product):
    seller = make_user()
    buyer = make_user()
    pid = make_product(seller)["id"]

    assert client.get(f"/api/wishlist/{pid}", headers=buyer["headers"]).json()["in_wishlist"] is False
    r = client.post(f"/api/wishlist/{pid}/toggle", headers=buyer["headers"])
    assert r.json() == {"product_id": pid, "in_wishlist": True}
    assert client.get(f"/api/wishlist/{pid}", headers=buyer["headers"]).json()["in_wishlist"] is True

    r = client.post(f"/api/wishlist/{pid}/toggle", headers=buyer["headers"])
    assert r.json()["in_wishlist"] is False
    assert client.get(f"/api/wishlist/{pid}", headers=buyer["headers"]).json()["in_wishlist"] is False


def test_wishlist_is_per_user(client, make_user, make_product):
    seller = make_user()
    a = make_user()
    b = make_user()
    pid = make_product(seller)["id"]

    client.post(f"/api/wishlist/{pid}/toggle", headers=a["headers"])
    assert client.get("/api/wishlist", headers=b["headers"]).json()["items"] == []
    assert client.post(f"/api/wishlist/{pid}/toggle", headers=b["headers"]).json()["in_wishlist"] is True


def test_wishlist_lists_active_products_newest_first(client, make_user, make_product):
    seller = make_user()
    buyer = make_user()
    first = make_product(seller, title="first")["id"]
    second = make_product(seller, title="second")["id"]
    hidden = make_product(seller, title="hidden")["id"]
    for pid in (first, second, hidden):
        client.post(f"/api/wishlist/{pid}/toggle", headers=buyer["headers"])
    client.patch(f"/api/products/{hidden}", json={"status": "sold"}, headers=seller["headers"])

    items = client.get("/api/wishlist", headers=buyer["headers"]).json()["items"]
    assert [p["id"] for p in items] == [second, first]
    assert items[0]["added_to_wishlist_at"] is not None
    assert items[0]["seller_name"] == "User"


def test_toggle_unknown_product(client, make_user):
    buyer = make_user()
    assert client.post(f"/api/wishlist/{'0' * 24}/toggle", headers=buyer["headers"]).status_code == 404
    assert client.post("/api/wishlist/not-an-id/toggle", headers=buyer["headers"]).status_code == 400
    assert client.post(f"/api/wishlist/{'0' * 24}/toggle").status_code == 401
