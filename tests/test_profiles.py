def test_update_own_profile(client, make_user):
    user = make_user()
    r = client.patch("/api/profiles/me", json={"full_name": "Ravi", "phone": "999", "role": "both"},
                     headers=user["headers"])
    assert r.status_code == 200
    assert r.json()["full_name"] == "Ravi"
    assert client.get(f"/api/profiles/{user['id']}").json()["role"] == "both"


def test_profile_update_requires_login(client):
    assert client.patch("/api/profiles/me", json={"full_name": "X"}).status_code == 401


def test_half_coordinates_rejected(client, make_user):
    user = make_user()
    r = client.patch("/api/profiles/me", json={"latitude": 10.0}, headers=user["headers"])
    assert r.status_code == 400
    r = client.patch("/api/profiles/me", json={"latitude": 95.0, "longitude": 10.0}, headers=user["headers"])
    assert r.status_code == 422


def test_location_change_syncs_active_products_only(client, mongo, make_user, make_product):
    seller = make_user(role="seller", city="Pune", state="MH", pincode="411001", latitude=18.52, longitude=73.85)
    active = make_product(seller)
    sold = make_product(seller)
    client.patch(f"/api/products/{sold['id']}", json={"status": "sold"}, headers=seller["headers"])

    r = client.put("/api/profiles/me/location",
                   json={"city": "Mumbai", "state": "MH", "pincode": "400001", "latitude": 19.07, "longitude": 72.87},
                   headers=seller["headers"])
    assert r.status_code == 200
    assert r.json()["location_point"] == {"type": "Point", "coordinates": [72.87, 19.07]}

    moved = client.get(f"/api/products/{active['id']}").json()
    assert moved["city"] == "Mumbai"
    assert moved["location_point"]["coordinates"] == [72.87, 19.07]
    kept = client.get(f"/api/products/{sold['id']}", headers=seller["headers"]).json()
    assert kept["city"] == "Pune"


def test_seller_stats(client, mongo, make_user, make_product):
    seller = make_user(role="seller")
    viewer = make_user()
    a = make_product(seller)
    b = make_product(seller)
    c = make_product(seller)
    for _ in range(3):
        client.get(f"/api/products/{a['id']}", headers=viewer["headers"])
    client.get(f"/api/products/{b['id']}", headers=viewer["headers"])
    client.patch(f"/api/products/{c['id']}", json={"status": "sold"}, headers=seller["headers"])

    stats = client.get(f"/api/sellers/{seller['id']}/stats").json()
    assert stats["total_products"] == 3
    assert stats["active_products"] == 2
    assert stats["sold_products"] == 1
    assert stats["avg_views"] == round(4 / 3, 2)
    assert stats["by_status"]["active"] == {"count": 2, "avg_views": 2.0}
    assert stats["by_status"]["sold"] == {"count": 1, "avg_views": 0.0}
    assert stats["last_posted"] is not None


def test_seller_stats_empty_and_buyers(client, make_user):
    seller = make_user(role="both")
    stats = client.get(f"/api/sellers/{seller['id']}/stats").json()
    assert stats["total_products"] == 0
    assert stats["avg_views"] == 0
    assert stats["last_posted"] is None

    buyer = make_user()
    assert client.get(f"/api/sellers/{buyer['id']}/stats").status_code == 404


def test_seller_products_by_status(client, make_user, make_product):
    seller = make_user(role="seller")
    other = make_user()
    live = make_product(seller)
    gone = make_product(seller)
    client.patch(f"/api/products/{gone['id']}", json={"status": "inactive"}, headers=seller["headers"])

    items = client.get(f"/api/sellers/{seller['id']}/products").json()["items"]
    assert [p["id"] for p in items] == [live["id"]]
    url = f"/api/sellers/{seller['id']}/products?status=inactive"
    assert client.get(url, headers=other["headers"]).json()["items"] == []
    assert [p["id"] for p in client.get(url, headers=seller["headers"]).json()["items"]] == [gone["id"]]
