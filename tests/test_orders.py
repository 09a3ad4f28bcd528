import pytest

ADDRESS = {"name": "Buyer", "address": "12 MG Road", "city": "Pune", "postal_code": "411001", "phone": "98765"}


def checkout(client, buyer, items, **extra):
    body = {"items": items, "delivery_address": ADDRESS, "payment_method": "card"}
    body.update(extra)
    return client.post("/api/orders", json=body, headers=buyer["headers"])


@pytest.fixture
def deal(make_user, make_product):
    seller = make_user(role="seller")
    buyer = make_user()
    product = make_product(seller, price=19.99)
    return seller, buyer, product


def test_order_total_is_sum_of_item_totals(client, make_user, make_product):
    seller = make_user()
    buyer = make_user()
    a = make_product(seller, price=19.99)
    b = make_product(seller, price=5.5)

    r = checkout(client, buyer, [{"product_id": a["id"], "quantity": 3}, {"product_id": b["id"], "quantity": 2}])
    assert r.status_code == 201
    [order] = r.json()["orders"]
    items = order["order_items"]
    assert [i["unit_price"] for i in items] == [19.99, 5.5]
    assert [i["total_price"] for i in items] == [pytest.approx(59.97), pytest.approx(11.0)]
    assert order["total_amount"] == pytest.approx(sum(i["total_price"] for i in items))
    assert order["status"] == "pending"
    assert order["buyer_id"] == buyer["id"]
    assert order["seller_id"] == seller["id"]


def test_checkout_splits_orders_by_seller(client, make_user, make_product):
    s1 = make_user()
    s2 = make_user()
    buyer = make_user()
    p1 = make_product(s1, price=10)
    p2 = make_product(s2, price=20)

    r = checkout(client, buyer, [{"product_id": p1["id"], "quantity": 1}, {"product_id": p2["id"], "quantity": 1}])
    body = r.json()
    assert len(body["orders"]) == 2
    assert {o["seller_id"] for o in body["orders"]} == {s1["id"], s2["id"]}
    assert body["grand_total"] == 30


def test_checkout_with_sub_cent_price_writes_nothing(client, mongo, deal, make_product):
    seller, buyer, product = deal
    legacy = make_product(seller, title="Legacy")
    # stored before prices were limited to whole cents
    mongo.product.update_one({"title": "Legacy"}, {"$set": {"price": 0.004}})

    r = checkout(client, buyer, [{"product_id": product["id"], "quantity": 1},
                                 {"product_id": legacy["id"], "quantity": 1}])
    assert r.status_code == 400
    assert mongo.order.count_documents({}) == 0
    assert mongo.order_item.count_documents({}) == 0

    r = checkout(client, buyer, [{"product_id": product["id"], "quantity": 1}])
    assert r.status_code == 201
    assert r.json()["orders"][0]["order_items"][0]["unit_price"] == 19.99


@pytest.mark.parametrize("quantity", [0, -1])
def test_non_positive_quantity_rejected(client, deal, quantity):
    _, buyer, product = deal
    r = checkout(client, buyer, [{"product_id": product["id"], "quantity": quantity}])
    assert r.status_code == 422


def test_checkout_rules(client, deal, make_product):
    seller, buyer, product = deal
    assert checkout(client, buyer, []).status_code == 422
    assert checkout(client, seller, [{"product_id": product["id"], "quantity": 1}]).status_code == 400

    client.patch(f"/api/products/{product['id']}", json={"status": "sold"}, headers=seller["headers"])
    assert checkout(client, buyer, [{"product_id": product["id"], "quantity": 1}]).status_code == 404


def test_order_visibility(client, deal, make_user):
    seller, buyer, product = deal
    stranger = make_user()
    order = checkout(client, buyer, [{"product_id": product["id"], "quantity": 1}]).json()["orders"][0]

    assert client.get(f"/api/orders/{order['id']}", headers=buyer["headers"]).status_code == 200
    assert client.get(f"/api/orders/{order['id']}", headers=seller["headers"]).status_code == 200
    assert client.get(f"/api/orders/{order['id']}", headers=stranger["headers"]).status_code == 404

    assert [o["id"] for o in client.get("/api/orders", headers=buyer["headers"]).json()["items"]] == [order["id"]]
    assert client.get("/api/orders?role=seller", headers=buyer["headers"]).json()["items"] == []
    seller_view = client.get("/api/orders?role=seller", headers=seller["headers"]).json()["items"]
    assert seller_view[0]["order_items"][0]["product"]["id"] == product["id"]


def test_status_advanced_by_seller_only(client, deal):
    seller, buyer, product = deal
    order = checkout(client, buyer, [{"product_id": product["id"], "quantity": 1}]).json()["orders"][0]
    url = f"/api/orders/{order['id']}/status"

    assert client.patch(url, json={"status": "confirmed"}, headers=buyer["headers"]).status_code == 403
    assert client.patch(url, json={"status": "delivered"}, headers=seller["headers"]).status_code == 400
    for status in ("confirmed", "shipped", "delivered"):
        r = client.patch(url, json={"status": status}, headers=seller["headers"])
        assert r.status_code == 200
        assert r.json()["status"] == status
    assert client.patch(url, json={"status": "cancelled"}, headers=seller["headers"]).status_code == 400


def _delivered_order(client, seller, buyer, product):
    order = checkout(client, buyer, [{"product_id": product["id"], "quantity": 1}]).json()["orders"][0]
    for status in ("confirmed", "shipped", "delivered"):
        client.patch(f"/api/orders/{order['id']}/status", json={"status": status}, headers=seller["headers"])
    return order


def test_return_lifecycle(client, deal):
    seller, buyer, product = deal
    order = _delivered_order(client, seller, buyer, product)

    r = client.post("/api/returns", json={"order_id": order["id"], "reason": "Item not as described"},
                    headers=buyer["headers"])
    assert r.status_code == 201
    ret = r.json()
    assert ret["seller_id"] == seller["id"]
    assert ret["status"] == "requested"
    assert ret["order"]["id"] == order["id"]

    dup = client.post("/api/returns", json={"order_id": order["id"], "reason": "again"}, headers=buyer["headers"])
    assert dup.status_code == 409

    url = f"/api/returns/{ret['id']}/status"
    assert client.patch(url, json={"status": "approved"}, headers=buyer["headers"]).status_code == 403
    assert client.patch(url, json={"status": "completed"}, headers=seller["headers"]).status_code == 400
    assert client.patch(url, json={"status": "approved"}, headers=seller["headers"]).json()["status"] == "approved"
    done = client.patch(url, json={"status": "completed"}, headers=seller["headers"]).json()
    assert done["status"] == "completed"
    assert done["order"]["status"] == "returned"

    assert len(client.get("/api/returns?role=seller", headers=seller["headers"]).json()["items"]) == 1
    assert len(client.get("/api/returns", headers=buyer["headers"]).json()["items"]) == 1


def test_return_requires_delivered_order_and_buyer(client, deal):
    seller, buyer, product = deal
    order = checkout(client, buyer, [{"product_id": product["id"], "quantity": 1}]).json()["orders"][0]
    body = {"order_id": order["id"], "reason": "Changed my mind"}
    assert client.post("/api/returns", json=body, headers=buyer["headers"]).status_code == 400
    assert client.post("/api/returns", json=body, headers=seller["headers"]).status_code == 403
