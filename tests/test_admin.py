import pytest

from conftest import make_product

ADMIN_ENDPOINTS = [
    ("get", "/api/admin/dashboard"),
    ("get", "/api/admin/products"),
    ("post", "/api/admin/products"),
    ("put", "/api/admin/products/64b7f0000000000000000000"),
    ("delete", "/api/admin/products/64b7f0000000000000000000"),
    ("get", "/api/admin/users"),
    ("patch", "/api/admin/users/64b7f0000000000000000000/role"),
    ("delete", "/api/admin/users/64b7f0000000000000000000"),
    ("get", "/api/admin/orders"),
    ("patch", "/api/admin/orders/64b7f0000000000000000000/status"),
    ("get", "/api/admin/messages"),
]

SHIPPING = {
    "full_name": "Alice Baker",
    "phone": "9876543210",
    "line1": "12 Bakery Lane",
    "city": "Pune",
    "state": "Maharashtra",
    "zip": "411001",
}


@pytest.mark.parametrize("method,path", ADMIN_ENDPOINTS)
def test_admin_endpoints_reject_anonymous(anon_client, method, path):
    res = getattr(anon_client, method)(path)
    assert res.status_code == 401


@pytest.mark.parametrize("method,path", ADMIN_ENDPOINTS)
def test_admin_endpoints_reject_regular_users(user_client, method, path):
    res = getattr(user_client, method)(path)
    assert res.status_code == 403


def test_dashboard(admin_client, user_client, mongo):
    in_stock = make_product(stock=30)
    make_product(name="Last Few Cookies", category="cookies", stock=2)
    make_product(name="Sold Out Bar", category="chocolates", stock=0)
    order = user_client.post(
        "/api/orders", json={"items": [{"product_id": in_stock, "quantity": 2}], "shipping_address": SHIPPING}
    ).json()
    user_client.post("/api/orders", json={"items": [{"product_id": in_stock}], "shipping_address": SHIPPING})
    mongo["order"].update_one({"total_amount": order["total_amount"]}, {"$set": {"is_paid": True}})

    stats = admin_client.get("/api/admin/dashboard").json()
    assert stats["total_orders"] == 2
    assert stats["total_revenue"] == pytest.approx(order["total_amount"])
    assert stats["total_users"] == 2
    assert stats["products_in_stock"] == 2
    assert [p["name"] for p in stats["low_stock"]] == ["Sold Out Bar", "Last Few Cookies"]


def test_list_users_hides_secrets(admin_client, user_client):
    users = admin_client.get("/api/admin/users").json()["users"]
    assert {u["email"] for u in users} == {"admin@flameandcrumble.com", "alice@flameandcrumble.com"}
    assert all("password_hash" not in u for u in users)


def user_id(admin_client, email):
    users = admin_client.get("/api/admin/users").json()["users"]
    return next(u["id"] for u in users if u["email"] == email)


def test_change_role(admin_client, user_client):
    alice = user_id(admin_client, "alice@flameandcrumble.com")
    res = admin_client.patch(f"/api/admin/users/{alice}/role", json={"role": "admin"})
    assert res.status_code == 200
    assert res.json()["role"] == "admin"
    assert user_client.get("/api/admin/users").status_code == 200


def test_admin_cannot_demote_or_delete_self(admin_client):
    me = user_id(admin_client, "admin@flameandcrumble.com")
    assert admin_client.patch(f"/api/admin/users/{me}/role", json={"role": "user"}).status_code == 400
    assert admin_client.delete(f"/api/admin/users/{me}").status_code == 400


def test_delete_user_drops_cart_and_wishlist(admin_client, user_client, candle, mongo):
    user_client.post("/api/cart", json={"product_id": candle})
    user_client.post("/api/wishlist", json={"product_id": candle})
    alice = user_id(admin_client, "alice@flameandcrumble.com")

    assert admin_client.delete(f"/api/admin/users/{alice}").status_code == 200
    assert mongo["cart"].count_documents({"user_id": alice}) == 0
    assert mongo["wishlist"].count_documents({"user_id": alice}) == 0
    assert user_client.get("/api/auth/status").status_code == 401
    assert admin_client.delete(f"/api/admin/users/{alice}").status_code == 404


@pytest.fixture
def order_id(user_client, candle):
    res = user_client.post(
        "/api/orders", json={"items": [{"product_id": candle}], "shipping_address": SHIPPING}
    )
    return res.json()["id"]


def set_status(client, oid, status):
    return client.patch(f"/api/admin/orders/{oid}/status", json={"status": status})


def test_order_lifecycle(admin_client, order_id):
    for status in ("processing", "shipped", "delivered"):
        res = set_status(admin_client, order_id, status)
        assert res.status_code == 200
        assert res.json()["status"] == status
    delivered = res.json()
    assert delivered["is_delivered"] is True
    assert delivered["delivered_at"]


def test_invalid_transitions(admin_client, order_id):
    assert set_status(admin_client, order_id, "shipped").status_code == 400
    assert set_status(admin_client, order_id, "cancelled").status_code == 200
    assert set_status(admin_client, order_id, "processing").status_code == 400


def test_unknown_status_value(admin_client, order_id):
    assert set_status(admin_client, order_id, "lost").status_code == 422


def test_admin_order_listing(admin_client, order_id):
    assert [o["id"] for o in admin_client.get("/api/admin/orders").json()["orders"]] == [order_id]
    assert admin_client.get("/api/admin/orders", params={"status": "delivered"}).json()["orders"] == []


def test_contact_messages(anon_client, admin_client):
    res = anon_client.post(
        "/api/contact",
        json={"name": "Fay", "email": "fay@flameandcrumble.com", "subject": "Hi", "message": "Love the candles"},
    )
    assert res.status_code == 201
    res = anon_client.post(
        "/api/contact/corporate",
        json={"company_name": "Acme", "email": "gifts@acme.co", "message": "200 gift boxes please"},
    )
    assert res.status_code == 201

    messages = admin_client.get("/api/admin/messages").json()
    assert {m["kind"] for m in messages} == {"contact", "corporate"}


def test_seed_is_idempotent(anon_client, mongo):
    res = anon_client.post("/seed")
    assert res.json()["seeded"] is True
    assert mongo["user"].count_documents({"role": "admin"}) == 1

    res = anon_client.post("/seed")
    assert res.json()["seeded"] is False
    assert mongo["user"].count_documents({"role": "admin"}) == 1
