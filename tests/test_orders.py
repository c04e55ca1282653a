from stockbook.core.id_utils import short_reference


def _register(client, *, email: str, full_name: str = "Owner"):
    return client.post(
        "/auth/register",
        json={"email": email, "full_name": full_name, "password": "password123"},
    )


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _owner_token(client, email: str) -> str:
    res = _register(client, email=email)
    assert res.status_code == 200, res.text
    return res.json()["access_token"]


def _create_variant(client, token: str, *, initial_quantity: int = 10, price: float = 20.0) -> str:
    res = client.post(
        "/products",
        json={
            "name": "Kente Scarf",
            "variants": [{"variant_name": "Gold", "price": price, "initial_quantity": initial_quantity}],
        },
        headers=_auth_headers(token),
    )
    assert res.status_code == 201, res.text
    return res.json()["variant_ids"][0]


def _stock(client, token: str, variant_id: str) -> int:
    res = client.get(f"/inventory/stock-levels?variant_id={variant_id}", headers=_auth_headers(token))
    assert res.status_code == 200, res.text
    return res.json()["items"][0]["quantity"]


def _create_order(client, token: str, variant_id: str, qty: int, customer_name: str = "Kofi Mensah", **extra):
    return client.post(
        "/orders",
        json={"customer_name": customer_name, "items": [{"variant_id": variant_id, "qty": qty, **extra}]},
        headers=_auth_headers(token),
    )


def test_order_completion_records_sale_movements(test_context):
    client, _ = test_context
    token = _owner_token(client, "orders@example.com")
    variant_id = _create_variant(client, token, initial_quantity=10, price=20.0)

    created = _create_order(client, token, variant_id, 3)
    assert created.status_code == 201, created.text
    order = created.json()
    assert order["status"] == "pending"
    assert order["total_amount"] == 60.0
    assert order["items"][0]["unit_price"] == 20.0
    assert order["items"][0]["product_name"] == "Kente Scarf"
    assert order["reference"] == f"Order {short_reference(order['id'])}"
    assert _stock(client, token, variant_id) == 10

    completed = client.patch(
        f"/orders/{order['id']}/status",
        json={"status": "completed"},
        headers=_auth_headers(token),
    )
    assert completed.status_code == 200, completed.text
    assert completed.json()["status"] == "completed"
    assert completed.json()["completed_at"] is not None
    assert _stock(client, token, variant_id) == 7

    movements = client.get(
        f"/inventory/movements?variant_id={variant_id}&movement_type=sale",
        headers=_auth_headers(token),
    )
    items = movements.json()["items"]
    assert len(items) == 1
    assert items[0]["quantity"] == -3
    assert items[0]["reference"] == order["reference"]

    again = client.patch(
        f"/orders/{order['id']}/status",
        json={"status": "cancelled"},
        headers=_auth_headers(token),
    )
    assert again.status_code == 409, again.text
    assert _stock(client, token, variant_id) == 7


def test_cancelled_order_leaves_stock_untouched(test_context):
    client, _ = test_context
    token = _owner_token(client, "cancel@example.com")
    variant_id = _create_variant(client, token, initial_quantity=5)

    order = _create_order(client, token, variant_id, 2, unit_price=15).json()
    assert order["total_amount"] == 30.0

    cancelled = client.patch(
        f"/orders/{order['id']}/status",
        json={"status": "cancelled"},
        headers=_auth_headers(token),
    )
    assert cancelled.status_code == 200, cancelled.text
    assert cancelled.json()["completed_at"] is None
    assert _stock(client, token, variant_id) == 5

    sales = client.get("/inventory/movements?movement_type=sale", headers=_auth_headers(token))
    assert sales.json()["pagination"]["total"] == 0


def test_order_quantity_cannot_exceed_stock(test_context):
    client, _ = test_context
    token = _owner_token(client, "cap@example.com")
    variant_id = _create_variant(client, token, initial_quantity=4)

    too_many = _create_order(client, token, variant_id, 5)
    assert too_many.status_code == 400, too_many.text
    assert "Only 4 unit(s)" in too_many.json()["error"]["message"]

    exact = _create_order(client, token, variant_id, 4)
    assert exact.status_code == 201, exact.text

    listing = client.get("/orders", headers=_auth_headers(token))
    assert listing.json()["pagination"]["total"] == 1


def test_order_validation_errors(test_context):
    client, _ = test_context
    token = _owner_token(client, "order-validation@example.com")
    variant_id = _create_variant(client, token)

    unknown = _create_order(client, token, "missing-variant", 1)
    assert unknown.status_code == 404, unknown.text

    duplicate = client.post(
        "/orders",
        json={
            "customer_name": "Ama",
            "items": [{"variant_id": variant_id, "qty": 1}, {"variant_id": variant_id, "qty": 2}],
        },
        headers=_auth_headers(token),
    )
    assert duplicate.status_code == 422, duplicate.text

    zero_qty = _create_order(client, token, variant_id, 0)
    assert zero_qty.status_code == 422, zero_qty.text

    blank_customer = _create_order(client, token, variant_id, 1, customer_name="   ")
    assert blank_customer.status_code == 422, blank_customer.text


def test_orders_reuse_customers_by_name_and_filter_by_status(test_context):
    client, _ = test_context
    token = _owner_token(client, "customers@example.com")
    variant_id = _create_variant(client, token, initial_quantity=20)

    first = _create_order(client, token, variant_id, 1, customer_name="Kofi  Mensah").json()
    second = _create_order(client, token, variant_id, 2, customer_name="kofi mensah").json()
    assert first["customer_id"] == second["customer_id"]
    assert first["customer_name"] == "Kofi Mensah"

    client.patch(f"/orders/{first['id']}/status", json={"status": "completed"}, headers=_auth_headers(token))

    pending = client.get("/orders?status=pending", headers=_auth_headers(token))
    assert pending.status_code == 200, pending.text
    assert [item["id"] for item in pending.json()["items"]] == [second["id"]]
    assert pending.json()["status"] == "pending"

    customers = client.get("/customers?q=kofi", headers=_auth_headers(token))
    assert customers.status_code == 200, customers.text
    assert customers.json()["items"][0]["order_count"] == 2

    duplicate_customer = client.post(
        "/customers",
        json={"name": "KOFI MENSAH"},
        headers=_auth_headers(token),
    )
    assert duplicate_customer.status_code == 409, duplicate_customer.text

    created = client.post(
        "/customers",
        json={"name": "Esi Owusu", "email": "ESI@example.com", "phone": "+233200000000"},
        headers=_auth_headers(token),
    )
    assert created.status_code == 201, created.text
    assert created.json()["email"] == "esi@example.com"
    assert created.json()["order_count"] == 0


def test_order_detail_is_tenant_isolated(test_context):
    client, _ = test_context
    token_1 = _owner_token(client, "order-tenant1@example.com")
    token_2 = _owner_token(client, "order-tenant2@example.com")
    variant_id = _create_variant(client, token_1)
    order = _create_order(client, token_1, variant_id, 1).json()

    assert client.get(f"/orders/{order['id']}", headers=_auth_headers(token_1)).status_code == 200
    assert client.get(f"/orders/{order['id']}", headers=_auth_headers(token_2)).status_code == 404
    foreign = _create_order(client, token_2, variant_id, 1)
    assert foreign.status_code == 404, foreign.text
