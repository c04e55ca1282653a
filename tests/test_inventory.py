from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from stockbook.core.config import settings
from stockbook.models.stock import StockLevel, StockMovement
from stockbook.services.inventory_service import MovementActor, record_movement


def _register(client, *, email: str, full_name: str = "Owner"):
    return client.post(
        "/auth/register",
        json={
            "email": email,
            "full_name": full_name,
            "password": "password123",
            "business_name": f"{full_name} Store",
        },
    )


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _owner_token(client, email: str) -> str:
    res = _register(client, email=email)
    assert res.status_code == 200, res.text
    return res.json()["access_token"]


def _create_product(client, token: str, *, initial_quantity: int = 10, safety_stock: int = 3, sku: str | None = "TOTE-01"):
    res = client.post(
        "/products",
        json={
            "name": "Ankara Tote",
            "sku": sku,
            "category": "bags",
            "variants": [
                {
                    "variant_name": "Blue",
                    "price": 25.0,
                    "initial_quantity": initial_quantity,
                    "safety_stock": safety_stock,
                }
            ],
        },
        headers=_auth_headers(token),
    )
    assert res.status_code == 201, res.text
    payload = res.json()
    return payload["id"], payload["variant_ids"][0]


def _record(client, token: str, variant_id: str, quantity: int, movement_type: str, reference: str | None = None):
    return client.post(
        "/inventory/movements",
        json={
            "variant_id": variant_id,
            "quantity": quantity,
            "movement_type": movement_type,
            "reference": reference,
        },
        headers=_auth_headers(token),
    )


def _stock_level(client, token: str, variant_id: str) -> dict:
    res = client.get(f"/inventory/stock-levels?variant_id={variant_id}", headers=_auth_headers(token))
    assert res.status_code == 200, res.text
    items = res.json()["items"]
    assert len(items) == 1
    return items[0]


def test_product_creation_seeds_stock_level_and_initial_entry(test_context):
    client, _ = test_context
    token = _owner_token(client, "seed@example.com")

    _, variant_id = _create_product(client, token, initial_quantity=12, safety_stock=4)

    level = _stock_level(client, token, variant_id)
    assert level["quantity"] == 12
    assert level["initial_quantity"] == 12
    assert level["safety_stock"] == 4
    assert level["status"] == "in-stock"
    assert level["warehouse_name"] == "Main warehouse"

    movements = client.get(f"/inventory/movements?variant_id={variant_id}", headers=_auth_headers(token))
    assert movements.status_code == 200, movements.text
    items = movements.json()["items"]
    assert len(items) == 1
    assert items[0]["movement_type"] == "in"
    assert items[0]["quantity"] == 12
    assert items[0]["reference"] == "Initial stock"
    assert items[0]["product_name"] == "Ankara Tote"
    assert items[0]["variant_name"] == "Blue"
    assert items[0]["actor_label"] == "Owner"


def test_zero_opening_stock_creates_no_ledger_entry(test_context):
    client, _ = test_context
    token = _owner_token(client, "zero@example.com")

    _, variant_id = _create_product(client, token, initial_quantity=0)

    movements = client.get(f"/inventory/movements?variant_id={variant_id}", headers=_auth_headers(token))
    assert movements.json()["pagination"]["total"] == 0
    assert _stock_level(client, token, variant_id)["status"] == "out"


def test_movement_sign_convention_per_type(test_context):
    client, _ = test_context
    token = _owner_token(client, "signs@example.com")
    _, variant_id = _create_product(client, token, initial_quantity=10)

    expected = [
        ("in", 5, 5, 15),
        ("purchase", -2, 2, 17),
        ("out", 3, -3, 14),
        ("sale", -4, -4, 10),
        ("damaged", 1, -1, 9),
        ("adjustment", -2, -2, 7),
        ("adjustment", 3, 3, 10),
        ("transfer", -6, -6, 4),
    ]
    for movement_type, sent, stored, resulting in expected:
        res = _record(client, token, variant_id, sent, movement_type)
        assert res.status_code == 200, res.text
        payload = res.json()
        assert payload["movement"]["quantity"] == stored
        assert payload["movement"]["movement_type"] == movement_type
        assert payload["stock_level"]["quantity"] == resulting


def test_stock_level_equals_initial_plus_ledger_sum(test_context):
    client, session_local = test_context
    token = _owner_token(client, "ledger-sum@example.com")
    _, variant_id = _create_product(client, token, initial_quantity=8)

    for movement_type, quantity in [("in", 4), ("sale", 3), ("damaged", 2), ("adjustment", -1)]:
        assert _record(client, token, variant_id, quantity, movement_type).status_code == 200

    db = session_local()
    try:
        level = db.execute(select(StockLevel).where(StockLevel.variant_id == variant_id)).scalar_one()
        ledger_sum = db.execute(
            select(func.sum(StockMovement.quantity)).where(
                StockMovement.variant_id == variant_id,
                StockMovement.reference.is_(None) | (StockMovement.reference != "Initial stock"),
            )
        ).scalar_one()
    finally:
        db.close()

    assert level.quantity == level.initial_quantity + ledger_sum == 6


def test_zero_quantity_and_unknown_type_are_rejected(test_context):
    client, _ = test_context
    token = _owner_token(client, "reject@example.com")
    _, variant_id = _create_product(client, token)

    zero = _record(client, token, variant_id, 0, "in")
    assert zero.status_code == 422, zero.text
    assert zero.json()["error"]["code"] == "validation_error"

    unknown = _record(client, token, variant_id, 1, "gift")
    assert unknown.status_code == 422, unknown.text

    assert _stock_level(client, token, variant_id)["quantity"] == 10


def test_negative_stock_allowed_by_default(test_context):
    client, _ = test_context
    token = _owner_token(client, "negative@example.com")
    _, variant_id = _create_product(client, token, initial_quantity=2)

    res = _record(client, token, variant_id, 5, "out")
    assert res.status_code == 200, res.text
    assert res.json()["stock_level"]["quantity"] == -3
    assert res.json()["stock_level"]["status"] == "out"


def test_negative_stock_rejected_when_disallowed(test_context, monkeypatch):
    client, _ = test_context
    token = _owner_token(client, "guarded@example.com")
    _, variant_id = _create_product(client, token, initial_quantity=2)
    monkeypatch.setattr(settings, "inventory_allow_negative_stock", False)

    res = _record(client, token, variant_id, 5, "sale")
    assert res.status_code == 400, res.text
    assert res.json()["error"]["message"] == "Insufficient stock for this movement"
    assert _stock_level(client, token, variant_id)["quantity"] == 2

    exact = _record(client, token, variant_id, 2, "sale")
    assert exact.status_code == 200, exact.text
    assert exact.json()["stock_level"]["quantity"] == 0


def test_failed_ledger_append_rolls_back_stock_level(test_context, monkeypatch):
    client, session_local = test_context
    token = _owner_token(client, "atomic@example.com")
    _, variant_id = _create_product(client, token, initial_quantity=10)

    def failing_append(*args, **kwargs):
        raise SQLAlchemyError("ledger unavailable")

    monkeypatch.setattr("stockbook.services.inventory_service._append_ledger_entry", failing_append)

    res = _record(client, token, variant_id, 4, "out")
    assert res.status_code == 500, res.text
    assert res.json()["error"]["message"] == "Could not record the stock movement"

    monkeypatch.undo()
    assert _stock_level(client, token, variant_id)["quantity"] == 10

    db = session_local()
    try:
        count = db.execute(
            select(func.count(StockMovement.id)).where(StockMovement.variant_id == variant_id)
        ).scalar_one()
    finally:
        db.close()
    assert count == 1


def test_movements_from_stale_sessions_both_apply(test_context):
    client, session_local = test_context
    token = _owner_token(client, "stale@example.com")
    _, variant_id = _create_product(client, token, initial_quantity=10)

    first = session_local()
    second = session_local()
    try:
        first_level = first.execute(select(StockLevel).where(StockLevel.variant_id == variant_id)).scalar_one()
        second_level = second.execute(select(StockLevel).where(StockLevel.variant_id == variant_id)).scalar_one()
        assert first_level.quantity == second_level.quantity == 10

        record_movement(
            first,
            business_id=first_level.business_id,
            variant_id=variant_id,
            warehouse_id=first_level.warehouse_id,
            quantity=5,
            movement_type="in",
            reference="Counter A",
            actor=MovementActor(user_id=None, label="Till 1"),
        )
        first.commit()

        # second_level still holds the quantity read before the first commit
        record_movement(
            second,
            business_id=second_level.business_id,
            variant_id=variant_id,
            warehouse_id=second_level.warehouse_id,
            quantity=-3,
            movement_type="sale",
            reference="Counter B",
            actor=MovementActor(user_id=None, label="Till 2"),
        )
        second.commit()
    finally:
        first.close()
        second.close()

    assert _stock_level(client, token, variant_id)["quantity"] == 12

    db = session_local()
    try:
        total = db.execute(
            select(func.sum(StockMovement.quantity)).where(StockMovement.variant_id == variant_id)
        ).scalar_one()
    finally:
        db.close()
    assert total == 12


def test_movement_for_unknown_variant_returns_404(test_context):
    client, _ = test_context
    token = _owner_token(client, "missing@example.com")

    res = _record(client, token, "does-not-exist", 1, "in")
    assert res.status_code == 404, res.text


def test_inventory_is_tenant_isolated(test_context):
    client, _ = test_context
    token_1 = _owner_token(client, "tenant1@example.com")
    token_2 = _owner_token(client, "tenant2@example.com")
    _, variant_id = _create_product(client, token_2)

    res = _record(client, token_1, variant_id, 1, "in")
    assert res.status_code == 404, res.text

    levels = client.get("/inventory/stock-levels", headers=_auth_headers(token_1))
    assert levels.json()["pagination"]["total"] == 0


def test_safety_stock_update_and_low_stock_listing(test_context):
    client, _ = test_context
    token = _owner_token(client, "safety@example.com")
    _, variant_id = _create_product(client, token, initial_quantity=6, safety_stock=2)
    level = _stock_level(client, token, variant_id)

    low_before = client.get("/inventory/low-stock", headers=_auth_headers(token))
    assert low_before.json()["pagination"]["total"] == 0

    res = client.patch(
        f"/inventory/stock-levels/{level['id']}",
        json={"safety_stock": 6},
        headers=_auth_headers(token),
    )
    assert res.status_code == 200, res.text
    assert res.json()["safety_stock"] == 6
    assert res.json()["quantity"] == 6
    assert res.json()["status"] == "low"

    low_after = client.get("/inventory/low-stock", headers=_auth_headers(token))
    assert [item["variant_id"] for item in low_after.json()["items"]] == [variant_id]

    by_status = client.get("/inventory/stock-levels?status=low", headers=_auth_headers(token))
    assert by_status.json()["pagination"]["total"] == 1

    negative = client.patch(
        f"/inventory/stock-levels/{level['id']}",
        json={"safety_stock": -1},
        headers=_auth_headers(token),
    )
    assert negative.status_code == 422, negative.text


def test_product_listing_status_detail_and_statistics(test_context):
    client, _ = test_context
    token = _owner_token(client, "catalog@example.com")
    product_id, variant_id = _create_product(client, token, initial_quantity=10, safety_stock=3)

    second = client.post(
        f"/products/{product_id}/variants",
        json={"variant_name": "Red", "price": 27.5, "initial_quantity": 0, "safety_stock": 1},
        headers=_auth_headers(token),
    )
    assert second.status_code == 201, second.text

    assert _record(client, token, variant_id, 4, "sale").status_code == 200
    assert _record(client, token, variant_id, 1, "damaged").status_code == 200
    assert _record(client, token, variant_id, 2, "adjustment").status_code == 200

    listing = client.get("/products", headers=_auth_headers(token))
    assert listing.status_code == 200, listing.text
    item = listing.json()["items"][0]
    assert item["variant_count"] == 2
    assert item["total_stock"] == 7
    assert item["total_safety_stock"] == 4
    assert item["status"] == "in-stock"

    detail = client.get(f"/products/{product_id}", headers=_auth_headers(token))
    assert detail.status_code == 200, detail.text
    variants = {variant["variant_name"]: variant for variant in detail.json()["variants"]}
    assert variants["Blue"]["stock"] == 7
    assert variants["Blue"]["statistics"]["total_received"] == 12
    assert variants["Blue"]["statistics"]["total_shipped"] == 4
    assert variants["Blue"]["statistics"]["total_damaged"] == 1
    assert variants["Red"]["stock_levels"][0]["status"] == "out"

    stats = client.get(
        f"/products/{product_id}/variants/{variant_id}/statistics",
        headers=_auth_headers(token),
    )
    assert stats.status_code == 200, stats.text
    assert stats.json()["total_received"] == 12
    assert stats.json()["last_received_date"] is not None

    low = client.get("/products?status=low", headers=_auth_headers(token))
    assert low.json()["pagination"]["total"] == 0
    in_stock = client.get("/products?status=in-stock&q=tote", headers=_auth_headers(token))
    assert in_stock.json()["pagination"]["total"] == 1


def test_duplicate_sku_is_rejected_case_insensitively(test_context):
    client, _ = test_context
    token = _owner_token(client, "sku@example.com")
    _create_product(client, token, sku="TOTE-01")

    res = client.post(
        "/products",
        json={"name": "Another", "sku": "tote-01", "variants": [{"variant_name": "One", "price": 1}]},
        headers=_auth_headers(token),
    )
    assert res.status_code == 409, res.text


def test_product_edit_keeps_ledger_labels_and_delete_keeps_entries(test_context):
    client, _ = test_context
    token = _owner_token(client, "edit@example.com")
    product_id, variant_id = _create_product(client, token)

    edit = client.patch(
        f"/products/{product_id}",
        json={"name": "Ankara Shopper", "variants": [{"id": variant_id, "variant_name": "Navy"}]},
        headers=_auth_headers(token),
    )
    assert edit.status_code == 200, edit.text
    assert edit.json()["name"] == "Ankara Shopper"
    assert edit.json()["variants"][0]["variant_name"] == "Navy"

    movements = client.get(f"/inventory/movements?variant_id={variant_id}", headers=_auth_headers(token))
    assert movements.json()["items"][0]["product_name"] == "Ankara Tote"
    assert movements.json()["items"][0]["variant_name"] == "Blue"

    deleted = client.delete(f"/products/{product_id}", headers=_auth_headers(token))
    assert deleted.status_code == 200, deleted.text
    assert deleted.json() == {"id": product_id, "deleted": True}

    assert client.get(f"/products/{product_id}", headers=_auth_headers(token)).status_code == 404
    levels = client.get("/inventory/stock-levels", headers=_auth_headers(token))
    assert levels.json()["pagination"]["total"] == 0
    movements_after = client.get(f"/inventory/movements?variant_id={variant_id}", headers=_auth_headers(token))
    assert movements_after.json()["pagination"]["total"] == 1


def test_movement_into_second_warehouse_requires_its_stock_level(test_context):
    client, _ = test_context
    token = _owner_token(client, "warehouses@example.com")
    product_id, variant_id = _create_product(client, token)

    created = client.post(
        "/warehouses",
        json={"name": "Kumasi depot", "location": "Kumasi"},
        headers=_auth_headers(token),
    )
    assert created.status_code == 201, created.text
    assert created.json()["is_default"] is False
    warehouse_id = created.json()["id"]

    missing = client.post(
        "/inventory/movements",
        json={"variant_id": variant_id, "warehouse_id": warehouse_id, "quantity": 2, "movement_type": "in"},
        headers=_auth_headers(token),
    )
    assert missing.status_code == 404, missing.text

    added = client.post(
        f"/products/{product_id}/variants",
        json={"variant_name": "Depot Blue", "price": 25, "initial_quantity": 4, "warehouse_id": warehouse_id},
        headers=_auth_headers(token),
    )
    assert added.status_code == 201, added.text

    listing = client.get("/warehouses", headers=_auth_headers(token))
    assert [item["is_default"] for item in listing.json()] == [True, False]

    duplicate = client.post("/warehouses", json={"name": "kumasi depot"}, headers=_auth_headers(token))
    assert duplicate.status_code == 409, duplicate.text

    unknown = client.post(
        "/inventory/movements",
        json={"variant_id": variant_id, "warehouse_id": "nope", "quantity": 2, "movement_type": "in"},
        headers=_auth_headers(token),
    )
    assert unknown.status_code == 404, unknown.text
