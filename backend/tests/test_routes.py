from datetime import timedelta

from freshroute.time_utils import utctoday


def _create_order(client, store_id, items, **extra):
    body = {"store_id": store_id, "items": items, **extra}
    return client.post("/api/orders", json=body)


def test_health(client, db_session):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json["checks"]["database"]["status"] == "healthy"


def test_product_crud(client, db_session):
    res = client.post("/api/products", json={"sku": "veg-1", "name": "Spinach 1kg", "price_cents": 350})
    assert res.status_code == 201
    product_id = res.json["product"]["id"]
    assert res.json["product"]["sku"] == "VEG-1"

    res = client.post("/api/products", json={"sku": "VEG-1", "name": "Dup", "price_cents": 350})
    assert res.status_code == 409
    assert res.json["code"] == "duplicate_constraint"

    res = client.patch(f"/api/products/{product_id}", json={"price_cents": "12.5"})
    assert res.status_code == 400

    res = client.patch(f"/api/products/{product_id}", json={"min_stock_level": 8})
    assert res.status_code == 200
    assert res.json["product"]["min_stock_level"] == 8

    res = client.delete(f"/api/products/{product_id}")
    assert res.json["deleted"] is True
    assert client.get(f"/api/products/{product_id}").status_code == 404


def test_order_flow_over_http(client, stocked, product_a, deliver):
    res = _create_order(client, stocked.id, [{"product_id": product_a.id, "quantity": 10}])
    assert res.status_code == 201
    order_id = res.json["order"]["id"]
    assert res.json["order"]["final_amount_cents"] == 5000

    assert client.post(f"/api/orders/{order_id}/submit").json["order"]["status"] == "pending"

    res = client.get(f"/api/orders/{order_id}/stock-check")
    assert res.json["ok"] is True

    res = client.post(f"/api/orders/{order_id}/approve", json={"actor": "admin-1"})
    assert res.status_code == 200
    body = res.json
    assert body["order"]["status"] == "approved"
    assert body["invoice"]["total_amount_cents"] == 5000
    assert body["warnings"] == []

    res = client.post(f"/api/orders/{order_id}/approve")
    assert res.status_code == 409

    res = client.put(f"/api/orders/{order_id}/items", json={"items": [{"product_id": product_a.id, "quantity": 1}]})
    assert res.status_code == 409
    assert res.json["code"] == "order_not_modifiable"

    delivery_id = body["delivery"]["id"]
    deliver(delivery_id)

    res = client.post("/api/returns", json={
        "delivery_id": delivery_id,
        "items": [{"product_id": [product_a.id], "quantity": 1, "reason": {"x": 1}}],
    })
    assert res.status_code == 400
    assert res.json["details"]["invalid_items"][0]["index"] == 0

    expiry = (utctoday() - timedelta(days=2)).isoformat()
    res = client.post("/api/returns", json={
        "delivery_id": delivery_id,
        "items": [{"product_id": product_a.id, "quantity": 4, "expiry_date": expiry}],
    })
    assert res.status_code == 201
    invoice_id = res.json["invoice"]["id"]
    assert res.json["invoice"]["total_amount_cents"] == 3000

    res = client.post("/api/payments", json={"invoice_id": invoice_id, "amount_cents": 3001, "method": "cash"})
    assert res.status_code == 400

    res = client.post("/api/payments", json={"invoice_id": invoice_id, "amount_cents": 3000, "method": "cash"})
    assert res.status_code == 201
    assert res.json["invoice"]["payment_status"] == "paid"

    res = client.get(f"/api/stores/{stocked.id}")
    assert res.json["store"]["current_balance_cents"] == 0

    res = client.post("/api/returns", json={
        "delivery_id": delivery_id,
        "items": [{"product_id": product_a.id, "quantity": 1, "expiry_date": expiry}],
    })
    assert res.status_code == 409
    assert res.json["details"]["paid_cents"] == 3000

    res = client.post(f"/api/orders/{order_id}/complete")
    assert res.json["order"]["status"] == "completed"


def test_insufficient_stock_over_http(client, stocked, product_b):
    order_id = _create_order(
        client, stocked.id, [{"product_id": product_b.id, "quantity": 20}], status="pending"
    ).json["order"]["id"]

    res = client.post(f"/api/orders/{order_id}/approve")

    assert res.status_code == 409
    assert res.json["code"] == "insufficient_stock"
    assert res.json["details"]["shortages"][0]["required"] == 20
    assert res.json["details"]["shortages"][0]["available"] == 5
    assert client.get(f"/api/orders/{order_id}").json["order"]["status"] == "pending"


def test_invalid_items_over_http(client, store, product_a):
    res = _create_order(client, store.id, [{"product_id": product_a.id, "quantity": -1}])
    assert res.status_code == 400
    assert res.json["code"] == "validation_error"
    assert res.json["details"]["errors"]


def test_reject_over_http(client, store, product_a):
    order_id = _create_order(client, store.id, [{"product_id": product_a.id, "quantity": 1}]).json["order"]["id"]

    assert client.post(f"/api/orders/{order_id}/reject", json={}).status_code == 400

    res = client.post(f"/api/orders/{order_id}/reject", json={"reason": "Duplicate", "actor": "admin-1"})
    assert res.json["order"]["status"] == "rejected"
    assert "[REJECTED] Duplicate (by: admin-1)" in res.json["order"]["notes"]


def test_stock_adjust_over_http(client, store, product_a):
    res = client.post("/api/stock/adjust", json={
        "store_id": store.id, "product_id": product_a.id, "quantity": 12, "reason": "manual_adjustment",
    })
    assert res.status_code == 200

    res = client.post("/api/stock/adjust", json={
        "store_id": store.id, "product_id": product_a.id, "quantity": 13, "reason": "consume",
    })
    assert res.status_code == 409

    res = client.get(f"/api/stock/stores/{store.id}")
    assert res.json["items"][0]["quantity"] == 12


def test_replenishment_over_http(client, stocked, product_a, db_session):
    product_a.min_stock_level = 20
    db_session.commit()

    res = client.get(f"/api/replenishment/stores/{stocked.id}/needs")
    assert res.json["items"][0]["suggested_quantity"] == 25

    res = client.post("/api/replenishment/run")
    assert res.status_code == 200
    assert res.json["created"] == 1


def test_invoice_not_found_over_http(client, db_session):
    res = client.get("/api/invoices/999")
    assert res.status_code == 404
    assert res.json["code"] == "invoice_not_found"


def test_labels_and_gps_over_http(client, approved_order):
    sheet_id = approved_order.kitchen_sheet.id
    delivery_id = approved_order.delivery.id

    res = client.post(f"/api/kitchen-sheets/{sheet_id}/labels", json={"label_type": "barcode"})
    assert res.status_code == 201
    label = res.json["labels"][0]
    assert label["barcode"].startswith("PF-SKU-A-")

    res = client.post(f"/api/kitchen-sheets/labels/{label['id']}/printed")
    assert res.json["label"]["printed"] is True
    assert client.get(f"/api/kitchen-sheets/{sheet_id}/labels").json["printed"] == 1

    res = client.post(f"/api/deliveries/{delivery_id}/gps", json={"latitude": 120, "longitude": 0})
    assert res.status_code == 400
    assert len(res.json["details"]["errors"]) == 2

    res = client.post(f"/api/deliveries/{delivery_id}/gps", json={
        "latitude": 51.5, "longitude": -0.12, "driver_id": "driver-7",
    })
    assert res.status_code == 201
    assert client.get(f"/api/deliveries/{delivery_id}/gps").json["count"] == 1
