from freshroute.services import approval_service, kitchen_service, order_service


def test_replenishment_run(app, stocked, product_a, db_session):
    product_a.min_stock_level = 20
    db_session.commit()

    result = app.test_cli_runner().invoke(args=["replenishment", "run"])

    assert result.exit_code == 0
    assert "Created 1 order(s), 0 failure(s)" in result.output


def test_regenerate_documents(app, stocked, product_a, monkeypatch):
    monkeypatch.setattr(kitchen_service, "generate_kitchen_sheet", lambda order_id: 1 / 0)
    order = order_service.create_order(stocked.id, [{"product_id": product_a.id, "quantity": 1}], status="pending")
    approval_service.approve_order(order.id)
    monkeypatch.undo()

    result = app.test_cli_runner().invoke(args=["orders", "regenerate-documents"])

    assert result.exit_code == 0
    assert "documents complete" in result.output
    assert approval_service.find_orders_missing_documents() == []


def test_mark_overdue_rejects_bad_date(app, db_session):
    result = app.test_cli_runner().invoke(args=["invoices", "mark-overdue", "--today", "18/10/2026"])
    assert result.exit_code != 0
