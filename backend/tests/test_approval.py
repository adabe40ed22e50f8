import pytest

from freshroute.errors import InsufficientStock, StateConflict, ValidationError
from freshroute.models import Notification, StockMovement
from freshroute.services import (
    approval_service,
    kitchen_service,
    lifecycle_service,
    notification_service,
    order_service,
    stock_service,
    store_service,
)


def _pending(store, items):
    return order_service.create_order(store.id, items, status="pending")


class TestApproveOrder:
    def test_happy_path(self, stocked, product_a):
        order = _pending(stocked, [{"product_id": product_a.id, "quantity": 10}])

        result = approval_service.approve_order(order.id, actor="admin-1")

        assert result.warnings == []
        assert result.order.status == "approved"
        assert result.order.approved_by == "admin-1"
        assert result.order.approved_at is not None
        assert stock_service.get_stock_level(stocked.id, product_a.id) == 5
        assert result.invoice.total_amount_cents == 5000
        assert result.invoice.payment_status == "pending"
        assert store_service.get_store(stocked.id).current_balance_cents == 5000
        assert result.stock_consumed == [product_a.id]
        assert result.notification_sent

    def test_documents_are_generated(self, stocked, product_a, product_b):
        order = _pending(stocked, [
            {"product_id": product_a.id, "quantity": 2},
            {"product_id": product_b.id, "quantity": 1},
        ])

        result = approval_service.approve_order(order.id)

        assert result.kitchen_sheet.sheet_number.startswith("KS-")
        assert sorted((i.product_id, i.quantity, i.prepared) for i in result.kitchen_sheet.items) == sorted([
            (product_a.id, 2, False),
            (product_b.id, 1, False),
        ])
        assert result.delivery.status == "pending"
        assert result.delivery.note.note_number.startswith("DN-")
        assert result.invoice.invoice_number.startswith("INV-")

        payload = result.to_dict()
        assert payload["delivery_note"]["note_number"] == result.delivery.note.note_number

    def test_insufficient_stock_fails_before_any_write(self, stocked, product_a, product_b, db_session):
        order = _pending(stocked, [
            {"product_id": product_a.id, "quantity": 1},
            {"product_id": product_b.id, "quantity": 20},
        ])
        movements = db_session.query(StockMovement).count()

        with pytest.raises(InsufficientStock) as exc:
            approval_service.approve_order(order.id)

        assert exc.value.shortages == [{
            "product_id": product_b.id,
            "sku": "SKU-B",
            "product_name": "Chicken Breast 2kg",
            "required": 20,
            "available": 5,
        }]
        assert lifecycle_service.get_order_or_404(order.id).status == "pending"
        assert stock_service.get_stock_level(stocked.id, product_a.id) == 15
        assert stock_service.get_stock_level(stocked.id, product_b.id) == 5
        assert db_session.query(StockMovement).count() == movements
        assert store_service.get_store(stocked.id).current_balance_cents == 0

    def test_second_approval_conflicts(self, approved_order):
        with pytest.raises(StateConflict):
            approval_service.approve_order(approved_order.order.id)

    def test_lost_race_at_the_status_write(self, stocked, product_a, monkeypatch):
        order = _pending(stocked, [{"product_id": product_a.id, "quantity": 1}])

        # Another approver wins between validation and the status write
        real_validate = stock_service.validate_availability

        def validate_then_lose(order_id):
            result = real_validate(order_id)
            lifecycle_service.transition_order(order_id, "approved", expected_from={"pending"})
            return result

        monkeypatch.setattr(stock_service, "validate_availability", validate_then_lose)

        with pytest.raises(StateConflict):
            approval_service.approve_order(order.id)
        assert stock_service.get_stock_level(stocked.id, product_a.id) == 15

    def test_credit_limit(self, stocked, product_a, db_session):
        stocked.credit_limit_cents = 4000
        db_session.commit()
        order = _pending(stocked, [{"product_id": product_a.id, "quantity": 10}])

        with pytest.raises(ValidationError) as exc:
            approval_service.approve_order(order.id)
        assert "Credit limit" in exc.value.details["errors"][0]

    def test_credit_limit_can_be_disabled(self, app, stocked, product_a, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "ENFORCE_CREDIT_LIMIT", False)
        stocked.credit_limit_cents = 4000
        db_session.commit()
        order = _pending(stocked, [{"product_id": product_a.id, "quantity": 10}])

        assert approval_service.approve_order(order.id).order.status == "approved"

    def test_inactive_product_blocks_approval(self, stocked, product_a, db_session):
        order = _pending(stocked, [{"product_id": product_a.id, "quantity": 1}])
        product_a.is_active = False
        db_session.commit()

        with pytest.raises(ValidationError):
            approval_service.approve_order(order.id)


class TestBestEffortSteps:
    def test_kitchen_sheet_failure_is_a_warning(self, stocked, product_a, monkeypatch):
        def broken(order_id):
            raise RuntimeError("printer offline")

        monkeypatch.setattr(kitchen_service, "generate_kitchen_sheet", broken)
        order = _pending(stocked, [{"product_id": product_a.id, "quantity": 10}])

        result = approval_service.approve_order(order.id)

        assert result.order.status == "approved"
        assert result.kitchen_sheet is None
        assert result.warnings == [{"step": "kitchen_sheet", "error": "printer offline", "order_id": order.id}]
        # Later steps still ran
        assert result.delivery is not None
        assert result.invoice.total_amount_cents == 5000
        assert stock_service.get_stock_level(stocked.id, product_a.id) == 5

    def test_notification_failure_is_a_warning(self, app, stocked, product_a, monkeypatch, db_session):
        class FailingNotifier:
            def send(self, *args, **kwargs):
                raise ConnectionError("smtp down")

        monkeypatch.setitem(app.extensions, notification_service.NOTIFIER_EXTENSION_KEY, FailingNotifier())
        order = _pending(stocked, [{"product_id": product_a.id, "quantity": 1}])

        result = approval_service.approve_order(order.id)

        assert result.order.status == "approved"
        assert not result.notification_sent
        assert [w["step"] for w in result.warnings] == ["notification"]
        assert db_session.query(Notification).count() == 0

    def test_notification_row_written(self, approved_order, db_session):
        notification = db_session.query(Notification).one()
        assert notification.type == "order_approved"
        assert notification.store_id == approved_order.order.store_id
        assert notification.data["order_id"] == approved_order.order.id

    def test_stock_race_after_commit_point(self, stocked, product_a, monkeypatch):
        # Stock drained between validation and consumption
        real_validate = stock_service.validate_availability

        def validate_then_drain(order_id):
            result = real_validate(order_id)
            stock_service.apply_stock(stocked.id, product_a.id, 12, "consume")
            return result

        monkeypatch.setattr(stock_service, "validate_availability", validate_then_drain)
        order = _pending(stocked, [{"product_id": product_a.id, "quantity": 10}])

        result = approval_service.approve_order(order.id)

        assert result.order.status == "approved"
        assert result.stock_consumed == []
        assert result.warnings[0]["step"] == "consume_stock"
        assert result.warnings[0]["product_id"] == product_a.id
        assert stock_service.get_stock_level(stocked.id, product_a.id) == 3


class TestRegenerateDocuments:
    def test_fills_in_missing_documents(self, stocked, product_a, monkeypatch):
        monkeypatch.setattr(kitchen_service, "generate_kitchen_sheet", lambda order_id: 1 / 0)
        order = _pending(stocked, [{"product_id": product_a.id, "quantity": 1}])
        approval_service.approve_order(order.id)
        monkeypatch.undo()

        assert approval_service.find_orders_missing_documents() == [order.id]

        result = approval_service.regenerate_documents(order.id)
        assert result.warnings == []
        assert result.kitchen_sheet is not None
        assert approval_service.find_orders_missing_documents() == []

    def test_is_idempotent(self, approved_order):
        order_id = approved_order.order.id
        first = approval_service.regenerate_documents(order_id)
        second = approval_service.regenerate_documents(order_id)

        assert first.kitchen_sheet.id == second.kitchen_sheet.id == approved_order.kitchen_sheet.id
        assert first.delivery.id == second.delivery.id
        assert first.invoice.id == second.invoice.id
        assert first.invoice.invoice_number == approved_order.invoice.invoice_number

    def test_only_for_approved_orders(self, stocked, product_a):
        order = _pending(stocked, [{"product_id": product_a.id, "quantity": 1}])
        with pytest.raises(StateConflict):
            approval_service.regenerate_documents(order.id)
