from datetime import timedelta

import pytest

from freshroute.errors import InvoiceNotFound, StateConflict, ValidationError
from freshroute.extensions import db
from freshroute.models import Invoice, Return
from freshroute.services import payment_service, return_service, stock_service, store_service
from freshroute.time_utils import utctoday


@pytest.fixture
def delivered(approved_order, deliver):
    deliver(approved_order.delivery.id)
    return approved_order


def _yesterday():
    return (utctoday() - timedelta(days=1)).isoformat()


def test_return_credits_invoice_and_restocks(delivered, product_a):
    store_id = delivered.order.store_id

    result = return_service.process_returns(
        delivered.delivery.id,
        [{"product_id": product_a.id, "quantity": 4, "expiry_date": _yesterday(), "batch_number": "B-221"}],
        actor="driver-7",
    )

    assert result.warnings == []
    assert result.total_return_cents == 2000
    assert result.invoice.return_amount_cents == 2000
    assert result.invoice.total_amount_cents == 3000
    assert result.restocked == [product_a.id]
    assert stock_service.get_stock_level(store_id, product_a.id) == 9
    assert store_service.get_store(store_id).current_balance_cents == 3000

    row = result.returns[0]
    assert row.reason == "expired"
    assert row.unit_price_cents == 500
    assert row.amount_cents == 2000
    assert row.returned_by == "driver-7"


def test_credit_uses_order_price_not_catalog(delivered, product_a, db_session):
    product_a.price_cents = 900
    db_session.commit()

    result = return_service.process_returns(delivered.delivery.id, [{"product_id": product_a.id, "quantity": 1}])
    assert result.total_return_cents == 500


def test_validation_aggregates_all_problems(delivered, product_a, product_b, db_session):
    today = utctoday()
    items = [
        {"product_id": product_a.id, "quantity": 11, "expiry_date": _yesterday()},
        {"product_id": product_b.id, "quantity": 1, "expiry_date": _yesterday()},
        {"product_id": product_a.id, "quantity": 1, "reason": "damaged"},
        {"product_id": product_a.id, "quantity": 1, "expiry_date": today.isoformat()},
        {"product_id": product_a.id, "quantity": 1, "reason": "lost", "expiry_date": _yesterday()},
    ]

    result = return_service.validate_returns(delivered.delivery.id, items)

    assert not result.ok
    assert [i["index"] for i in result.invalid_items] == [0, 1, 2, 3, 4]
    assert len(result.errors) == 5

    with pytest.raises(ValidationError) as exc:
        return_service.process_returns(delivered.delivery.id, items)
    assert len(exc.value.details["invalid_items"]) == 5
    assert db_session.query(Return).count() == 0


def test_damaged_with_past_expiry_is_accepted(delivered, product_a):
    result = return_service.validate_returns(
        delivered.delivery.id,
        [{"product_id": product_a.id, "quantity": 2, "reason": "damaged", "expiry_date": _yesterday()}],
    )
    assert result.ok
    assert result.items[0]["reason"] == "damaged"


def test_cumulative_returns_cannot_exceed_ordered(delivered, product_a):
    return_service.process_returns(delivered.delivery.id, [{"product_id": product_a.id, "quantity": 6}])

    result = return_service.validate_returns(delivered.delivery.id, [{"product_id": product_a.id, "quantity": 5}])
    assert not result.ok
    assert "already returned 6" in result.errors[0]

    result = return_service.validate_returns(delivered.delivery.id, [
        {"product_id": product_a.id, "quantity": 3},
        {"product_id": product_a.id, "quantity": 2},
    ])
    assert not result.ok
    assert [i["index"] for i in result.invalid_items] == [1]


def test_delivery_must_be_delivered(approved_order, product_a):
    with pytest.raises(StateConflict):
        return_service.process_returns(approved_order.delivery.id, [{"product_id": product_a.id, "quantity": 1}])


def test_missing_invoice(delivered, product_a, db_session):
    db_session.query(Invoice).delete()
    db_session.commit()

    with pytest.raises(InvoiceNotFound):
        return_service.process_returns(delivered.delivery.id, [{"product_id": product_a.id, "quantity": 1}])
    assert db_session.query(Return).count() == 0


def test_restock_failure_keeps_the_return(delivered, product_a, monkeypatch, db_session):
    def broken(*args, **kwargs):
        raise RuntimeError("ledger locked")

    monkeypatch.setattr(stock_service, "apply_stock", broken)

    result = return_service.process_returns(delivered.delivery.id, [{"product_id": product_a.id, "quantity": 2}])

    assert result.restocked == []
    assert result.warnings == [{
        "step": "restore_stock",
        "error": "ledger locked",
        "delivery_id": delivered.delivery.id,
        "product_id": product_a.id,
    }]
    assert db_session.query(Return).count() == 1
    assert db.session.get(Invoice, result.invoice.id).total_amount_cents == 4000


def test_returns_listed_per_delivery(delivered, product_a):
    return_service.process_returns(delivered.delivery.id, [{"product_id": product_a.id, "quantity": 1}])
    return_service.process_returns(delivered.delivery.id, [{"product_id": product_a.id, "quantity": 2}])

    rows = return_service.get_returns_for_delivery(delivered.delivery.id)
    assert [r.quantity for r in rows] == [1, 2]


def test_credit_cannot_drop_total_below_payments(delivered, product_a, db_session):
    store_id = delivered.order.store_id
    payment_service.record_payment(5000, "cash", order_id=delivered.order.id)

    with pytest.raises(StateConflict) as exc:
        return_service.process_returns(delivered.delivery.id, [{"product_id": product_a.id, "quantity": 4}])

    assert exc.value.details["paid_cents"] == 5000
    assert exc.value.details["remaining_cents"] == 0
    assert exc.value.details["credit_cents"] == 2000
    assert db_session.query(Return).count() == 0
    assert db.session.get(Invoice, delivered.invoice.id).total_amount_cents == 5000
    assert stock_service.get_stock_level(store_id, product_a.id) == 5


def test_credit_up_to_the_unpaid_remainder_is_accepted(delivered, product_a):
    payment_service.record_payment(3000, "cash", order_id=delivered.order.id)

    result = return_service.process_returns(delivered.delivery.id, [{"product_id": product_a.id, "quantity": 4}])

    assert result.invoice.total_amount_cents == 3000
    assert result.invoice.payment_status == "paid"


@pytest.mark.parametrize("item", [
    {"product_id": [1], "quantity": 1},
    {"product_id": {"id": 1}, "quantity": 1},
    {"quantity": 1},
    {"product_id": 1, "quantity": 1, "reason": ["expired"]},
    {"product_id": 1, "quantity": 1, "batch_number": {"b": 1}},
])
def test_malformed_item_values_are_reported(delivered, product_a, item):
    if item.get("product_id") == 1:
        item = {**item, "product_id": product_a.id}

    result = return_service.validate_returns(delivered.delivery.id, [item])

    assert not result.ok
    assert [i["index"] for i in result.invalid_items] == [0]
