import pytest

from freshroute.models import Order, Store
from freshroute.services import order_service, replenishment_service, stock_service


@pytest.fixture
def low_stock(stocked, product_a, product_b, db_session):
    """SKU-A min 20 (stock 15), SKU-B min 4 (stock 5)."""
    product_a.min_stock_level = 20
    product_b.min_stock_level = 4
    db_session.commit()
    return stocked


@pytest.mark.parametrize("current,minimum,expected", [
    (15, 20, 25),
    (0, 10, 20),
    (9, 10, 11),
    (19, 10, 10),
])
def test_suggested_quantity(current, minimum, expected):
    assert replenishment_service.suggested_quantity(current, minimum) == expected


def test_needs_only_products_below_minimum(low_stock, product_a):
    needs = replenishment_service.check_store_needs(low_stock.id)

    assert [n.sku for n in needs] == ["SKU-A"]
    assert needs[0].current_stock == 15
    assert needs[0].suggested_quantity == 25


def test_zero_minimum_is_never_flagged(stocked):
    assert replenishment_service.check_store_needs(stocked.id) == []


def test_generates_auto_draft(low_stock, product_a):
    order = replenishment_service.generate_order(low_stock.id, actor="scheduler")

    assert order.status == "draft"
    assert order.is_auto_generated
    assert order.order_number.startswith("REPL-")
    assert order.notes == replenishment_service.AUTO_ORDER_NOTE
    assert [(i.product_id, i.quantity) for i in order.items] == [(product_a.id, 25)]
    # Planning does not move stock
    assert stock_service.get_stock_level(low_stock.id, product_a.id) == 15


def test_skips_when_an_open_order_covers_the_product(low_stock, product_a):
    order_service.create_order(low_stock.id, [{"product_id": product_a.id, "quantity": 3}], status="pending")

    assert replenishment_service.generate_order(low_stock.id) is None


def test_second_run_does_not_duplicate(low_stock, db_session):
    first = replenishment_service.generate_all_orders()
    second = replenishment_service.generate_all_orders()

    assert len(first.orders) == 1
    assert second.orders == []
    assert second.skipped_store_ids == [low_stock.id]
    assert db_session.query(Order).filter_by(is_auto_generated=True).count() == 1


def test_one_store_failing_does_not_stop_the_batch(low_stock, db_session, monkeypatch):
    other = Store(name="Zephyr Lane", code="ZL02")
    db_session.add(other)
    db_session.commit()

    real_generate = replenishment_service.generate_order

    def flaky(store_id, *, actor=None):
        if store_id == low_stock.id:
            raise RuntimeError("sequence table locked")
        return real_generate(store_id, actor=actor)

    monkeypatch.setattr(replenishment_service, "generate_order", flaky)

    run = replenishment_service.generate_all_orders()

    assert run.failures == [{"store_id": low_stock.id, "error": "sequence table locked"}]
    # The other store has no stock at all, so SKU-A is below minimum there too
    assert len(run.orders) == 1
    assert run.orders[0].store_id == other.id
