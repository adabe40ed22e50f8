import pytest

from freshroute.errors import InsufficientStock, ValidationError, NotFound
from freshroute.models import StockMovement
from freshroute.services import order_service, stock_service


def test_missing_record_reads_as_zero(store, product_a):
    assert stock_service.get_stock_level(store.id, product_a.id) == 0


def test_apply_stock_consume_and_restore(stocked, product_a):
    record = stock_service.apply_stock(stocked.id, product_a.id, 4, "consume", actor="kitchen")
    assert record.quantity == 11

    record = stock_service.apply_stock(stocked.id, product_a.id, 2, "restore")
    assert record.quantity == 13
    assert stock_service.get_stock_level(stocked.id, product_a.id) == 13


def test_consume_beyond_available_is_rejected_and_leaves_stock(stocked, product_b, db_session):
    before = db_session.query(StockMovement).count()

    with pytest.raises(InsufficientStock) as exc:
        stock_service.apply_stock(stocked.id, product_b.id, 6, "consume")

    shortage = exc.value.shortages[0]
    assert shortage["sku"] == "SKU-B"
    assert shortage["required"] == 6
    assert shortage["available"] == 5
    assert stock_service.get_stock_level(stocked.id, product_b.id) == 5
    assert db_session.query(StockMovement).count() == before


def test_negative_adjust_cannot_go_below_zero(stocked, product_b):
    with pytest.raises(InsufficientStock):
        stock_service.apply_stock(stocked.id, product_b.id, -6, "adjust")

    record = stock_service.apply_stock(stocked.id, product_b.id, -5, "adjust")
    assert record.quantity == 0


def test_event_aliases_map_to_reasons(stocked, product_a):
    assert stock_service.normalize_reason("order_approved") == "consume"
    assert stock_service.normalize_reason("Return") == "restore"
    assert stock_service.normalize_reason("wastage") == "adjust"

    stock_service.apply_stock(stocked.id, product_a.id, 3, "delivery")
    assert stock_service.get_stock_level(stocked.id, product_a.id) == 12


@pytest.mark.parametrize("reason,quantity", [
    ("consume", 0),
    ("restore", -1),
    ("adjust", 0),
    ("teleport", 1),
])
def test_invalid_reason_or_quantity(stocked, product_a, reason, quantity):
    with pytest.raises(ValidationError):
        stock_service.apply_stock(stocked.id, product_a.id, quantity, reason)


def test_unknown_product(stocked):
    with pytest.raises(NotFound):
        stock_service.apply_stock(stocked.id, 999, 1, "restore")


def test_every_change_is_recorded_as_a_movement(stocked, product_a):
    stock_service.apply_stock(stocked.id, product_a.id, 5, "consume", note="spoilage", actor="ops")

    movements = stock_service.list_stock_movements(stocked.id, product_a.id)
    assert movements[0]["reason"] == "consume"
    assert movements[0]["quantity_delta"] == -5
    assert movements[0]["quantity_after"] == 10
    assert movements[0]["actor"] == "ops"


def test_validate_availability_reports_every_shortage(stocked, product_a, product_b):
    order = order_service.create_order(stocked.id, [
        {"product_id": product_a.id, "quantity": 16},
        {"product_id": product_b.id, "quantity": 20},
    ])

    result = stock_service.validate_availability(order.id)

    assert not result.ok
    by_sku = {s["sku"]: s for s in result.shortages}
    assert by_sku["SKU-A"]["required"] == 16 and by_sku["SKU-A"]["available"] == 15
    assert by_sku["SKU-B"]["required"] == 20 and by_sku["SKU-B"]["available"] == 5


def test_validate_availability_ok(stocked, product_a):
    order = order_service.create_order(stocked.id, [{"product_id": product_a.id, "quantity": 15}])
    assert stock_service.validate_availability(order.id).ok


class TestReservationDeltas:
    @pytest.fixture
    def draft(self, stocked, product_a):
        return order_service.create_order(stocked.id, [{"product_id": product_a.id, "quantity": 1}])

    def test_only_the_difference_is_applied(self, stocked, draft, product_a, product_b):
        applied = stock_service.modify_reservation(
            draft.id,
            [{"product_id": product_a.id, "quantity": 10}],
            [{"product_id": product_a.id, "quantity": 7}, {"product_id": product_b.id, "quantity": 2}],
            stocked.id,
        )

        assert applied == {product_a.id: -3, product_b.id: 2}
        assert stock_service.get_stock_level(stocked.id, product_a.id) == 18
        assert stock_service.get_stock_level(stocked.id, product_b.id) == 3

    def test_identical_sets_change_nothing(self, stocked, draft, product_a):
        items = [{"product_id": product_a.id, "quantity": 4}]
        assert stock_service.compute_reservation_deltas(items, items) == {}
        assert stock_service.modify_reservation(draft.id, items, items, stocked.id) == {}
        assert stock_service.get_stock_level(stocked.id, product_a.id) == 15

    def test_growing_past_stock_fails(self, stocked, draft, product_b):
        with pytest.raises(InsufficientStock):
            stock_service.modify_reservation(
                draft.id,
                [{"product_id": product_b.id, "quantity": 1}],
                [{"product_id": product_b.id, "quantity": 7}],
                stocked.id,
            )
        assert stock_service.get_stock_level(stocked.id, product_b.id) == 5

    @pytest.mark.parametrize("new_items", [
        [{"product_id": 1}],
        [{"product_id": 1, "quantity": "3"}],
        [{"product_id": [1], "quantity": 3}],
        [{"quantity": 3}],
        {"product_id": 1, "quantity": 3},
    ])
    def test_malformed_items_are_rejected(self, stocked, draft, product_a, new_items):
        with pytest.raises(ValidationError) as exc:
            stock_service.modify_reservation(draft.id, [], new_items, stocked.id)

        assert exc.value.details["errors"]
        assert stock_service.get_stock_level(stocked.id, product_a.id) == 15
