import pytest

from freshroute.errors import NotFound, OrderNotModifiable, StateConflict, ValidationError
from freshroute.services import lifecycle_service, order_service, pricing_service, stock_service


class TestPricing:
    def test_totals(self):
        totals = pricing_service.calculate_order_totals(
            [{"quantity": 10, "unit_price_cents": 500}, {"quantity": 3, "unit_price_cents": 799}],
            discount_cents=397,
        )
        assert totals.subtotal_cents == 7397
        assert totals.discount_cents == 397
        assert totals.final_amount_cents == 7000

    def test_discount_is_capped_at_subtotal(self):
        totals = pricing_service.calculate_order_totals([{"quantity": 1, "unit_price_cents": 500}], 900)
        assert totals.discount_cents == 500
        assert totals.final_amount_cents == 0

    def test_negative_discount_rejected(self):
        with pytest.raises(ValidationError):
            pricing_service.calculate_order_totals([], -1)

    def test_override_only_for_admin_orders(self, product_a):
        assert pricing_service.resolve_unit_price(product_a) == 500
        assert pricing_service.resolve_unit_price(product_a, 450, allow_override=True) == 450
        with pytest.raises(ValidationError):
            pricing_service.resolve_unit_price(product_a, 450)


class TestCreateOrder:
    def test_snapshots_catalog_price_and_totals(self, store, product_a, product_b):
        order = order_service.create_order(
            store.id,
            [{"product_id": product_a.id, "quantity": 10}, {"product_id": product_b.id, "quantity": 2}],
            discount_cents=100,
            actor="store-user",
        )

        assert order.status == "draft"
        assert order.order_number.startswith("ORD-")
        assert order.subtotal_cents == 6600
        assert order.final_amount_cents == 6500

    def test_catalog_price_change_does_not_reprice_existing_lines(self, store, product_a, product_b, db_session):
        order = order_service.create_order(store.id, [{"product_id": product_a.id, "quantity": 10}])

        product_a.price_cents = 700
        db_session.commit()

        order = order_service.add_item(order.id, product_b.id, 1).order
        prices = {i.product_id: i.unit_price_cents for i in order.items}
        assert prices == {product_a.id: 500, product_b.id: 800}
        assert order.subtotal_cents == 5800

    def test_identical_item_set_keeps_rows(self, store, product_a):
        order = order_service.create_order(store.id, [{"product_id": product_a.id, "quantity": 3}])
        item_ids = [i.id for i in order.items]

        mod = order_service.modify_order_items(order.id, [{"product_id": product_a.id, "quantity": 3}])

        assert [i.id for i in mod.order.items] == item_ids
        assert mod.stock_deltas == {}
        assert not mod.totals_changed

    def test_creating_an_order_does_not_touch_stock(self, stocked, product_a):
        order_service.create_order(stocked.id, [{"product_id": product_a.id, "quantity": 10}])
        assert stock_service.get_stock_level(stocked.id, product_a.id) == 15

    def test_item_errors_are_aggregated(self, store, product_a):
        with pytest.raises(ValidationError) as exc:
            order_service.create_order(store.id, [
                {"product_id": product_a.id, "quantity": 0},
                {"product_id": "x", "quantity": 1},
            ])
        assert len(exc.value.details["errors"]) == 2

    def test_duplicate_products_rejected(self, store, product_a):
        with pytest.raises(ValidationError):
            order_service.create_order(store.id, [
                {"product_id": product_a.id, "quantity": 1},
                {"product_id": product_a.id, "quantity": 2},
            ])

    def test_unknown_product(self, store):
        with pytest.raises(NotFound):
            order_service.create_order(store.id, [{"product_id": 404, "quantity": 1}])

    def test_inactive_store(self, store, product_a, db_session):
        store.is_active = False
        db_session.commit()
        with pytest.raises(ValidationError):
            order_service.create_order(store.id, [{"product_id": product_a.id, "quantity": 1}])

    def test_price_override_on_store_order_is_rejected(self, store, product_a):
        with pytest.raises(ValidationError):
            order_service.create_order(store.id, [{"product_id": product_a.id, "quantity": 1, "unit_price_cents": 1}])

        order = order_service.create_order(
            store.id,
            [{"product_id": product_a.id, "quantity": 2, "unit_price_cents": 450}],
            allow_price_override=True,
        )
        assert order.subtotal_cents == 900


class TestModifyOrder:
    def test_replace_items_reports_deltas(self, store, product_a, product_b):
        order = order_service.create_order(store.id, [{"product_id": product_a.id, "quantity": 10}])

        mod = order_service.modify_order_items(
            order.id,
            [{"product_id": product_a.id, "quantity": 7}, {"product_id": product_b.id, "quantity": 1}],
        )

        assert mod.stock_deltas == {product_a.id: -3, product_b.id: 1}
        assert mod.totals_changed
        assert mod.order.subtotal_cents == 7 * 500 + 800

    def test_add_and_remove_item(self, store, product_a, product_b):
        order = order_service.create_order(store.id, [{"product_id": product_a.id, "quantity": 2}])

        order = order_service.add_item(order.id, product_a.id, 3).order
        assert [(i.product_id, i.quantity) for i in order.items] == [(product_a.id, 5)]

        order = order_service.add_item(order.id, product_b.id, 1).order
        assert order.subtotal_cents == 5 * 500 + 800

        order = order_service.remove_item(order.id, product_a.id).order
        assert order.subtotal_cents == 800

        with pytest.raises(ValidationError):
            order_service.remove_item(order.id, product_b.id)

    def test_approved_order_is_not_modifiable(self, approved_order, product_a):
        with pytest.raises(OrderNotModifiable):
            order_service.modify_order_items(approved_order.order.id, [{"product_id": product_a.id, "quantity": 1}])


class TestLifecycle:
    def test_transition_table(self):
        assert lifecycle_service.can_transition("draft", "pending")
        assert lifecycle_service.can_transition("pending", "approved")
        assert lifecycle_service.can_transition("approved", "completed")
        assert not lifecycle_service.can_transition("approved", "cancelled")
        assert not lifecycle_service.can_transition("rejected", "pending")
        assert lifecycle_service.sources_for("approved") == {"draft", "pending"}

    def test_submit_then_reject_appends_reason(self, store, product_a):
        order = order_service.create_order(store.id, [{"product_id": product_a.id, "quantity": 1}], notes="urgent")
        order = lifecycle_service.submit_order(order.id)
        assert order.status == "pending"

        order = lifecycle_service.reject_order(order.id, "Out of delivery area", actor="admin-2")
        assert order.status == "rejected"
        assert order.notes == "urgent\n[REJECTED] Out of delivery area (by: admin-2)"
        assert order.rejected_by == "admin-2"

    def test_reject_requires_reason(self, store, product_a):
        order = order_service.create_order(store.id, [{"product_id": product_a.id, "quantity": 1}])
        with pytest.raises(ValidationError):
            lifecycle_service.reject_order(order.id, "  ")

    def test_cancel_only_before_approval(self, approved_order, store, product_a):
        with pytest.raises(StateConflict):
            lifecycle_service.cancel_order(approved_order.order.id)

        order = order_service.create_order(store.id, [{"product_id": product_a.id, "quantity": 1}])
        order = lifecycle_service.cancel_order(order.id)
        assert order.status == "cancelled"
        assert order.cancelled_at is not None

    def test_stale_status_write_conflicts(self, store, product_a):
        order = order_service.create_order(store.id, [{"product_id": product_a.id, "quantity": 1}])
        lifecycle_service.transition_order(order.id, "pending", expected_from={"draft"})

        with pytest.raises(StateConflict):
            lifecycle_service.transition_order(order.id, "pending", expected_from={"draft"})

    def test_version_increments_on_transition(self, store, product_a):
        order = order_service.create_order(store.id, [{"product_id": product_a.id, "quantity": 1}])
        before = order.version_id
        order = lifecycle_service.submit_order(order.id)
        assert order.version_id == before + 1

    def test_complete_requires_delivered(self, approved_order):
        with pytest.raises(StateConflict):
            lifecycle_service.complete_order(approved_order.order.id)
