import pytest

from freshroute.errors import DuplicateConstraint, ValidationError
from freshroute.models import Product
from freshroute.services import order_service, products_service, store_service
from freshroute.validation import (
    UNSET,
    ProductUpdate,
    StoreUpdate,
    ModelValidationPolicy,
    validate_payload,
)


POLICY = ModelValidationPolicy(
    writable_fields={"sku", "name", "price_cents", "cost_cents", "min_stock_level", "category"},
    required_on_create={"sku", "name", "price_cents"},
)


class TestValidatePayload:
    def test_missing_required(self):
        with pytest.raises(ValidationError) as exc:
            validate_payload(model=Product, payload={"name": "Feta"}, policy=POLICY, partial=False)
        assert exc.value.details["missing"] == ["price_cents", "sku"]

    def test_unknown_field(self):
        with pytest.raises(ValidationError):
            validate_payload(model=Product, payload={"colour": "red"}, policy=POLICY, partial=True)

    def test_partial_update_tracks_only_present_fields(self):
        patch = validate_payload(model=Product, payload={"category": None}, policy=POLICY, partial=True)
        update = ProductUpdate.from_patch(patch)

        assert update.present() == {"category": None}
        assert update.name is UNSET


class TestProducts:
    def test_create_normalizes_sku(self, db_session):
        product = products_service.create_product(patch={"sku": " sku-c ", "name": "Feta 500g", "price_cents": 650})
        assert product.sku == "SKU-C"

    def test_duplicate_sku(self, product_a):
        with pytest.raises(DuplicateConstraint):
            products_service.create_product(patch={"sku": "sku-a", "name": "Other", "price_cents": 100})

    @pytest.mark.parametrize("patch", [
        {"sku": "BAD SKU", "name": "x", "price_cents": 100},
        {"sku": "OK-1", "name": "x", "price_cents": 0},
        {"sku": "OK-1", "name": "x", "price_cents": 100, "cost_cents": 150},
        {"sku": "OK-1", "name": "x", "price_cents": 100, "min_stock_level": -1},
    ])
    def test_rules(self, db_session, patch):
        with pytest.raises(ValidationError):
            products_service.create_product(patch=patch)

    def test_update_checks_cost_against_existing_price(self, product_a):
        with pytest.raises(ValidationError):
            products_service.update_product(product_a.id, ProductUpdate(cost_cents=600))

        product = products_service.update_product(product_a.id, ProductUpdate(min_stock_level=12))
        assert product.min_stock_level == 12
        assert product.cost_cents == 300

    def test_delete_unreferenced_product(self, product_b, db_session):
        result = products_service.delete_product(product_b.id)
        assert result["deleted"]
        assert db_session.query(Product).filter_by(sku="SKU-B").first() is None

    def test_referenced_product_is_deactivated(self, store, product_a):
        order_service.create_order(store.id, [{"product_id": product_a.id, "quantity": 1}])

        result = products_service.delete_product(product_a.id)

        assert result == {"deleted": False, "deactivated": True, "product_id": product_a.id}
        assert products_service.get_product(product_a.id).is_active is False

    def test_pagination(self, product_a, product_b):
        page = products_service.list_products(page=1, per_page=1)
        assert page["count"] == 1
        assert page["pagination"]["total"] == 2
        assert page["pagination"]["has_next"]


class TestStores:
    def test_duplicate_code(self, store):
        with pytest.raises(DuplicateConstraint):
            store_service.create_store(patch={"name": "Another", "code": "hs01"})

    def test_update_clears_nullable_field(self, store):
        store_service.update_store(store.id, StoreUpdate(phone="555-0101"))
        updated = store_service.update_store(store.id, StoreUpdate(phone=None, credit_limit_cents=90000))

        assert updated.phone is None
        assert updated.credit_limit_cents == 90000
        assert updated.name == "Harbour Street"

    def test_balance_is_floored_at_zero(self, store):
        store_service.adjust_balance(store.id, 1500)
        assert store_service.adjust_balance(store.id, -4000).current_balance_cents == 0

    def test_credit_headroom(self, store):
        assert store_service.credit_headroom_cents(store) is None
        store_service.update_store(store.id, StoreUpdate(credit_limit_cents=10000))
        store_service.adjust_balance(store.id, 2500)
        assert store_service.credit_headroom_cents(store_service.get_store(store.id)) == 7500
