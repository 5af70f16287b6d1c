"""
Order state machine tests.

Verifies:
- checkout reserves stock and a shortfall persists nothing
- payment review moves stock: validate reduces, reject / cancel release
- illegal transitions raise InvalidOperation and change nothing
- payment account linking follows the payment outcome
- validation lookups do not grow with the order size
- stock received or bundles edited after checkout do not block the order
- an order number lost to a concurrent insert is redrawn
"""

import re

import pytest

from conftest import inventory_of
from fulfillment.errors import (
    AuthenticationRequired,
    AuthorizationFailed,
    DbError,
    InsufficientStock,
    InvalidOperation,
    NotFound,
    ValidationFailed,
)
from fulfillment.models import BundleItem, Order, PaymentAccountTransaction
from fulfillment.services import inventory_service, order_service


def _items(*lines):
    return [
        {"item_type": item_type, "item_id": item.id, "quantity": qty, "unit_price_cents": item.price_cents}
        for item_type, item, qty in lines
    ]


def place_order(user, *lines, **kwargs):
    items = _items(*lines)
    subtotal = sum(i["unit_price_cents"] * i["quantity"] for i in items)
    return order_service.create_order(user.id, items, "usd", subtotal, **kwargs)


def paid_order(user, admin, *lines):
    order = place_order(user, *lines)
    order_service.upload_payment_proof(order.id, user.id, "receipts/zelle-1.png", "ZL-001")
    return order_service.validate_payment(order.id, admin.id)


class TestTransitionTables:

    @pytest.mark.parametrize(
        "current,target,allowed",
        [
            ("PENDING", "PROCESSING", True),
            ("PENDING", "CANCELLED", True),
            ("PROCESSING", "SHIPPED", True),
            ("PROCESSING", "CANCELLED", True),
            ("SHIPPED", "DELIVERED", True),
            ("DELIVERED", "COMPLETED", True),
            ("PROCESSING", "DELIVERED", False),
            ("SHIPPED", "CANCELLED", False),
            ("COMPLETED", "PENDING", False),
            ("CANCELLED", "PENDING", False),
        ],
    )
    def test_order_status_table(self, current, target, allowed):
        assert order_service.can_transition(order_service.ORDER_STATUS_TRANSITIONS, current, target) is allowed

    @pytest.mark.parametrize(
        "current,target,allowed",
        [
            ("PENDING", "PROOF_UPLOADED", True),
            ("PROOF_UPLOADED", "VALIDATED", True),
            ("PROOF_UPLOADED", "REJECTED", True),
            ("REJECTED", "PENDING", True),
            ("PENDING", "VALIDATED", False),
            ("VALIDATED", "REJECTED", False),
            ("VALIDATED", "PENDING", False),
        ],
    )
    def test_payment_status_table(self, current, target, allowed):
        assert order_service.can_transition(order_service.PAYMENT_STATUS_TRANSITIONS, current, target) is allowed

    def test_terminal_states_have_no_exits(self):
        assert order_service.ORDER_STATUS_TRANSITIONS["COMPLETED"] == set()
        assert order_service.ORDER_STATUS_TRANSITIONS["CANCELLED"] == set()
        assert order_service.PAYMENT_STATUS_TRANSITIONS["VALIDATED"] == set()


class TestCreateOrder:

    def test_reserves_stock(self, customer, make_product):
        product = make_product("SKU-1", price_cents=1_500, stock=5)

        order = place_order(customer, ("product", product, 3))

        assert order.status == "PENDING"
        assert order.payment_status == "PENDING"
        assert order.subtotal_cents == 4_500
        assert order.total_cents == 4_500
        assert order.currency_code == "USD"
        assert re.match(r"^ORD-\d{8}-\d{5}$", order.order_number)
        assert [item.item_name for item in order.items] == ["Product SKU-1"]

        record = inventory_of(product)
        assert record.quantity == 5
        assert record.reserved_quantity == 3
        assert record.available_quantity == 2

    def test_totals_include_discount_shipping_tax(self, customer, make_product):
        product = make_product("SKU-1", price_cents=1_000, stock=5)
        order = place_order(
            customer, ("product", product, 2),
            discount_cents=300, shipping_cents=500, tax_cents=120, total_cents=2_320,
        )
        assert order.total_cents == 2_320

    def test_total_mismatch_rejected(self, db_session, customer, make_product):
        product = make_product("SKU-1", price_cents=1_000, stock=5)
        with pytest.raises(ValidationFailed):
            place_order(customer, ("product", product, 2), shipping_cents=500, total_cents=2_000)
        assert db_session.query(Order).count() == 0

    def test_subtotal_must_match_lines(self, db_session, customer, make_product):
        product = make_product("SKU-1", price_cents=1_000, stock=5)
        with pytest.raises(ValidationFailed):
            order_service.create_order(customer.id, _items(("product", product, 2)), "USD", 1_500)
        assert inventory_of(product).reserved_quantity == 0

    def test_insufficient_stock_persists_nothing(self, db_session, customer, make_product):
        plenty = make_product("SKU-A", stock=10)
        scarce = make_product("SKU-B", stock=1)

        with pytest.raises(InsufficientStock):
            place_order(customer, ("product", plenty, 4), ("product", scarce, 2))

        assert db_session.query(Order).count() == 0
        assert inventory_of(plenty).reserved_quantity == 0
        assert inventory_of(scarce).reserved_quantity == 0

    def test_bundle_reserves_constituents(self, customer, make_product, make_bundle):
        a = make_product("A", stock=10)
        b = make_product("B", stock=10)
        combo = make_bundle({a.id: 1, b.id: 3}, price_cents=4_000)

        place_order(customer, ("bundle", combo, 2), ("product", a, 1))

        assert inventory_of(a).reserved_quantity == 3
        assert inventory_of(b).reserved_quantity == 6

    def test_non_stocked_product_never_blocks(self, customer, make_product):
        gift_card = make_product("GIFT", price_cents=2_500)
        order = place_order(customer, ("product", gift_card, 40))
        assert order.items[0].inventory_record_id is None

    def test_unknown_product(self, customer):
        items = [{"item_type": "product", "item_id": 4242, "quantity": 1, "unit_price_cents": 100}]
        with pytest.raises(NotFound):
            order_service.create_order(customer.id, items, "USD", 100)

    def test_inactive_product(self, db_session, customer, make_product):
        product = make_product("OLD", stock=5)
        product.is_active = False
        db_session.commit()
        with pytest.raises(ValidationFailed):
            place_order(customer, ("product", product, 1))

    @pytest.mark.parametrize(
        "bad_line",
        [
            {"item_type": "product", "item_id": 1, "quantity": 0, "unit_price_cents": 100},
            {"item_type": "product", "item_id": 1, "quantity": 1, "unit_price_cents": -1},
            {"item_type": "service", "item_id": 1, "quantity": 1, "unit_price_cents": 100},
            {"item_type": "product", "item_id": 1, "quantity": 2, "unit_price_cents": 100, "total_price_cents": 150},
        ],
    )
    def test_invalid_lines(self, customer, bad_line):
        with pytest.raises(ValidationFailed):
            order_service.create_order(customer.id, [bad_line], "USD", 100)

    def test_empty_order(self, customer):
        with pytest.raises(ValidationFailed):
            order_service.create_order(customer.id, [], "USD", 0)

    def test_unknown_user(self, db_session, make_product):
        product = make_product("SKU-1", stock=5)
        items = _items(("product", product, 1))
        with pytest.raises(AuthenticationRequired):
            order_service.create_order(9_999, items, "USD", product.price_cents)

    def test_history_records_creation(self, customer, make_product):
        order = place_order(customer, ("product", make_product("SKU-1", stock=5), 1))
        history = order_service.get_order_history(order.id, customer.id)
        assert len(history) == 1
        assert history[0].previous_status is None
        assert history[0].new_status == "PENDING"


class TestPaymentReview:

    def test_validate_consumes_reservation(self, customer, admin, make_product):
        product = make_product("SKU-1", stock=5)

        order = paid_order(customer, admin, ("product", product, 3))

        assert order.payment_status == "VALIDATED"
        assert order.validated_by_user_id == admin.id
        assert order.validated_at is not None
        record = inventory_of(product)
        assert record.quantity == 2
        assert record.reserved_quantity == 0

    def test_second_validation_is_refused(self, customer, admin, make_product):
        product = make_product("SKU-1", stock=5)
        order = paid_order(customer, admin, ("product", product, 3))

        with pytest.raises(InvalidOperation):
            order_service.validate_payment(order.id, admin.id)

        record = inventory_of(product)
        assert record.quantity == 2
        assert record.reserved_quantity == 0

    def test_validate_requires_proof(self, customer, admin, make_product):
        order = place_order(customer, ("product", make_product("SKU-1", stock=5), 1))
        with pytest.raises(InvalidOperation):
            order_service.validate_payment(order.id, admin.id)

    def test_validate_requires_admin(self, customer, manager, make_product):
        order = place_order(customer, ("product", make_product("SKU-1", stock=5), 1))
        order_service.upload_payment_proof(order.id, customer.id, "receipt.png")
        with pytest.raises(AuthorizationFailed):
            order_service.validate_payment(order.id, manager.id)
        with pytest.raises(AuthorizationFailed):
            order_service.validate_payment(order.id, customer.id)

    def test_only_owner_uploads_proof(self, customer, other_customer, admin, make_product):
        order = place_order(customer, ("product", make_product("SKU-1", stock=5), 1))
        with pytest.raises(AuthorizationFailed):
            order_service.upload_payment_proof(order.id, other_customer.id, "receipt.png")
        with pytest.raises(AuthorizationFailed):
            order_service.upload_payment_proof(order.id, admin.id, "receipt.png")

    def test_proof_reference_required(self, customer, make_product):
        order = place_order(customer, ("product", make_product("SKU-1", stock=5), 1))
        with pytest.raises(ValidationFailed):
            order_service.upload_payment_proof(order.id, customer.id, "  ")

    def test_reject_releases_and_keeps_order_pending(self, customer, admin, make_product):
        product = make_product("SKU-1", stock=5)
        order = place_order(customer, ("product", product, 3))
        order_service.upload_payment_proof(order.id, customer.id, "receipt.png")

        order = order_service.reject_payment(order.id, admin.id, "Amount does not match")

        assert order.status == "PENDING"
        assert order.payment_status == "REJECTED"
        assert order.rejection_reason == "Amount does not match"
        assert inventory_of(product).reserved_quantity == 0

    def test_reject_requires_reason(self, customer, admin, make_product):
        order = place_order(customer, ("product", make_product("SKU-1", stock=5), 1))
        order_service.upload_payment_proof(order.id, customer.id, "receipt.png")
        with pytest.raises(ValidationFailed):
            order_service.reject_payment(order.id, admin.id, "")

    def test_retry_after_rejection_re_reserves(self, customer, admin, make_product):
        product = make_product("SKU-1", stock=5)
        order = place_order(customer, ("product", product, 3))
        order_service.upload_payment_proof(order.id, customer.id, "receipt.png")
        order_service.reject_payment(order.id, admin.id, "Blurry receipt")

        order = order_service.retry_payment(order.id, customer.id)
        assert order.payment_status == "PENDING"
        assert inventory_of(product).reserved_quantity == 3

        order_service.upload_payment_proof(order.id, customer.id, "receipt-2.png")
        order = order_service.validate_payment(order.id, admin.id)
        assert order.payment_status == "VALIDATED"
        assert inventory_of(product).quantity == 2

    def test_retry_fails_when_stock_was_sold_meanwhile(self, customer, other_customer, admin, make_product):
        product = make_product("SKU-1", stock=5)
        order = place_order(customer, ("product", product, 3))
        order_service.upload_payment_proof(order.id, customer.id, "receipt.png")
        order_service.reject_payment(order.id, admin.id, "Blurry receipt")
        place_order(other_customer, ("product", product, 4))

        with pytest.raises(InsufficientStock):
            order_service.retry_payment(order.id, customer.id)

        assert order_service.get_order(order.id, customer.id).payment_status == "REJECTED"
        assert inventory_of(product).reserved_quantity == 4

    def test_retry_requires_rejection(self, customer, make_product):
        order = place_order(customer, ("product", make_product("SKU-1", stock=5), 1))
        with pytest.raises(InvalidOperation):
            order_service.retry_payment(order.id, customer.id)

    def test_unknown_order(self, admin):
        with pytest.raises(NotFound):
            order_service.validate_payment(123_456, admin.id)

    def test_validation_queries_do_not_grow_with_order_size(
        self, customer, admin, make_product, make_bundle, count_selects, no_auto_assign
    ):
        products = [make_product(f"P{i}", stock=100) for i in range(8)]
        small_bundle = make_bundle({products[0].id: 1}, name="Small")
        big_bundles = [
            make_bundle({p.id: 1 for p in products[:4]}, name="Big A"),
            make_bundle({p.id: 2 for p in products[4:]}, name="Big B"),
        ]

        small = place_order(customer, ("bundle", small_bundle, 1))
        large = place_order(
            customer,
            *[("bundle", b, 2) for b in big_bundles],
            *[("product", p, 1) for p in products],
        )
        for order in (small, large):
            order_service.upload_payment_proof(order.id, customer.id, "receipt.png")

        with count_selects() as small_count:
            order_service.validate_payment(small.id, admin.id)
        with count_selects() as large_count:
            order_service.validate_payment(large.id, admin.id)

        assert large_count["selects"] == small_count["selects"]


class TestFulfillment:

    def test_full_lifecycle(self, customer, admin, make_product):
        order = paid_order(customer, admin, ("product", make_product("SKU-1", stock=5), 1))

        order = order_service.start_processing(order.id, admin.id)
        assert order.status == "PROCESSING"
        assert order.processing_started_at is not None
        assert order_service.get_days_in_processing(order) == 0

        order = order_service.mark_shipped(order.id, admin.id, tracking_info="TRACK-123")
        assert order.status == "SHIPPED"
        assert order.tracking_info == "TRACK-123"

        order = order_service.mark_delivered(order.id, admin.id, delivery_proof_ref="pod/1.jpg")
        assert order.status == "DELIVERED"
        assert order.delivered_at is not None

        order = order_service.complete_order(order.id, admin.id)
        assert order.status == "COMPLETED"
        assert order.completed_at is not None
        assert order_service.get_days_in_processing(order) is None

        history = order_service.get_order_history(order.id, admin.id)
        assert [h.new_status for h in history][-4:] == ["PROCESSING", "SHIPPED", "DELIVERED", "COMPLETED"]

    def test_delivered_cannot_skip_shipping(self, customer, admin, make_product):
        order = paid_order(customer, admin, ("product", make_product("SKU-1", stock=5), 1))
        order_service.start_processing(order.id, admin.id)

        with pytest.raises(InvalidOperation):
            order_service.mark_delivered(order.id, admin.id)

        assert order_service.get_order(order.id, admin.id).status == "PROCESSING"

    def test_processing_requires_validated_payment(self, customer, admin, make_product):
        order = place_order(customer, ("product", make_product("SKU-1", stock=5), 1))
        order_service.upload_payment_proof(order.id, customer.id, "receipt.png")
        with pytest.raises(InvalidOperation):
            order_service.start_processing(order.id, admin.id)

    def test_fulfillment_requires_admin(self, customer, admin, make_product):
        order = paid_order(customer, admin, ("product", make_product("SKU-1", stock=5), 1))
        with pytest.raises(AuthorizationFailed):
            order_service.start_processing(order.id, customer.id)


class TestCancelOrder:

    def test_cancel_pending_releases(self, customer, make_product):
        product = make_product("SKU-1", stock=5)
        order = place_order(customer, ("product", product, 3))

        order = order_service.cancel_order(order.id, customer.id, "Changed my mind")

        assert order.status == "CANCELLED"
        assert order.cancellation_reason == "Changed my mind"
        assert order.cancelled_by_user_id == customer.id
        assert inventory_of(product).reserved_quantity == 0

    def test_cancel_after_proof_releases(self, customer, admin, make_product):
        product = make_product("SKU-1", stock=5)
        order = place_order(customer, ("product", product, 2))
        order_service.upload_payment_proof(order.id, customer.id, "receipt.png")

        order_service.cancel_order(order.id, admin.id)

        assert inventory_of(product).reserved_quantity == 0

    def test_cancel_after_rejection_does_not_release_twice(self, customer, admin, make_product):
        product = make_product("SKU-1", stock=5)
        order = place_order(customer, ("product", product, 2))
        order_service.upload_payment_proof(order.id, customer.id, "receipt.png")
        order_service.reject_payment(order.id, admin.id, "No receipt")

        order_service.cancel_order(order.id, customer.id)

        record = inventory_of(product)
        assert record.reserved_quantity == 0
        assert record.quantity == 5

    def test_cancel_processing_does_not_restock(self, customer, admin, make_product):
        product = make_product("SKU-1", stock=5)
        order = paid_order(customer, admin, ("product", product, 2))
        order_service.start_processing(order.id, admin.id)

        order_service.cancel_order(order.id, admin.id)

        record = inventory_of(product)
        assert record.quantity == 3
        assert record.reserved_quantity == 0

    def test_cancel_shipped_refused(self, customer, admin, make_product):
        order = paid_order(customer, admin, ("product", make_product("SKU-1", stock=5), 1))
        order_service.start_processing(order.id, admin.id)
        order_service.mark_shipped(order.id, admin.id)

        with pytest.raises(InvalidOperation):
            order_service.cancel_order(order.id, admin.id)

    def test_cancel_twice_refused(self, customer, make_product):
        order = place_order(customer, ("product", make_product("SKU-1", stock=5), 1))
        order_service.cancel_order(order.id, customer.id)
        with pytest.raises(InvalidOperation):
            order_service.cancel_order(order.id, customer.id)

    def test_other_customer_cannot_cancel(self, customer, other_customer, make_product):
        order = place_order(customer, ("product", make_product("SKU-1", stock=5), 1))
        with pytest.raises(AuthorizationFailed):
            order_service.cancel_order(order.id, other_customer.id)

    def test_cancelled_order_refuses_payment_steps(self, customer, make_product):
        order = place_order(customer, ("product", make_product("SKU-1", stock=5), 1))
        order_service.cancel_order(order.id, customer.id)
        with pytest.raises(InvalidOperation):
            order_service.upload_payment_proof(order.id, customer.id, "receipt.png")


class TestCatalogChangesAfterCheckout:
    """Stock moves follow what the order reserved, not the current catalog."""

    def test_cancel_after_first_stock_receipt(self, customer, admin, make_product):
        product = make_product("SKU-LATE")
        order = place_order(customer, ("product", product, 2))
        inventory_service.receive_stock(product.id, 10, admin.id)

        order = order_service.cancel_order(order.id, customer.id)

        assert order.status == "CANCELLED"
        record = inventory_of(product)
        assert (record.quantity, record.reserved_quantity) == (10, 0)

    def test_validate_after_first_stock_receipt(self, customer, admin, make_product):
        product = make_product("SKU-LATE")
        order = place_order(customer, ("product", product, 2))
        inventory_service.receive_stock(product.id, 10, admin.id)
        order_service.upload_payment_proof(order.id, customer.id, "receipt.png")

        order = order_service.validate_payment(order.id, admin.id)

        assert order.payment_status == "VALIDATED"
        record = inventory_of(product)
        assert (record.quantity, record.reserved_quantity) == (10, 0)

    def test_reject_after_first_stock_receipt(self, customer, admin, make_product):
        stocked = make_product("SKU-1", stock=5)
        late = make_product("SKU-LATE")
        order = place_order(customer, ("product", stocked, 1), ("product", late, 3))
        inventory_service.receive_stock(late.id, 10, admin.id)
        order_service.upload_payment_proof(order.id, customer.id, "receipt.png")

        order_service.reject_payment(order.id, admin.id, "Blurry receipt")

        assert inventory_of(stocked).reserved_quantity == 0
        assert inventory_of(late).reserved_quantity == 0

    def test_bundle_component_added_after_checkout(self, db_session, customer, admin, make_product, make_bundle):
        original = make_product("A", stock=5)
        added = make_product("B", stock=5)
        combo = make_bundle({original.id: 1})
        order = place_order(customer, ("bundle", combo, 2))
        db_session.add(BundleItem(bundle_id=combo.id, product_id=added.id, quantity=1))
        db_session.commit()
        order_service.upload_payment_proof(order.id, customer.id, "receipt.png")

        order_service.validate_payment(order.id, admin.id)

        assert (inventory_of(original).quantity, inventory_of(original).reserved_quantity) == (3, 0)
        assert (inventory_of(added).quantity, inventory_of(added).reserved_quantity) == (5, 0)


class TestOrderNumbers:

    def test_number_taken_at_insert_is_redrawn(self, monkeypatch, customer, make_product):
        product = make_product("SKU-1", stock=10)
        first = place_order(customer, ("product", product, 1))
        numbers = iter([first.order_number, "ORD-20260101-00002"])
        monkeypatch.setattr(order_service, "generate_order_number", lambda: next(numbers))

        second = place_order(customer, ("product", product, 1))

        assert second.order_number == "ORD-20260101-00002"
        assert inventory_of(product).reserved_quantity == 2

    def test_persistent_collision_is_a_conflict(self, monkeypatch, db_session, customer, make_product):
        product = make_product("SKU-1", stock=10)
        first = place_order(customer, ("product", product, 1))
        taken = first.order_number
        monkeypatch.setattr(order_service, "generate_order_number", lambda: taken)

        with pytest.raises(DbError) as excinfo:
            place_order(customer, ("product", product, 1))

        assert excinfo.value.code == "DB_UNIQUE_VIOLATION"
        assert db_session.query(Order).count() == 1
        assert inventory_of(product).reserved_quantity == 1


class TestPaymentAccountLinking:

    def test_order_is_assigned_an_account(self, db_session, customer, make_product, make_account):
        account = make_account()
        product = make_product("SKU-1", price_cents=2_000, stock=5)

        order = place_order(customer, ("product", product, 2))

        assert order.payment_account_id == account.id
        tx = db_session.get(PaymentAccountTransaction, order.payment_account_transaction_id)
        assert tx.status == "pending"
        assert tx.reference_type == "order"
        assert tx.reference_id == order.id
        assert tx.amount_cents == 4_000
        assert account.current_daily_cents == 4_000

    def test_missing_account_does_not_block_checkout(self, customer, make_product):
        order = place_order(customer, ("product", make_product("SKU-1", stock=5), 1))
        assert order.payment_account_transaction_id is None

    def test_rejection_reverses_and_retry_reassigns(self, db_session, customer, admin, make_product, make_account):
        account = make_account()
        product = make_product("SKU-1", price_cents=2_000, stock=5)
        order = place_order(customer, ("product", product, 1))
        first_tx_id = order.payment_account_transaction_id
        order_service.upload_payment_proof(order.id, customer.id, "receipt.png")

        order_service.reject_payment(order.id, admin.id, "Wrong amount")
        assert db_session.get(PaymentAccountTransaction, first_tx_id).status == "rejected"
        assert account.current_daily_cents == 0

        order = order_service.retry_payment(order.id, customer.id)
        assert order.payment_account_transaction_id != first_tx_id
        assert account.current_daily_cents == 2_000

        order_service.upload_payment_proof(order.id, customer.id, "receipt-2.png")
        order = order_service.validate_payment(order.id, admin.id)
        tx = db_session.get(PaymentAccountTransaction, order.payment_account_transaction_id)
        assert tx.status == "validated"
        assert account.current_daily_cents == 2_000

    def test_cancel_rejects_pending_transaction(self, db_session, customer, make_product, make_account):
        account = make_account()
        order = place_order(customer, ("product", make_product("SKU-1", price_cents=2_000, stock=5), 1))

        order_service.cancel_order(order.id, customer.id)

        tx = db_session.get(PaymentAccountTransaction, order.payment_account_transaction_id)
        assert tx.status == "rejected"
        assert account.current_daily_cents == 0


class TestReads:

    def test_owner_and_admin_can_read(self, customer, other_customer, admin, make_product):
        order = place_order(customer, ("product", make_product("SKU-1", stock=5), 1))
        assert order_service.get_order(order.id, customer.id).id == order.id
        assert order_service.get_order(order.id, admin.id).id == order.id
        with pytest.raises(AuthorizationFailed):
            order_service.get_order(order.id, other_customer.id)

    def test_list_user_orders_filters(self, customer, other_customer, make_product):
        product = make_product("SKU-1", stock=20)
        first = place_order(customer, ("product", product, 1))
        second = place_order(customer, ("product", product, 1))
        place_order(other_customer, ("product", product, 1))
        order_service.cancel_order(first.id, customer.id)

        assert {o.id for o in order_service.list_user_orders(customer.id)} == {first.id, second.id}
        assert [o.id for o in order_service.list_user_orders(customer.id, status="PENDING")] == [second.id]

    def test_list_orders_admin_only(self, customer, admin, make_product):
        order = place_order(customer, ("product", make_product("SKU-1", stock=5), 1))
        assert [o.id for o in order_service.list_orders(admin.id, search=order.order_number)] == [order.id]
        with pytest.raises(AuthorizationFailed):
            order_service.list_orders(customer.id)

    def test_invalid_status_filter(self, customer):
        with pytest.raises(ValidationFailed):
            order_service.list_user_orders(customer.id, status="LOST")
