"""
Stale order sweep tests.

PENDING orders whose payment is still PENDING after STALE_ORDER_HOURS are
cancelled and their reservations released; orders waiting on review are kept.
The wait restarts when a rejected payment is retried.
"""

from datetime import timedelta

from conftest import inventory_of
from fulfillment.services import inventory_service, maintenance_service, order_service
from fulfillment.time_utils import utcnow


def _order(user, product, qty):
    items = [{"item_type": "product", "item_id": product.id, "quantity": qty, "unit_price_cents": product.price_cents}]
    return order_service.create_order(user.id, items, "USD", product.price_cents * qty)


def _age(db_session, order, hours):
    order.created_at = utcnow() - timedelta(hours=hours)
    order.payment_pending_since = order.created_at
    db_session.commit()


class TestCancelStalePendingOrders:

    def test_releases_abandoned_orders(self, db_session, customer, make_product):
        product = make_product("SKU-1", stock=10)
        abandoned = _order(customer, product, 3)
        fresh = _order(customer, product, 2)
        _age(db_session, abandoned, 100)

        assert maintenance_service.cancel_stale_pending_orders() == 1

        assert order_service.get_order(abandoned.id, customer.id).status == "CANCELLED"
        assert order_service.get_order(fresh.id, customer.id).status == "PENDING"
        assert inventory_of(product).reserved_quantity == 2

    def test_orders_awaiting_review_are_kept(self, db_session, customer, make_product):
        product = make_product("SKU-1", stock=10)
        waiting = _order(customer, product, 3)
        order_service.upload_payment_proof(waiting.id, customer.id, "receipt.png")
        _age(db_session, waiting, 100)

        assert maintenance_service.cancel_stale_pending_orders() == 0
        assert inventory_of(product).reserved_quantity == 3

    def test_custom_threshold(self, db_session, customer, make_product):
        product = make_product("SKU-1", stock=10)
        order = _order(customer, product, 1)
        _age(db_session, order, 5)

        assert maintenance_service.cancel_stale_pending_orders() == 0
        assert maintenance_service.cancel_stale_pending_orders(hours=4) == 1
        assert maintenance_service.cancel_stale_pending_orders(hours=4) == 0

    def test_cancellation_reason_and_history(self, db_session, customer, make_product):
        order = _order(customer, make_product("SKU-1", stock=10), 1)
        _age(db_session, order, 100)

        maintenance_service.cancel_stale_pending_orders(hours=72)

        order = order_service.get_order(order.id, customer.id)
        assert order.cancellation_reason == "Payment not received within 72 hours"
        assert order.cancelled_by_user_id is None
        history = order_service.get_order_history(order.id, customer.id)
        assert history[-1].new_status == "CANCELLED"

    def test_retried_payment_restarts_the_wait(self, db_session, customer, admin, make_product):
        product = make_product("SKU-1", stock=10)
        order = _order(customer, product, 2)
        order_service.upload_payment_proof(order.id, customer.id, "receipt.png")
        order_service.reject_payment(order.id, admin.id, "Amount does not match")
        order.created_at = utcnow() - timedelta(hours=100)
        db_session.commit()

        order_service.retry_payment(order.id, customer.id)

        assert maintenance_service.cancel_stale_pending_orders() == 0
        assert inventory_of(product).reserved_quantity == 2

        _age(db_session, order, 100)
        assert maintenance_service.cancel_stale_pending_orders() == 1
        assert inventory_of(product).reserved_quantity == 0

    def test_sweeps_orders_whose_product_was_stocked_later(self, db_session, customer, admin, make_product):
        product = make_product("SKU-LATE")
        order = _order(customer, product, 2)
        inventory_service.receive_stock(product.id, 10, admin.id)
        _age(db_session, order, 100)

        assert maintenance_service.cancel_stale_pending_orders() == 1

        assert order_service.get_order(order.id, customer.id).status == "CANCELLED"
        record = inventory_of(product)
        assert (record.quantity, record.reserved_quantity) == (10, 0)
