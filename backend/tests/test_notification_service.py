"""Notification dispatch tests: handlers run after commit and never break a transition."""

import logging

import pytest

from fulfillment.errors import InsufficientStock
from fulfillment.services import notification_service, order_service


@pytest.fixture
def captured(app):
    """Replace the app's notifiers with a recording handler for one test."""
    events = []
    original = app.extensions.get(notification_service.NOTIFIERS_KEY)
    app.extensions[notification_service.NOTIFIERS_KEY] = []
    notification_service.register_notifier(app, lambda event, payload: events.append((event, payload)))
    yield events
    app.extensions[notification_service.NOTIFIERS_KEY] = original


class TestNotify:

    def test_handlers_receive_event_and_payload(self, db_session, captured):
        assert notification_service.notify("order.created", order_id=5) == 1
        assert captured == [("order.created", {"order_id": 5})]

    def test_failing_handler_is_skipped(self, app, db_session, captured, caplog):
        def _broken(event, payload):
            raise ConnectionError("smtp down")

        notification_service.register_notifier(app, _broken)

        with caplog.at_level(logging.WARNING):
            delivered = notification_service.notify("order.cancelled", order_id=9)

        assert delivered == 1
        assert captured == [("order.cancelled", {"order_id": 9})]
        assert "smtp down" in caplog.text

    def test_default_log_notifier(self, db_session, caplog):
        with caplog.at_level(logging.INFO):
            notification_service.notify("remittance.created", remittance_id=3)
        assert "remittance.created" in caplog.text

    def test_transitions_emit_events(self, customer, make_product, captured):
        product = make_product("SKU-1", stock=5)
        items = [{"item_type": "product", "item_id": product.id, "quantity": 1, "unit_price_cents": product.price_cents}]

        order = order_service.create_order(customer.id, items, "USD", product.price_cents)
        order_service.cancel_order(order.id, customer.id, "duplicate")

        assert [event for event, _ in captured] == ["order.created", "order.cancelled"]
        assert captured[1][1]["reason"] == "duplicate"

    def test_failed_operation_emits_nothing(self, customer, make_product, captured):
        product = make_product("SKU-1", stock=1)
        items = [{"item_type": "product", "item_id": product.id, "quantity": 2, "unit_price_cents": product.price_cents}]

        with pytest.raises(InsufficientStock):
            order_service.create_order(customer.id, items, "USD", product.price_cents * 2)

        assert captured == []
