"""
Reporting tests: pending order count, order / remittance aggregates and
payment account usage.
"""

from datetime import datetime, timedelta

import pytest

from fulfillment.errors import ValidationFailed
from fulfillment.services import account_rotation_service, order_service, remittance_service, reporting_service
from fulfillment.time_utils import utcnow


def _order(user, product, qty=1):
    items = [{"item_type": "product", "item_id": product.id, "quantity": qty, "unit_price_cents": product.price_cents}]
    return order_service.create_order(user.id, items, "USD", product.price_cents * qty)


def _validated(user, admin, product, qty=1):
    order = _order(user, product, qty)
    order_service.upload_payment_proof(order.id, user.id, "receipt.png")
    return order_service.validate_payment(order.id, admin.id)


class TestOrderReports:

    def test_pending_orders_count(self, customer, admin, make_product):
        product = make_product("SKU-1", price_cents=1_000, stock=50)
        _order(customer, product)
        _order(customer, product)
        cancelled = _order(customer, product)
        order_service.cancel_order(cancelled.id, customer.id)
        processing = _validated(customer, admin, product)
        order_service.start_processing(processing.id, admin.id)

        assert reporting_service.get_pending_orders_count() == 2

    def test_order_stats(self, customer, admin, make_product):
        product = make_product("SKU-1", price_cents=1_000, stock=50)
        _order(customer, product)
        _validated(customer, admin, product, qty=2)
        _validated(customer, admin, product, qty=3)
        cancelled = _validated(customer, admin, product, qty=4)
        order_service.start_processing(cancelled.id, admin.id)
        order_service.cancel_order(cancelled.id, admin.id)

        stats = reporting_service.order_stats()

        assert stats["total"] == 4
        assert stats["by_status"]["PENDING"] == 3
        assert stats["by_status"]["CANCELLED"] == 1
        assert stats["by_status"]["SHIPPED"] == 0
        assert stats["by_payment_status"]["VALIDATED"] == 3
        assert stats["by_payment_status"]["PENDING"] == 1
        assert stats["validated_revenue_cents"] == 5_000

    def test_order_stats_date_range(self, customer, make_product):
        _order(customer, make_product("SKU-1", stock=5))
        future = (utcnow() + timedelta(days=1)).isoformat()
        assert reporting_service.order_stats(start=future)["total"] == 0
        assert reporting_service.order_stats(end=future)["total"] == 1

    @pytest.mark.parametrize(
        "start,end",
        [("yesterday", None), ("2026-02-01T00:00:00Z", "2026-01-01T00:00:00Z")],
    )
    def test_bad_range(self, db_session, start, end):
        with pytest.raises(ValidationFailed):
            reporting_service.order_stats(start, end)


class TestRemittanceReports:

    def test_remittance_stats(self, db_session, customer, admin, remittance_type):
        open_one = remittance_service.create_remittance(
            customer.id, remittance_type.id, 5_000, "Ana", "+53 5 111 2222"
        )
        done = remittance_service.create_remittance(
            customer.id, remittance_type.id, 20_000, "Luis", "+53 5 333 4444"
        )
        remittance_service.upload_payment_proof(done.id, customer.id, "r.png")
        remittance_service.validate_payment(done.id, admin.id)
        remittance_service.start_processing(done.id, admin.id)
        remittance_service.confirm_delivery(done.id, actor_id=admin.id)
        remittance_service.complete_remittance(done.id, admin.id)

        done.created_at = datetime(2026, 1, 1, 8, 0, 0)
        done.completed_at = datetime(2026, 1, 1, 18, 0, 0)
        db_session.commit()

        stats = reporting_service.remittance_stats()

        assert stats["total"] == 2
        assert stats["by_status"]["CREATED"] == 1
        assert stats["by_status"]["COMPLETED"] == 1
        assert stats["total_amount_cents"] == 25_000
        assert stats["completed_amount_cents"] == 20_000
        assert stats["avg_completion_hours"] == 10.0
        assert open_one.status == "CREATED"

    def test_empty(self, db_session):
        stats = reporting_service.remittance_stats()
        assert stats["total"] == 0
        assert stats["avg_completion_hours"] == 0.0


class TestAccountUsage:

    def test_usage_summary(self, db_session, make_account, admin):
        busy = make_account("Busy", daily_limit_cents=10_000, current_daily_cents=0, priority=1)
        make_account("Unlimited", daily_limit_cents=None, monthly_limit_cents=None, priority=2)
        first = account_rotation_service.register_transaction(busy.id, "product", "order", 1, 2_500)
        account_rotation_service.register_transaction(busy.id, "product", "order", 2, 1_500)
        db_session.commit()
        account_rotation_service.validate_transaction(first.id, admin.id)
        db_session.commit()

        summary = reporting_service.account_usage_summary()

        assert [row["account_name"] for row in summary] == ["Busy", "Unlimited"]
        busy_row = summary[0]
        assert busy_row["current_daily_cents"] == 4_000
        assert busy_row["daily_usage_pct"] == 40.0
        assert busy_row["validated"] == {"count": 1, "amount_cents": 2_500}
        assert busy_row["pending"] == {"count": 1, "amount_cents": 1_500}
        assert summary[1]["daily_usage_pct"] is None
