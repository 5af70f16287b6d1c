"""
Account rotation tests.

Verifies:
- accounts that would exceed a limit are never selected
- priority, then least recently used, then id decides among eligible accounts
- the per-transaction security limit fails closed
- register-then-reject restores the running totals
- lazy and scheduled counter resets are idempotent
- account administration is admin-only and keeps totals within limits
"""

from datetime import datetime, timedelta

import pytest

from fulfillment.errors import (
    AuthorizationFailed,
    InvalidOperation,
    NotFound,
    ServiceUnavailable,
    ValidationFailed,
)
from fulfillment.models import PaymentAccountTransaction
from fulfillment.services import account_rotation_service as rotation
from fulfillment.time_utils import utctoday


class TestSelectAccount:

    def test_account_near_daily_limit_is_skipped(self, make_account):
        near_limit = make_account("Near", daily_limit_cents=10_000, current_daily_cents=9_000, priority=1)
        roomy = make_account("Roomy", daily_limit_cents=20_000, current_daily_cents=0, priority=2)

        selected = rotation.select_account("product", 2_000)

        assert selected.id == roomy.id
        assert selected.id != near_limit.id

    def test_exact_fit_is_eligible(self, make_account):
        account = make_account("Exact", daily_limit_cents=10_000, current_daily_cents=8_000)
        assert rotation.select_account("product", 2_000).id == account.id

    def test_monthly_limit_is_checked(self, make_account):
        make_account("Monthly full", monthly_limit_cents=50_000, current_monthly_cents=49_000, priority=1)
        other = make_account("Other", priority=5)
        assert rotation.select_account("product", 2_000).id == other.id

    def test_security_limit_fails_closed(self, make_account):
        make_account("A", security_limit_cents=5_000)
        make_account("B", security_limit_cents=5_000)

        with pytest.raises(ServiceUnavailable) as excinfo:
            rotation.select_account("product", 6_000)
        assert excinfo.value.context["candidates"] == 2

    def test_null_limits_are_unlimited(self, make_account):
        account = make_account(
            "Unlimited", daily_limit_cents=None, monthly_limit_cents=None, security_limit_cents=None
        )
        assert rotation.select_account("product", 500_000_000).id == account.id

    def test_lowest_priority_value_wins(self, make_account):
        make_account("Later", priority=10)
        first = make_account("First", priority=1)
        assert rotation.select_account("product", 1_000).id == first.id

    def test_never_used_before_least_recently_used(self, make_account):
        now = datetime(2026, 1, 1, 12, 0, 0)
        make_account("Recent", last_used_at=now)
        make_account("Older", last_used_at=now - timedelta(hours=3))
        fresh = make_account("Fresh", last_used_at=None)
        assert rotation.select_account("product", 1_000).id == fresh.id

    def test_least_recently_used_then_id(self, make_account):
        now = datetime(2026, 1, 1, 12, 0, 0)
        make_account("Recent", last_used_at=now)
        older_a = make_account("Older A", last_used_at=now - timedelta(hours=3))
        make_account("Older B", last_used_at=now - timedelta(hours=3))
        assert rotation.select_account("product", 1_000).id == older_a.id

    def test_type_class_flags_and_inactive_accounts(self, make_account):
        make_account("Products only", for_remittances=False, priority=1)
        make_account("Inactive", is_active=False, priority=1)
        remittances = make_account("Remittances", for_products=False, priority=5)
        assert rotation.select_account("remittance", 1_000).id == remittances.id

    def test_no_accounts(self, db_session):
        with pytest.raises(ServiceUnavailable):
            rotation.select_account("product", 1_000)

    @pytest.mark.parametrize("type_class,amount", [("gift", 1_000), ("product", 0), ("product", -5)])
    def test_invalid_input(self, make_account, type_class, amount):
        make_account()
        with pytest.raises(ValidationFailed):
            rotation.select_account(type_class, amount)

    def test_due_daily_reset_applied_before_selection(self, db_session, make_account):
        yesterday = utctoday() - timedelta(days=1)
        account = make_account(
            "Full yesterday",
            daily_limit_cents=10_000,
            current_daily_cents=10_000,
            last_reset_date=yesterday,
        )

        assert rotation.select_account("product", 5_000).id == account.id
        db_session.commit()
        assert account.current_daily_cents == 0
        assert account.last_reset_date == utctoday()

    def test_missing_reset_date_is_stamped_without_zeroing(self, db_session, make_account):
        account = make_account("Fresh", current_daily_cents=3_000, last_reset_date=None)
        rotation.select_account("product", 1_000)
        db_session.commit()
        assert account.last_reset_date == utctoday()
        assert account.current_daily_cents == 3_000


class TestRegisterAndReject:

    def test_register_increments_totals(self, db_session, make_account):
        account = make_account(daily_limit_cents=50_000)

        tx = rotation.register_transaction(account.id, "product", "order", 11, 2_000)
        db_session.commit()

        assert tx.status == "pending"
        assert tx.counters_applied is True
        assert tx.amount_cents == 2_000
        assert account.current_daily_cents == 2_000
        assert account.current_monthly_cents == 2_000
        assert account.last_used_at is not None

    def test_register_then_reject_restores_totals(self, db_session, make_account):
        account = make_account(current_daily_cents=1_500, current_monthly_cents=7_500)

        tx = rotation.register_transaction(account.id, "remittance", "remittance", 3, 10_700)
        db_session.commit()
        assert account.current_daily_cents == 12_200

        rotation.reject_transaction(tx.id, None, "wrong amount")
        db_session.commit()

        assert tx.status == "rejected"
        assert tx.notes == "wrong amount"
        assert account.current_daily_cents == 1_500
        assert account.current_monthly_cents == 7_500

    def test_validate_keeps_totals(self, db_session, make_account, admin):
        account = make_account()
        tx = rotation.register_transaction(account.id, "product", "order", 1, 4_000)
        db_session.commit()

        rotation.validate_transaction(tx.id, admin.id)
        db_session.commit()

        assert tx.status == "validated"
        assert tx.validated_by_user_id == admin.id
        assert tx.validated_at is not None
        assert account.current_daily_cents == 4_000

    def test_settled_transaction_cannot_be_settled_again(self, db_session, make_account):
        account = make_account()
        tx = rotation.register_transaction(account.id, "product", "order", 1, 4_000)
        db_session.commit()
        rotation.reject_transaction(tx.id, None)
        db_session.commit()

        with pytest.raises(InvalidOperation):
            rotation.reject_transaction(tx.id, None)
        with pytest.raises(InvalidOperation):
            rotation.validate_transaction(tx.id, None)

    def test_register_rechecks_limits_on_the_locked_row(self, db_session, make_account):
        account = make_account(daily_limit_cents=10_000, current_daily_cents=9_000)

        with pytest.raises(ServiceUnavailable) as excinfo:
            rotation.register_transaction(account.id, "product", "order", 1, 2_000)
        db_session.rollback()

        assert excinfo.value.context["limit"] == "daily_limit"
        assert account.current_daily_cents == 9_000
        assert db_session.query(PaymentAccountTransaction).count() == 0

    def test_register_on_unknown_account(self, db_session):
        with pytest.raises(NotFound):
            rotation.register_transaction(999, "product", "order", 1, 1_000)

    def test_register_on_account_not_accepting_type(self, make_account):
        account = make_account(for_products=False)
        with pytest.raises(ServiceUnavailable):
            rotation.register_transaction(account.id, "product", "order", 1, 1_000)

    def test_exhausting_the_pool(self, db_session, make_account):
        first = make_account("First", daily_limit_cents=5_000, priority=1)
        second = make_account("Second", daily_limit_cents=5_000, priority=2)

        used = []
        for reference_id in range(1, 5):
            tx = rotation.assign_account("product", "order", reference_id, 2_500)
            db_session.commit()
            used.append(tx.payment_account_id)

        assert used == [first.id, first.id, second.id, second.id]
        with pytest.raises(ServiceUnavailable):
            rotation.assign_account("product", "order", 99, 2_500)
        db_session.rollback()

        for account in (first, second):
            assert account.current_daily_cents <= account.daily_limit_cents

    def test_reject_after_daily_reset_does_not_go_negative(self, db_session, make_account):
        account = make_account(current_daily_cents=0, current_monthly_cents=0)
        tx = rotation.register_transaction(account.id, "product", "order", 1, 3_000)
        db_session.commit()

        tomorrow = utctoday() + timedelta(days=1)
        assert rotation.reset_daily_counters(tomorrow) == 1
        assert account.current_daily_cents == 0

        rotation.reject_transaction(tx.id, None)
        db_session.commit()

        assert account.current_daily_cents == 0
        assert account.current_monthly_cents == 0

    def test_find_pending_transaction(self, db_session, make_account):
        account = make_account()
        tx = rotation.register_transaction(account.id, "product", "order", 42, 1_000)
        db_session.commit()

        assert rotation.find_pending_transaction("order", 42).id == tx.id
        rotation.reject_transaction(tx.id, None)
        db_session.commit()
        assert rotation.find_pending_transaction("order", 42) is None


class TestCounterResets:

    def test_daily_reset_is_idempotent(self, db_session, make_account):
        yesterday = utctoday() - timedelta(days=1)
        account = make_account(current_daily_cents=4_000, current_monthly_cents=4_000, last_reset_date=yesterday)

        assert rotation.reset_daily_counters() == 1
        assert rotation.reset_daily_counters() == 0

        assert account.current_daily_cents == 0
        assert account.current_monthly_cents == 4_000

    def test_monthly_reset_only_crosses_month_boundaries(self, db_session, make_account):
        today = utctoday()
        last_month = (today.replace(day=1) - timedelta(days=1))
        stale = make_account("Stale", current_monthly_cents=9_000, last_monthly_reset_date=last_month)
        current = make_account("Current", current_monthly_cents=5_000)

        assert rotation.reset_monthly_counters(today) == 1
        assert rotation.reset_monthly_counters(today) == 0

        assert stale.current_monthly_cents == 0
        assert stale.last_monthly_reset_date == today
        assert current.current_monthly_cents == 5_000

    def test_manual_reset(self, db_session, make_account, admin):
        account = make_account(current_daily_cents=1_000, current_monthly_cents=2_000)
        rotation.reset_account_counters(account.id, "all", admin.id)
        assert account.current_daily_cents == 0
        assert account.current_monthly_cents == 0

    def test_manual_reset_requires_admin(self, make_account, customer):
        account = make_account(current_daily_cents=1_000)
        with pytest.raises(AuthorizationFailed):
            rotation.reset_account_counters(account.id, "daily", customer.id)

    def test_manual_reset_period_validated(self, make_account, admin):
        account = make_account()
        with pytest.raises(ValidationFailed):
            rotation.reset_account_counters(account.id, "weekly", admin.id)


class TestAccountAdministration:

    def test_create_account(self, admin):
        account = rotation.create_account(
            admin.id,
            account_name="Zelle Main",
            account_holder="Ana Gomez",
            email="ana@example.com",
            daily_limit_cents=200_000,
            monthly_limit_cents=2_000_000,
            priority=1,
        )
        assert account.id is not None
        assert account.current_daily_cents == 0
        assert account.last_reset_date == utctoday()

    def test_create_requires_admin(self, customer):
        with pytest.raises(AuthorizationFailed):
            rotation.create_account(customer.id, account_name="X", account_holder="Y")

    def test_monthly_limit_below_daily_rejected(self, admin):
        with pytest.raises(ValidationFailed):
            rotation.create_account(
                admin.id,
                account_name="X",
                account_holder="Y",
                daily_limit_cents=10_000,
                monthly_limit_cents=5_000,
            )

    def test_limit_below_current_total_rejected(self, db_session, make_account, admin):
        account = make_account(current_daily_cents=8_000)
        with pytest.raises(ValidationFailed):
            rotation.update_account(account.id, admin.id, daily_limit_cents=5_000)
        db_session.rollback()
        assert account.daily_limit_cents == 1_000_000

    def test_deactivated_account_is_not_selected(self, make_account, admin):
        first = make_account("First", priority=1)
        second = make_account("Second", priority=2)
        rotation.deactivate_account(first.id, admin.id)
        assert rotation.select_account("product", 1_000).id == second.id

    def test_list_accounts_by_type(self, make_account, admin):
        make_account("Products", for_remittances=False)
        remittances = make_account("Remittances", for_products=False)
        listed = rotation.list_accounts(admin.id, type_class="remittance")
        assert [a.id for a in listed] == [remittances.id]

    def test_transactions_and_stats(self, db_session, make_account, admin):
        account = make_account()
        first = rotation.register_transaction(account.id, "product", "order", 1, 1_000)
        rotation.register_transaction(account.id, "remittance", "remittance", 2, 2_500)
        db_session.commit()
        rotation.reject_transaction(first.id, admin.id)
        db_session.commit()

        txs = rotation.get_account_transactions(admin.id, account_id=account.id)
        assert len(txs) == 2

        stats = rotation.get_account_stats(admin.id, account.id)
        assert stats["total_count"] == 2
        assert stats["total_amount_cents"] == 3_500
        assert stats["by_status"]["rejected"] == {"count": 1, "amount_cents": 1_000}
        assert stats["by_status"]["pending"] == {"count": 1, "amount_cents": 2_500}
        assert stats["by_type"]["remittance"]["amount_cents"] == 2_500

    def test_stats_require_admin(self, customer):
        with pytest.raises(AuthorizationFailed):
            rotation.get_account_stats(customer.id)
