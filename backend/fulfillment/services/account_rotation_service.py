# Overview: Rotation pool of payment-receiving accounts: selection, usage counters and administration.

"""
Account Rotation Invariants

Eligibility for a request of amount A and type class T, checked in order:
1. account is active and accepts T (for_products / for_remittances)
2. A <= security_limit_cents           (per-transaction cap)
3. current_daily_cents + A <= daily_limit_cents
4. current_monthly_cents + A <= monthly_limit_cents
A NULL limit means unlimited. There is no widening: a request above every
account's security limit fails even if it fits the daily limits.

Tie-break among eligible accounts: priority ASC, last_used_at ASC (never used
first), id ASC.

Running totals:
- mutated ONLY in this module (register / reject / reset)
- never exceed their limits after a registration: register re-checks the limits
  on the locked row, a race over-draft raises ServiceUnavailable, never clamps
- register-then-reject restores the totals exactly, unless a period reset
  zeroed them in between (then there is nothing to reverse)

Resets are lazy (applied before every selection / registration) and idempotent;
the CLI exposes them for scheduled runs.
"""

from __future__ import annotations

from datetime import date, datetime

from flask import current_app
from sqlalchemy import func, or_

from ..errors import InvalidOperation, NotFound, ServiceUnavailable, ValidationFailed, run_non_critical
from ..extensions import db
from ..models import PaymentAccount, PaymentAccountTransaction
from ..time_utils import utcnow, utctoday
from .authorization import verify_admin_role
from .concurrency import lock_for_update, run_with_retry

TYPE_CLASSES = ("product", "remittance")
REFERENCE_TYPES = ("order", "remittance")
TRANSACTION_STATUSES = ("pending", "validated", "rejected")


def _type_flag(type_class: str):
    if type_class == "product":
        return PaymentAccount.for_products
    if type_class == "remittance":
        return PaymentAccount.for_remittances
    raise ValidationFailed(
        "Invalid payment type class",
        context={"type_class": type_class, "allowed": list(TYPE_CLASSES)},
    )


def _accepts(account: PaymentAccount, type_class: str) -> bool:
    if not account.is_active:
        return False
    return bool(account.for_products if type_class == "product" else account.for_remittances)


def _limit_violation(account: PaymentAccount, amount_cents: int) -> str | None:
    """Name of the first limit the amount would break, or None when it fits."""
    if account.security_limit_cents is not None and amount_cents > account.security_limit_cents:
        return "security_limit"
    if (
        account.daily_limit_cents is not None
        and (account.current_daily_cents or 0) + amount_cents > account.daily_limit_cents
    ):
        return "daily_limit"
    if (
        account.monthly_limit_cents is not None
        and (account.current_monthly_cents or 0) + amount_cents > account.monthly_limit_cents
    ):
        return "monthly_limit"
    return None


def _month_key(d: date) -> tuple[int, int]:
    return (d.year, d.month)


def _apply_daily_reset(account: PaymentAccount, today: date) -> bool:
    if account.last_reset_date is None:
        # No baseline yet: start counting from today without discarding usage.
        account.last_reset_date = today
        return False
    if account.last_reset_date < today:
        account.current_daily_cents = 0
        account.last_reset_date = today
        return True
    return False


def _apply_monthly_reset(account: PaymentAccount, today: date) -> bool:
    if account.last_monthly_reset_date is None:
        account.last_monthly_reset_date = today
        return False
    if _month_key(account.last_monthly_reset_date) < _month_key(today):
        account.current_monthly_cents = 0
        account.last_monthly_reset_date = today
        return True
    return False


def _apply_due_resets(accounts, today: date) -> None:
    for account in accounts:
        _apply_daily_reset(account, today)
        _apply_monthly_reset(account, today)


def _validate_amount(amount_cents) -> int:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationFailed("amount_cents must be a positive integer", context={"amount_cents": amount_cents})
    return amount_cents


# =============================================================================
# SELECTION / REGISTRATION
# =============================================================================

def select_account(type_class: str, amount_cents: int) -> PaymentAccount:
    """
    Pick the account that should receive a payment.

    Runs inside the caller's transaction (flushes, never commits).

    Raises:
        ValidationFailed: unknown type_class or non-positive amount
        ServiceUnavailable: no active account can take the amount
    """
    flag = _type_flag(type_class)
    _validate_amount(amount_cents)

    candidates = (
        db.session.query(PaymentAccount)
        .filter(PaymentAccount.is_active.is_(True), flag.is_(True))
        .all()
    )
    _apply_due_resets(candidates, utctoday())

    eligible = [a for a in candidates if _limit_violation(a, amount_cents) is None]
    if not eligible:
        raise ServiceUnavailable(
            "No payment account available for this amount",
            context={"type_class": type_class, "amount_cents": amount_cents, "candidates": len(candidates)},
        )

    eligible.sort(
        key=lambda a: (
            a.priority,
            a.last_used_at is not None,
            a.last_used_at or datetime.min,
            a.id,
        )
    )
    db.session.flush()
    return eligible[0]


def register_transaction(
    account_id: int,
    type_class: str,
    reference_type: str,
    reference_id: int,
    amount_cents: int,
    notes: str | None = None,
) -> PaymentAccountTransaction:
    """
    Record a pending payment on an account and bump its running totals.

    Runs inside the caller's transaction. The counter increment is a
    non-critical step: if it fails the transaction row still exists with
    counters_applied=False and rejection will not reverse anything.
    """
    _type_flag(type_class)
    _validate_amount(amount_cents)
    if reference_type not in REFERENCE_TYPES:
        raise ValidationFailed("Invalid reference_type", context={"reference_type": reference_type})

    account = lock_for_update(
        db.session.query(PaymentAccount).filter(PaymentAccount.id == account_id)
    ).first()
    if account is None:
        raise NotFound("Payment account not found", context={"payment_account_id": account_id})
    if not _accepts(account, type_class):
        raise ServiceUnavailable(
            "Payment account does not accept this payment type",
            context={"payment_account_id": account_id, "type_class": type_class},
        )

    _apply_due_resets([account], utctoday())
    violation = _limit_violation(account, amount_cents)
    if violation:
        raise ServiceUnavailable(
            "Payment account limit would be exceeded",
            context={"payment_account_id": account_id, "limit": violation, "amount_cents": amount_cents},
        )

    tx = PaymentAccountTransaction(
        payment_account_id=account.id,
        transaction_type=type_class,
        reference_type=reference_type,
        reference_id=reference_id,
        amount_cents=amount_cents,
        status="pending",
        counters_applied=False,
        notes=notes,
        created_at=utcnow(),
    )
    db.session.add(tx)
    db.session.flush()

    def _apply_counters():
        account.current_daily_cents = (account.current_daily_cents or 0) + amount_cents
        account.current_monthly_cents = (account.current_monthly_cents or 0) + amount_cents
        account.last_used_at = utcnow()
        tx.counters_applied = True
        db.session.flush()
        return True

    run_non_critical(
        _apply_counters,
        {"step": "apply_account_counters", "payment_account_id": account.id, "transaction_id": tx.id},
    )
    return tx


def assign_account(
    type_class: str,
    reference_type: str,
    reference_id: int,
    amount_cents: int,
    notes: str | None = None,
) -> PaymentAccountTransaction:
    """select_account() + register_transaction(), inside the caller's transaction."""
    account = select_account(type_class, amount_cents)
    return register_transaction(account.id, type_class, reference_type, reference_id, amount_cents, notes)


def _get_transaction_for_update(tx_id: int) -> PaymentAccountTransaction:
    tx = lock_for_update(
        db.session.query(PaymentAccountTransaction).filter(PaymentAccountTransaction.id == tx_id)
    ).first()
    if tx is None:
        raise NotFound("Payment account transaction not found", context={"transaction_id": tx_id})
    return tx


def validate_transaction(tx_id: int, actor_id: int | None) -> PaymentAccountTransaction:
    """pending -> validated. Counters already hold the amount; nothing changes there."""
    tx = _get_transaction_for_update(tx_id)
    if tx.status != "pending":
        raise InvalidOperation(
            f"Cannot validate a {tx.status} account transaction",
            context={"transaction_id": tx_id, "status": tx.status},
        )
    tx.status = "validated"
    tx.validated_by_user_id = actor_id
    tx.validated_at = utcnow()
    db.session.flush()
    return tx


def reject_transaction(tx_id: int, actor_id: int | None, reason: str | None = None) -> PaymentAccountTransaction:
    """
    pending -> rejected, reversing the increment made at registration.

    A counter is reversed only when the increment was applied and the counter
    has not been reset since the transaction was registered.
    """
    tx = _get_transaction_for_update(tx_id)
    if tx.status != "pending":
        raise InvalidOperation(
            f"Cannot reject a {tx.status} account transaction",
            context={"transaction_id": tx_id, "status": tx.status},
        )

    tx.status = "rejected"
    tx.validated_by_user_id = actor_id
    tx.validated_at = utcnow()
    if reason:
        tx.notes = reason
    db.session.flush()

    if tx.counters_applied:
        account = lock_for_update(
            db.session.query(PaymentAccount).filter(PaymentAccount.id == tx.payment_account_id)
        ).first()
        registered_on = (tx.created_at or utcnow()).date()

        def _reverse_counters():
            amount = tx.amount_cents
            if (
                (account.last_reset_date is None or registered_on >= account.last_reset_date)
                and (account.current_daily_cents or 0) >= amount
            ):
                account.current_daily_cents -= amount
            if (
                (
                    account.last_monthly_reset_date is None
                    or _month_key(registered_on) >= _month_key(account.last_monthly_reset_date)
                )
                and (account.current_monthly_cents or 0) >= amount
            ):
                account.current_monthly_cents -= amount
            db.session.flush()
            return True

        if account is not None:
            run_non_critical(
                _reverse_counters,
                {"step": "reverse_account_counters", "payment_account_id": account.id, "transaction_id": tx.id},
            )
    return tx


def find_pending_transaction(reference_type: str, reference_id: int) -> PaymentAccountTransaction | None:
    return (
        db.session.query(PaymentAccountTransaction)
        .filter(
            PaymentAccountTransaction.reference_type == reference_type,
            PaymentAccountTransaction.reference_id == reference_id,
            PaymentAccountTransaction.status == "pending",
        )
        .order_by(PaymentAccountTransaction.id.desc())
        .first()
    )


# =============================================================================
# COUNTER RESETS
# =============================================================================

def reset_daily_counters(today: date | None = None) -> int:
    """Zero daily totals whose last reset is before today. Returns accounts reset."""
    today = today or utctoday()

    def _op():
        accounts = (
            db.session.query(PaymentAccount)
            .filter(or_(PaymentAccount.last_reset_date.is_(None), PaymentAccount.last_reset_date < today))
            .all()
        )
        count = sum(1 for account in accounts if _apply_daily_reset(account, today))
        db.session.commit()
        return count

    count = run_with_retry(_op, operation="reset_daily_counters", context={"today": today.isoformat()})
    current_app.logger.info("Daily payment account counters reset: %d accounts (%s)", count, today)
    return count


def reset_monthly_counters(today: date | None = None) -> int:
    """Zero monthly totals last reset in an earlier month. Returns accounts reset."""
    today = today or utctoday()

    def _op():
        accounts = db.session.query(PaymentAccount).all()
        count = sum(1 for account in accounts if _apply_monthly_reset(account, today))
        db.session.commit()
        return count

    count = run_with_retry(_op, operation="reset_monthly_counters", context={"today": today.isoformat()})
    current_app.logger.info("Monthly payment account counters reset: %d accounts (%s)", count, today)
    return count


def reset_account_counters(account_id: int, period: str, actor_id: int) -> PaymentAccount:
    """Manual admin reset of one account. period: daily | monthly | all."""
    if period not in ("daily", "monthly", "all"):
        raise ValidationFailed("period must be daily, monthly or all", context={"period": period})

    def _op():
        verify_admin_role(actor_id)
        account = lock_for_update(
            db.session.query(PaymentAccount).filter(PaymentAccount.id == account_id)
        ).first()
        if account is None:
            raise NotFound("Payment account not found", context={"payment_account_id": account_id})
        today = utctoday()
        if period in ("daily", "all"):
            account.current_daily_cents = 0
            account.last_reset_date = today
        if period in ("monthly", "all"):
            account.current_monthly_cents = 0
            account.last_monthly_reset_date = today
        db.session.commit()
        return account

    account = run_with_retry(
        _op,
        operation="reset_account_counters",
        context={"payment_account_id": account_id, "period": period},
    )
    current_app.logger.info("Payment account %s counters reset (%s) by user %s", account_id, period, actor_id)
    return account


# =============================================================================
# ADMINISTRATION
# =============================================================================

_ACCOUNT_FIELDS = (
    "account_name",
    "email",
    "phone",
    "bank_name",
    "account_holder",
    "is_active",
    "for_products",
    "for_remittances",
    "daily_limit_cents",
    "monthly_limit_cents",
    "security_limit_cents",
    "priority",
)

_LIMIT_FIELDS = ("daily_limit_cents", "monthly_limit_cents", "security_limit_cents")


def _validate_account_fields(values: dict, account: PaymentAccount | None = None) -> None:
    for required in ("account_name", "account_holder"):
        value = values.get(required)
        if not isinstance(value, str) or not value.strip():
            raise ValidationFailed(f"{required} is required")

    for field in _LIMIT_FIELDS:
        value = values.get(field)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationFailed(f"{field} must be a positive integer or null", context={field: value})

    daily = values.get("daily_limit_cents")
    monthly = values.get("monthly_limit_cents")
    if daily is not None and monthly is not None and monthly < daily:
        raise ValidationFailed("monthly_limit_cents must be greater than or equal to daily_limit_cents")

    priority = values.get("priority", 100)
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ValidationFailed("priority must be an integer")

    if account is not None:
        if daily is not None and (account.current_daily_cents or 0) > daily:
            raise ValidationFailed(
                "daily_limit_cents is below the current daily total",
                context={"current_daily_cents": account.current_daily_cents},
            )
        if monthly is not None and (account.current_monthly_cents or 0) > monthly:
            raise ValidationFailed(
                "monthly_limit_cents is below the current monthly total",
                context={"current_monthly_cents": account.current_monthly_cents},
            )


def get_account(account_id: int) -> PaymentAccount:
    account = db.session.get(PaymentAccount, account_id)
    if account is None:
        raise NotFound("Payment account not found", context={"payment_account_id": account_id})
    return account


def create_account(actor_id: int, **fields) -> PaymentAccount:
    unknown = set(fields) - set(_ACCOUNT_FIELDS)
    if unknown:
        raise ValidationFailed("Unknown fields", context={"fields": sorted(unknown)})

    def _op():
        verify_admin_role(actor_id)
        _validate_account_fields(fields)
        today = utctoday()
        account = PaymentAccount(
            current_daily_cents=0,
            current_monthly_cents=0,
            last_reset_date=today,
            last_monthly_reset_date=today,
            **fields,
        )
        db.session.add(account)
        db.session.commit()
        return account

    return run_with_retry(_op, operation="create_payment_account", context={"actor_id": actor_id})


def update_account(account_id: int, actor_id: int, **changes) -> PaymentAccount:
    unknown = set(changes) - set(_ACCOUNT_FIELDS)
    if unknown:
        raise ValidationFailed("Unknown fields", context={"fields": sorted(unknown)})

    def _op():
        verify_admin_role(actor_id)
        account = lock_for_update(
            db.session.query(PaymentAccount).filter(PaymentAccount.id == account_id)
        ).first()
        if account is None:
            raise NotFound("Payment account not found", context={"payment_account_id": account_id})
        merged = {field: getattr(account, field) for field in _ACCOUNT_FIELDS}
        merged.update(changes)
        _validate_account_fields(merged, account)
        for field, value in changes.items():
            setattr(account, field, value)
        db.session.commit()
        return account

    return run_with_retry(
        _op,
        operation="update_payment_account",
        context={"payment_account_id": account_id, "actor_id": actor_id},
    )


def deactivate_account(account_id: int, actor_id: int) -> PaymentAccount:
    return update_account(account_id, actor_id, is_active=False)


def list_accounts(actor_id: int, type_class: str | None = None, include_inactive: bool = True) -> list[PaymentAccount]:
    verify_admin_role(actor_id)
    query = db.session.query(PaymentAccount)
    if type_class is not None:
        query = query.filter(_type_flag(type_class).is_(True))
    if not include_inactive:
        query = query.filter(PaymentAccount.is_active.is_(True))
    return query.order_by(PaymentAccount.priority.asc(), PaymentAccount.id.asc()).all()


def get_account_transactions(
    actor_id: int,
    account_id: int | None = None,
    status: str | None = None,
    reference_type: str | None = None,
    limit: int = 100,
) -> list[PaymentAccountTransaction]:
    verify_admin_role(actor_id)
    if status is not None and status not in TRANSACTION_STATUSES:
        raise ValidationFailed("Invalid status filter", context={"status": status})

    query = db.session.query(PaymentAccountTransaction)
    if account_id is not None:
        query = query.filter(PaymentAccountTransaction.payment_account_id == account_id)
    if status is not None:
        query = query.filter(PaymentAccountTransaction.status == status)
    if reference_type is not None:
        query = query.filter(PaymentAccountTransaction.reference_type == reference_type)
    limit = max(1, min(int(limit), 500))
    return query.order_by(PaymentAccountTransaction.id.desc()).limit(limit).all()


def get_account_stats(actor_id: int, account_id: int | None = None) -> dict:
    """Transaction count and amount per status and per type class."""
    verify_admin_role(actor_id)

    query = db.session.query(
        PaymentAccountTransaction.status,
        PaymentAccountTransaction.transaction_type,
        func.count(PaymentAccountTransaction.id),
        func.coalesce(func.sum(PaymentAccountTransaction.amount_cents), 0),
    )
    if account_id is not None:
        query = query.filter(PaymentAccountTransaction.payment_account_id == account_id)
    rows = query.group_by(
        PaymentAccountTransaction.status, PaymentAccountTransaction.transaction_type
    ).all()

    by_status = {s: {"count": 0, "amount_cents": 0} for s in TRANSACTION_STATUSES}
    by_type = {t: {"count": 0, "amount_cents": 0} for t in TYPE_CLASSES}
    total_count = 0
    total_amount = 0
    for status, transaction_type, count, amount in rows:
        amount = int(amount or 0)
        by_status.setdefault(status, {"count": 0, "amount_cents": 0})
        by_status[status]["count"] += count
        by_status[status]["amount_cents"] += amount
        by_type.setdefault(transaction_type, {"count": 0, "amount_cents": 0})
        by_type[transaction_type]["count"] += count
        by_type[transaction_type]["amount_cents"] += amount
        total_count += count
        total_amount += amount

    return {
        "payment_account_id": account_id,
        "total_count": total_count,
        "total_amount_cents": total_amount,
        "by_status": by_status,
        "by_type": by_type,
    }
