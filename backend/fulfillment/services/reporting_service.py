# Overview: Read-only aggregates over orders, remittances and payment accounts.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..errors import ValidationFailed
from ..extensions import db
from ..models import Order, PaymentAccount, PaymentAccountTransaction, Remittance
from ..time_utils import hours_between, parse_iso_datetime
from .order_service import ORDER_STATUSES, PAYMENT_STATUSES
from .remittance_service import REMITTANCE_STATUSES


def _parse_range(start, end) -> tuple[datetime | None, datetime | None]:
    try:
        start_dt = start if isinstance(start, datetime) else parse_iso_datetime(start)
        end_dt = end if isinstance(end, datetime) else parse_iso_datetime(end)
    except ValueError:
        raise ValidationFailed("start / end must be ISO-8601 datetimes", context={"start": start, "end": end}) from None
    if start_dt and end_dt and start_dt > end_dt:
        raise ValidationFailed("start must be before end")
    return start_dt, end_dt


def get_pending_orders_count() -> int:
    """Orders still in PENDING, i.e. not yet moved into fulfillment or cancelled."""
    return db.session.query(func.count(Order.id)).filter(Order.status == "PENDING").scalar() or 0


def order_stats(start=None, end=None) -> dict:
    start_dt, end_dt = _parse_range(start, end)

    def _ranged(query):
        if start_dt:
            query = query.filter(Order.created_at >= start_dt)
        if end_dt:
            query = query.filter(Order.created_at <= end_dt)
        return query

    by_status = {status: 0 for status in ORDER_STATUSES}
    rows = _ranged(db.session.query(Order.status, func.count(Order.id))).group_by(Order.status).all()
    for status, count in rows:
        by_status[status] = count

    by_payment_status = {status: 0 for status in PAYMENT_STATUSES}
    rows = (
        _ranged(db.session.query(Order.payment_status, func.count(Order.id)))
        .group_by(Order.payment_status)
        .all()
    )
    for status, count in rows:
        by_payment_status[status] = count

    validated_revenue = (
        _ranged(db.session.query(func.coalesce(func.sum(Order.total_cents), 0)))
        .filter(Order.payment_status == "VALIDATED", Order.status != "CANCELLED")
        .scalar()
    )

    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_payment_status": by_payment_status,
        "validated_revenue_cents": int(validated_revenue or 0),
    }


def remittance_stats(start=None, end=None) -> dict:
    """
    Counts per status, sent and completed amounts, and the average hours from
    creation to completion of completed remittances.
    """
    start_dt, end_dt = _parse_range(start, end)

    query = db.session.query(
        Remittance.status,
        Remittance.amount_cents,
        Remittance.created_at,
        Remittance.completed_at,
    )
    if start_dt:
        query = query.filter(Remittance.created_at >= start_dt)
    if end_dt:
        query = query.filter(Remittance.created_at <= end_dt)

    by_status = {status: 0 for status in REMITTANCE_STATUSES}
    total_amount = 0
    completed_amount = 0
    completion_hours = []
    rows = query.all()
    for status, amount_cents, created_at, completed_at in rows:
        by_status[status] = by_status.get(status, 0) + 1
        total_amount += amount_cents or 0
        if status == "COMPLETED":
            completed_amount += amount_cents or 0
            if created_at and completed_at:
                completion_hours.append(hours_between(created_at, completed_at))

    avg_hours = round(sum(completion_hours) / len(completion_hours), 1) if completion_hours else 0.0
    return {
        "total": len(rows),
        "by_status": by_status,
        "total_amount_cents": total_amount,
        "completed_amount_cents": completed_amount,
        "avg_completion_hours": avg_hours,
    }


def account_usage_summary() -> list[dict]:
    """Per-account running totals against limits, plus pending / validated amounts."""
    tx_rows = (
        db.session.query(
            PaymentAccountTransaction.payment_account_id,
            PaymentAccountTransaction.status,
            func.count(PaymentAccountTransaction.id),
            func.coalesce(func.sum(PaymentAccountTransaction.amount_cents), 0),
        )
        .group_by(PaymentAccountTransaction.payment_account_id, PaymentAccountTransaction.status)
        .all()
    )
    per_account: dict[int, dict] = {}
    for account_id, status, count, amount in tx_rows:
        bucket = per_account.setdefault(account_id, {})
        bucket[status] = {"count": count, "amount_cents": int(amount or 0)}

    summary = []
    accounts = db.session.query(PaymentAccount).order_by(PaymentAccount.priority.asc(), PaymentAccount.id.asc()).all()
    for account in accounts:
        txs = per_account.get(account.id, {})
        daily_limit = account.daily_limit_cents
        summary.append(
            {
                "payment_account_id": account.id,
                "account_name": account.account_name,
                "is_active": account.is_active,
                "priority": account.priority,
                "current_daily_cents": account.current_daily_cents,
                "daily_limit_cents": daily_limit,
                "daily_usage_pct": (
                    round(account.current_daily_cents * 100.0 / daily_limit, 1) if daily_limit else None
                ),
                "current_monthly_cents": account.current_monthly_cents,
                "monthly_limit_cents": account.monthly_limit_cents,
                "pending": txs.get("pending", {"count": 0, "amount_cents": 0}),
                "validated": txs.get("validated", {"count": 0, "amount_cents": 0}),
                "rejected": txs.get("rejected", {"count": 0, "amount_cents": 0}),
            }
        )
    return summary
