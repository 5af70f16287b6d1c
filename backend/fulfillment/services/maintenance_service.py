# Overview: Scheduled housekeeping: releasing stock held by abandoned orders.

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import func

from ..config import get_settings
from ..extensions import db
from ..models import Order
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .order_service import cancel_locked_order


def cancel_stale_pending_orders(*, hours: int | None = None, now=None) -> int:
    """
    Cancel PENDING orders whose payment has waited for a proof longer than
    `hours` (default STALE_ORDER_HOURS), releasing their reservations. The wait
    starts at checkout and restarts when a rejected payment is retried.

    Orders with an uploaded proof are waiting on an admin and are left alone.
    Each order is cancelled in its own transaction. Returns the number cancelled.
    """
    hours = get_settings().stale_order_hours if hours is None else hours
    cutoff = (now or utcnow()) - timedelta(hours=hours)

    stale_ids = [
        order_id
        for (order_id,) in db.session.query(Order.id)
        .filter(
            Order.status == "PENDING",
            Order.payment_status == "PENDING",
            func.coalesce(Order.payment_pending_since, Order.created_at) < cutoff,
        )
        .order_by(Order.id.asc())
        .all()
    ]

    cancelled = 0
    for order_id in stale_ids:
        def _op(order_id=order_id):
            order = lock_for_update(db.session.query(Order).filter(Order.id == order_id)).first()
            # Re-check under the lock; the customer may have acted meanwhile.
            if order is None or order.status != "PENDING" or order.payment_status != "PENDING":
                db.session.rollback()
                return False
            cancel_locked_order(order, None, f"Payment not received within {hours} hours")
            db.session.commit()
            return True

        if run_with_retry(_op, operation="cancel_stale_pending_order", context={"order_id": order_id}):
            cancelled += 1

    current_app.logger.info("Stale pending orders cancelled: %d (cutoff %s)", cancelled, cutoff)
    return cancelled
