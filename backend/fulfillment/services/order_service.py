# Overview: Order lifecycle: checkout, manual payment review and fulfillment transitions.

"""
Order State Machine

Two independent status columns, each guarded by its legal-transition table:

    status:          PENDING -> PROCESSING -> SHIPPED -> DELIVERED -> COMPLETED
                     PENDING | PROCESSING -> CANCELLED
    payment_status:  PENDING -> PROOF_UPLOADED -> VALIDATED
                     PROOF_UPLOADED -> REJECTED -> PENDING (customer retry)

Any request outside the tables raises InvalidOperation and changes nothing.

Stock follows the payment:
- create / retry:   reserve every stocked product behind the lines
- validate:         reduce (consume the reservation)
- reject / cancel:  release whatever is still reserved
Validate, reject and cancel act on what the order holds according to its own
ledger rows (inventory_service.held_quantities), never on a re-expansion of the
lines, so stock received or bundles edited after checkout are left alone.

Each operation is ONE database transaction run through run_with_retry():
row lock on the order, status guard, ledger work, commit. The status guard is
the concurrency gate: a second validate_payment re-reads VALIDATED and fails
InvalidOperation instead of reducing stock twice.

Compensation: create_order reserves all lines inside the same transaction as
the insert; a shortfall on any line rolls back the order and every reservation
already made, so a failed checkout leaves no orphaned hold. Orders abandoned
after a successful checkout are released by
maintenance_service.cancel_stale_pending_orders().

Non-critical steps (run_non_critical): status history, payment account
assignment / settlement, notifications.
"""

from __future__ import annotations

import secrets
from datetime import datetime

from flask import current_app

from ..config import get_settings
from ..errors import (
    InvalidOperation,
    NotFound,
    ServiceUnavailable,
    ValidationFailed,
    is_unique_violation,
    run_non_critical,
)
from ..extensions import db
from ..models import Bundle, InventoryRecord, Order, OrderItem, OrderStatusHistory, PaymentAccountTransaction, Product
from ..time_utils import utcnow
from . import account_rotation_service, inventory_service
from .authorization import load_actor, require_owner, require_owner_or_admin, verify_admin_role
from .concurrency import lock_for_update, run_with_retry
from .notification_service import notify

ORDER_STATUS_TRANSITIONS = {
    "PENDING": {"PROCESSING", "CANCELLED"},
    "PROCESSING": {"SHIPPED", "CANCELLED"},
    "SHIPPED": {"DELIVERED"},
    "DELIVERED": {"COMPLETED"},
    "COMPLETED": set(),
    "CANCELLED": set(),
}

PAYMENT_STATUS_TRANSITIONS = {
    "PENDING": {"PROOF_UPLOADED"},
    "PROOF_UPLOADED": {"VALIDATED", "REJECTED"},
    "REJECTED": {"PENDING"},
    "VALIDATED": set(),
}

ORDER_STATUSES = tuple(ORDER_STATUS_TRANSITIONS)
PAYMENT_STATUSES = tuple(PAYMENT_STATUS_TRANSITIONS)

# Payment states in which the order still holds a reservation
_RESERVED_PAYMENT_STATUSES = ("PENDING", "PROOF_UPLOADED")


def can_transition(transitions: dict, current: str, target: str) -> bool:
    return target in transitions.get(current, set())


def _require_transition(transitions: dict, current: str, target: str, *, field: str, order: Order) -> None:
    if not can_transition(transitions, current, target):
        raise InvalidOperation(
            f"Cannot change order {field} from {current} to {target}",
            context={"order_id": order.id, "field": field, "current": current, "target": target},
        )


def generate_order_number() -> str:
    """ORD-YYYYMMDD-NNNNN, regenerated while it collides with an existing order."""
    attempts = get_settings().order_number_max_attempts
    day = utcnow().strftime("%Y%m%d")
    for _ in range(attempts):
        candidate = f"ORD-{day}-{secrets.randbelow(100000):05d}"
        taken = db.session.query(Order.id).filter(Order.order_number == candidate).first()
        if taken is None:
            return candidate
    raise ServiceUnavailable("Could not allocate a unique order number", context={"attempts": attempts})


def _get_order_for_update(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter(Order.id == order_id)).first()
    if order is None:
        raise NotFound("Order not found", context={"order_id": order_id})
    return order


def _log_history(order: Order, previous_status, previous_payment_status, actor_id, notes=None) -> None:
    def _write():
        db.session.add(
            OrderStatusHistory(
                order_id=order.id,
                previous_status=previous_status,
                new_status=order.status,
                previous_payment_status=previous_payment_status,
                new_payment_status=order.payment_status,
                changed_by_user_id=actor_id,
                notes=notes,
                changed_at=utcnow(),
            )
        )
        db.session.flush()
        return True

    run_non_critical(_write, {"step": "order_status_history", "order_id": order.id})


# =============================================================================
# PAYMENT ACCOUNT LINKING (non-critical)
# =============================================================================

def _assign_payment_account(order: Order):
    if order.total_cents <= 0:
        return None

    def _assign():
        tx = account_rotation_service.assign_account(
            "product", "order", order.id, order.total_cents, notes=order.order_number
        )
        order.payment_account_id = tx.payment_account_id
        order.payment_account_transaction_id = tx.id
        db.session.flush()
        return tx

    return run_non_critical(_assign, {"step": "assign_payment_account", "order_id": order.id})


def _ensure_account_transaction(order: Order):
    """Pending/validated transaction linked to the order, registering a fresh one when missing or rejected."""
    if order.payment_account_transaction_id is not None:
        tx = db.session.get(PaymentAccountTransaction, order.payment_account_transaction_id)
        if tx is not None and tx.status != "rejected":
            return tx
    if not get_settings().auto_assign_payment_accounts:
        return None
    return _assign_payment_account(order)


def _settle_account_transaction(order: Order, actor_id: int, *, validated: bool, reason: str | None = None):
    tx_id = order.payment_account_transaction_id
    if tx_id is None:
        return None

    def _settle():
        if validated:
            return account_rotation_service.validate_transaction(tx_id, actor_id)
        return account_rotation_service.reject_transaction(tx_id, actor_id, reason)

    return run_non_critical(
        _settle,
        {"step": "settle_account_transaction", "order_id": order.id, "transaction_id": tx_id, "validated": validated},
    )


# =============================================================================
# CHECKOUT
# =============================================================================

def _require_non_negative_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationFailed(f"{field} must be a non-negative integer", context={field: value})
    return value


def _normalize_items(items) -> list[dict]:
    """Validate order lines and resolve item names with one query per item type."""
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationFailed("Order must contain at least one item")

    lines = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationFailed("Each item must be an object", context={"index": index})
        item_type = raw.get("item_type")
        if item_type not in inventory_service.ITEM_TYPES:
            raise ValidationFailed("Invalid item_type", context={"index": index, "item_type": item_type})
        item_id = raw.get("item_id")
        if isinstance(item_id, bool) or not isinstance(item_id, int):
            raise ValidationFailed("item_id must be an integer", context={"index": index})
        quantity = raw.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationFailed("quantity must be a positive integer", context={"index": index})
        unit_price = _require_non_negative_int(raw.get("unit_price_cents"), "unit_price_cents")
        line_total = raw.get("total_price_cents", unit_price * quantity)
        if line_total != unit_price * quantity:
            raise ValidationFailed(
                "Line total must equal unit price times quantity",
                context={"index": index, "total_price_cents": line_total},
            )
        lines.append(
            {
                "item_type": item_type,
                "item_id": item_id,
                "item_name": raw.get("item_name"),
                "quantity": quantity,
                "unit_price_cents": unit_price,
                "total_price_cents": line_total,
            }
        )

    product_ids = {line["item_id"] for line in lines if line["item_type"] == "product"}
    bundle_ids = {line["item_id"] for line in lines if line["item_type"] == "bundle"}
    catalog = {}
    if product_ids:
        for product in db.session.query(Product).filter(Product.id.in_(product_ids)).all():
            catalog[("product", product.id)] = product
    if bundle_ids:
        for bundle in db.session.query(Bundle).filter(Bundle.id.in_(bundle_ids)).all():
            catalog[("bundle", bundle.id)] = bundle

    for line in lines:
        entry = catalog.get((line["item_type"], line["item_id"]))
        if entry is None:
            raise NotFound(
                f"{line['item_type'].capitalize()} not found",
                context={"item_type": line["item_type"], "item_id": line["item_id"]},
            )
        if not entry.is_active:
            raise ValidationFailed(
                f"{line['item_type'].capitalize()} is not available",
                context={"item_type": line["item_type"], "item_id": line["item_id"]},
            )
        line["item_name"] = line["item_name"] or entry.name
    return lines


def create_order(
    user_id: int,
    items,
    currency_code: str,
    subtotal_cents: int,
    *,
    discount_cents: int = 0,
    shipping_cents: int = 0,
    tax_cents: int = 0,
    total_cents: int | None = None,
    recipient_info: dict | None = None,
    shipping_address: str | None = None,
    delivery_instructions: str | None = None,
    notes: str | None = None,
    payment_method: str = "zelle",
) -> Order:
    """
    Place an order and reserve its stock.

    Raises:
        ValidationFailed: bad lines, totals or currency
        NotFound: unknown product / bundle
        InsufficientStock: any stocked product short (nothing is persisted)
    """
    if not isinstance(currency_code, str) or not currency_code.strip():
        raise ValidationFailed("currency_code is required")
    for field, value in (
        ("subtotal_cents", subtotal_cents),
        ("discount_cents", discount_cents),
        ("shipping_cents", shipping_cents),
        ("tax_cents", tax_cents),
    ):
        _require_non_negative_int(value, field)

    computed_total = subtotal_cents - discount_cents + shipping_cents + tax_cents
    if computed_total < 0:
        raise ValidationFailed("Order total cannot be negative", context={"total_cents": computed_total})
    if total_cents is not None and total_cents != computed_total:
        raise ValidationFailed(
            "total_cents does not match subtotal - discount + shipping + tax",
            context={"total_cents": total_cents, "expected": computed_total},
        )

    def _op():
        load_actor(user_id)
        lines = _normalize_items(items)
        lines_total = sum(line["total_price_cents"] for line in lines)
        if lines_total != subtotal_cents:
            raise ValidationFailed(
                "subtotal_cents does not match the sum of the lines",
                context={"subtotal_cents": subtotal_cents, "lines_total": lines_total},
            )

        now = utcnow()
        order = Order(
            order_number=generate_order_number(),
            user_id=user_id,
            status="PENDING",
            payment_status="PENDING",
            subtotal_cents=subtotal_cents,
            discount_cents=discount_cents,
            shipping_cents=shipping_cents,
            tax_cents=tax_cents,
            total_cents=computed_total,
            currency_code=currency_code.strip().upper(),
            recipient_info=recipient_info,
            shipping_address=shipping_address,
            delivery_instructions=delivery_instructions,
            notes=notes,
            payment_method=payment_method,
            payment_pending_since=now,
            created_at=now,
            updated_at=now,
        )

        product_ids = [line["item_id"] for line in lines if line["item_type"] == "product"]
        record_ids = {}
        if product_ids:
            record_ids = dict(
                db.session.query(InventoryRecord.product_id, InventoryRecord.id)
                .filter(InventoryRecord.product_id.in_(product_ids))
                .all()
            )
        for line in lines:
            order.items.append(
                OrderItem(
                    inventory_record_id=(
                        record_ids.get(line["item_id"]) if line["item_type"] == "product" else None
                    ),
                    created_at=now,
                    **line,
                )
            )
        db.session.add(order)
        db.session.flush()

        inventory_service.reserve_items(
            order.items,
            reference_type="order",
            reference_id=order.id,
            actor_user_id=user_id,
            note=order.order_number,
        )
        _log_history(order, None, None, user_id, "Order created")
        if get_settings().auto_assign_payment_accounts:
            _assign_payment_account(order)
        db.session.commit()
        return order

    order = run_with_retry(
        _op,
        operation="create_order",
        context={"user_id": user_id},
        retry_on=lambda exc: is_unique_violation(exc, "order_number"),
    )
    current_app.logger.info("Order %s created for user %s", order.order_number, user_id)
    notify("order.created", order_id=order.id, order_number=order.order_number, user_id=user_id)
    return order


# =============================================================================
# PAYMENT REVIEW
# =============================================================================

def _require_not_cancelled(order: Order) -> None:
    if order.status == "CANCELLED":
        raise InvalidOperation("Order is cancelled", context={"order_id": order.id})


def upload_payment_proof(
    order_id: int,
    user_id: int,
    proof_ref: str,
    payment_reference: str | None = None,
) -> Order:
    """Owner attaches a transfer receipt: payment PENDING -> PROOF_UPLOADED."""
    if not isinstance(proof_ref, str) or not proof_ref.strip():
        raise ValidationFailed("proof_ref is required")

    def _op():
        order = _get_order_for_update(order_id)
        require_owner(user_id, order.user_id)
        _require_not_cancelled(order)
        _require_transition(
            PAYMENT_STATUS_TRANSITIONS, order.payment_status, "PROOF_UPLOADED", field="payment_status", order=order
        )

        previous_payment = order.payment_status
        order.payment_status = "PROOF_UPLOADED"
        order.payment_proof_ref = proof_ref.strip()
        order.payment_reference = payment_reference
        order.payment_proof_uploaded_at = utcnow()
        _log_history(order, order.status, previous_payment, user_id, "Payment proof uploaded")
        _ensure_account_transaction(order)
        db.session.commit()
        return order

    order = run_with_retry(_op, operation="upload_order_payment_proof", context={"order_id": order_id})
    notify("order.payment_proof_uploaded", order_id=order.id, order_number=order.order_number)
    return order


def retry_payment(order_id: int, user_id: int) -> Order:
    """Owner retries after a rejection: payment REJECTED -> PENDING, stock re-reserved."""
    def _op():
        order = _get_order_for_update(order_id)
        require_owner(user_id, order.user_id)
        _require_not_cancelled(order)
        _require_transition(
            PAYMENT_STATUS_TRANSITIONS, order.payment_status, "PENDING", field="payment_status", order=order
        )

        inventory_service.reserve_items(
            order.items,
            reference_type="order",
            reference_id=order.id,
            actor_user_id=user_id,
            note="payment retry",
        )
        previous_payment = order.payment_status
        order.payment_status = "PENDING"
        order.payment_pending_since = utcnow()
        _log_history(order, order.status, previous_payment, user_id, "Payment retry")
        _ensure_account_transaction(order)
        db.session.commit()
        return order

    return run_with_retry(_op, operation="retry_order_payment", context={"order_id": order_id})


def validate_payment(order_id: int, admin_id: int, notes: str | None = None) -> Order:
    """
    Admin accepts the payment: PROOF_UPLOADED -> VALIDATED, reservations consumed.

    Lookup queries are bounded: the order, one aggregate over its ledger rows
    and one inventory query, whatever the order size.
    """
    def _op():
        admin = verify_admin_role(admin_id)
        order = _get_order_for_update(order_id)
        _require_not_cancelled(order)
        _require_transition(
            PAYMENT_STATUS_TRANSITIONS, order.payment_status, "VALIDATED", field="payment_status", order=order
        )

        inventory_service.reduce_held(
            "order",
            order.id,
            actor_user_id=admin.id,
            note=order.order_number,
        )
        previous_payment = order.payment_status
        order.payment_status = "VALIDATED"
        order.validated_by_user_id = admin.id
        order.validated_at = utcnow()
        if order.payment_account_transaction_id is None:
            _ensure_account_transaction(order)
        _settle_account_transaction(order, admin.id, validated=True)
        _log_history(order, order.status, previous_payment, admin.id, notes or "Payment validated")
        db.session.commit()
        return order

    order = run_with_retry(_op, operation="validate_order_payment", context={"order_id": order_id, "admin_id": admin_id})
    current_app.logger.info("Order %s payment validated by %s", order_id, admin_id)
    notify("order.payment_validated", order_id=order_id, user_id=order.user_id)
    return order


def reject_payment(order_id: int, admin_id: int, reason: str) -> Order:
    """Admin rejects the proof: PROOF_UPLOADED -> REJECTED, reservations released, order stays PENDING."""
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationFailed("A rejection reason is required")

    def _op():
        admin = verify_admin_role(admin_id)
        order = _get_order_for_update(order_id)
        _require_not_cancelled(order)
        _require_transition(
            PAYMENT_STATUS_TRANSITIONS, order.payment_status, "REJECTED", field="payment_status", order=order
        )

        inventory_service.release_held(
            "order",
            order.id,
            actor_user_id=admin.id,
            note="payment rejected",
        )
        previous_payment = order.payment_status
        order.payment_status = "REJECTED"
        order.rejection_reason = reason.strip()
        order.payment_rejected_at = utcnow()
        _settle_account_transaction(order, admin.id, validated=False, reason=order.rejection_reason)
        _log_history(order, order.status, previous_payment, admin.id, order.rejection_reason)
        db.session.commit()
        return order

    order = run_with_retry(_op, operation="reject_order_payment", context={"order_id": order_id, "admin_id": admin_id})
    current_app.logger.info("Order %s payment rejected by %s", order_id, admin_id)
    notify("order.payment_rejected", order_id=order_id, user_id=order.user_id, reason=order.rejection_reason)
    return order


# =============================================================================
# FULFILLMENT
# =============================================================================

def _advance(order_id: int, admin_id: int, target: str, operation: str, apply, notes: str | None = None) -> Order:
    def _op():
        admin = verify_admin_role(admin_id)
        order = _get_order_for_update(order_id)
        _require_transition(ORDER_STATUS_TRANSITIONS, order.status, target, field="status", order=order)
        if target == "PROCESSING" and order.payment_status != "VALIDATED":
            raise InvalidOperation(
                "Payment must be validated before processing",
                context={"order_id": order.id, "payment_status": order.payment_status},
            )

        previous_status = order.status
        order.status = target
        apply(order)
        _log_history(order, previous_status, order.payment_status, admin.id, notes)
        db.session.commit()
        return order

    order = run_with_retry(_op, operation=operation, context={"order_id": order_id, "admin_id": admin_id})
    notify(f"order.{target.lower()}", order_id=order_id, user_id=order.user_id)
    return order


def start_processing(order_id: int, admin_id: int, notes: str | None = None) -> Order:
    def apply(order):
        order.processing_started_at = utcnow()
    return _advance(order_id, admin_id, "PROCESSING", "start_order_processing", apply, notes)


def mark_shipped(order_id: int, admin_id: int, tracking_info: str | None = None, notes: str | None = None) -> Order:
    def apply(order):
        order.shipped_at = utcnow()
        order.tracking_info = tracking_info
    return _advance(order_id, admin_id, "SHIPPED", "mark_order_shipped", apply, notes)


def mark_delivered(
    order_id: int,
    admin_id: int,
    delivery_proof_ref: str | None = None,
    notes: str | None = None,
) -> Order:
    def apply(order):
        order.delivered_at = utcnow()
        order.delivery_proof_ref = delivery_proof_ref
    return _advance(order_id, admin_id, "DELIVERED", "mark_order_delivered", apply, notes)


def complete_order(order_id: int, admin_id: int, notes: str | None = None) -> Order:
    def apply(order):
        order.completed_at = utcnow()
    return _advance(order_id, admin_id, "COMPLETED", "complete_order", apply, notes)


def cancel_locked_order(order: Order, actor_id: int | None, reason: str | None) -> Order:
    """
    Cancel an order already locked in the current transaction.

    Releases the reservation when the payment never got past review; a
    validated order has consumed its stock and nothing is returned.
    """
    _require_transition(ORDER_STATUS_TRANSITIONS, order.status, "CANCELLED", field="status", order=order)

    if order.payment_status in _RESERVED_PAYMENT_STATUSES:
        inventory_service.release_held(
            "order",
            order.id,
            actor_user_id=actor_id,
            note="order cancelled",
        )

    tx_id = order.payment_account_transaction_id
    if tx_id is not None:
        tx = db.session.get(PaymentAccountTransaction, tx_id)
        if tx is not None and tx.status == "pending":
            _settle_account_transaction(order, actor_id, validated=False, reason="order cancelled")

    previous_status = order.status
    order.status = "CANCELLED"
    order.cancelled_at = utcnow()
    order.cancelled_by_user_id = actor_id
    order.cancellation_reason = reason
    _log_history(order, previous_status, order.payment_status, actor_id, reason or "Order cancelled")
    return order


def cancel_order(order_id: int, actor_id: int, reason: str | None = None) -> Order:
    """Owner or admin cancels a PENDING / PROCESSING order."""
    def _op():
        order = _get_order_for_update(order_id)
        actor = require_owner_or_admin(actor_id, order.user_id)
        cancel_locked_order(order, actor.id, reason)
        db.session.commit()
        return order

    order = run_with_retry(_op, operation="cancel_order", context={"order_id": order_id, "actor_id": actor_id})
    current_app.logger.info("Order %s cancelled by %s", order_id, actor_id)
    notify("order.cancelled", order_id=order_id, user_id=order.user_id, reason=reason)
    return order


# =============================================================================
# READS
# =============================================================================

def get_order(order_id: int, actor_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found", context={"order_id": order_id})
    require_owner_or_admin(actor_id, order.user_id)
    return order


def _validate_status_filters(status, payment_status):
    if status is not None and status not in ORDER_STATUSES:
        raise ValidationFailed("Invalid status filter", context={"status": status})
    if payment_status is not None and payment_status not in PAYMENT_STATUSES:
        raise ValidationFailed("Invalid payment_status filter", context={"payment_status": payment_status})


def list_user_orders(user_id: int, status: str | None = None, payment_status: str | None = None) -> list[Order]:
    _validate_status_filters(status, payment_status)
    query = db.session.query(Order).filter(Order.user_id == user_id)
    if status:
        query = query.filter(Order.status == status)
    if payment_status:
        query = query.filter(Order.payment_status == payment_status)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def list_orders(
    admin_id: int,
    status: str | None = None,
    payment_status: str | None = None,
    user_id: int | None = None,
    search: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Order]:
    verify_admin_role(admin_id)
    _validate_status_filters(status, payment_status)
    query = db.session.query(Order)
    if status:
        query = query.filter(Order.status == status)
    if payment_status:
        query = query.filter(Order.payment_status == payment_status)
    if user_id is not None:
        query = query.filter(Order.user_id == user_id)
    if search:
        query = query.filter(Order.order_number.ilike(f"%{search.strip()}%"))
    limit = max(1, min(int(limit), 500))
    return (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset(max(0, int(offset)))
        .limit(limit)
        .all()
    )


def get_order_history(order_id: int, actor_id: int) -> list[OrderStatusHistory]:
    get_order(order_id, actor_id)
    return (
        db.session.query(OrderStatusHistory)
        .filter(OrderStatusHistory.order_id == order_id)
        .order_by(OrderStatusHistory.id.asc())
        .all()
    )


def get_days_in_processing(order: Order, now: datetime | None = None) -> int | None:
    """Whole days since processing started, or None when the order is not PROCESSING."""
    if order.status != "PROCESSING" or order.processing_started_at is None:
        return None
    now = now or utcnow()
    return max(0, (now - order.processing_started_at).days)
