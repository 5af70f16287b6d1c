# Overview: Remittance lifecycle: quote, request, manual payment review, delivery and alerts.

"""
Remittance State Machine

    CREATED -> PROOF_UPLOADED -> VALIDATED -> PROCESSING -> DELIVERED -> COMPLETED
    PROOF_UPLOADED -> REJECTED -> PROOF_UPLOADED   (customer retry)
    CREATED | PROOF_UPLOADED -> CANCELLED           (before validation only)

Any other request raises InvalidOperation and changes nothing.

Money:
- commission comes from commission_service.calculate_commission() only
- total_charged_cents = amount_cents + commission_total_cents
- amount_to_deliver   = amount * exchange_rate (delivery currency)
The breakdown is snapshotted on the row at creation; later rate or commission
changes on the type never touch existing remittances.

Receiving account: an account transaction for total_charged_cents is registered
at creation when possible. Registration is non-critical; a missing or rejected
transaction is registered again at proof upload and at validation.

Delivery can be confirmed by an admin or by the recipient presenting the
recipient_token issued at creation.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_

from ..config import get_settings
from ..errors import (
    AuthenticationRequired,
    AuthorizationFailed,
    InvalidOperation,
    NotFound,
    ServiceUnavailable,
    ValidationFailed,
    is_unique_violation,
    run_non_critical,
)
from ..extensions import db
from ..models import PaymentAccountTransaction, Remittance, RemittanceStatusHistory
from ..time_utils import hours_between, utcnow
from . import account_rotation_service
from .authorization import load_actor, require_owner, require_owner_or_admin, verify_admin_role
from .commission_service import amount_to_deliver, calculate_commission, get_remittance_type
from .concurrency import lock_for_update, run_with_retry
from .notification_service import notify

REMITTANCE_STATUS_TRANSITIONS = {
    "CREATED": {"PROOF_UPLOADED", "CANCELLED"},
    "PROOF_UPLOADED": {"VALIDATED", "REJECTED", "CANCELLED"},
    "REJECTED": {"PROOF_UPLOADED"},
    "VALIDATED": {"PROCESSING"},
    "PROCESSING": {"DELIVERED"},
    "DELIVERED": {"COMPLETED"},
    "COMPLETED": set(),
    "CANCELLED": set(),
}

REMITTANCE_STATUSES = tuple(REMITTANCE_STATUS_TRANSITIONS)


def can_transition(current: str, target: str) -> bool:
    return target in REMITTANCE_STATUS_TRANSITIONS.get(current, set())


def _require_transition(remittance: Remittance, target: str) -> None:
    if not can_transition(remittance.status, target):
        raise InvalidOperation(
            f"Cannot change remittance status from {remittance.status} to {target}",
            context={"remittance_id": remittance.id, "current": remittance.status, "target": target},
        )


def generate_remittance_number() -> str:
    attempts = get_settings().order_number_max_attempts
    day = utcnow().strftime("%Y%m%d")
    for _ in range(attempts):
        candidate = f"REM-{day}-{secrets.randbelow(100000):05d}"
        taken = db.session.query(Remittance.id).filter(Remittance.remittance_number == candidate).first()
        if taken is None:
            return candidate
    raise ServiceUnavailable("Could not allocate a unique remittance number", context={"attempts": attempts})


def _get_remittance_for_update(remittance_id: int) -> Remittance:
    remittance = lock_for_update(
        db.session.query(Remittance).filter(Remittance.id == remittance_id)
    ).first()
    if remittance is None:
        raise NotFound("Remittance not found", context={"remittance_id": remittance_id})
    return remittance


def _log_history(remittance: Remittance, previous_status, actor_id, notes=None) -> None:
    def _write():
        db.session.add(
            RemittanceStatusHistory(
                remittance_id=remittance.id,
                previous_status=previous_status,
                new_status=remittance.status,
                changed_by_user_id=actor_id,
                notes=notes,
                changed_at=utcnow(),
            )
        )
        db.session.flush()
        return True

    run_non_critical(_write, {"step": "remittance_status_history", "remittance_id": remittance.id})


def _assign_payment_account(remittance: Remittance):
    def _assign():
        tx = account_rotation_service.assign_account(
            "remittance",
            "remittance",
            remittance.id,
            remittance.total_charged_cents,
            notes=remittance.remittance_number,
        )
        remittance.payment_account_id = tx.payment_account_id
        remittance.payment_account_transaction_id = tx.id
        db.session.flush()
        return tx

    return run_non_critical(_assign, {"step": "assign_payment_account", "remittance_id": remittance.id})


def _ensure_account_transaction(remittance: Remittance):
    if remittance.payment_account_transaction_id is not None:
        tx = db.session.get(PaymentAccountTransaction, remittance.payment_account_transaction_id)
        if tx is not None and tx.status != "rejected":
            return tx
    if not get_settings().auto_assign_payment_accounts:
        return None
    return _assign_payment_account(remittance)


def _settle_account_transaction(remittance: Remittance, actor_id, *, validated: bool, reason: str | None = None):
    tx_id = remittance.payment_account_transaction_id
    if tx_id is None:
        return None

    def _settle():
        if validated:
            return account_rotation_service.validate_transaction(tx_id, actor_id)
        return account_rotation_service.reject_transaction(tx_id, actor_id, reason)

    return run_non_critical(
        _settle,
        {
            "step": "settle_account_transaction",
            "remittance_id": remittance.id,
            "transaction_id": tx_id,
            "validated": validated,
        },
    )


# =============================================================================
# QUOTE / REQUEST
# =============================================================================

def calculate_remittance(type_id: int, amount_cents: int) -> dict:
    """Quote for sending amount_cents with a remittance type (nothing persisted)."""
    remittance_type = get_remittance_type(type_id)
    breakdown = calculate_commission(remittance_type, amount_cents)
    quote = breakdown.to_dict()
    quote.update(
        {
            "remittance_type_id": remittance_type.id,
            "exchange_rate": str(remittance_type.exchange_rate),
            "amount_to_deliver": str(amount_to_deliver(remittance_type, amount_cents)),
            "currency_sent": remittance_type.currency_code,
            "currency_delivered": remittance_type.delivery_currency,
            "delivery_method": remittance_type.delivery_method,
            "max_delivery_days": remittance_type.max_delivery_days,
        }
    )
    return quote


def _require_text(value, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailed(f"{field} is required")
    return value.strip()


def create_remittance(
    user_id: int,
    type_id: int,
    amount_cents: int,
    recipient_name: str,
    recipient_phone: str,
    *,
    recipient_address: str | None = None,
    recipient_province: str | None = None,
    recipient_id_number: str | None = None,
    delivery_notes: str | None = None,
) -> Remittance:
    recipient_name = _require_text(recipient_name, "recipient_name")
    recipient_phone = _require_text(recipient_phone, "recipient_phone")
    if sum(ch.isdigit() for ch in recipient_phone) < 7:
        raise ValidationFailed("recipient_phone is not a valid phone number")

    def _op():
        load_actor(user_id)
        remittance_type = get_remittance_type(type_id)
        breakdown = calculate_commission(remittance_type, amount_cents)

        now = utcnow()
        remittance = Remittance(
            remittance_number=generate_remittance_number(),
            user_id=user_id,
            remittance_type_id=remittance_type.id,
            status="CREATED",
            amount_cents=breakdown.amount_cents,
            commission_fixed_cents=breakdown.fixed_cents,
            commission_percentage_cents=breakdown.percentage_cents,
            commission_total_cents=breakdown.total_cents,
            total_charged_cents=breakdown.total_charged_cents,
            exchange_rate=remittance_type.exchange_rate,
            amount_to_deliver=amount_to_deliver(remittance_type, amount_cents),
            currency_sent=remittance_type.currency_code,
            currency_delivered=remittance_type.delivery_currency,
            delivery_method=remittance_type.delivery_method,
            recipient_name=recipient_name,
            recipient_phone=recipient_phone,
            recipient_address=recipient_address,
            recipient_province=recipient_province,
            recipient_id_number=recipient_id_number,
            recipient_token=secrets.token_urlsafe(24),
            delivery_notes=delivery_notes,
            created_at=now,
            updated_at=now,
        )
        db.session.add(remittance)
        db.session.flush()

        _log_history(remittance, None, user_id, "Remittance created")
        if get_settings().auto_assign_payment_accounts:
            _assign_payment_account(remittance)
        db.session.commit()
        return remittance

    remittance = run_with_retry(
        _op,
        operation="create_remittance",
        context={"user_id": user_id, "type_id": type_id},
        retry_on=lambda exc: is_unique_violation(exc, "remittance_number"),
    )
    current_app.logger.info("Remittance %s created for user %s", remittance.remittance_number, user_id)
    notify("remittance.created", remittance_id=remittance.id, user_id=user_id)
    return remittance


# =============================================================================
# PAYMENT REVIEW
# =============================================================================

def upload_payment_proof(
    remittance_id: int,
    user_id: int,
    proof_ref: str,
    payment_reference: str | None = None,
    notes: str | None = None,
) -> Remittance:
    """Owner attaches a transfer receipt: CREATED | REJECTED -> PROOF_UPLOADED."""
    proof_ref = _require_text(proof_ref, "proof_ref")

    def _op():
        remittance = _get_remittance_for_update(remittance_id)
        require_owner(user_id, remittance.user_id)
        _require_transition(remittance, "PROOF_UPLOADED")

        previous_status = remittance.status
        remittance.status = "PROOF_UPLOADED"
        remittance.payment_proof_ref = proof_ref
        remittance.payment_reference = payment_reference
        remittance.payment_proof_notes = notes
        remittance.payment_proof_uploaded_at = utcnow()
        _ensure_account_transaction(remittance)
        _log_history(remittance, previous_status, user_id, "Payment proof uploaded")
        db.session.commit()
        return remittance

    remittance = run_with_retry(
        _op, operation="upload_remittance_payment_proof", context={"remittance_id": remittance_id}
    )
    notify(
        "remittance.payment_proof_uploaded",
        remittance_id=remittance.id,
        remittance_number=remittance.remittance_number,
        audience="admin",
    )
    return remittance


def validate_payment(remittance_id: int, admin_id: int, notes: str | None = None) -> Remittance:
    def _op():
        admin = verify_admin_role(admin_id)
        remittance = _get_remittance_for_update(remittance_id)
        _require_transition(remittance, "VALIDATED")

        now = utcnow()
        previous_status = remittance.status
        remittance.status = "VALIDATED"
        remittance.validated_by_user_id = admin.id
        remittance.payment_validated_at = now
        remittance.payment_validation_notes = notes
        remittance.max_delivery_date = now + timedelta(days=remittance.remittance_type.max_delivery_days)

        _ensure_account_transaction(remittance)
        _settle_account_transaction(remittance, admin.id, validated=True)
        _log_history(remittance, previous_status, admin.id, notes or "Payment validated")
        db.session.commit()
        return remittance

    remittance = run_with_retry(
        _op, operation="validate_remittance_payment", context={"remittance_id": remittance_id, "admin_id": admin_id}
    )
    current_app.logger.info("Remittance %s payment validated by %s", remittance_id, admin_id)
    notify("remittance.payment_validated", remittance_id=remittance_id, user_id=remittance.user_id)
    return remittance


def reject_payment(remittance_id: int, admin_id: int, reason: str) -> Remittance:
    reason = _require_text(reason, "reason")

    def _op():
        admin = verify_admin_role(admin_id)
        remittance = _get_remittance_for_update(remittance_id)
        _require_transition(remittance, "REJECTED")

        previous_status = remittance.status
        remittance.status = "REJECTED"
        remittance.rejection_reason = reason
        remittance.payment_rejected_at = utcnow()
        _settle_account_transaction(remittance, admin.id, validated=False, reason=reason)
        _log_history(remittance, previous_status, admin.id, reason)
        db.session.commit()
        return remittance

    remittance = run_with_retry(
        _op, operation="reject_remittance_payment", context={"remittance_id": remittance_id, "admin_id": admin_id}
    )
    current_app.logger.info("Remittance %s payment rejected by %s", remittance_id, admin_id)
    notify("remittance.payment_rejected", remittance_id=remittance_id, user_id=remittance.user_id, reason=reason)
    return remittance


# =============================================================================
# FULFILLMENT
# =============================================================================

def start_processing(remittance_id: int, admin_id: int, notes: str | None = None) -> Remittance:
    def _op():
        admin = verify_admin_role(admin_id)
        remittance = _get_remittance_for_update(remittance_id)
        _require_transition(remittance, "PROCESSING")

        previous_status = remittance.status
        remittance.status = "PROCESSING"
        remittance.processing_started_at = utcnow()
        remittance.processing_notes = notes
        _log_history(remittance, previous_status, admin.id, notes or "Processing started")
        db.session.commit()
        return remittance

    remittance = run_with_retry(_op, operation="start_remittance_processing", context={"remittance_id": remittance_id})
    notify("remittance.processing", remittance_id=remittance_id, user_id=remittance.user_id)
    return remittance


def confirm_delivery(
    remittance_id: int,
    actor_id: int | None = None,
    recipient_token: str | None = None,
    delivery_proof_ref: str | None = None,
    bank_transfer_reference: str | None = None,
    notes: str | None = None,
) -> Remittance:
    """
    PROCESSING -> DELIVERED, confirmed by an admin (actor_id) or by the
    recipient (recipient_token). Transfer deliveries need the bank reference.
    """
    if actor_id is None and not recipient_token:
        raise AuthenticationRequired("An admin or the recipient token is required to confirm delivery")

    def _op():
        admin = verify_admin_role(actor_id) if actor_id is not None else None
        remittance = _get_remittance_for_update(remittance_id)
        if admin is None and not secrets.compare_digest(str(recipient_token), remittance.recipient_token):
            raise AuthorizationFailed("Invalid recipient token", context={"remittance_id": remittance_id})
        _require_transition(remittance, "DELIVERED")
        if remittance.delivery_method == "transfer" and not (bank_transfer_reference or "").strip():
            raise ValidationFailed(
                "bank_transfer_reference is required for transfer deliveries",
                context={"remittance_id": remittance_id},
            )

        previous_status = remittance.status
        remittance.status = "DELIVERED"
        remittance.delivered_at = utcnow()
        remittance.delivered_by_user_id = admin.id if admin else None
        remittance.delivery_confirmed_by = "admin" if admin else "recipient"
        remittance.delivery_proof_ref = delivery_proof_ref
        remittance.bank_transfer_reference = bank_transfer_reference
        _log_history(remittance, previous_status, admin.id if admin else None, notes or "Delivery confirmed")
        db.session.commit()
        return remittance

    remittance = run_with_retry(_op, operation="confirm_remittance_delivery", context={"remittance_id": remittance_id})
    notify(
        "remittance.delivered",
        remittance_id=remittance_id,
        user_id=remittance.user_id,
        confirmed_by=remittance.delivery_confirmed_by,
    )
    return remittance


def complete_remittance(remittance_id: int, admin_id: int, notes: str | None = None) -> Remittance:
    def _op():
        admin = verify_admin_role(admin_id)
        remittance = _get_remittance_for_update(remittance_id)
        _require_transition(remittance, "COMPLETED")

        previous_status = remittance.status
        remittance.status = "COMPLETED"
        remittance.completed_at = utcnow()
        remittance.completion_notes = notes
        _log_history(remittance, previous_status, admin.id, notes or "Remittance completed")
        db.session.commit()
        return remittance

    remittance = run_with_retry(_op, operation="complete_remittance", context={"remittance_id": remittance_id})
    notify("remittance.completed", remittance_id=remittance_id, user_id=remittance.user_id)
    return remittance


def cancel_remittance(remittance_id: int, actor_id: int, reason: str | None = None) -> Remittance:
    """Owner or admin cancels before validation; a pending account transaction is rejected."""
    def _op():
        remittance = _get_remittance_for_update(remittance_id)
        actor = require_owner_or_admin(actor_id, remittance.user_id)
        _require_transition(remittance, "CANCELLED")

        tx_id = remittance.payment_account_transaction_id
        if tx_id is not None:
            tx = db.session.get(PaymentAccountTransaction, tx_id)
            if tx is not None and tx.status == "pending":
                _settle_account_transaction(remittance, actor.id, validated=False, reason="remittance cancelled")

        previous_status = remittance.status
        remittance.status = "CANCELLED"
        remittance.cancelled_at = utcnow()
        remittance.cancellation_reason = reason
        _log_history(remittance, previous_status, actor.id, reason or "Remittance cancelled")
        db.session.commit()
        return remittance

    remittance = run_with_retry(
        _op, operation="cancel_remittance", context={"remittance_id": remittance_id, "actor_id": actor_id}
    )
    notify("remittance.cancelled", remittance_id=remittance_id, user_id=remittance.user_id, reason=reason)
    return remittance


# =============================================================================
# ALERTS
# =============================================================================

def get_remittances_needing_alert(now: datetime | None = None) -> list[dict]:
    """
    PROCESSING remittances whose processing time exceeds
    REMITTANCE_ALERT_THRESHOLD_HOURS, oldest first. Read-only.
    """
    now = now or utcnow()
    threshold = get_settings().remittance_alert_threshold_hours
    cutoff = now - timedelta(hours=threshold)

    remittances = (
        db.session.query(Remittance)
        .filter(
            Remittance.status == "PROCESSING",
            Remittance.processing_started_at.isnot(None),
            Remittance.processing_started_at < cutoff,
        )
        .order_by(Remittance.processing_started_at.asc())
        .all()
    )
    return [
        {
            "remittance": remittance,
            "hours_in_processing": round(hours_between(remittance.processing_started_at, now), 1),
            "threshold_hours": threshold,
        }
        for remittance in remittances
    ]


def calculate_delivery_alert(remittance: Remittance, now: datetime | None = None) -> dict:
    """
    Traffic-light for the delivery deadline:
        success  delivered / completed
        info     not validated yet, or more than 48h left
        warning  24h to 48h left
        error    less than 24h left, or overdue
    """
    if remittance.payment_validated_at is None or remittance.max_delivery_date is None:
        return {"level": "info", "message": "Pending validation", "hours_remaining": None}
    if remittance.status in ("DELIVERED", "COMPLETED"):
        return {"level": "success", "message": "Delivered", "hours_remaining": None}

    now = now or utcnow()
    hours_remaining = hours_between(now, remittance.max_delivery_date)
    if hours_remaining < 0:
        return {"level": "error", "message": "Delivery overdue", "hours_remaining": round(hours_remaining, 1)}
    if hours_remaining < 24:
        return {
            "level": "error",
            "message": f"{round(hours_remaining)} hours left",
            "hours_remaining": round(hours_remaining, 1),
        }
    level = "warning" if hours_remaining < 48 else "info"
    return {
        "level": level,
        "message": f"{round(hours_remaining / 24)} days left",
        "hours_remaining": round(hours_remaining, 1),
    }


# =============================================================================
# READS
# =============================================================================

def get_my_remittances(user_id: int, status: str | None = None) -> list[Remittance]:
    if status is not None and status not in REMITTANCE_STATUSES:
        raise ValidationFailed("Invalid status filter", context={"status": status})
    query = db.session.query(Remittance).filter(Remittance.user_id == user_id)
    if status:
        query = query.filter(Remittance.status == status)
    return query.order_by(Remittance.created_at.desc(), Remittance.id.desc()).all()


def get_all_remittances(
    admin_id: int,
    status: str | None = None,
    user_id: int | None = None,
    search: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Remittance]:
    verify_admin_role(admin_id)
    if status is not None and status not in REMITTANCE_STATUSES:
        raise ValidationFailed("Invalid status filter", context={"status": status})

    query = db.session.query(Remittance)
    if status:
        query = query.filter(Remittance.status == status)
    if user_id is not None:
        query = query.filter(Remittance.user_id == user_id)
    if date_from is not None:
        query = query.filter(Remittance.created_at >= date_from)
    if date_to is not None:
        query = query.filter(Remittance.created_at <= date_to)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Remittance.remittance_number.ilike(term),
                Remittance.recipient_name.ilike(term),
                Remittance.recipient_phone.ilike(term),
            )
        )
    limit = max(1, min(int(limit), 500))
    return (
        query.order_by(Remittance.created_at.desc(), Remittance.id.desc())
        .offset(max(0, int(offset)))
        .limit(limit)
        .all()
    )


def get_remittance_details(remittance_id: int, actor_id: int) -> dict:
    """Remittance, its status history and delivery alert; owner or admin."""
    remittance = db.session.get(Remittance, remittance_id)
    if remittance is None:
        raise NotFound("Remittance not found", context={"remittance_id": remittance_id})
    actor = require_owner_or_admin(actor_id, remittance.user_id)

    history = (
        db.session.query(RemittanceStatusHistory)
        .filter(RemittanceStatusHistory.remittance_id == remittance_id)
        .order_by(RemittanceStatusHistory.id.asc())
        .all()
    )
    data = remittance.to_dict()
    # recipient_token is handed to the sender only
    if actor.id == remittance.user_id:
        data["recipient_token"] = remittance.recipient_token
    data["remittance_type"] = remittance.remittance_type.to_dict()
    data["history"] = [entry.to_dict() for entry in history]
    data["delivery_alert"] = calculate_delivery_alert(remittance)
    return data
