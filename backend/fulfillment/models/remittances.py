from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class RemittanceType(db.Model):
    """
    Admin-managed remittance product (corridor + delivery method + pricing).

    Commission = commission_fixed_cents + amount * commission_percentage / 100.
    The percentage is stored as a percent value (5 = 5%) and is divided in
    exactly one place: services/commission_service.calculate_commission().
    """
    __tablename__ = "remittance_types"
    __table_args__ = (
        db.CheckConstraint("exchange_rate > 0", name="ck_remittance_types_rate_positive"),
        db.CheckConstraint("min_amount_cents > 0", name="ck_remittance_types_min_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

    currency_code = db.Column(db.String(10), nullable=False)
    delivery_currency = db.Column(db.String(10), nullable=False)
    exchange_rate = db.Column(db.Numeric(12, 4), nullable=False)

    commission_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    commission_fixed_cents = db.Column(db.Integer, nullable=False, default=0)

    min_amount_cents = db.Column(db.Integer, nullable=False)
    max_amount_cents = db.Column(db.Integer, nullable=True)  # NULL = no upper bound

    # cash, transfer, card, pickup
    delivery_method = db.Column(db.String(32), nullable=False, default="cash")
    max_delivery_days = db.Column(db.Integer, nullable=False, default=3)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<RemittanceType id={self.id} name={self.name!r} active={self.is_active}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "currency_code": self.currency_code,
            "delivery_currency": self.delivery_currency,
            "exchange_rate": str(self.exchange_rate) if self.exchange_rate is not None else None,
            "commission_percentage": (
                str(self.commission_percentage) if self.commission_percentage is not None else None
            ),
            "commission_fixed_cents": self.commission_fixed_cents,
            "min_amount_cents": self.min_amount_cents,
            "max_amount_cents": self.max_amount_cents,
            "delivery_method": self.delivery_method,
            "max_delivery_days": self.max_delivery_days,
            "is_active": self.is_active,
            "display_order": self.display_order,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Remittance(db.Model):
    """
    Money-transfer request.

    LIFECYCLE:
        CREATED -> PROOF_UPLOADED -> VALIDATED -> PROCESSING -> DELIVERED -> COMPLETED
        PROOF_UPLOADED -> REJECTED -> PROOF_UPLOADED (retry)
        CREATED / PROOF_UPLOADED -> CANCELLED

    total_charged_cents = amount_cents + commission_total_cents (commission is
    charged on top of the amount sent).
    """
    __tablename__ = "remittances"
    __table_args__ = (
        db.UniqueConstraint("remittance_number", name="uq_remittances_number"),
        db.Index("ix_remittances_status_created", "status", "created_at"),
        db.Index("ix_remittances_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    remittance_number = db.Column(db.String(32), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    remittance_type_id = db.Column(db.Integer, db.ForeignKey("remittance_types.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="CREATED", index=True)

    # Amounts (cents, sending currency) -- snapshot of the commission breakdown
    amount_cents = db.Column(db.Integer, nullable=False)
    commission_fixed_cents = db.Column(db.Integer, nullable=False, default=0)
    commission_percentage_cents = db.Column(db.Integer, nullable=False, default=0)
    commission_total_cents = db.Column(db.Integer, nullable=False, default=0)
    total_charged_cents = db.Column(db.Integer, nullable=False)

    exchange_rate = db.Column(db.Numeric(12, 4), nullable=False)
    amount_to_deliver = db.Column(db.Numeric(14, 2), nullable=False)
    currency_sent = db.Column(db.String(10), nullable=False)
    currency_delivered = db.Column(db.String(10), nullable=False)
    delivery_method = db.Column(db.String(32), nullable=False)

    # Recipient
    recipient_name = db.Column(db.String(255), nullable=False)
    recipient_phone = db.Column(db.String(32), nullable=False)
    recipient_address = db.Column(db.Text, nullable=True)
    recipient_province = db.Column(db.String(128), nullable=True)
    recipient_id_number = db.Column(db.String(64), nullable=True)
    recipient_token = db.Column(db.String(64), nullable=False)
    delivery_notes = db.Column(db.Text, nullable=True)

    # Payment evidence
    payment_proof_ref = db.Column(db.String(512), nullable=True)
    payment_reference = db.Column(db.String(128), nullable=True)
    payment_proof_notes = db.Column(db.Text, nullable=True)
    payment_proof_uploaded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Validation / rejection
    validated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    payment_validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_validation_notes = db.Column(db.Text, nullable=True)
    payment_rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    # Fulfillment
    processing_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processing_notes = db.Column(db.Text, nullable=True)
    max_delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    delivery_confirmed_by = db.Column(db.String(16), nullable=True)  # admin | recipient
    delivery_proof_ref = db.Column(db.String(512), nullable=True)
    bank_transfer_reference = db.Column(db.String(128), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completion_notes = db.Column(db.Text, nullable=True)

    # Cancellation
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    # Receiving account (rotation pool)
    payment_account_id = db.Column(db.Integer, db.ForeignKey("payment_accounts.id"), nullable=True, index=True)
    payment_account_transaction_id = db.Column(
        db.Integer, db.ForeignKey("payment_account_transactions.id"), nullable=True
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    remittance_type = db.relationship("RemittanceType", backref=db.backref("remittances", lazy=True))
    user = db.relationship("User", foreign_keys=[user_id])
    payment_account = db.relationship("PaymentAccount", foreign_keys=[payment_account_id])
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Remittance id={self.id} number={self.remittance_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "remittance_number": self.remittance_number,
            "user_id": self.user_id,
            "remittance_type_id": self.remittance_type_id,
            "status": self.status,
            "amount_cents": self.amount_cents,
            "commission_fixed_cents": self.commission_fixed_cents,
            "commission_percentage_cents": self.commission_percentage_cents,
            "commission_total_cents": self.commission_total_cents,
            "total_charged_cents": self.total_charged_cents,
            "exchange_rate": str(self.exchange_rate) if self.exchange_rate is not None else None,
            "amount_to_deliver": str(self.amount_to_deliver) if self.amount_to_deliver is not None else None,
            "currency_sent": self.currency_sent,
            "currency_delivered": self.currency_delivered,
            "delivery_method": self.delivery_method,
            "recipient_name": self.recipient_name,
            "recipient_phone": self.recipient_phone,
            "recipient_address": self.recipient_address,
            "recipient_province": self.recipient_province,
            "recipient_id_number": self.recipient_id_number,
            "delivery_notes": self.delivery_notes,
            "payment_proof_ref": self.payment_proof_ref,
            "payment_reference": self.payment_reference,
            "payment_proof_notes": self.payment_proof_notes,
            "payment_proof_uploaded_at": to_utc_z(self.payment_proof_uploaded_at),
            "validated_by_user_id": self.validated_by_user_id,
            "payment_validated_at": to_utc_z(self.payment_validated_at),
            "payment_validation_notes": self.payment_validation_notes,
            "payment_rejected_at": to_utc_z(self.payment_rejected_at),
            "rejection_reason": self.rejection_reason,
            "processing_started_at": to_utc_z(self.processing_started_at),
            "processing_notes": self.processing_notes,
            "max_delivery_date": to_utc_z(self.max_delivery_date),
            "delivered_at": to_utc_z(self.delivered_at),
            "delivered_by_user_id": self.delivered_by_user_id,
            "delivery_confirmed_by": self.delivery_confirmed_by,
            "delivery_proof_ref": self.delivery_proof_ref,
            "bank_transfer_reference": self.bank_transfer_reference,
            "completed_at": to_utc_z(self.completed_at),
            "completion_notes": self.completion_notes,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "payment_account_id": self.payment_account_id,
            "payment_account_transaction_id": self.payment_account_transaction_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class RemittanceStatusHistory(db.Model):
    __tablename__ = "remittance_status_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    remittance_id = db.Column(db.Integer, db.ForeignKey("remittances.id"), nullable=False, index=True)
    previous_status = db.Column(db.String(16), nullable=True)
    new_status = db.Column(db.String(16), nullable=False)
    changed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "remittance_id": self.remittance_id,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "changed_by_user_id": self.changed_by_user_id,
            "notes": self.notes,
            "changed_at": to_utc_z(self.changed_at),
        }
