from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Order(db.Model):
    """
    Checkout order (products and bundles) paid by manual transfer.

    Two independent status columns:
    - status:         PENDING -> PROCESSING -> SHIPPED -> DELIVERED -> COMPLETED
                      (CANCELLED from PENDING / PROCESSING)
    - payment_status: PENDING -> PROOF_UPLOADED -> VALIDATED
                      (PROOF_UPLOADED -> REJECTED -> PENDING retry)

    Mutated only through services/order_service, which owns the transition tables.
    total_cents = subtotal - discount + shipping + tax, never negative.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.CheckConstraint("total_cents >= 0", name="ck_orders_total_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    # Totals (cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    currency_code = db.Column(db.String(8), nullable=False)

    # Recipient / shipping
    recipient_info = db.Column(db.JSON, nullable=True)
    shipping_address = db.Column(db.Text, nullable=True)
    delivery_instructions = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Payment evidence (opaque storage references, never decoded here)
    payment_method = db.Column(db.String(32), nullable=False, default="zelle")
    # Start of the current wait for a proof: checkout, or the latest retry
    payment_pending_since = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_proof_ref = db.Column(db.String(512), nullable=True)
    payment_reference = db.Column(db.String(128), nullable=True)
    payment_proof_uploaded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Validation / rejection audit
    validated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    payment_rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Fulfillment timestamps
    processing_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    tracking_info = db.Column(db.String(255), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_proof_ref = db.Column(db.String(512), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Cancellation
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
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

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    user = db.relationship("User", foreign_keys=[user_id])
    payment_account = db.relationship("PaymentAccount", foreign_keys=[payment_account_id])
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<Order id={self.id} number={self.order_number!r} "
            f"status={self.status} payment_status={self.payment_status}>"
        )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "shipping_cents": self.shipping_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "currency_code": self.currency_code,
            "recipient_info": self.recipient_info,
            "shipping_address": self.shipping_address,
            "delivery_instructions": self.delivery_instructions,
            "notes": self.notes,
            "payment_method": self.payment_method,
            "payment_pending_since": to_utc_z(self.payment_pending_since),
            "payment_proof_ref": self.payment_proof_ref,
            "payment_reference": self.payment_reference,
            "payment_proof_uploaded_at": to_utc_z(self.payment_proof_uploaded_at),
            "validated_by_user_id": self.validated_by_user_id,
            "validated_at": to_utc_z(self.validated_at),
            "rejection_reason": self.rejection_reason,
            "payment_rejected_at": to_utc_z(self.payment_rejected_at),
            "processing_started_at": to_utc_z(self.processing_started_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "tracking_info": self.tracking_info,
            "delivered_at": to_utc_z(self.delivered_at),
            "delivery_proof_ref": self.delivery_proof_ref,
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancellation_reason": self.cancellation_reason,
            "payment_account_id": self.payment_account_id,
            "payment_account_transaction_id": self.payment_account_transaction_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Line on an order. Immutable after creation except for inventory_record_id,
    which is linked for product lines when the order reserves stock.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # product | bundle
    item_type = db.Column(db.String(16), nullable=False)
    item_id = db.Column(db.Integer, nullable=False)
    item_name = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    inventory_record_id = db.Column(db.Integer, db.ForeignKey("inventory_records.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "item_type": self.item_type,
            "item_id": self.item_id,
            "item_name": self.item_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "inventory_record_id": self.inventory_record_id,
            "created_at": to_utc_z(self.created_at),
        }


class OrderStatusHistory(db.Model):
    """Append-only transition log. Written best-effort; never blocks a transition."""
    __tablename__ = "order_status_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    previous_status = db.Column(db.String(16), nullable=True)
    new_status = db.Column(db.String(16), nullable=False)
    previous_payment_status = db.Column(db.String(16), nullable=True)
    new_payment_status = db.Column(db.String(16), nullable=True)

    changed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "previous_payment_status": self.previous_payment_status,
            "new_payment_status": self.new_payment_status,
            "changed_by_user_id": self.changed_by_user_id,
            "notes": self.notes,
            "changed_at": to_utc_z(self.changed_at),
        }
