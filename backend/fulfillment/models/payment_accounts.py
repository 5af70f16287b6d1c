from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class PaymentAccount(db.Model):
    """
    Payment-receiving account in the rotation pool (e.g. a Zelle recipient).

    LIMITS (cents, NULL = unlimited):
    - security_limit_cents: per-transaction cap
    - daily_limit_cents / monthly_limit_cents: caps on the running totals

    Running totals (current_daily_cents / current_monthly_cents) are mutated ONLY
    by services/account_rotation_service (register / reject / reset). The
    PaymentAccountTransaction rows are the ledger of record; the totals are a
    guard rail for selection.
    """
    __tablename__ = "payment_accounts"
    __table_args__ = (
        db.CheckConstraint("current_daily_cents >= 0", name="ck_payment_accounts_daily_non_negative"),
        db.CheckConstraint("current_monthly_cents >= 0", name="ck_payment_accounts_monthly_non_negative"),
        db.Index("ix_payment_accounts_rotation", "is_active", "priority", "last_used_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    bank_name = db.Column(db.String(128), nullable=True)
    account_holder = db.Column(db.String(255), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    for_products = db.Column(db.Boolean, nullable=False, default=True)
    for_remittances = db.Column(db.Boolean, nullable=False, default=True)

    daily_limit_cents = db.Column(db.Integer, nullable=True)
    monthly_limit_cents = db.Column(db.Integer, nullable=True)
    security_limit_cents = db.Column(db.Integer, nullable=True)

    current_daily_cents = db.Column(db.Integer, nullable=False, default=0)
    current_monthly_cents = db.Column(db.Integer, nullable=False, default=0)

    # Lower value = preferred
    priority = db.Column(db.Integer, nullable=False, default=100)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_reset_date = db.Column(db.Date, nullable=True)
    last_monthly_reset_date = db.Column(db.Date, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<PaymentAccount id={self.id} name={self.account_name!r} "
            f"daily={self.current_daily_cents}/{self.daily_limit_cents} priority={self.priority}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_name": self.account_name,
            "email": self.email,
            "phone": self.phone,
            "bank_name": self.bank_name,
            "account_holder": self.account_holder,
            "is_active": self.is_active,
            "for_products": self.for_products,
            "for_remittances": self.for_remittances,
            "daily_limit_cents": self.daily_limit_cents,
            "monthly_limit_cents": self.monthly_limit_cents,
            "security_limit_cents": self.security_limit_cents,
            "current_daily_cents": self.current_daily_cents,
            "current_monthly_cents": self.current_monthly_cents,
            "priority": self.priority,
            "last_used_at": to_utc_z(self.last_used_at),
            "last_reset_date": self.last_reset_date.isoformat() if self.last_reset_date else None,
            "last_monthly_reset_date": (
                self.last_monthly_reset_date.isoformat() if self.last_monthly_reset_date else None
            ),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PaymentAccountTransaction(db.Model):
    """
    Audit row for one incoming payment routed to an account.

    Append-only except for status (pending -> validated | rejected) and its
    validation audit columns. counters_applied records whether the running
    totals were actually incremented, so a rejection reverses only what was added.
    """
    __tablename__ = "payment_account_transactions"
    __table_args__ = (
        db.Index("ix_pat_account_created", "payment_account_id", "created_at"),
        db.Index("ix_pat_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_account_id = db.Column(db.Integer, db.ForeignKey("payment_accounts.id"), nullable=False)

    # product | remittance
    transaction_type = db.Column(db.String(16), nullable=False)
    # order | remittance
    reference_type = db.Column(db.String(16), nullable=False)
    reference_id = db.Column(db.Integer, nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    counters_applied = db.Column(db.Boolean, nullable=False, default=False)

    validated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    payment_account = db.relationship(
        "PaymentAccount", backref=db.backref("transactions", lazy="dynamic")
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_account_id": self.payment_account_id,
            "transaction_type": self.transaction_type,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "counters_applied": self.counters_applied,
            "validated_by_user_id": self.validated_by_user_id,
            "validated_at": to_utc_z(self.validated_at),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
