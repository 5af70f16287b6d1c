from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """Sellable physical product. Stock lives on its InventoryRecord."""
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Bundle(db.Model):
    """
    Sellable item composed of fixed constituent products (a "combo").

    A bundle holds no stock of its own: ordering N bundles consumes
    N * BundleItem.quantity of each constituent product.
    """
    __tablename__ = "bundles"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship("BundleItem", backref="bundle", lazy=True, cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class BundleItem(db.Model):
    __tablename__ = "bundle_items"
    __table_args__ = (
        db.UniqueConstraint("bundle_id", "product_id", name="uq_bundle_items_bundle_product"),
        db.CheckConstraint("quantity > 0", name="ck_bundle_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bundle_id = db.Column(db.Integer, db.ForeignKey("bundles.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bundle_id": self.bundle_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
        }


class InventoryRecord(db.Model):
    """
    On-hand and reserved stock for one product.

    INVARIANTS (enforced by CHECK constraints and by services/inventory_service):
    - quantity >= 0
    - 0 <= reserved_quantity <= quantity
    - available = quantity - reserved_quantity is never negative

    Mutated ONLY through the inventory ledger (receive / reserve / release /
    reduce); every mutation appends an InventoryMovement.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("product_id", name="uq_inventory_records_product"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        db.CheckConstraint("reserved_quantity >= 0", name="ck_inventory_reserved_non_negative"),
        db.CheckConstraint("reserved_quantity <= quantity", name="ck_inventory_reserved_le_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("inventory_record", uselist=False))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_quantity(self) -> int:
        return (self.quantity or 0) - (self.reserved_quantity or 0)

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord id={self.id} product_id={self.product_id} "
            f"quantity={self.quantity} reserved={self.reserved_quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "reserved_quantity": self.reserved_quantity,
            "available_quantity": self.available_quantity,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryMovement(db.Model):
    """Append-only audit row, one per ledger operation."""
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_invmov_record_occurred", "inventory_record_id", "occurred_at"),
        db.Index("ix_invmov_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_record_id = db.Column(db.Integer, db.ForeignKey("inventory_records.id"), nullable=False)

    # receive, reserve, release, reduce
    movement_type = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    # Change to reserved_quantity; summed per reference it gives what that reference still holds
    reserved_delta = db.Column(db.Integer, nullable=False, default=0)

    # Snapshot after the movement was applied
    quantity_after = db.Column(db.Integer, nullable=False)
    reserved_after = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_record_id": self.inventory_record_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "reserved_delta": self.reserved_delta,
            "quantity_after": self.quantity_after,
            "reserved_after": self.reserved_after,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "actor_user_id": self.actor_user_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
