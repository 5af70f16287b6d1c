# Overview: Inventory ledger: receive, reserve, release and reduce stock with batched bundle expansion.

"""
Inventory Ledger Invariants

Stock model:
- One InventoryRecord per stocked product: quantity (on hand) and
  reserved_quantity (soft holds of unpaid orders).
- available = quantity - reserved_quantity.
- Products without an InventoryRecord are non-stocked and never block an order.

Business invariants:
- reserve:  available >= qty, else InsufficientStock.    reserved += qty
- release:  reserved >= qty, else InsufficientStock.     reserved -= qty
- reduce:   quantity >= qty and reserved >= qty.         quantity -= qty, reserved -= qty
- receive:  quantity += qty (the only way stock enters)
- Shortfalls are errors, never clamped.
- Every mutation appends exactly one InventoryMovement with the post-state.

Bundle expansion (batch-then-map):
- one query for every BundleItem of every bundle referenced by the lines
- one query for every InventoryRecord of the resulting product set
- fan-out and per-record aggregation in memory
So the number of lookup queries per expansion is constant, whatever the
number of lines, bundles or constituent products.

Holds per reference:
- every reserve / release / reduce movement carries reserved_delta and the
  reference (e.g. "order", order id); their sum is what the reference holds
- an order releases or consumes exactly that sum, never a re-expansion of its
  lines against the current catalog

The ledger operations below never commit; they run inside the caller's
transaction so an order's reservations succeed or fail together.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable

from sqlalchemy import func

from ..errors import InsufficientStock, NotFound, ValidationFailed
from ..extensions import db
from ..models import BundleItem, InventoryMovement, InventoryRecord, Product
from ..time_utils import utcnow
from .authorization import verify_admin_role
from .concurrency import lock_for_update, run_with_retry

MOVEMENT_TYPES = ("receive", "reserve", "release", "reduce")
ITEM_TYPES = ("product", "bundle")


def _validate_qty(qty) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise ValidationFailed("Quantity must be a positive integer", context={"quantity": qty})
    return qty


def _record_movement(
    record: InventoryRecord,
    movement_type: str,
    quantity_delta: int,
    *,
    reserved_delta: int = 0,
    reference_type: str | None,
    reference_id: int | None,
    actor_user_id: int | None,
    note: str | None,
) -> InventoryMovement:
    movement = InventoryMovement(
        inventory_record_id=record.id,
        movement_type=movement_type,
        quantity_delta=quantity_delta,
        reserved_delta=reserved_delta,
        quantity_after=record.quantity,
        reserved_after=record.reserved_quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        actor_user_id=actor_user_id,
        note=note,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    return movement


def _shortfall(record: InventoryRecord, operation: str, qty: int, **extra) -> InsufficientStock:
    context = {
        "operation": operation,
        "inventory_record_id": record.id,
        "product_id": record.product_id,
        "requested": qty,
        "quantity": record.quantity,
        "reserved_quantity": record.reserved_quantity,
    }
    context.update(extra)
    return InsufficientStock(f"Insufficient stock to {operation} product {record.product_id}", context=context)


def reserve(
    record: InventoryRecord,
    qty: int,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
    actor_user_id: int | None = None,
    note: str | None = None,
) -> InventoryRecord:
    _validate_qty(qty)
    if record.available_quantity < qty:
        raise _shortfall(record, "reserve", qty, available=record.available_quantity)
    record.reserved_quantity = (record.reserved_quantity or 0) + qty
    _record_movement(
        record, "reserve", 0, reserved_delta=qty,
        reference_type=reference_type, reference_id=reference_id,
        actor_user_id=actor_user_id, note=note,
    )
    return record


def release(
    record: InventoryRecord,
    qty: int,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
    actor_user_id: int | None = None,
    note: str | None = None,
) -> InventoryRecord:
    _validate_qty(qty)
    if (record.reserved_quantity or 0) < qty:
        raise _shortfall(record, "release", qty)
    record.reserved_quantity -= qty
    _record_movement(
        record, "release", 0, reserved_delta=-qty,
        reference_type=reference_type, reference_id=reference_id,
        actor_user_id=actor_user_id, note=note,
    )
    return record


def reduce(
    record: InventoryRecord,
    qty: int,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
    actor_user_id: int | None = None,
    note: str | None = None,
) -> InventoryRecord:
    """Consume reserved stock permanently (payment validated)."""
    _validate_qty(qty)
    if (record.quantity or 0) < qty or (record.reserved_quantity or 0) < qty:
        raise _shortfall(record, "reduce", qty)
    record.quantity -= qty
    record.reserved_quantity -= qty
    _record_movement(
        record, "reduce", -qty, reserved_delta=-qty,
        reference_type=reference_type, reference_id=reference_id,
        actor_user_id=actor_user_id, note=note,
    )
    return record


def receive_stock(product_id: int, qty: int, actor_id: int, note: str | None = None) -> InventoryRecord:
    """Add on-hand stock, creating the product's InventoryRecord on first receipt."""
    _validate_qty(qty)

    def _op():
        verify_admin_role(actor_id)
        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found", context={"product_id": product_id})

        record = lock_for_update(
            db.session.query(InventoryRecord).filter(InventoryRecord.product_id == product_id)
        ).first()
        if record is None:
            record = InventoryRecord(product_id=product_id, quantity=0, reserved_quantity=0)
            db.session.add(record)
            db.session.flush()

        record.quantity += qty
        _record_movement(
            record, "receive", qty,
            reference_type="product", reference_id=product_id,
            actor_user_id=actor_id, note=note,
        )
        db.session.commit()
        return record

    return run_with_retry(_op, operation="receive_stock", context={"product_id": product_id, "quantity": qty})


# =============================================================================
# BUNDLE EXPANSION (batch-then-map)
# =============================================================================

def _line_value(item, field: str):
    if isinstance(item, dict):
        return item.get(field)
    return getattr(item, field)


def expand_items(items: Iterable, lock: bool = False) -> list[tuple[InventoryRecord, int]]:
    """
    Expand order lines (products and bundles) into (InventoryRecord, quantity)
    pairs, aggregated per record and ordered by record id.

    Lines may be OrderItem rows or dicts with item_type / item_id / quantity.
    With lock=True the inventory rows are selected FOR UPDATE; the id ordering
    keeps lock acquisition order stable across concurrent orders.
    """
    product_qty: dict[int, int] = defaultdict(int)
    bundle_qty: dict[int, int] = defaultdict(int)

    for item in items:
        item_type = _line_value(item, "item_type")
        item_id = _line_value(item, "item_id")
        qty = _validate_qty(_line_value(item, "quantity"))
        if item_type == "product":
            product_qty[item_id] += qty
        elif item_type == "bundle":
            bundle_qty[item_id] += qty
        else:
            raise ValidationFailed("Invalid item_type", context={"item_type": item_type})

    if bundle_qty:
        components = (
            db.session.query(BundleItem)
            .filter(BundleItem.bundle_id.in_(list(bundle_qty)))
            .all()
        )
        for component in components:
            product_qty[component.product_id] += component.quantity * bundle_qty[component.bundle_id]

    if not product_qty:
        return []

    query = (
        db.session.query(InventoryRecord)
        .filter(InventoryRecord.product_id.in_(list(product_qty)))
        .order_by(InventoryRecord.id.asc())
    )
    if lock:
        query = lock_for_update(query)

    return [(record, product_qty[record.product_id]) for record in query.all()]


def _apply_to_items(operation, items, reference_type, reference_id, actor_user_id, note):
    applied = []
    for record, qty in expand_items(items, lock=True):
        operation(
            record, qty,
            reference_type=reference_type, reference_id=reference_id,
            actor_user_id=actor_user_id, note=note,
        )
        applied.append((record.id, qty))
    db.session.flush()
    return applied


def reserve_items(items, *, reference_type=None, reference_id=None, actor_user_id=None, note=None):
    """Reserve every stocked product behind the lines; all or nothing within the caller's transaction."""
    return _apply_to_items(reserve, items, reference_type, reference_id, actor_user_id, note)


def release_items(items, *, reference_type=None, reference_id=None, actor_user_id=None, note=None):
    return _apply_to_items(release, items, reference_type, reference_id, actor_user_id, note)


def reduce_items(items, *, reference_type=None, reference_id=None, actor_user_id=None, note=None):
    return _apply_to_items(reduce, items, reference_type, reference_id, actor_user_id, note)


# =============================================================================
# HOLDS PER REFERENCE
# =============================================================================

def held_quantities(reference_type: str, reference_id: int, lock: bool = False) -> list[tuple[InventoryRecord, int]]:
    """
    What a reference (e.g. an order) still holds, read from its own ledger rows.

    Records created or bundles edited after the reservation do not change the
    result, so releasing or reducing a hold never touches stock the reference
    never reserved. Two queries: one aggregate over the movements, one for the
    records (FOR UPDATE with lock=True, ordered by id).
    """
    rows = (
        db.session.query(InventoryMovement.inventory_record_id, func.sum(InventoryMovement.reserved_delta))
        .filter(
            InventoryMovement.reference_type == reference_type,
            InventoryMovement.reference_id == reference_id,
        )
        .group_by(InventoryMovement.inventory_record_id)
        .all()
    )
    held = {record_id: int(qty) for record_id, qty in rows if qty and qty > 0}
    if not held:
        return []

    query = (
        db.session.query(InventoryRecord)
        .filter(InventoryRecord.id.in_(list(held)))
        .order_by(InventoryRecord.id.asc())
    )
    if lock:
        query = lock_for_update(query)
    return [(record, held[record.id]) for record in query.all()]


def _apply_to_held(operation, reference_type, reference_id, actor_user_id, note):
    applied = []
    for record, qty in held_quantities(reference_type, reference_id, lock=True):
        operation(
            record, qty,
            reference_type=reference_type, reference_id=reference_id,
            actor_user_id=actor_user_id, note=note,
        )
        applied.append((record.id, qty))
    db.session.flush()
    return applied


def release_held(reference_type: str, reference_id: int, *, actor_user_id=None, note=None):
    """Release everything the reference still has reserved."""
    return _apply_to_held(release, reference_type, reference_id, actor_user_id, note)


def reduce_held(reference_type: str, reference_id: int, *, actor_user_id=None, note=None):
    """Consume everything the reference still has reserved."""
    return _apply_to_held(reduce, reference_type, reference_id, actor_user_id, note)


# =============================================================================
# READS
# =============================================================================

def get_inventory_record(product_id: int) -> InventoryRecord | None:
    return (
        db.session.query(InventoryRecord)
        .filter(InventoryRecord.product_id == product_id)
        .first()
    )


def get_inventory_summary(product_id: int) -> dict:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound("Product not found", context={"product_id": product_id})

    record = get_inventory_record(product_id)
    if record is None:
        return {
            "product_id": product_id,
            "sku": product.sku,
            "stocked": False,
            "quantity": 0,
            "reserved_quantity": 0,
            "available_quantity": 0,
        }
    return {
        "product_id": product_id,
        "sku": product.sku,
        "stocked": True,
        "inventory_record_id": record.id,
        "quantity": record.quantity,
        "reserved_quantity": record.reserved_quantity,
        "available_quantity": record.available_quantity,
    }


def list_movements(product_id: int, limit: int = 100) -> list[InventoryMovement]:
    record = get_inventory_record(product_id)
    if record is None:
        return []
    limit = max(1, min(int(limit), 500))
    return (
        db.session.query(InventoryMovement)
        .filter(InventoryMovement.inventory_record_id == record.id)
        .order_by(InventoryMovement.id.desc())
        .limit(limit)
        .all()
    )
