# Overview: Commission calculation and remittance type administration.

"""
Commission Calculator (single source of truth)

    percentage_cents    = round_half_up(amount_cents * commission_percentage / 100)
    total_cents         = commission_fixed_cents + percentage_cents
    total_charged_cents = amount_cents + total_cents

commission_percentage is stored as a percent value (5 = 5%). The division by
100 happens in _percentage_cents() and nowhere else; callers must never
pre-scale the percentage or re-apply the commission to a charged total.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation as DecimalInvalidOperation

from ..errors import InvalidOperation, NotFound, ValidationFailed
from ..extensions import db
from ..models import Remittance, RemittanceType
from .authorization import verify_admin_role
from .concurrency import run_with_retry

DELIVERY_METHODS = ("cash", "transfer", "card", "pickup")

_CENT = Decimal("1")
_HUNDREDTH = Decimal("0.01")


@dataclass(frozen=True)
class CommissionBreakdown:
    amount_cents: int
    fixed_cents: int
    percentage_cents: int
    total_cents: int
    total_charged_cents: int

    def to_dict(self) -> dict:
        return asdict(self)


def _percentage_cents(amount_cents: int, percentage) -> int:
    raw = Decimal(amount_cents) * Decimal(str(percentage or 0)) / Decimal(100)
    return int(raw.quantize(_CENT, rounding=ROUND_HALF_UP))


def _require_positive_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationFailed(f"{field} must be a positive integer", context={field: value})
    return value


def calculate_commission(remittance_type: RemittanceType, amount_cents: int) -> CommissionBreakdown:
    """
    Compute the commission for sending amount_cents with remittance_type.

    Raises:
        ValidationFailed: amount not a positive integer, outside [min, max]
                          (max NULL = unbounded), or type inactive
    """
    _require_positive_int(amount_cents, "amount_cents")

    if not remittance_type.is_active:
        raise ValidationFailed(
            "Remittance type is not active",
            context={"remittance_type_id": remittance_type.id},
        )
    if amount_cents < remittance_type.min_amount_cents:
        raise ValidationFailed(
            "Amount is below the minimum for this remittance type",
            context={"amount_cents": amount_cents, "min_amount_cents": remittance_type.min_amount_cents},
        )
    if remittance_type.max_amount_cents is not None and amount_cents > remittance_type.max_amount_cents:
        raise ValidationFailed(
            "Amount exceeds the maximum for this remittance type",
            context={"amount_cents": amount_cents, "max_amount_cents": remittance_type.max_amount_cents},
        )

    fixed_cents = int(remittance_type.commission_fixed_cents or 0)
    percentage_cents = _percentage_cents(amount_cents, remittance_type.commission_percentage)
    total_cents = fixed_cents + percentage_cents

    return CommissionBreakdown(
        amount_cents=amount_cents,
        fixed_cents=fixed_cents,
        percentage_cents=percentage_cents,
        total_cents=total_cents,
        total_charged_cents=amount_cents + total_cents,
    )


def amount_to_deliver(remittance_type: RemittanceType, amount_cents: int) -> Decimal:
    """Amount the recipient receives, in delivery currency units (2 decimals)."""
    amount = Decimal(amount_cents) / Decimal(100)
    return (amount * Decimal(str(remittance_type.exchange_rate))).quantize(_HUNDREDTH, rounding=ROUND_HALF_UP)


# =============================================================================
# REMITTANCE TYPE ADMINISTRATION
# =============================================================================

_TYPE_FIELDS = (
    "name",
    "description",
    "currency_code",
    "delivery_currency",
    "exchange_rate",
    "commission_percentage",
    "commission_fixed_cents",
    "min_amount_cents",
    "max_amount_cents",
    "delivery_method",
    "max_delivery_days",
    "is_active",
    "display_order",
)


def _to_decimal(value, field: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (DecimalInvalidOperation, ValueError, TypeError):
        raise ValidationFailed(f"{field} must be a number", context={field: value}) from None


def _validate_type_fields(fields: dict) -> dict:
    """Normalize and validate a complete set of remittance type fields."""
    for required in ("name", "currency_code", "delivery_currency"):
        value = fields.get(required)
        if not isinstance(value, str) or not value.strip():
            raise ValidationFailed(f"{required} is required")
        fields[required] = value.strip()

    rate = _to_decimal(fields.get("exchange_rate"), "exchange_rate")
    if rate <= 0:
        raise ValidationFailed("exchange_rate must be greater than 0")
    fields["exchange_rate"] = rate

    pct = _to_decimal(fields.get("commission_percentage", 0), "commission_percentage")
    if pct < 0 or pct > 100:
        raise ValidationFailed("commission_percentage must be between 0 and 100")
    fields["commission_percentage"] = pct

    fixed = fields.get("commission_fixed_cents", 0)
    if isinstance(fixed, bool) or not isinstance(fixed, int) or fixed < 0:
        raise ValidationFailed("commission_fixed_cents must be a non-negative integer")

    min_amount = _require_positive_int(fields.get("min_amount_cents"), "min_amount_cents")
    max_amount = fields.get("max_amount_cents")
    if max_amount is not None:
        _require_positive_int(max_amount, "max_amount_cents")
        if max_amount < min_amount:
            raise ValidationFailed("max_amount_cents must be greater than or equal to min_amount_cents")

    method = fields.get("delivery_method", "cash")
    if method not in DELIVERY_METHODS:
        raise ValidationFailed(
            "Invalid delivery_method",
            context={"delivery_method": method, "allowed": list(DELIVERY_METHODS)},
        )

    days = fields.get("max_delivery_days", 3)
    _require_positive_int(days, "max_delivery_days")
    return fields


def list_remittance_types(active_only: bool = True) -> list[RemittanceType]:
    query = db.session.query(RemittanceType)
    if active_only:
        query = query.filter(RemittanceType.is_active.is_(True))
    return query.order_by(RemittanceType.display_order.asc(), RemittanceType.id.asc()).all()


def get_remittance_type(type_id: int) -> RemittanceType:
    remittance_type = db.session.get(RemittanceType, type_id)
    if remittance_type is None:
        raise NotFound("Remittance type not found", context={"remittance_type_id": type_id})
    return remittance_type


def create_remittance_type(actor_id: int, **fields) -> RemittanceType:
    unknown = set(fields) - set(_TYPE_FIELDS)
    if unknown:
        raise ValidationFailed("Unknown fields", context={"fields": sorted(unknown)})

    def _op():
        verify_admin_role(actor_id)
        values = _validate_type_fields(dict(fields))
        remittance_type = RemittanceType(**values)
        db.session.add(remittance_type)
        db.session.commit()
        return remittance_type

    return run_with_retry(_op, operation="create_remittance_type", context={"actor_id": actor_id})


def update_remittance_type(type_id: int, actor_id: int, **changes) -> RemittanceType:
    unknown = set(changes) - set(_TYPE_FIELDS)
    if unknown:
        raise ValidationFailed("Unknown fields", context={"fields": sorted(unknown)})

    def _op():
        verify_admin_role(actor_id)
        remittance_type = get_remittance_type(type_id)
        merged = {field: getattr(remittance_type, field) for field in _TYPE_FIELDS}
        merged.update(changes)
        values = _validate_type_fields(merged)
        for field in changes:
            setattr(remittance_type, field, values[field])
        db.session.commit()
        return remittance_type

    return run_with_retry(
        _op,
        operation="update_remittance_type",
        context={"remittance_type_id": type_id, "actor_id": actor_id},
    )


def delete_remittance_type(type_id: int, actor_id: int) -> None:
    """Delete a type no remittance references (InvalidOperation otherwise)."""
    def _op():
        verify_admin_role(actor_id)
        remittance_type = get_remittance_type(type_id)
        in_use = (
            db.session.query(Remittance.id)
            .filter(Remittance.remittance_type_id == type_id)
            .first()
        )
        if in_use is not None:
            raise InvalidOperation(
                "Remittance type is referenced by existing remittances; deactivate it instead",
                context={"remittance_type_id": type_id},
            )
        db.session.delete(remittance_type)
        db.session.commit()

    run_with_retry(
        _op,
        operation="delete_remittance_type",
        context={"remittance_type_id": type_id, "actor_id": actor_id},
    )
