# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order API Routes

Checkout, payment proof upload / review and fulfillment transitions.
Owner routes act for the user in X-User-Id; admin routes are checked by the
services (403 for non-admins). Stock effects are described in
services/order_service.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, internal_error_response, json_body, require_actor
from ..errors import FulfillmentError
from ..services import order_service

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_payload(order, include_items: bool = True) -> dict:
    data = order.to_dict(include_items=include_items)
    data["days_in_processing"] = order_service.get_days_in_processing(order)
    return data


# =============================================================================
# CHECKOUT / READS
# =============================================================================

@orders_bp.post("/")
@require_actor
def create_order_route():
    """
    Create an order and reserve its stock.

    Request body:
    {
        "items": [{"item_type": "product", "item_id": 1, "quantity": 2, "unit_price_cents": 1500}],
        "currency_code": "USD",
        "subtotal_cents": 3000,
        "shipping_cents": 500,      (optional)
        "discount_cents": 0,        (optional)
        "tax_cents": 0,             (optional)
        "total_cents": 3500,        (optional, must match)
        "shipping_address": "...",  (optional)
        "recipient_info": {...}     (optional)
    }

    Returns:
        201: Order created (status PENDING, payment PENDING)
        400: Invalid input
        409: Insufficient stock
    """
    try:
        data = json_body()
        order = order_service.create_order(
            user_id=g.actor_id,
            items=data.get("items"),
            currency_code=data.get("currency_code"),
            subtotal_cents=data.get("subtotal_cents"),
            discount_cents=data.get("discount_cents", 0),
            shipping_cents=data.get("shipping_cents", 0),
            tax_cents=data.get("tax_cents", 0),
            total_cents=data.get("total_cents"),
            recipient_info=data.get("recipient_info"),
            shipping_address=data.get("shipping_address"),
            delivery_instructions=data.get("delivery_instructions"),
            notes=data.get("notes"),
            payment_method=data.get("payment_method") or "zelle",
        )
        return jsonify({"order": _order_payload(order)}), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return internal_error_response()


@orders_bp.get("/mine")
@require_actor
def list_my_orders_route():
    try:
        orders = order_service.list_user_orders(
            g.actor_id,
            status=request.args.get("status"),
            payment_status=request.args.get("payment_status"),
        )
        return jsonify({"orders": [_order_payload(o, include_items=False) for o in orders]}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list user orders")
        return internal_error_response()


@orders_bp.get("/")
@require_actor
def list_orders_route():
    """Admin order list. Query: status, payment_status, user_id, search, limit, offset."""
    try:
        orders = order_service.list_orders(
            g.actor_id,
            status=request.args.get("status"),
            payment_status=request.args.get("payment_status"),
            user_id=request.args.get("user_id", type=int),
            search=request.args.get("search"),
            limit=request.args.get("limit", 100, type=int),
            offset=request.args.get("offset", 0, type=int),
        )
        return jsonify({"orders": [_order_payload(o, include_items=False) for o in orders]}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return internal_error_response()


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id, g.actor_id)
        return jsonify({"order": _order_payload(order)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get order")
        return internal_error_response()


@orders_bp.get("/<int:order_id>/history")
@require_actor
def get_order_history_route(order_id: int):
    try:
        history = order_service.get_order_history(order_id, g.actor_id)
        return jsonify({"history": [h.to_dict() for h in history]}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get order history")
        return internal_error_response()


# =============================================================================
# PAYMENT
# =============================================================================

@orders_bp.post("/<int:order_id>/payment-proof")
@require_actor
def upload_payment_proof_route(order_id: int):
    """
    Request body:
    {
        "proof_ref": "uploads/proofs/abc.png",
        "payment_reference": "ZELLE-123"  (optional)
    }
    """
    try:
        data = json_body()
        order = order_service.upload_payment_proof(
            order_id,
            g.actor_id,
            data.get("proof_ref"),
            payment_reference=data.get("payment_reference"),
        )
        return jsonify({"order": _order_payload(order)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to upload order payment proof")
        return internal_error_response()


@orders_bp.post("/<int:order_id>/retry-payment")
@require_actor
def retry_payment_route(order_id: int):
    try:
        order = order_service.retry_payment(order_id, g.actor_id)
        return jsonify({"order": _order_payload(order)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to retry order payment")
        return internal_error_response()


@orders_bp.post("/<int:order_id>/validate-payment")
@require_actor
def validate_payment_route(order_id: int):
    try:
        data = json_body()
        order = order_service.validate_payment(order_id, g.actor_id, notes=data.get("notes"))
        return jsonify({"order": _order_payload(order)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to validate order payment")
        return internal_error_response()


@orders_bp.post("/<int:order_id>/reject-payment")
@require_actor
def reject_payment_route(order_id: int):
    """Request body: {"reason": "Amount does not match"}"""
    try:
        data = json_body()
        order = order_service.reject_payment(order_id, g.actor_id, data.get("reason"))
        return jsonify({"order": _order_payload(order)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject order payment")
        return internal_error_response()


# =============================================================================
# FULFILLMENT
# =============================================================================

@orders_bp.post("/<int:order_id>/start-processing")
@require_actor
def start_processing_route(order_id: int):
    try:
        data = json_body()
        order = order_service.start_processing(order_id, g.actor_id, notes=data.get("notes"))
        return jsonify({"order": _order_payload(order)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start order processing")
        return internal_error_response()


@orders_bp.post("/<int:order_id>/ship")
@require_actor
def mark_shipped_route(order_id: int):
    try:
        data = json_body()
        order = order_service.mark_shipped(
            order_id, g.actor_id, tracking_info=data.get("tracking_info"), notes=data.get("notes")
        )
        return jsonify({"order": _order_payload(order)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark order shipped")
        return internal_error_response()


@orders_bp.post("/<int:order_id>/deliver")
@require_actor
def mark_delivered_route(order_id: int):
    try:
        data = json_body()
        order = order_service.mark_delivered(
            order_id, g.actor_id, delivery_proof_ref=data.get("delivery_proof_ref"), notes=data.get("notes")
        )
        return jsonify({"order": _order_payload(order)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark order delivered")
        return internal_error_response()


@orders_bp.post("/<int:order_id>/complete")
@require_actor
def complete_order_route(order_id: int):
    try:
        data = json_body()
        order = order_service.complete_order(order_id, g.actor_id, notes=data.get("notes"))
        return jsonify({"order": _order_payload(order)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete order")
        return internal_error_response()


@orders_bp.post("/<int:order_id>/cancel")
@require_actor
def cancel_order_route(order_id: int):
    try:
        data = json_body()
        order = order_service.cancel_order(order_id, g.actor_id, reason=data.get("reason"))
        return jsonify({"order": _order_payload(order)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return internal_error_response()
