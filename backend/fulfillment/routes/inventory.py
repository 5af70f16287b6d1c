# Overview: Flask API routes for inventory reads and stock receipts.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, internal_error_response, json_body, require_actor
from ..errors import FulfillmentError
from ..services import inventory_service

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/<int:product_id>")
def get_inventory_summary_route(product_id: int):
    try:
        return jsonify({"inventory": inventory_service.get_inventory_summary(product_id)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get inventory summary")
        return internal_error_response()


@inventory_bp.get("/<int:product_id>/movements")
@require_actor
def list_movements_route(product_id: int):
    try:
        movements = inventory_service.list_movements(product_id, limit=request.args.get("limit", 100, type=int))
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list inventory movements")
        return internal_error_response()


@inventory_bp.post("/<int:product_id>/receive")
@require_actor
def receive_stock_route(product_id: int):
    """
    Admin only. Request body: {"quantity": 10, "note": "PO-42"}
    """
    try:
        data = json_body()
        record = inventory_service.receive_stock(product_id, data.get("quantity"), g.actor_id, note=data.get("note"))
        return jsonify({"inventory": record.to_dict()}), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to receive stock")
        return internal_error_response()
