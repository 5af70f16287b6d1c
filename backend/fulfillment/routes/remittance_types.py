# Overview: Flask API routes for remittance types (corridors and pricing).

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, internal_error_response, json_body, require_actor
from ..errors import FulfillmentError
from ..services import commission_service

remittance_types_bp = Blueprint("remittance_types", __name__, url_prefix="/api/remittance-types")


@remittance_types_bp.get("/")
def list_remittance_types_route():
    """Active types by default; ?include_inactive=true lists all."""
    try:
        include_inactive = request.args.get("include_inactive", "false").lower() in ("1", "true", "yes")
        types = commission_service.list_remittance_types(active_only=not include_inactive)
        return jsonify({"remittance_types": [t.to_dict() for t in types]}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list remittance types")
        return internal_error_response()


@remittance_types_bp.get("/<int:type_id>")
def get_remittance_type_route(type_id: int):
    try:
        remittance_type = commission_service.get_remittance_type(type_id)
        return jsonify({"remittance_type": remittance_type.to_dict()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get remittance type")
        return internal_error_response()


@remittance_types_bp.post("/")
@require_actor
def create_remittance_type_route():
    """
    Admin only.

    Request body:
    {
        "name": "USD to CUP cash",
        "currency_code": "USD",
        "delivery_currency": "CUP",
        "exchange_rate": "320.00",
        "commission_percentage": "5",
        "commission_fixed_cents": 200,
        "min_amount_cents": 1000,
        "max_amount_cents": 100000,   (optional, null = no max)
        "delivery_method": "cash",
        "max_delivery_days": 3
    }
    """
    try:
        remittance_type = commission_service.create_remittance_type(g.actor_id, **json_body())
        return jsonify({"remittance_type": remittance_type.to_dict()}), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create remittance type")
        return internal_error_response()


@remittance_types_bp.patch("/<int:type_id>")
@require_actor
def update_remittance_type_route(type_id: int):
    try:
        remittance_type = commission_service.update_remittance_type(type_id, g.actor_id, **json_body())
        return jsonify({"remittance_type": remittance_type.to_dict()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update remittance type")
        return internal_error_response()


@remittance_types_bp.delete("/<int:type_id>")
@require_actor
def delete_remittance_type_route(type_id: int):
    try:
        commission_service.delete_remittance_type(type_id, g.actor_id)
        return jsonify({"deleted": True}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete remittance type")
        return internal_error_response()
