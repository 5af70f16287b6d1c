# Overview: Flask API routes for admin reports.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, internal_error_response, require_actor
from ..errors import FulfillmentError
from ..services import reporting_service
from ..services.authorization import verify_admin_role

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/pending-orders-count")
@require_actor
def pending_orders_count_route():
    try:
        verify_admin_role(g.actor_id)
        return jsonify({"count": reporting_service.get_pending_orders_count()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to count pending orders")
        return internal_error_response()


@reports_bp.get("/orders")
@require_actor
def order_stats_route():
    """Query: start, end (ISO-8601, inclusive, on created_at)."""
    try:
        verify_admin_role(g.actor_id)
        stats = reporting_service.order_stats(request.args.get("start"), request.args.get("end"))
        return jsonify({"stats": stats}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build order stats")
        return internal_error_response()


@reports_bp.get("/remittances")
@require_actor
def remittance_stats_route():
    try:
        verify_admin_role(g.actor_id)
        stats = reporting_service.remittance_stats(request.args.get("start"), request.args.get("end"))
        return jsonify({"stats": stats}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build remittance stats")
        return internal_error_response()


@reports_bp.get("/accounts")
@require_actor
def account_usage_route():
    try:
        verify_admin_role(g.actor_id)
        return jsonify({"accounts": reporting_service.account_usage_summary()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build account usage summary")
        return internal_error_response()
