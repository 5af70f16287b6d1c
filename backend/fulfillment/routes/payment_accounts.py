# Overview: Flask API routes for the payment account rotation pool (admin).

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, internal_error_response, json_body, require_actor
from ..errors import FulfillmentError
from ..services import account_rotation_service

payment_accounts_bp = Blueprint("payment_accounts", __name__, url_prefix="/api/payment-accounts")


@payment_accounts_bp.get("/")
@require_actor
def list_accounts_route():
    """Query: type_class (product | remittance), include_inactive (default true)."""
    try:
        include_inactive = request.args.get("include_inactive", "true").lower() in ("1", "true", "yes")
        accounts = account_rotation_service.list_accounts(
            g.actor_id,
            type_class=request.args.get("type_class"),
            include_inactive=include_inactive,
        )
        return jsonify({"payment_accounts": [a.to_dict() for a in accounts]}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list payment accounts")
        return internal_error_response()


@payment_accounts_bp.post("/")
@require_actor
def create_account_route():
    """
    Request body:
    {
        "account_name": "Zelle 1",
        "account_holder": "Jane Doe",
        "email": "jane@example.com",     (optional)
        "daily_limit_cents": 100000,      (optional, null = unlimited)
        "monthly_limit_cents": 2000000,   (optional)
        "security_limit_cents": 50000,    (optional)
        "for_products": true,
        "for_remittances": true,
        "priority": 10
    }
    """
    try:
        account = account_rotation_service.create_account(g.actor_id, **json_body())
        return jsonify({"payment_account": account.to_dict()}), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create payment account")
        return internal_error_response()


@payment_accounts_bp.patch("/<int:account_id>")
@require_actor
def update_account_route(account_id: int):
    try:
        account = account_rotation_service.update_account(account_id, g.actor_id, **json_body())
        return jsonify({"payment_account": account.to_dict()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update payment account")
        return internal_error_response()


@payment_accounts_bp.post("/<int:account_id>/deactivate")
@require_actor
def deactivate_account_route(account_id: int):
    try:
        account = account_rotation_service.deactivate_account(account_id, g.actor_id)
        return jsonify({"payment_account": account.to_dict()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to deactivate payment account")
        return internal_error_response()


@payment_accounts_bp.post("/<int:account_id>/reset-counters")
@require_actor
def reset_account_counters_route(account_id: int):
    """Request body: {"period": "daily" | "monthly" | "all"}"""
    try:
        period = json_body().get("period", "all")
        account = account_rotation_service.reset_account_counters(account_id, period, g.actor_id)
        return jsonify({"payment_account": account.to_dict()}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reset payment account counters")
        return internal_error_response()


@payment_accounts_bp.get("/transactions")
@require_actor
def list_transactions_route():
    """Query: account_id, status, reference_type, limit."""
    try:
        transactions = account_rotation_service.get_account_transactions(
            g.actor_id,
            account_id=request.args.get("account_id", type=int),
            status=request.args.get("status"),
            reference_type=request.args.get("reference_type"),
            limit=request.args.get("limit", 100, type=int),
        )
        return jsonify({"transactions": [t.to_dict() for t in transactions]}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list payment account transactions")
        return internal_error_response()


@payment_accounts_bp.get("/stats")
@require_actor
def account_stats_route():
    try:
        stats = account_rotation_service.get_account_stats(
            g.actor_id, account_id=request.args.get("account_id", type=int)
        )
        return jsonify({"stats": stats}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute payment account stats")
        return internal_error_response()
