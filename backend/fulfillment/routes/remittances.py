# Overview: Flask API routes for remittances; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import (
    error_response,
    internal_error_response,
    json_body,
    optional_actor,
    require_actor,
)
from ..errors import FulfillmentError, ValidationFailed
from ..services import remittance_service
from ..services.authorization import verify_admin_role
from ..time_utils import parse_iso_datetime, to_utc_z

remittances_bp = Blueprint("remittances", __name__, url_prefix="/api/remittances")


def _remittance_payload(remittance) -> dict:
    data = remittance.to_dict()
    data["delivery_alert"] = remittance_service.calculate_delivery_alert(remittance)
    return data


def _parse_date_arg(name: str):
    try:
        return parse_iso_datetime(request.args.get(name))
    except ValueError:
        raise ValidationFailed(f"{name} must be an ISO-8601 datetime") from None


@remittances_bp.post("/quote")
@require_actor
def quote_remittance_route():
    """
    Price a remittance without creating it.

    Request body: {"remittance_type_id": 1, "amount_cents": 10000}
    """
    try:
        data = json_body()
        quote = remittance_service.calculate_remittance(data.get("remittance_type_id"), data.get("amount_cents"))
        return jsonify({"quote": quote}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to quote remittance")
        return internal_error_response()


@remittances_bp.post("/")
@require_actor
def create_remittance_route():
    """
    Request body:
    {
        "remittance_type_id": 1,
        "amount_cents": 10000,
        "recipient_name": "Ana Perez",
        "recipient_phone": "+53 5 555 1234",
        "recipient_address": "...",     (optional)
        "recipient_province": "...",    (optional)
        "recipient_id_number": "...",   (optional)
        "delivery_notes": "..."         (optional)
    }

    Returns:
        201: Remittance created (CREATED) with its recipient_token
    """
    try:
        data = json_body()
        remittance = remittance_service.create_remittance(
            g.actor_id,
            data.get("remittance_type_id"),
            data.get("amount_cents"),
            data.get("recipient_name"),
            data.get("recipient_phone"),
            recipient_address=data.get("recipient_address"),
            recipient_province=data.get("recipient_province"),
            recipient_id_number=data.get("recipient_id_number"),
            delivery_notes=data.get("delivery_notes"),
        )
        payload = _remittance_payload(remittance)
        payload["recipient_token"] = remittance.recipient_token
        return jsonify({"remittance": payload}), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create remittance")
        return internal_error_response()


@remittances_bp.get("/mine")
@require_actor
def list_my_remittances_route():
    try:
        remittances = remittance_service.get_my_remittances(g.actor_id, status=request.args.get("status"))
        return jsonify({"remittances": [_remittance_payload(r) for r in remittances]}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list user remittances")
        return internal_error_response()


@remittances_bp.get("/")
@require_actor
def list_remittances_route():
    """Admin list. Query: status, user_id, search, date_from, date_to, limit, offset."""
    try:
        remittances = remittance_service.get_all_remittances(
            g.actor_id,
            status=request.args.get("status"),
            user_id=request.args.get("user_id", type=int),
            search=request.args.get("search"),
            date_from=_parse_date_arg("date_from"),
            date_to=_parse_date_arg("date_to"),
            limit=request.args.get("limit", 100, type=int),
            offset=request.args.get("offset", 0, type=int),
        )
        return jsonify({"remittances": [_remittance_payload(r) for r in remittances]}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list remittances")
        return internal_error_response()


@remittances_bp.get("/alerts")
@require_actor
def remittance_alerts_route():
    """PROCESSING remittances past the alert threshold (admin)."""
    try:
        verify_admin_role(g.actor_id)
        alerts = remittance_service.get_remittances_needing_alert()
        return jsonify({
            "alerts": [
                {
                    "remittance_id": a["remittance"].id,
                    "remittance_number": a["remittance"].remittance_number,
                    "processing_started_at": to_utc_z(a["remittance"].processing_started_at),
                    "hours_in_processing": a["hours_in_processing"],
                    "threshold_hours": a["threshold_hours"],
                }
                for a in alerts
            ]
        }), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list remittance alerts")
        return internal_error_response()


@remittances_bp.get("/<int:remittance_id>")
@require_actor
def get_remittance_route(remittance_id: int):
    try:
        details = remittance_service.get_remittance_details(remittance_id, g.actor_id)
        return jsonify({"remittance": details}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get remittance")
        return internal_error_response()


@remittances_bp.post("/<int:remittance_id>/payment-proof")
@require_actor
def upload_payment_proof_route(remittance_id: int):
    try:
        data = json_body()
        remittance = remittance_service.upload_payment_proof(
            remittance_id,
            g.actor_id,
            data.get("proof_ref"),
            payment_reference=data.get("payment_reference"),
            notes=data.get("notes"),
        )
        return jsonify({"remittance": _remittance_payload(remittance)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to upload remittance payment proof")
        return internal_error_response()


@remittances_bp.post("/<int:remittance_id>/validate-payment")
@require_actor
def validate_payment_route(remittance_id: int):
    try:
        data = json_body()
        remittance = remittance_service.validate_payment(remittance_id, g.actor_id, notes=data.get("notes"))
        return jsonify({"remittance": _remittance_payload(remittance)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to validate remittance payment")
        return internal_error_response()


@remittances_bp.post("/<int:remittance_id>/reject-payment")
@require_actor
def reject_payment_route(remittance_id: int):
    try:
        data = json_body()
        remittance = remittance_service.reject_payment(remittance_id, g.actor_id, data.get("reason"))
        return jsonify({"remittance": _remittance_payload(remittance)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject remittance payment")
        return internal_error_response()


@remittances_bp.post("/<int:remittance_id>/start-processing")
@require_actor
def start_processing_route(remittance_id: int):
    try:
        data = json_body()
        remittance = remittance_service.start_processing(remittance_id, g.actor_id, notes=data.get("notes"))
        return jsonify({"remittance": _remittance_payload(remittance)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start remittance processing")
        return internal_error_response()


@remittances_bp.post("/<int:remittance_id>/confirm-delivery")
@optional_actor
def confirm_delivery_route(remittance_id: int):
    """
    Confirm delivery as an admin (X-User-Id) or as the recipient.

    Request body:
    {
        "recipient_token": "...",          (recipient confirmation)
        "delivery_proof_ref": "...",       (optional)
        "bank_transfer_reference": "...",  (required for transfer deliveries)
        "notes": "..."                     (optional)
    }
    """
    try:
        data = json_body()
        remittance = remittance_service.confirm_delivery(
            remittance_id,
            actor_id=g.actor_id,
            recipient_token=data.get("recipient_token"),
            delivery_proof_ref=data.get("delivery_proof_ref"),
            bank_transfer_reference=data.get("bank_transfer_reference"),
            notes=data.get("notes"),
        )
        return jsonify({"remittance": _remittance_payload(remittance)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm remittance delivery")
        return internal_error_response()


@remittances_bp.post("/<int:remittance_id>/complete")
@require_actor
def complete_remittance_route(remittance_id: int):
    try:
        data = json_body()
        remittance = remittance_service.complete_remittance(remittance_id, g.actor_id, notes=data.get("notes"))
        return jsonify({"remittance": _remittance_payload(remittance)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete remittance")
        return internal_error_response()


@remittances_bp.post("/<int:remittance_id>/cancel")
@require_actor
def cancel_remittance_route(remittance_id: int):
    try:
        data = json_body()
        remittance = remittance_service.cancel_remittance(remittance_id, g.actor_id, reason=data.get("reason"))
        return jsonify({"remittance": _remittance_payload(remittance)}), 200
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel remittance")
        return internal_error_response()
