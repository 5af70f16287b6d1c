# Overview: Request decorators and the shared error response for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import FulfillmentError

ACTOR_HEADER = "X-User-Id"


def _header_actor_id():
    raw = request.headers.get(ACTOR_HEADER)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def require_actor(f):
    """
    Require the acting user's id, forwarded by the authenticating gateway.

    Sets g.actor_id. Whether that user exists, is active and may perform the
    operation is decided by the services (401 / 403 via FulfillmentError).
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = _header_actor_id()
        if actor_id is None:
            return jsonify({"error": {"kind": "AUTH_REQUIRED", "message": "Authentication required"}}), 401
        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function


def optional_actor(f):
    """Like require_actor, but g.actor_id may be None (recipient-token flows)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.actor_id = _header_actor_id()
        return f(*args, **kwargs)

    return decorated_function


def error_response(exc: FulfillmentError):
    """JSON body + status class for a domain error."""
    if exc.http_status >= 500:
        current_app.logger.error("%s %s", exc.kind, exc.context)
    return jsonify({"error": {"kind": exc.kind, "message": exc.message}}), exc.http_status


def internal_error_response():
    return jsonify({"error": {"kind": "INTERNAL_ERROR", "message": "Internal server error"}}), 500


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
