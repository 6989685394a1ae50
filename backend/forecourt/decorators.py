# Overview: Request decorators and error translation for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .context import CallerContext
from .extensions import db
from .validation import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)


def require_caller(f):
    """
    Establish the caller context from gateway headers.

    MULTI-TENANT: identity is resolved upstream. The gateway forwards:
    - X-Tenant-Id: tenant the request acts within (required)
    - X-Caller-Role: attendant | manager | admin (required)
    - X-Caller-Id: attendant / user id (required for attendants)

    Sets g.caller to a CallerContext. Returns 401 if the context is missing
    or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        tenant_id = (request.headers.get("X-Tenant-Id") or "").strip()
        role = (request.headers.get("X-Caller-Role") or "").strip().lower()
        raw_user_id = (request.headers.get("X-Caller-Id") or "").strip()

        if not tenant_id or not role:
            return jsonify({"error": "Caller context required"}), 401

        user_id = None
        if raw_user_id:
            if not raw_user_id.isdigit():
                return jsonify({"error": "Invalid X-Caller-Id"}), 401
            user_id = int(raw_user_id)

        try:
            g.caller = CallerContext(tenant_id=tenant_id, role=role, user_id=user_id)
        except ValidationError as e:
            return jsonify({"error": str(e)}), 401

        return f(*args, **kwargs)

    return decorated_function


def _error_body(exc: Exception) -> dict:
    return {
        "error": str(exc),
        "field": getattr(exc, "field", None),
        "entity_id": getattr(exc, "entity_id", None),
    }


def handle_service_errors(f):
    """
    Translate service exceptions into JSON error responses.

    - StateError, ConflictError (incl. over-distribution) -> 409
    - ValidationError -> 400
    - NotFoundError -> 404
    - PermissionDeniedError -> 403
    - anything else is logged and returned as 500
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except (StateError, ConflictError) as e:
            return jsonify(_error_body(e)), 409
        except ValidationError as e:
            return jsonify(_error_body(e)), 400
        except NotFoundError as e:
            return jsonify(_error_body(e)), 404
        except PermissionDeniedError as e:
            return jsonify(_error_body(e)), 403
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Unhandled error in %s %s", request.method, request.path)
            return jsonify({"error": "Internal server error"}), 500

    return decorated_function


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data
