# Overview: Request helpers and the error-mapping decorator shared by API routes.

from functools import wraps
from flask import request, jsonify, current_app

from .errors import LedgerError
from .extensions import db
from .services.audit_service import Actor, RequestMetadata, SYSTEM_ACTOR
from .services.factory import build_ledger_services
from .validation import ValidationError


def ledger_services():
    """Service graph bound to the request's session."""
    return build_ledger_services(db.session, current_app.config)


def request_actor(payload: dict | None = None) -> Actor:
    """
    Performer for audit/demob records.

    Taken from the JSON body (performed_by / performed_by_email) or the
    X-Performed-By header; authentication is handled upstream.
    """
    payload = payload or {}
    name = payload.get("performed_by") or request.headers.get("X-Performed-By") or SYSTEM_ACTOR
    return Actor(
        name=str(name),
        email=payload.get("performed_by_email"),
        request_meta=RequestMetadata.from_request(request),
    )


def result_response(result, success_status: int = 200):
    """Render a LedgerResult: value (plus warnings) on success, typed error otherwise."""
    if result.ok:
        return jsonify(result.to_dict()), success_status
    return jsonify(result.error.to_dict()), result.error.http_status


def handles_ledger_errors(f):
    """
    Map errors that escape a route to JSON responses.

    - ValidationError -> 400
    - LedgerError (EngineUnavailable, anything raised rather than returned) -> its http_status
    - anything else -> 500, logged with traceback
    The session is rolled back in every case.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ValidationError as e:
            db.session.rollback()
            return jsonify({"error": str(e)}), 400
        except LedgerError as e:
            db.session.rollback()
            current_app.logger.exception("Ledger operation failed in %s", f.__name__)
            return jsonify(e.to_dict()), e.http_status
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Unexpected error in %s", f.__name__)
            return jsonify({"error": "Unexpected error"}), 500

    return decorated_function
