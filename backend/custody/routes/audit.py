# backend/custody/routes/audit.py
"""
Read-only access to the audit trail, newest first.
"""
from flask import Blueprint, request, jsonify

from ..decorators import handles_ledger_errors
from ..extensions import db
from ..services.audit_service import list_audit_events
from ..validation import coerce_int


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit-events")

MAX_LIMIT = 500


@audit_bp.get("")
@handles_ledger_errors
def list_events():
    """
    Query params: entity_type, entity_id, action, limit (default 100, max 500).
    """
    limit = coerce_int("limit", request.args.get("limit", "100"))
    limit = max(1, min(limit, MAX_LIMIT))
    events = list_audit_events(
        db.session,
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id"),
        action=request.args.get("action"),
        limit=limit,
    )
    return jsonify([e.to_dict() for e in events]), 200
