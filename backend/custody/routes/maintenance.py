# backend/custody/routes/maintenance.py
"""
Ledger maintenance routes: location reconcile, orphan unassignment, integrity report.

Batch operations report partial-success summaries; they only fail outright
when the store itself is unavailable.
"""
from flask import Blueprint, request, jsonify

from ..decorators import handles_ledger_errors, ledger_services, request_actor


maintenance_bp = Blueprint("maintenance", __name__, url_prefix="/api/maintenance")


@maintenance_bp.post("/reconcile-locations")
@handles_ledger_errors
def reconcile_locations():
    payload = request.get_json(silent=True) or {}
    summary = ledger_services().engine.reconcile_locations(actor=request_actor(payload))
    return jsonify(summary.to_dict()), 200


@maintenance_bp.post("/unassign-orphans")
@handles_ledger_errors
def unassign_orphans():
    payload = request.get_json(silent=True) or {}
    summary = ledger_services().engine.unassign_without_ledger_record(actor=request_actor(payload))
    return jsonify(summary.to_dict()), 200


@maintenance_bp.get("/integrity")
@handles_ledger_errors
def integrity():
    report = ledger_services().engine.integrity_report()
    return jsonify(report.to_dict()), 200
