"""
Prescription API endpoints.

Endpoints:
- POST /api/v1/prescriptions - Create a prescription (physician)
- GET  /api/v1/prescriptions - List prescriptions visible to the caller
- POST /api/v1/prescriptions/reconcile - Reconcile flagged rows (administrator)
- GET  /api/v1/prescriptions/<id> - Ledger-authoritative details
- POST /api/v1/prescriptions/<id>/pharmacy - Assign a pharmacy (prescribing physician)
- POST /api/v1/prescriptions/<id>/actions/<action> - accept/reject/prepare/collect/cancel
- GET  /api/v1/prescriptions/<id>/timeline - Status timeline
- POST /api/v1/prescriptions/<id>/reconcile - Rewrite the index row from the ledger
"""

from flask import Blueprint, request, jsonify

from rxledger.api import current_caller, parse_flag
from rxledger.models.status import PrescriptionStatus
from rxledger.services.prescription_index import PrescriptionFilter
from rxledger.services.prescription_lifecycle import get_lifecycle_service


bp = Blueprint("prescriptions", __name__, url_prefix="/api/v1/prescriptions")


def _list_filter() -> PrescriptionFilter:
    args = request.args
    status = args.get("status")
    limit = args.get("limit")
    if limit is not None:
        try:
            limit = int(limit)
        except ValueError:
            raise ValueError("limit must be an integer")
    return PrescriptionFilter(
        created_by=args.get("created_by") or None,
        patient_address=args.get("patient") or None,
        assigned_to=args.get("assigned_to") or None,
        status=PrescriptionStatus.from_label(status) if status else None,
        active=parse_flag(args.get("active"), "active"),
        limit=limit,
    )


# =============================================================================
# Collection
# =============================================================================

@bp.route("", methods=["POST"])
def create_prescription():
    """Create a prescription for a registered patient."""
    caller = current_caller()
    data = request.get_json(silent=True) or {}

    prescription_id = get_lifecycle_service().create(
        caller,
        patient=(data.get("patient") or "").strip(),
        drugs=data.get("drugs"),
        note=data.get("note"),
    )
    return jsonify({
        "ok": True,
        "prescription_id": prescription_id,
        "status": PrescriptionStatus.AWAITING_PHARMACY_ASSIGNMENT.label,
    }), 201


@bp.route("", methods=["GET"])
def list_prescriptions():
    """List index rows for the caller's role (statuses are advisory)."""
    caller = current_caller()
    reconcile = parse_flag(request.args.get("reconcile"), "reconcile")

    rows = get_lifecycle_service().list(caller, _list_filter(), reconcile=reconcile)
    return jsonify({"ok": True, "prescriptions": rows, "count": len(rows)})


@bp.route("/reconcile", methods=["POST"])
def reconcile_pending():
    caller = current_caller()
    outcome = get_lifecycle_service().reconcile_pending(caller)
    return jsonify({"ok": True, "results": outcome})


# =============================================================================
# Single prescription
# =============================================================================

@bp.route("/<prescription_id>", methods=["GET"])
def get_prescription(prescription_id):
    caller = current_caller()
    view = get_lifecycle_service().get_details(caller, prescription_id)
    return jsonify({"ok": True, "prescription": view.to_dict()})


@bp.route("/<prescription_id>/pharmacy", methods=["POST"])
def assign_pharmacy(prescription_id):
    caller = current_caller()
    data = request.get_json(silent=True) or {}

    status = get_lifecycle_service().assign_pharmacy(
        caller,
        prescription_id,
        pharmacy=(data.get("pharmacy") or "").strip(),
        note=data.get("note"),
    )
    return jsonify({"ok": True, "prescription_id": prescription_id, "status": status.label})


@bp.route("/<prescription_id>/actions/<action>", methods=["POST"])
def act_on_prescription(prescription_id, action):
    """Apply a pharmacy action or a cancellation."""
    caller = current_caller()
    data = request.get_json(silent=True) or {}

    status = get_lifecycle_service().act_on(caller, prescription_id, action, note=data.get("note"))
    return jsonify({"ok": True, "prescription_id": prescription_id, "status": status.label})


@bp.route("/<prescription_id>/timeline", methods=["GET"])
def get_timeline(prescription_id):
    caller = current_caller()
    entries = get_lifecycle_service().timeline(caller, prescription_id)
    return jsonify({"ok": True, "prescription_id": prescription_id, "timeline": entries})


@bp.route("/<prescription_id>/reconcile", methods=["POST"])
def reconcile_prescription(prescription_id):
    caller = current_caller()
    result = get_lifecycle_service().reconcile(caller, prescription_id)
    return jsonify({"ok": True, **result})
