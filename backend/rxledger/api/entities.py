"""
Entity API endpoints (registered physicians, patients, pharmacies and
regulatory authorities).

Endpoints:
- GET    /api/v1/entities/counts - Row counts for all tables
- GET    /api/v1/entities/count/<kind> - Row count for one table
- GET    /api/v1/entities/profile/<address> - Ledger role + decrypted profile
- GET    /api/v1/entities/<kind> - List a table
- GET    /api/v1/entities/<kind>/search?q= - Substring search
- POST   /api/v1/entities/<kind> - Register an account on the ledger
- DELETE /api/v1/entities/<kind>/<address> - Drop a mirror row (administrator)
- POST   /api/v1/entities/reconcile - Rebuild flagged mirror rows (administrator)
- POST   /api/v1/entities/<kind>/<address>/reconcile - Rebuild one mirror row (administrator)
"""

from flask import Blueprint, request, jsonify

from rxledger.api import current_caller
from rxledger.errors import AuthorizationError, NotFoundError
from rxledger.models import EntityKind, Role
from rxledger.services.entity_index import get_entity_index
from rxledger.services.registration import get_registration_service


bp = Blueprint("entities", __name__, url_prefix="/api/v1/entities")


def _registered_caller():
    caller = current_caller()
    if caller.role is Role.UNREGISTERED:
        raise AuthorizationError("Only registered accounts may query entities", actor=caller.account)
    return caller


# =============================================================================
# Counts / profiles
# =============================================================================

@bp.route("/counts", methods=["GET"])
def get_counts():
    _registered_caller()
    return jsonify({"ok": True, "counts": get_entity_index().counts()})


@bp.route("/count/<kind>", methods=["GET"])
def get_count(kind):
    _registered_caller()
    entity_kind = EntityKind.parse(kind)
    return jsonify({"ok": True, "kind": entity_kind.value, "count": get_entity_index().count(entity_kind)})


@bp.route("/profile/<address>", methods=["GET"])
def get_profile(address):
    _registered_caller()
    profile = get_registration_service().get_profile(address)
    return jsonify({"ok": True, **profile})


# =============================================================================
# Tables
# =============================================================================

@bp.route("/<kind>", methods=["GET"])
def list_entities(kind):
    _registered_caller()
    entity_kind = EntityKind.parse(kind)
    rows = get_entity_index().list(entity_kind, created_by=request.args.get("created_by") or None)
    return jsonify({"ok": True, "kind": entity_kind.value, "entities": [row.to_dict() for row in rows]})


@bp.route("/<kind>/search", methods=["GET"])
def search_entities(kind):
    """Substring search (pharmacies by name or street address)."""
    _registered_caller()
    entity_kind = EntityKind.parse(kind)
    try:
        limit = int(request.args.get("limit", 20))
    except ValueError:
        raise ValueError("limit must be an integer")

    rows = get_entity_index().search(entity_kind, request.args.get("q", ""), limit=limit)
    return jsonify({"ok": True, "kind": entity_kind.value, "entities": [row.to_dict() for row in rows]})


@bp.route("/<kind>", methods=["POST"])
def register_entity(kind):
    """Upload the profile, register on the ledger, then mirror."""
    caller = current_caller()
    entity_kind = EntityKind.parse(kind)
    data = request.get_json(silent=True) or {}

    row = get_registration_service().register(
        caller,
        entity_kind,
        (data.get("account") or "").strip(),
        data.get("profile"),
    )
    return jsonify({
        "ok": True,
        "kind": entity_kind.value,
        "entity": row.to_dict() if row is not None else None,
        "indexed": row is not None,
    }), 201


@bp.route("/<kind>/<address>", methods=["DELETE"])
def delete_entity(kind, address):
    """Remove a mirror row. The ledger registration is unaffected."""
    caller = current_caller()
    caller.require_role(Role.ADMINISTRATOR, action="delete")
    entity_kind = EntityKind.parse(kind)

    if not get_entity_index().delete(entity_kind, address):
        raise NotFoundError(f"No {entity_kind.value} row for {address}", actor=caller.account)
    return jsonify({"ok": True, "deleted": address})


# =============================================================================
# Reconciliation
# =============================================================================

@bp.route("/reconcile", methods=["POST"])
def reconcile_pending():
    """Rebuild mirror rows whose index write failed after registration."""
    caller = current_caller()
    outcome = get_registration_service().reconcile_pending(caller)
    return jsonify({"ok": True, "results": outcome})


@bp.route("/<kind>/<address>/reconcile", methods=["POST"])
def reconcile_entity(kind, address):
    """Rebuild one mirror row from the ledger."""
    caller = current_caller()
    entity_kind = EntityKind.parse(kind)

    row = get_registration_service().reconcile(caller, entity_kind, address)
    return jsonify({
        "ok": True,
        "kind": entity_kind.value,
        "entity": row.to_dict() if row is not None else None,
        "removed": row is None,
    })
