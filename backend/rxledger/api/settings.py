"""
Settings API endpoints (contract addresses/ABIs, content store URL).

- GET /api/v1/settings/<key>
- PUT /api/v1/settings/<key> - Administrator only
"""

from flask import Blueprint, request, jsonify

from rxledger.api import current_caller
from rxledger.errors import NotFoundError
from rxledger.models import Role
from rxledger.services.settings import get_settings_service


bp = Blueprint("settings", __name__, url_prefix="/api/v1/settings")


@bp.route("/<key>", methods=["GET"])
def get_setting(key):
    value = get_settings_service().get(key)
    if value is None:
        raise NotFoundError(f"Setting {key!r} is not configured")
    return jsonify({"ok": True, "key": key, "value": value})


@bp.route("/<key>", methods=["PUT"])
def put_setting(key):
    caller = current_caller()
    caller.require_role(Role.ADMINISTRATOR, action="update_setting")

    data = request.get_json(silent=True) or {}
    if "value" not in data:
        raise ValueError("value is required")

    value = data["value"]
    if not isinstance(value, str):
        raise ValueError("value must be a string")

    setting = get_settings_service().put(key, value)
    return jsonify({"ok": True, "key": setting.key, "value": setting.value})
