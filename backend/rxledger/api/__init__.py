"""
HTTP API blueprints and shared request helpers.

The caller's account arrives in the X-Account header; its role is always
resolved from the ledger, never trusted from the request.
"""

import logging

from flask import jsonify, request

from rxledger.errors import (
    AlreadyRegistered,
    AuthorizationError,
    ConflictError,
    ContentStoreError,
    InvalidTransition,
    LedgerError,
    NotFoundError,
    NotRegistered,
    RxLedgerError,
)
from rxledger.services.caller_context import CallerContext, resolve_caller
from rxledger.services.ledger_gateway import get_ledger_gateway

logger = logging.getLogger("api")

CALLER_HEADER = "X-Account"


class CallerRequired(RxLedgerError):
    """Request carried no caller account."""

    code = "caller_required"


# Checked in order; first match wins
STATUS_CODES = (
    (CallerRequired, 401),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (InvalidTransition, 409),
    (ConflictError, 409),
    (NotRegistered, 422),
    (AlreadyRegistered, 422),
    (ContentStoreError, 502),
    (LedgerError, 502),
)


def http_status_for(error: RxLedgerError) -> int:
    for error_type, status_code in STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


def current_caller() -> CallerContext:
    """Resolve the request's caller from the X-Account header."""
    account = (request.headers.get(CALLER_HEADER) or "").strip()
    if not account:
        raise CallerRequired(f"{CALLER_HEADER} header is required")
    return resolve_caller(get_ledger_gateway(), account)


def parse_flag(value, name: str):
    """Parse an optional boolean query parameter."""
    if value is None or value == "":
        return None
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes"):
        return True
    if lowered in ("0", "false", "no"):
        return False
    raise ValueError(f"{name} must be 0/1 or true/false")


def register_error_handlers(app):
    """Map workflow errors to JSON responses."""

    @app.errorhandler(RxLedgerError)
    def handle_workflow_error(error):
        status_code = http_status_for(error)
        if status_code >= 500:
            logger.error(f"{type(error).__name__}: {error.message} ({error.context()})")
        else:
            logger.info(f"{type(error).__name__}: {error.message} ({error.context()})")
        return jsonify(error.to_dict()), status_code

    @app.errorhandler(ValueError)
    def handle_bad_request(error):
        return jsonify({"ok": False, "error": str(error), "code": "invalid_request"}), 400
