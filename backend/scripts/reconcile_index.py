#!/usr/bin/env python3
"""
Reconcile the prescription index against the ledger.

Re-reads every in-progress prescription (or all of them with --all) from the
ledger as the administrator account and rewrites stale index rows.
With --entities, every entity mirror row is also re-derived from the role
registry (rows whose role was revoked are removed).

Usage:
    python scripts/reconcile_index.py --account 0xADMIN
    python scripts/reconcile_index.py --account 0xADMIN --all
    python scripts/reconcile_index.py --account 0xADMIN --entities
"""

import argparse
import logging
import os
import sys

from sqlalchemy.exc import SQLAlchemyError

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rxledger.config import config
from rxledger.db.postgres import get_db_session
from rxledger.errors import RxLedgerError
from rxledger.models import EntityKind, Role
from rxledger.services.caller_context import resolve_caller
from rxledger.services.entity_index import get_entity_index
from rxledger.services.ledger_gateway import get_ledger_gateway
from rxledger.services.prescription_index import PrescriptionFilter
from rxledger.services.prescription_lifecycle import get_lifecycle_service
from rxledger.services.registration import get_registration_service

logger = logging.getLogger("scripts.reconcile_index")


def reconcile(account: str, include_terminal: bool = False) -> int:
    """Reconcile index rows. Returns the number of rows that failed."""
    caller = resolve_caller(get_ledger_gateway(), account)
    caller.require_role(Role.ADMINISTRATOR, action="reconcile")

    service = get_lifecycle_service()
    filters = PrescriptionFilter(active=None if include_terminal else True)
    rows = service.index.list(filters)
    logger.info(f"Reconciling {len(rows)} prescription(s)")

    failed = 0
    for row in rows:
        try:
            result = service.reconcile(caller, row.prescription_id)
        except RxLedgerError as e:
            failed += 1
            logger.error(f"{row.prescription_id}: {e.message}")
            continue
        if not result["index_updated"]:
            failed += 1
        elif result["status"] != row.status:
            logger.info(f"{row.prescription_id}: '{row.status}' -> '{result['status']}'")
    return failed


def reconcile_entities(account: str) -> int:
    """Re-derive every entity mirror row. Returns the number that failed."""
    caller = resolve_caller(get_ledger_gateway(), account)
    service = get_registration_service()

    failed = 0
    for kind in EntityKind:
        rows = get_entity_index().list(kind)
        logger.info(f"Reconciling {len(rows)} {kind.value} row(s)")
        for row in rows:
            try:
                if service.reconcile(caller, kind, row.address) is None:
                    logger.info(f"{kind.value}/{row.address}: role revoked, row removed")
            except (RxLedgerError, SQLAlchemyError) as e:
                failed += 1
                logger.error(f"{kind.value}/{row.address}: {e}")
    return failed


def main():
    parser = argparse.ArgumentParser(description="Reconcile the prescription index against the ledger")
    parser.add_argument("--account", default=os.getenv("ADMIN_ACCOUNT"),
                        help="Administrator account (defaults to $ADMIN_ACCOUNT)")
    parser.add_argument("--all", action="store_true",
                        help="Include collected and cancelled prescriptions")
    parser.add_argument("--entities", action="store_true",
                        help="Also reconcile the entity mirror tables")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    if not args.account:
        parser.error("--account or ADMIN_ACCOUNT is required")

    try:
        failed = reconcile(args.account, include_terminal=args.all)
        if args.entities:
            failed += reconcile_entities(args.account)
    finally:
        get_db_session().close()

    if failed:
        logger.warning(f"{failed} row(s) could not be reconciled")
        sys.exit(1)
    logger.info("Index is consistent with the ledger")


if __name__ == "__main__":
    main()
