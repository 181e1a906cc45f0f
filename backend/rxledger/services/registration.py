"""
EntityRegistrationService: register accounts on the ledger and mirror them.

Order of effects for a registration:
1. encrypted profile upload (content store)
2. registration transaction (ledger)
3. entity index upsert (best-effort; failure is logged and flagged for
   reconciliation, not raised)
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from rxledger.errors import AlreadyRegistered, IndexWriteFailure, RxLedgerError
from rxledger.models import EntityKind, Role
from rxledger.services.caller_context import CallerContext
from rxledger.services.entity_index import EntityIndexService
from rxledger.services.prescription_index import DivergenceRegistry


class EntityRegistrationService:
    """
    Registers physicians, patients, pharmacies and regulatory authorities.

    Only the administrator may register a regulatory authority; only a
    regulatory authority may register the other kinds.
    """

    def __init__(
        self,
        gateway,
        content_store,
        entity_index: Optional[EntityIndexService] = None,
        divergence: Optional[DivergenceRegistry] = None,
    ):
        self.gateway = gateway
        self.content_store = content_store
        self.entity_index = entity_index or EntityIndexService()
        self.divergence = divergence or DivergenceRegistry()
        self.logger = logging.getLogger("service.EntityRegistrationService")

    def register(self, caller: CallerContext, kind: EntityKind, account: str, profile: Dict[str, Any]):
        if kind is EntityKind.REGULATORY_AUTHORITIES:
            caller.require_role(Role.ADMINISTRATOR, action="register")
        else:
            caller.require_role(Role.REGULATORY_AUTHORITY, action="register")

        if not account:
            raise ValueError("account is required")
        if not isinstance(profile, dict) or not profile:
            raise ValueError("profile must be a non-empty object")

        existing_role = self.gateway.resolve_role(account)
        if existing_role is not Role.UNREGISTERED:
            raise AlreadyRegistered(
                f"Account {account} is already registered as {existing_role.value}",
                action="register",
                actor=caller.account,
            )

        content_ref = self.content_store.put_json(profile)
        self.gateway.register(kind, account, content_ref, sender=caller.account)
        self.logger.info(f"Registered {account} as {kind.role.value} (by {caller.account})")

        try:
            return self.entity_index.upsert(
                kind,
                account,
                content_ref,
                created_by=caller.account,
                pharmacy_name=profile.get("pharmacyName"),
                pharmacy_address=profile.get("pharmacyAddress"),
            )
        except SQLAlchemyError as e:
            self.entity_index.db.rollback()
            failure = IndexWriteFailure(str(e), action="register", actor=caller.account)
            self.logger.warning(f"Entity index write failed for {account}: {failure.context()}", exc_info=True)
            self.divergence.flag((kind, account))
            return None

    def get_profile(self, account: str) -> Dict[str, Any]:
        """Role plus decrypted profile attributes for an account."""
        role = self.gateway.resolve_role(account)
        attributes: Dict[str, Any] = {}
        if role not in (Role.ADMINISTRATOR, Role.UNREGISTERED):
            content_ref = self.gateway.get_profile_ref(account, role)
            if content_ref:
                attributes = self.content_store.get_json(content_ref)
        return {"account": account, "role": role.value, "attributes": attributes}

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def reconcile(self, caller: CallerContext, kind: EntityKind, address: str):
        """
        Rebuild the mirror row for address from the ledger (administrator only).

        Returns the row, or None when the ledger no longer holds the role and
        the row was removed.
        """
        caller.require_role(Role.ADMINISTRATOR, action="reconcile")
        if not address:
            raise ValueError("address is required")

        try:
            row = self.entity_index.reconcile(kind, address, self.gateway, self.content_store)
        except SQLAlchemyError:
            self.entity_index.db.rollback()
            self.divergence.flag((kind, address))
            raise

        self.divergence.clear((kind, address))
        self.logger.info(f"Reconciled {kind.value} row for {address} (by {caller.account})")
        return row

    def reconcile_pending(self, caller: CallerContext) -> Dict[str, str]:
        """Reconcile every flagged entity row (administrator only)."""
        caller.require_role(Role.ADMINISTRATOR, action="reconcile")
        outcome = {}
        for kind, address in self.divergence.pending():
            key = f"{kind.value}/{address}"
            try:
                row = self.reconcile(caller, kind, address)
                outcome[key] = "reconciled" if row is not None else "removed"
            except (RxLedgerError, SQLAlchemyError) as e:
                self.logger.error(f"Entity reconciliation failed for {key}: {e}")
                outcome[key] = "failed"
        return outcome


# Singleton
_registration_service: Optional[EntityRegistrationService] = None


def get_registration_service() -> EntityRegistrationService:
    """Get the registration service singleton wired to the live collaborators."""
    global _registration_service
    if _registration_service is None:
        from rxledger.services.content_store import get_content_store
        from rxledger.services.entity_index import get_entity_index
        from rxledger.services.ledger_gateway import get_ledger_gateway

        _registration_service = EntityRegistrationService(
            gateway=get_ledger_gateway(),
            content_store=get_content_store(),
            entity_index=get_entity_index(),
            divergence=DivergenceRegistry(),
        )
    return _registration_service
