"""
EntityIndexService: relational mirror of the ledger's role registry.

Exists for the searches the ledger cannot answer (pharmacy name lookup,
per-table listing and counts). Rows are written after each successful
registration and re-derived from the ledger on reconcile. Table selection is
a fixed EntityKind -> model dispatch; no table name reaches SQL as text.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session as DbSession

from rxledger.db.postgres import get_db_session
from rxledger.models import EntityKind, Pharmacy

MIN_SEARCH_LENGTH = 3

# Creator recorded for rows rebuilt from the ledger with no prior index row
LEDGER_CREATOR = "ledger"


class EntityIndexService:
    """
    Entity table access, keyed by account address.

    Usage:
        index = EntityIndexService()
        index.upsert(EntityKind.PHARMACIES, "0xph1", "Qm...", created_by="0xra",
                     pharmacy_name="Main Street Pharmacy")
        index.search(EntityKind.PHARMACIES, "main")
    """

    def __init__(self, db_session: Optional[DbSession] = None):
        self._explicit_db = db_session
        self.logger = logging.getLogger("service.EntityIndexService")

    @property
    def db(self) -> DbSession:
        if self._explicit_db is not None:
            return self._explicit_db
        return get_db_session()

    def _query(self, kind: EntityKind, address: str):
        model = kind.model
        return self.db.query(model).filter(func.lower(model.address) == address.lower())

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def upsert(
        self,
        kind: EntityKind,
        address: str,
        content_ref: str,
        created_by: str,
        created_at: Optional[datetime] = None,
        pharmacy_name: Optional[str] = None,
        pharmacy_address: Optional[str] = None,
    ):
        """
        Write the row for address, replacing every field of an existing row.

        Last write wins; no field from a previous write survives.
        """
        if not address:
            raise ValueError("address is required")

        db = self.db
        row = self._query(kind, address).first()
        if row is None:
            row = kind.model(address=address)
            db.add(row)

        row.address = address
        row.content_ref = content_ref
        row.created_by = created_by
        row.created_at = created_at or datetime.utcnow()
        if kind is EntityKind.PHARMACIES:
            row.pharmacy_name = pharmacy_name
            row.pharmacy_address = pharmacy_address

        db.commit()
        self.logger.debug(f"Upserted {kind.value} row for {address}")
        return row

    def delete(self, kind: EntityKind, address: str) -> bool:
        db = self.db
        row = self._query(kind, address).first()
        if row is None:
            return False
        db.delete(row)
        db.commit()
        self.logger.info(f"Deleted {kind.value} row for {address}")
        return True

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, kind: EntityKind, address: str):
        if not address:
            return None
        return self._query(kind, address).first()

    def list(self, kind: EntityKind, created_by: Optional[str] = None) -> List:
        model = kind.model
        query = self.db.query(model)
        if created_by:
            query = query.filter(func.lower(model.created_by) == created_by.lower())
        return query.order_by(model.created_at.desc(), model.id.desc()).all()

    def search(self, kind: EntityKind, term: str, limit: int = 20) -> List:
        """
        Case-insensitive substring search.

        Pharmacies match on name or street address; other tables on the
        account address. LIKE wildcards in term are matched literally.
        """
        term = (term or "").strip()
        if len(term) < MIN_SEARCH_LENGTH:
            raise ValueError(f"Search term must be at least {MIN_SEARCH_LENGTH} characters")

        model = kind.model
        needle = term.lower()
        if kind is EntityKind.PHARMACIES:
            condition = or_(
                func.lower(Pharmacy.pharmacy_name).contains(needle, autoescape=True),
                func.lower(Pharmacy.pharmacy_address).contains(needle, autoescape=True),
            )
        else:
            condition = func.lower(model.address).contains(needle, autoescape=True)

        return (
            self.db.query(model)
            .filter(condition)
            .order_by(model.created_at.desc(), model.id.desc())
            .limit(limit)
            .all()
        )

    def count(self, kind: EntityKind) -> int:
        return self.db.query(func.count(kind.model.id)).scalar() or 0

    def counts(self) -> Dict[str, int]:
        return {kind.value: self.count(kind) for kind in EntityKind}

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def reconcile(self, kind: EntityKind, address: str, gateway, content_store=None):
        """
        Re-derive the row for address from the ledger.

        Deletes the row when the ledger no longer holds the role for the
        account. Pharmacy name/address are refreshed from the profile when a
        content store is given, otherwise carried over from the existing row.
        """
        existing = self.get(kind, address)

        if not gateway.has_role(address, kind.role):
            if existing is not None:
                self.logger.warning(f"{address} no longer holds {kind.role.value}; removing mirror row")
                self.delete(kind, address)
            return None

        content_ref = gateway.get_profile_ref(address, kind.role)
        pharmacy_name = getattr(existing, "pharmacy_name", None)
        pharmacy_address = getattr(existing, "pharmacy_address", None)
        if kind is EntityKind.PHARMACIES and content_store is not None and content_ref:
            profile = content_store.get_json(content_ref)
            pharmacy_name = profile.get("pharmacyName")
            pharmacy_address = profile.get("pharmacyAddress")

        return self.upsert(
            kind,
            existing.address if existing is not None else address,
            content_ref or "",
            created_by=existing.created_by if existing is not None else LEDGER_CREATOR,
            created_at=existing.created_at if existing is not None else None,
            pharmacy_name=pharmacy_name,
            pharmacy_address=pharmacy_address,
        )


# Singleton
_entity_index: Optional[EntityIndexService] = None


def get_entity_index() -> EntityIndexService:
    """Get the entity index singleton."""
    global _entity_index
    if _entity_index is None:
        _entity_index = EntityIndexService()
    return _entity_index
