"""
PrescriptionIndexService: lagging projection of ledger prescription state.

The index answers list/filter queries the ledger cannot. It is never consulted
before a state-changing action; status and assignment here are advisory until
reconciled against the ledger.

Consistency policy:
- upsert() rewrites the whole row keyed by prescription id (last write wins)
- writes happen after the ledger write succeeds and never roll it back
- failed writes are recorded in the DivergenceRegistry for reconciliation
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Hashable, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.orm import Session as DbSession

from rxledger.db.postgres import get_db_session
from rxledger.models import Prescription, Role
from rxledger.models.status import TERMINAL_LABELS, PrescriptionStatus


@dataclass
class PrescriptionRow:
    """Full index row, written as a unit."""

    prescription_id: str
    patient_address: str
    content_ref: str
    created_by: str
    status: PrescriptionStatus = PrescriptionStatus.AWAITING_PHARMACY_ASSIGNMENT
    assigned_to: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, record: Prescription) -> "PrescriptionRow":
        return cls(
            prescription_id=record.prescription_id,
            patient_address=record.patient_address,
            content_ref=record.content_ref,
            created_by=record.created_by,
            status=PrescriptionStatus.from_label(record.status),
            assigned_to=record.assigned_to,
            created_at=record.created_at,
        )


@dataclass
class PrescriptionFilter:
    """List filter. Unset fields do not constrain the query."""

    created_by: Optional[str] = None
    patient_address: Optional[str] = None
    assigned_to: Optional[str] = None
    status: Optional[PrescriptionStatus] = None
    active: Optional[bool] = None  # True: in progress, False: collected/cancelled
    limit: Optional[int] = None

    def matches(self, status_label: str, assigned_to: Optional[str]) -> bool:
        """Whether a row refreshed from the ledger still satisfies the filter.

        Only status and assignee change on refresh; creator and patient are
        fixed at creation.
        """
        if self.status is not None and status_label != self.status.label:
            return False
        if self.active is not None and (status_label not in TERMINAL_LABELS) != self.active:
            return False
        if self.assigned_to and (assigned_to or "").lower() != self.assigned_to.lower():
            return False
        return True


def filter_for_role(role: Role, account: str, base: Optional[PrescriptionFilter] = None) -> PrescriptionFilter:
    """Restrict a filter to the rows a role may list."""
    result = replace(base) if base is not None else PrescriptionFilter()
    if role is Role.PHYSICIAN:
        result.created_by = account
    elif role is Role.PHARMACY:
        result.assigned_to = account
    elif role is Role.PATIENT:
        result.patient_address = account
    elif role not in (Role.ADMINISTRATOR, Role.REGULATORY_AUTHORITY):
        raise ValueError(f"Role {role.value!r} cannot list prescriptions")
    return result


class PrescriptionIndexService:
    """Read/write access to the prescriptions table."""

    def __init__(self, db_session: Optional[DbSession] = None):
        self._explicit_db = db_session
        self.logger = logging.getLogger("service.PrescriptionIndexService")

    @property
    def db(self) -> DbSession:
        if self._explicit_db is not None:
            return self._explicit_db
        return get_db_session()

    def upsert(self, row: PrescriptionRow) -> Prescription:
        """Write row in full, replacing any existing row with the same id."""
        if row.status is PrescriptionStatus.REASSIGNED:
            raise ValueError("Reassigned is an audit label, not a row status")

        db = self.db
        record = db.get(Prescription, row.prescription_id)
        if record is None:
            record = Prescription(prescription_id=row.prescription_id)
            db.add(record)

        now = datetime.utcnow()
        record.patient_address = row.patient_address
        record.content_ref = row.content_ref
        record.created_by = row.created_by
        record.created_at = row.created_at or record.created_at or now
        record.assigned_to = row.assigned_to
        record.status = row.status.label
        record.updated_at = now

        db.commit()
        self.logger.debug(f"Index row {row.prescription_id} -> {row.status.label} (assigned_to={row.assigned_to})")
        return record

    def get(self, prescription_id: str) -> Optional[Prescription]:
        return self.db.get(Prescription, prescription_id)

    def list(self, filters: Optional[PrescriptionFilter] = None) -> List[Prescription]:
        """List rows matching filters, newest first."""
        filters = filters or PrescriptionFilter()
        query = self.db.query(Prescription)

        if filters.created_by:
            query = query.filter(func.lower(Prescription.created_by) == filters.created_by.lower())
        if filters.patient_address:
            query = query.filter(func.lower(Prescription.patient_address) == filters.patient_address.lower())
        if filters.assigned_to:
            query = query.filter(func.lower(Prescription.assigned_to) == filters.assigned_to.lower())
        if filters.status is not None:
            query = query.filter(Prescription.status == filters.status.label)
        if filters.active is True:
            query = query.filter(Prescription.status.notin_(TERMINAL_LABELS))
        elif filters.active is False:
            query = query.filter(Prescription.status.in_(TERMINAL_LABELS))

        query = query.order_by(Prescription.created_at.desc(), Prescription.prescription_id)
        if filters.limit:
            query = query.limit(filters.limit)
        return query.all()

    def rollback(self) -> None:
        self.db.rollback()


# =============================================================================
# Divergence tracking
# =============================================================================

@dataclass
class DivergenceRegistry:
    """
    Index keys whose write failed after a ledger write: prescription ids, or
    (EntityKind, address) pairs for the entity mirror.

    Thread-safe; shared by every request served by the process.
    """

    _ids: Set[Hashable] = field(default_factory=set)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def flag(self, key: Hashable) -> None:
        with self._lock:
            self._ids.add(key)

    def clear(self, key: Hashable) -> None:
        with self._lock:
            self._ids.discard(key)

    def pending(self) -> List[Hashable]:
        with self._lock:
            return sorted(self._ids)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._ids


# Singletons
_prescription_index: Optional[PrescriptionIndexService] = None
_divergence_registry: Optional[DivergenceRegistry] = None


def get_prescription_index() -> PrescriptionIndexService:
    """Get the prescription index singleton."""
    global _prescription_index
    if _prescription_index is None:
        _prescription_index = PrescriptionIndexService()
    return _prescription_index


def get_divergence_registry() -> DivergenceRegistry:
    """Get the process-wide divergence registry."""
    global _divergence_registry
    if _divergence_registry is None:
        _divergence_registry = DivergenceRegistry()
    return _divergence_registry
