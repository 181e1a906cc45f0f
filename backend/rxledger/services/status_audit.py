"""
StatusAuditService: append-only prescription status timeline.

One entry per successful ledger transition. INSERT-only; entries are never
updated or deleted.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session as DbSession

from rxledger.db.postgres import get_db_session
from rxledger.models import PrescriptionStatusAudit
from rxledger.models.status import PrescriptionStatus


class StatusAuditService:
    """Append and read status timeline entries."""

    def __init__(self, db_session: Optional[DbSession] = None):
        self._explicit_db = db_session
        self.logger = logging.getLogger("service.StatusAuditService")

    @property
    def db(self) -> DbSession:
        if self._explicit_db is not None:
            return self._explicit_db
        return get_db_session()

    def append(self, prescription_id: str, status_label: str, note: Optional[str] = None) -> PrescriptionStatusAudit:
        """Append a timeline entry. Labels are validated against PrescriptionStatus."""
        PrescriptionStatus.from_label(status_label)

        entry = PrescriptionStatusAudit(
            prescription_id=prescription_id,
            status=status_label,
            note=note,
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    def timeline(self, prescription_id: str, newest_first: bool = True) -> List[PrescriptionStatusAudit]:
        query = self.db.query(PrescriptionStatusAudit).filter(
            PrescriptionStatusAudit.prescription_id == prescription_id
        )
        if newest_first:
            query = query.order_by(PrescriptionStatusAudit.timestamp.desc(), PrescriptionStatusAudit.id.desc())
        else:
            query = query.order_by(PrescriptionStatusAudit.timestamp.asc(), PrescriptionStatusAudit.id.asc())
        return query.all()


# Singleton
_status_audit: Optional[StatusAuditService] = None


def get_status_audit() -> StatusAuditService:
    """Get the status audit singleton."""
    global _status_audit
    if _status_audit is None:
        _status_audit = StatusAuditService()
    return _status_audit
