"""
Prescription index models.

- Prescription: projection of the ledger's prescription record, keyed by id.
  Status/assignment lag the ledger and are reconciled on read.
- PrescriptionStatusAudit: append-only status timeline (one row per transition).
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, Index

from rxledger.db.postgres import Base


class Prescription(Base):
    """Index row for one prescription. Never deleted, only overwritten."""

    __tablename__ = "prescriptions"

    prescription_id = Column(String(64), primary_key=True)
    patient_address = Column(String(64), nullable=False, index=True)
    content_ref = Column(String(128), nullable=False)
    created_by = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    assigned_to = Column(String(64), nullable=True, index=True)
    status = Column(String(50), nullable=False)  # status label, see models.status
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            "prescription_id": self.prescription_id,
            "patient_address": self.patient_address,
            "content_ref": self.content_ref,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "assigned_to": self.assigned_to,
            "status": self.status,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class PrescriptionStatusAudit(Base):
    """
    Append-only status timeline entry.

    Written once after each successful ledger transition; never updated or deleted.
    """

    __tablename__ = "prescription_status_audit"

    id = Column(Integer, primary_key=True, autoincrement=True)
    prescription_id = Column(String(64), nullable=False)
    status = Column(String(50), nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    note = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_status_audit_prescription_ts", "prescription_id", "timestamp"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "prescription_id": self.prescription_id,
            "status": self.status,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "note": self.note,
        }
