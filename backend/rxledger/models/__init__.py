"""
SQLAlchemy models and canonical enumerations for RxLedger.

The tables mirror ledger state for search and listing; the ledger remains
the authority of record.
"""

from .entity import (
    Role,
    EntityKind,
    Physician,
    Patient,
    Pharmacy,
    RegulatoryAuthority,
)
from .prescription import Prescription, PrescriptionStatusAudit
from .setting import Setting
from .status import PrescriptionStatus, LifecycleAction

__all__ = [
    # Entities
    "Role",
    "EntityKind",
    "Physician",
    "Patient",
    "Pharmacy",
    "RegulatoryAuthority",
    # Prescriptions
    "Prescription",
    "PrescriptionStatusAudit",
    "PrescriptionStatus",
    "LifecycleAction",
    # Settings
    "Setting",
]
