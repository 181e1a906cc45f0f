"""
Entity index models: registered physicians, patients, pharmacies and
regulatory authorities mirrored from the registration contract.

The ledger enforces one role per account; these tables only mirror it.
"""

from datetime import datetime
from enum import Enum
from sqlalchemy import Column, Integer, String, DateTime

from rxledger.db.postgres import Base


class Role(str, Enum):
    """Ledger roles (mutually exclusive per account)."""

    ADMINISTRATOR = "Administrator"
    REGULATORY_AUTHORITY = "Regulatory Authority"
    PHYSICIAN = "Physician"
    PATIENT = "Patient"
    PHARMACY = "Pharmacy"
    UNREGISTERED = "Unregistered"


class EntityKind(str, Enum):
    """Entity tables, addressed by their public name."""

    PHYSICIANS = "physicians"
    PATIENTS = "patients"
    PHARMACIES = "pharmacies"
    REGULATORY_AUTHORITIES = "regulatory_authorities"

    @classmethod
    def parse(cls, value: str) -> "EntityKind":
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Invalid entity type: {value!r}")

    @property
    def role(self) -> Role:
        return _KIND_TO_ROLE[self]

    @property
    def model(self):
        return _KIND_TO_MODEL[self]


class _EntityColumns:
    """Columns shared by the four entity tables."""

    id = Column(Integer, primary_key=True, autoincrement=True)
    address = Column(String(64), unique=True, nullable=False, index=True)
    content_ref = Column(String(128), nullable=False)
    created_by = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            "address": self.address,
            "content_ref": self.content_ref,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Physician(_EntityColumns, Base):
    __tablename__ = "physicians"


class Patient(_EntityColumns, Base):
    __tablename__ = "patients"


class RegulatoryAuthority(_EntityColumns, Base):
    __tablename__ = "regulatory_authorities"


class Pharmacy(_EntityColumns, Base):
    """Pharmacies carry name/street address columns for search."""

    __tablename__ = "pharmacies"

    pharmacy_name = Column(String(255), nullable=True, index=True)
    pharmacy_address = Column(String(500), nullable=True)

    def to_dict(self):
        data = super().to_dict()
        data["pharmacy_name"] = self.pharmacy_name
        data["pharmacy_address"] = self.pharmacy_address
        return data


_KIND_TO_ROLE = {
    EntityKind.PHYSICIANS: Role.PHYSICIAN,
    EntityKind.PATIENTS: Role.PATIENT,
    EntityKind.PHARMACIES: Role.PHARMACY,
    EntityKind.REGULATORY_AUTHORITIES: Role.REGULATORY_AUTHORITY,
}

_KIND_TO_MODEL = {
    EntityKind.PHYSICIANS: Physician,
    EntityKind.PATIENTS: Patient,
    EntityKind.PHARMACIES: Pharmacy,
    EntityKind.REGULATORY_AUTHORITIES: RegulatoryAuthority,
}
