"""
Ledger Gateway: typed binding over the registration and prescription contracts.

Pass-through only. No state beyond the contract handles. Every call translates
web3 failures into the workflow error taxonomy:
- contract reverts          -> LedgerRevertError (NotFoundError on reads)
- receipt timeouts, RPC and
  connection failures       -> LedgerError
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import requests
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from rxledger.config import config
from rxledger.errors import LedgerError, LedgerRevertError, NotFoundError
from rxledger.models.entity import EntityKind, Role
from rxledger.models.status import LifecycleAction, PrescriptionStatus

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Failures raised by web3 providers for RPC/transport problems.
# Older web3 releases surface JSON-RPC errors as ValueError.
TRANSPORT_ERRORS = (Web3Exception, requests.RequestException, ValueError)


def normalize_account(account: Optional[str]) -> Optional[str]:
    """Return None for empty or zero addresses."""
    if not account or account.lower() == ZERO_ADDRESS:
        return None
    return account


def same_account(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive account comparison (checksum casing varies)."""
    if not a or not b:
        return False
    return a.lower() == b.lower()


@dataclass
class LedgerPrescription:
    """Authoritative prescription state as read from the ledger."""

    prescription_id: str
    patient_address: str
    content_ref: str
    status: PrescriptionStatus
    assigned_pharmacy: Optional[str] = None


# Fixed method tables (no name is ever built from caller input)
_ROLE_CHECKS = {
    Role.REGULATORY_AUTHORITY: "regulatoryAuthority",
    Role.PHYSICIAN: "Physician",
    Role.PATIENT: "Patient",
    Role.PHARMACY: "Pharmacy",
}

_PROFILE_GETTERS = {
    Role.REGULATORY_AUTHORITY: "getRegulatoryAuthorityIPFSHash",
    Role.PHYSICIAN: "getPhysicianIPFSHash",
    Role.PATIENT: "getPatientIPFSHash",
    Role.PHARMACY: "getPharmacyIPFSHash",
}

_REGISTRARS = {
    EntityKind.REGULATORY_AUTHORITIES: "registerRegulatoryAuthority",
    EntityKind.PHYSICIANS: "PhysicianRegistration",
    EntityKind.PATIENTS: "PatientRegistration",
    EntityKind.PHARMACIES: "PharmacyRegistration",
}

_ACTION_METHODS = {
    LifecycleAction.ACCEPT: "acceptPrescription",
    LifecycleAction.REJECT: "rejectPrescription",
    LifecycleAction.PREPARE: "medicationPreparation",
    LifecycleAction.COLLECT: "medicationCollection",
    LifecycleAction.CANCEL: "cancelPrescription",
}


def _revert_reason(error: Exception) -> str:
    return getattr(error, "message", None) or str(error) or "execution reverted"


class LedgerGateway:
    """
    Typed access to the role registry and prescription lifecycle contracts.

    Usage:
        gateway = build_ledger_gateway()
        role = gateway.resolve_role("0xabc...")
        record = gateway.get_prescription(prescription_id, requester="0xabc...")
    """

    def __init__(self, w3, registration_contract, prescription_contract, tx_timeout: Optional[float] = None):
        self.w3 = w3
        self.registration = registration_contract
        self.prescriptions = prescription_contract
        self.tx_timeout = tx_timeout if tx_timeout is not None else config.LEDGER_TX_TIMEOUT
        self.logger = logging.getLogger("service.LedgerGateway")

    # -------------------------------------------------------------------------
    # Low-level call/transact helpers
    # -------------------------------------------------------------------------

    def _call(self, contract, method: str, *args, requester: Optional[str] = None):
        try:
            fn = getattr(contract.functions, method)(*args)
            if requester:
                return fn.call({"from": requester})
            return fn.call()
        except ContractLogicError as e:
            raise LedgerRevertError(f"{method} reverted: {_revert_reason(e)}", reason=_revert_reason(e), actor=requester) from e
        except TRANSPORT_ERRORS as e:
            self.logger.error(f"{method} call failed: {e}")
            raise LedgerError(f"Ledger call {method} failed: {e}", actor=requester) from e

    def _transact(self, contract, method: str, *args, sender: str, prescription_id: Optional[str] = None):
        try:
            fn = getattr(contract.functions, method)(*args)
            tx_hash = fn.transact({"from": sender})
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.tx_timeout)
        except ContractLogicError as e:
            reason = _revert_reason(e)
            self.logger.warning(f"{method} reverted for {prescription_id or args} from {sender}: {reason}")
            raise LedgerRevertError(
                f"Transaction {method} reverted: {reason}",
                reason=reason,
                prescription_id=prescription_id,
                actor=sender,
            ) from e
        except TimeExhausted as e:
            self.logger.error(f"{method} receipt timed out after {self.tx_timeout}s")
            raise LedgerError(
                f"Transaction {method} was not confirmed within {self.tx_timeout:g}s",
                prescription_id=prescription_id,
                actor=sender,
            ) from e
        except TRANSPORT_ERRORS as e:
            self.logger.error(f"{method} submission failed: {e}")
            raise LedgerError(
                f"Transaction {method} could not be submitted: {e}",
                prescription_id=prescription_id,
                actor=sender,
            ) from e

        if receipt is not None and receipt.get("status", 1) == 0:
            raise LedgerRevertError(
                f"Transaction {method} reverted",
                prescription_id=prescription_id,
                actor=sender,
            )

        self.logger.info(f"{method} confirmed for {prescription_id or args} from {sender}")
        return receipt

    # -------------------------------------------------------------------------
    # Role registry
    # -------------------------------------------------------------------------

    def administrator(self) -> str:
        return self._call(self.registration, "administrator")

    def has_role(self, account: str, role: Role) -> bool:
        if role is Role.ADMINISTRATOR:
            return same_account(self.administrator(), account)
        if role is Role.UNREGISTERED:
            return self.resolve_role(account) is Role.UNREGISTERED
        return bool(self._call(self.registration, _ROLE_CHECKS[role], account))

    def is_patient(self, account: str) -> bool:
        return self.has_role(account, Role.PATIENT)

    def is_pharmacy(self, account: str) -> bool:
        return self.has_role(account, Role.PHARMACY)

    def resolve_role(self, account: str) -> Role:
        """Resolve the single role an account holds."""
        if not account:
            return Role.UNREGISTERED
        if same_account(self.administrator(), account):
            return Role.ADMINISTRATOR
        for role in (Role.REGULATORY_AUTHORITY, Role.PHYSICIAN, Role.PATIENT, Role.PHARMACY):
            if self._call(self.registration, _ROLE_CHECKS[role], account):
                return role
        return Role.UNREGISTERED

    def get_profile_ref(self, account: str, role: Role) -> Optional[str]:
        """Content reference of an account's profile blob."""
        getter = _PROFILE_GETTERS.get(role)
        if getter is None:
            return None
        return self._call(self.registration, getter, account) or None

    def register(self, kind: EntityKind, account: str, content_ref: str, sender: str):
        return self._transact(self.registration, _REGISTRARS[kind], account, content_ref, sender=sender)

    # -------------------------------------------------------------------------
    # Prescription ledger
    # -------------------------------------------------------------------------

    def create_prescription(self, prescription_id: str, patient: str, content_ref: str, sender: str):
        return self._transact(
            self.prescriptions,
            "prescriptionCreation",
            prescription_id,
            patient,
            content_ref,
            sender=sender,
            prescription_id=prescription_id,
        )

    def select_pharmacy(self, prescription_id: str, pharmacy: str, sender: str):
        return self._transact(
            self.prescriptions,
            "selectPharmacy",
            prescription_id,
            pharmacy,
            sender=sender,
            prescription_id=prescription_id,
        )

    def perform(self, action: LifecycleAction, prescription_id: str, sender: str):
        """Submit accept/reject/prepare/collect/cancel."""
        if action not in _ACTION_METHODS:
            raise ValueError(f"{action.value} is not a single-argument ledger action")
        return self._transact(
            self.prescriptions,
            _ACTION_METHODS[action],
            prescription_id,
            sender=sender,
            prescription_id=prescription_id,
        )

    def get_assigned_pharmacy(self, prescription_id: str, requester: str) -> Optional[str]:
        try:
            account = self._call(self.prescriptions, "getAssignedPharmacy", prescription_id, requester=requester)
        except LedgerRevertError as e:
            raise NotFoundError(
                "The requested prescription does not exist, or you are not permitted to access it.",
                prescription_id=prescription_id,
                actor=requester,
            ) from e
        return normalize_account(account)

    def get_prescription(self, prescription_id: str, requester: str) -> LedgerPrescription:
        """Read authoritative status/assignment. The ledger enforces visibility."""
        try:
            patient, content_ref, status = self._call(
                self.prescriptions, "accessPrescription", prescription_id, requester=requester
            )
        except LedgerRevertError as e:
            raise NotFoundError(
                "The requested prescription does not exist, or you are not permitted to access it.",
                prescription_id=prescription_id,
                actor=requester,
            ) from e

        record = LedgerPrescription(
            prescription_id=prescription_id,
            patient_address=patient,
            content_ref=content_ref,
            status=PrescriptionStatus.from_ledger(status),
        )
        if record.status.has_assignee:
            record.assigned_pharmacy = self.get_assigned_pharmacy(prescription_id, requester)
        return record


# =============================================================================
# Construction
# =============================================================================

def _load_abi(settings_value: Optional[str], abi_path: str):
    if settings_value:
        return json.loads(settings_value)
    if abi_path:
        data = json.loads(Path(abi_path).read_text())
        # Accept raw ABI lists or build artifacts with an "abi" key
        return data["abi"] if isinstance(data, dict) else data
    raise LedgerError("Contract ABI is not configured")


def build_ledger_gateway(settings=None) -> LedgerGateway:
    """Create a gateway from the settings table, falling back to config."""
    if settings is None:
        from rxledger.services.settings import get_settings_service

        settings = get_settings_service()

    w3 = Web3(Web3.HTTPProvider(config.LEDGER_RPC_URL, request_kwargs={"timeout": config.LEDGER_RPC_TIMEOUT}))

    registration_address = settings.get("registrationContractAddress") or config.REGISTRATION_CONTRACT_ADDRESS
    prescription_address = settings.get("prescriptionContractAddress") or config.PRESCRIPTION_CONTRACT_ADDRESS
    if not registration_address or not prescription_address:
        raise LedgerError("Contract addresses are not configured")

    registration = w3.eth.contract(
        address=Web3.to_checksum_address(registration_address),
        abi=_load_abi(settings.get("registrationContractABI"), config.REGISTRATION_CONTRACT_ABI_PATH),
    )
    prescriptions = w3.eth.contract(
        address=Web3.to_checksum_address(prescription_address),
        abi=_load_abi(settings.get("prescriptionContractABI"), config.PRESCRIPTION_CONTRACT_ABI_PATH),
    )
    return LedgerGateway(w3, registration, prescriptions)


_gateway: Optional[LedgerGateway] = None


def get_ledger_gateway() -> LedgerGateway:
    """Get the ledger gateway singleton."""
    global _gateway
    if _gateway is None:
        _gateway = build_ledger_gateway()
    return _gateway
