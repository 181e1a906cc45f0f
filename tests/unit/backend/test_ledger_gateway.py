"""
Unit tests for the ledger gateway.

Contract objects and the web3 handle are MagicMocks; assertions check the
contract methods called and the translation of web3 failures.
"""

from unittest.mock import MagicMock

import pytest
import requests
from web3.exceptions import ContractLogicError, TimeExhausted

from rxledger.errors import AuthorizationError, LedgerError, LedgerRevertError, NotFoundError
from rxledger.models import EntityKind, Role
from rxledger.models.status import LifecycleAction, PrescriptionStatus
from rxledger.services.caller_context import CallerContext, resolve_caller
from rxledger.services.ledger_gateway import ZERO_ADDRESS, LedgerGateway, same_account


ADMIN = "0xAdMiN"


@pytest.fixture
def registration():
    contract = MagicMock()
    contract.functions.administrator.return_value.call.return_value = ADMIN
    for method in ("regulatoryAuthority", "Physician", "Patient", "Pharmacy"):
        getattr(contract.functions, method).return_value.call.return_value = False
    return contract


@pytest.fixture
def prescriptions():
    return MagicMock()


@pytest.fixture
def gateway(registration, prescriptions):
    w3 = MagicMock()
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1}
    return LedgerGateway(w3, registration, prescriptions, tx_timeout=5)


# =============================================================================
# Roles
# =============================================================================

class TestRoles:

    def test_administrator_wins_over_other_roles(self, gateway, registration):
        registration.functions.Physician.return_value.call.return_value = True
        assert gateway.resolve_role("0xadmin") is Role.ADMINISTRATOR

    def test_precedence_regulator_before_physician(self, gateway, registration):
        registration.functions.regulatoryAuthority.return_value.call.return_value = True
        registration.functions.Physician.return_value.call.return_value = True
        assert gateway.resolve_role("0xabc") is Role.REGULATORY_AUTHORITY

    def test_pharmacy(self, gateway, registration):
        registration.functions.Pharmacy.return_value.call.return_value = True
        assert gateway.resolve_role("0xph") is Role.PHARMACY
        assert gateway.is_pharmacy("0xph") is True
        registration.functions.Pharmacy.assert_called_with("0xph")

    def test_unregistered(self, gateway):
        assert gateway.resolve_role("0xnobody") is Role.UNREGISTERED
        assert gateway.resolve_role("") is Role.UNREGISTERED

    def test_has_role(self, gateway, registration):
        registration.functions.Physician.return_value.call.return_value = True
        assert gateway.has_role("0xdoc", Role.PHYSICIAN) is True
        assert gateway.has_role("0xdoc", Role.PATIENT) is False

    def test_caller_context_carries_resolved_role(self, gateway, registration):
        registration.functions.Physician.return_value.call.return_value = True

        caller = resolve_caller(gateway, "0xdoc")

        assert caller == CallerContext(account="0xdoc", role=Role.PHYSICIAN)
        caller.require_role(Role.PHYSICIAN)
        with pytest.raises(AuthorizationError):
            caller.require_role(Role.PHARMACY, action="accept")
        with pytest.raises(AuthorizationError):
            resolve_caller(gateway, "")

    def test_profile_ref_dispatch(self, gateway, registration):
        registration.functions.getPatientIPFSHash.return_value.call.return_value = "QmPatient"
        assert gateway.get_profile_ref("P1", Role.PATIENT) == "QmPatient"
        registration.functions.getPatientIPFSHash.assert_called_with("P1")

    def test_administrator_has_no_profile(self, gateway):
        assert gateway.get_profile_ref(ADMIN, Role.ADMINISTRATOR) is None

    def test_register_dispatch(self, gateway, registration):
        registration.functions.PharmacyRegistration.return_value.transact.return_value = b"tx"

        gateway.register(EntityKind.PHARMACIES, "0xph", "QmProfile", sender="0xra")

        registration.functions.PharmacyRegistration.assert_called_with("0xph", "QmProfile")
        registration.functions.PharmacyRegistration.return_value.transact.assert_called_with({"from": "0xra"})

    def test_same_account_is_case_insensitive(self):
        assert same_account("0xABC", "0xabc")
        assert not same_account(None, None)
        assert not same_account("0xabc", "0xabd")


# =============================================================================
# Prescription reads
# =============================================================================

class TestGetPrescription:

    def test_assigned_pharmacy_read_for_assigned_statuses(self, gateway, prescriptions):
        prescriptions.functions.accessPrescription.return_value.call.return_value = ("P1", "QmRx", 2)
        prescriptions.functions.getAssignedPharmacy.return_value.call.return_value = "PH1"

        record = gateway.get_prescription("abc123", requester="PH1")

        assert record.status is PrescriptionStatus.PREPARING
        assert record.patient_address == "P1"
        assert record.content_ref == "QmRx"
        assert record.assigned_pharmacy == "PH1"
        prescriptions.functions.accessPrescription.return_value.call.assert_called_with({"from": "PH1"})

    @pytest.mark.parametrize("status", [0, 5])
    def test_no_assignee_lookup_for_unassigned_statuses(self, gateway, prescriptions, status):
        prescriptions.functions.accessPrescription.return_value.call.return_value = ("P1", "QmRx", status)

        record = gateway.get_prescription("abc123", requester="P1")

        assert record.assigned_pharmacy is None
        prescriptions.functions.getAssignedPharmacy.assert_not_called()

    def test_zero_address_normalised(self, gateway, prescriptions):
        prescriptions.functions.accessPrescription.return_value.call.return_value = ("P1", "QmRx", 1)
        prescriptions.functions.getAssignedPharmacy.return_value.call.return_value = ZERO_ADDRESS
        assert gateway.get_prescription("abc123", requester="P1").assigned_pharmacy is None

    def test_revert_is_not_found(self, gateway, prescriptions):
        prescriptions.functions.accessPrescription.return_value.call.side_effect = ContractLogicError(
            "execution reverted: not permitted"
        )
        with pytest.raises(NotFoundError) as excinfo:
            gateway.get_prescription("abc123", requester="0xstranger")
        assert "not permitted" in excinfo.value.message

    def test_connection_failure_is_ledger_error(self, gateway, prescriptions):
        prescriptions.functions.accessPrescription.return_value.call.side_effect = requests.ConnectionError("down")
        with pytest.raises(LedgerError) as excinfo:
            gateway.get_prescription("abc123", requester="P1")
        assert not isinstance(excinfo.value, NotFoundError)


# =============================================================================
# Prescription writes
# =============================================================================

class TestTransactions:

    def test_create(self, gateway, prescriptions):
        gateway.create_prescription("abc123", "P1", "QmRx", sender="0xdoc")

        prescriptions.functions.prescriptionCreation.assert_called_with("abc123", "P1", "QmRx")
        prescriptions.functions.prescriptionCreation.return_value.transact.assert_called_with({"from": "0xdoc"})

    @pytest.mark.parametrize("action,method", [
        (LifecycleAction.ACCEPT, "acceptPrescription"),
        (LifecycleAction.REJECT, "rejectPrescription"),
        (LifecycleAction.PREPARE, "medicationPreparation"),
        (LifecycleAction.COLLECT, "medicationCollection"),
        (LifecycleAction.CANCEL, "cancelPrescription"),
    ])
    def test_action_dispatch(self, gateway, prescriptions, action, method):
        gateway.perform(action, "abc123", sender="PH1")
        getattr(prescriptions.functions, method).assert_called_with("abc123")

    def test_waits_for_receipt_with_timeout(self, gateway, prescriptions):
        prescriptions.functions.selectPharmacy.return_value.transact.return_value = b"\x01"
        gateway.select_pharmacy("abc123", "PH1", sender="0xdoc")
        gateway.w3.eth.wait_for_transaction_receipt.assert_called_with(b"\x01", timeout=5)

    def test_assign_is_not_a_perform_action(self, gateway):
        with pytest.raises(ValueError):
            gateway.perform(LifecycleAction.ASSIGN, "abc123", sender="0xdoc")

    def test_revert_carries_reason(self, gateway, prescriptions):
        prescriptions.functions.acceptPrescription.return_value.transact.side_effect = ContractLogicError(
            "execution reverted: invalid status"
        )
        with pytest.raises(LedgerRevertError) as excinfo:
            gateway.perform(LifecycleAction.ACCEPT, "abc123", sender="PH1")
        assert "invalid status" in excinfo.value.reason
        assert excinfo.value.prescription_id == "abc123"

    def test_failed_receipt_is_revert(self, gateway):
        gateway.w3.eth.wait_for_transaction_receipt.return_value = {"status": 0}
        with pytest.raises(LedgerRevertError):
            gateway.perform(LifecycleAction.COLLECT, "abc123", sender="PH1")

    def test_receipt_timeout(self, gateway):
        gateway.w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted()
        with pytest.raises(LedgerError) as excinfo:
            gateway.perform(LifecycleAction.PREPARE, "abc123", sender="PH1")
        assert not isinstance(excinfo.value, LedgerRevertError)
