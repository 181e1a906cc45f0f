"""
Unit tests for the entity index mirror and entity registration.
"""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from rxledger.errors import AlreadyRegistered, AuthorizationError, ContentStoreError
from rxledger.models import EntityKind, Role
from rxledger.services.entity_index import EntityIndexService
from rxledger.services.registration import EntityRegistrationService

from fakes import ADMIN, DOCTOR, PH1, RA


@pytest.fixture
def entity_index(db_session):
    return EntityIndexService(db_session)


@pytest.fixture
def registration(ledger, store, entity_index):
    return EntityRegistrationService(ledger, store, entity_index)


# =============================================================================
# Mirror
# =============================================================================

class TestEntityIndex:

    def test_upsert_overwrites_row(self, entity_index):
        entity_index.upsert(EntityKind.PHARMACIES, "0xPh", "Qm1", "0xra", pharmacy_name="Old Name",
                            pharmacy_address="1 High St")
        entity_index.upsert(EntityKind.PHARMACIES, "0xph", "Qm2", "0xra", pharmacy_name="New Name")

        row = entity_index.get(EntityKind.PHARMACIES, "0xPH")
        assert row.content_ref == "Qm2"
        assert row.pharmacy_name == "New Name"
        assert row.pharmacy_address is None
        assert entity_index.count(EntityKind.PHARMACIES) == 1

    def test_tables_are_separate(self, entity_index):
        entity_index.upsert(EntityKind.PATIENTS, "P1", "Qm1", "0xra")
        assert entity_index.get(EntityKind.PHYSICIANS, "P1") is None
        assert entity_index.counts() == {
            "physicians": 0,
            "patients": 1,
            "pharmacies": 0,
            "regulatory_authorities": 0,
        }

    def test_list_by_creator(self, entity_index):
        entity_index.upsert(EntityKind.PATIENTS, "P1", "Qm1", "0xRA1")
        entity_index.upsert(EntityKind.PATIENTS, "P2", "Qm2", "0xRA2")
        rows = entity_index.list(EntityKind.PATIENTS, created_by="0xra1")
        assert [row.address for row in rows] == ["P1"]

    def test_pharmacy_search_by_name_or_street(self, entity_index):
        entity_index.upsert(EntityKind.PHARMACIES, "PH1", "Qm1", "0xra", pharmacy_name="Main Street Pharmacy",
                            pharmacy_address="12 Queen St")
        entity_index.upsert(EntityKind.PHARMACIES, "PH2", "Qm2", "0xra", pharmacy_name="Harbour Chemist",
                            pharmacy_address="4 Main Rd")

        assert {r.address for r in entity_index.search(EntityKind.PHARMACIES, "MAIN")} == {"PH1", "PH2"}
        assert [r.address for r in entity_index.search(EntityKind.PHARMACIES, "queen")] == ["PH1"]

    def test_search_escapes_wildcards(self, entity_index):
        entity_index.upsert(EntityKind.PHARMACIES, "PH1", "Qm1", "0xra", pharmacy_name="Main Pharmacy")
        assert entity_index.search(EntityKind.PHARMACIES, "%%%") == []
        assert entity_index.search(EntityKind.PHARMACIES, "M_in") == []

    def test_search_other_tables_by_address(self, entity_index):
        entity_index.upsert(EntityKind.PHYSICIANS, "0xABCDEF", "Qm1", "0xra")
        assert [r.address for r in entity_index.search(EntityKind.PHYSICIANS, "cde")] == ["0xABCDEF"]

    def test_short_search_term(self, entity_index):
        with pytest.raises(ValueError):
            entity_index.search(EntityKind.PHARMACIES, "ma")

    def test_delete(self, entity_index):
        entity_index.upsert(EntityKind.PATIENTS, "P1", "Qm1", "0xra")
        assert entity_index.delete(EntityKind.PATIENTS, "p1") is True
        assert entity_index.delete(EntityKind.PATIENTS, "p1") is False


class TestEntityReconcile:

    def test_refreshes_profile_reference(self, entity_index, ledger):
        entity_index.upsert(EntityKind.PHARMACIES, PH1, "QmStale", RA, pharmacy_name="First Pharmacy")

        row = entity_index.reconcile(EntityKind.PHARMACIES, PH1, ledger)

        assert row.content_ref == ledger.get_profile_ref(PH1, Role.PHARMACY)
        assert row.created_by == RA
        assert row.pharmacy_name == "First Pharmacy"

    def test_pharmacy_name_from_profile(self, entity_index, ledger, store):
        row = entity_index.reconcile(EntityKind.PHARMACIES, PH1, ledger, content_store=store)
        assert row.pharmacy_name == "First Pharmacy"
        assert row.created_by == "ledger"

    def test_removes_row_without_ledger_role(self, entity_index, ledger):
        entity_index.upsert(EntityKind.PATIENTS, DOCTOR, "Qm1", RA)
        assert entity_index.reconcile(EntityKind.PATIENTS, DOCTOR, ledger) is None
        assert entity_index.get(EntityKind.PATIENTS, DOCTOR) is None


# =============================================================================
# Registration
# =============================================================================

class TestRegistration:

    def test_regulator_registers_pharmacy(self, registration, ledger, store, entity_index, caller):
        profile = {"pharmacyName": "Third Pharmacy", "pharmacyAddress": "9 Ward St"}

        row = registration.register(caller(RA), EntityKind.PHARMACIES, "PH3", profile)

        assert ledger.resolve_role("PH3") is Role.PHARMACY
        assert row.pharmacy_name == "Third Pharmacy"
        assert store.get_json(row.content_ref) == profile
        assert entity_index.get(EntityKind.PHARMACIES, "PH3").created_by == RA

    def test_only_admin_registers_regulators(self, registration, caller):
        with pytest.raises(AuthorizationError):
            registration.register(caller(RA), EntityKind.REGULATORY_AUTHORITIES, "0xRA2", {"name": "x"})
        row = registration.register(caller(ADMIN), EntityKind.REGULATORY_AUTHORITIES, "0xRA2", {"name": "x"})
        assert row.address == "0xRA2"

    def test_physician_cannot_register_patients(self, registration, ledger, caller):
        with pytest.raises(AuthorizationError):
            registration.register(caller(DOCTOR), EntityKind.PATIENTS, "P9", {"name": "x"})
        assert ledger.tx_count == 0

    def test_roles_are_exclusive(self, registration, ledger, store, caller):
        puts = store.put_count
        with pytest.raises(AlreadyRegistered):
            registration.register(caller(RA), EntityKind.PATIENTS, PH1, {"name": "x"})
        assert store.put_count == puts
        assert ledger.tx_count == 0

    def test_upload_failure_skips_ledger(self, registration, ledger, store, caller):
        store.fail_uploads = True
        with pytest.raises(ContentStoreError):
            registration.register(caller(RA), EntityKind.PATIENTS, "P9", {"name": "x"})
        assert ledger.tx_count == 0

    def test_index_failure_still_registers(self, registration, ledger, entity_index, caller):
        with patch.object(entity_index, "upsert", side_effect=OperationalError("INSERT", {}, Exception("down"))):
            row = registration.register(caller(RA), EntityKind.PATIENTS, "P9", {"name": "x"})
        assert row is None
        assert ledger.resolve_role("P9") is Role.PATIENT
        assert (EntityKind.PATIENTS, "P9") in registration.divergence

    def test_profile(self, registration, caller):
        profile = registration.get_profile("P1")
        assert profile["role"] == "Patient"
        assert profile["attributes"]["nhiNumber"] == "ABC1234"

    def test_admin_profile_is_empty(self, registration):
        profile = registration.get_profile(ADMIN)
        assert profile == {"account": ADMIN, "role": "Administrator", "attributes": {}}


class TestEntityReconciliation:
    """Rows missed by a failed index write are rebuilt from the ledger."""

    def test_pending_rebuilds_missing_row(self, registration, entity_index, caller):
        with patch.object(entity_index, "upsert", side_effect=OperationalError("INSERT", {}, Exception("down"))):
            registration.register(caller(RA), EntityKind.PATIENTS, "P9", {"name": "x"})
        assert entity_index.get(EntityKind.PATIENTS, "P9") is None

        outcome = registration.reconcile_pending(caller(ADMIN))

        assert outcome == {"patients/P9": "reconciled"}
        row = entity_index.get(EntityKind.PATIENTS, "P9")
        assert row.created_by == "ledger"
        assert registration.divergence.pending() == []

    def test_failed_reconcile_stays_flagged(self, registration, entity_index, caller):
        registration.divergence.flag((EntityKind.PHARMACIES, PH1))
        with patch.object(entity_index, "upsert", side_effect=OperationalError("INSERT", {}, Exception("down"))):
            outcome = registration.reconcile_pending(caller(ADMIN))

        assert outcome == {"pharmacies/PH1": "failed"}
        assert (EntityKind.PHARMACIES, PH1) in registration.divergence

    def test_single_row_removed_without_role(self, registration, entity_index, caller):
        entity_index.upsert(EntityKind.PATIENTS, DOCTOR, "Qm1", RA)
        assert registration.reconcile(caller(ADMIN), EntityKind.PATIENTS, DOCTOR) is None
        assert entity_index.get(EntityKind.PATIENTS, DOCTOR) is None

    def test_requires_admin(self, registration, caller):
        with pytest.raises(AuthorizationError):
            registration.reconcile(caller(RA), EntityKind.PHARMACIES, PH1)
        with pytest.raises(AuthorizationError):
            registration.reconcile_pending(caller(RA))
