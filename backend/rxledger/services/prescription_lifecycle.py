"""
PrescriptionLifecycleService: the prescription workflow orchestrator.

Drives every status transition through the ledger, then projects the result
into the prescription index and appends one status-audit entry.

Per-operation sequence:
1. authorize the caller (role, then relationship derived from ledger truth)
2. check the transition against the current *ledger* status
3. content upload, if any (always before the ledger call that references it)
4. ledger transaction
5. index row rewrite + audit append (best-effort; failures are logged and
   flagged for reconciliation, never surfaced)

The service holds no per-prescription state and is safe to call from
concurrent requests; the ledger serializes transitions.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from rxledger.config import config
from rxledger.errors import (
    AuthorizationError,
    ConflictError,
    ContentStoreError,
    IndexWriteFailure,
    InvalidTransition,
    LedgerError,
    LedgerRevertError,
    NotFoundError,
    PatientNotRegistered,
    PharmacyNotRegistered,
    RxLedgerError,
)
from rxledger.models import Role
from rxledger.models.status import (
    AUDIT_STATUS,
    LifecycleAction,
    PrescriptionStatus,
    is_legal,
    target_status,
)
from rxledger.services.caller_context import CallerContext
from rxledger.services.ledger_gateway import LedgerPrescription, same_account
from rxledger.services.prescription_index import (
    DivergenceRegistry,
    PrescriptionFilter,
    PrescriptionIndexService,
    PrescriptionRow,
    filter_for_role,
)
from rxledger.services.status_audit import StatusAuditService

DEFAULT_MITTE_UNIT = "tablet(s)"
REQUIRED_DRUG_FIELDS = ("name", "sig", "mitte", "repeat")

PHARMACY_ACTIONS = frozenset({
    LifecycleAction.ACCEPT,
    LifecycleAction.REJECT,
    LifecycleAction.PREPARE,
    LifecycleAction.COLLECT,
})

CREATED_NOTE = "Prescription created"
DEFAULT_NOTES = {
    LifecycleAction.ASSIGN: "Pharmacy assigned",
    LifecycleAction.ACCEPT: "Prescription accepted by pharmacy",
    LifecycleAction.REJECT: "Prescription rejected by pharmacy",
    LifecycleAction.PREPARE: "Medication prepared",
    LifecycleAction.COLLECT: "Medication collected",
    LifecycleAction.CANCEL: "Prescription cancelled",
}
RECONCILED_NOTE = "Restored from ledger state"

LISTING_ROLES = (
    Role.ADMINISTRATOR,
    Role.REGULATORY_AUTHORITY,
    Role.PHYSICIAN,
    Role.PATIENT,
    Role.PHARMACY,
)


def validate_drugs(drugs) -> List[Dict[str, Any]]:
    """Validate a drug list and fill defaults. Raises ValueError."""
    if not isinstance(drugs, list) or not drugs:
        raise ValueError("At least one drug is required")

    normalized = []
    for position, drug in enumerate(drugs, start=1):
        if not isinstance(drug, dict):
            raise ValueError(f"Drug {position} must be an object")
        missing = [
            name for name in REQUIRED_DRUG_FIELDS
            if drug.get(name) is None or (isinstance(drug.get(name), str) and not drug.get(name).strip())
        ]
        if missing:
            raise ValueError(f"Drug {position} is missing: {', '.join(missing)}")
        entry = dict(drug)
        entry["mitteUnit"] = drug.get("mitteUnit") or DEFAULT_MITTE_UNIT
        normalized.append(entry)
    return normalized


def _parse_date(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def effective_status(label: str) -> PrescriptionStatus:
    """Effective status for an index or audit label."""
    return PrescriptionStatus.from_label(label).effective


def ledger_assignee(record: LedgerPrescription, indexed: Optional[str]) -> Optional[str]:
    """Assignee to index for a ledger record.

    The ledger does not report an assignee for cancelled prescriptions; the
    indexed one (if any) is kept.
    """
    if record.status is PrescriptionStatus.CANCELLED:
        return indexed
    return record.assigned_pharmacy


def restored_audit_status(
    latest: Optional[PrescriptionStatus], ledger_status: PrescriptionStatus
) -> PrescriptionStatus:
    """Timeline label for a transition whose audit entry was lost.

    Back to awaiting assignment from awaiting confirmation can only be a
    reject, which the timeline records as Reassigned.
    """
    if (
        latest is PrescriptionStatus.AWAITING_CONFIRMATION
        and ledger_status is PrescriptionStatus.AWAITING_PHARMACY_ASSIGNMENT
    ):
        return PrescriptionStatus.REASSIGNED
    return ledger_status


def _same_state(a: LedgerPrescription, b: LedgerPrescription) -> bool:
    return (
        a.status.effective == b.status.effective
        and (a.assigned_pharmacy or "").lower() == (b.assigned_pharmacy or "").lower()
    )


@dataclass
class PrescriptionView:
    """Ledger-authoritative view of one prescription."""

    prescription_id: str
    status: PrescriptionStatus
    patient_address: str
    physician_address: Optional[str]
    assigned_pharmacy: Optional[str]
    content_ref: str
    drugs: List[Dict[str, Any]] = field(default_factory=list)
    date: Optional[str] = None
    physician: Optional[Dict[str, Any]] = None
    patient: Optional[Dict[str, Any]] = None
    pharmacy: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prescription_id": self.prescription_id,
            "status": self.status.to_ledger(),
            "status_label": self.status.label,
            "patient_address": self.patient_address,
            "physician_address": self.physician_address,
            "assigned_pharmacy": self.assigned_pharmacy,
            "content_ref": self.content_ref,
            "drugs": self.drugs,
            "date": self.date,
            "physician": self.physician,
            "patient": self.patient,
            "pharmacy": self.pharmacy,
        }


class PrescriptionLifecycleService:
    """
    Prescription workflow orchestrator.

    Usage:
        service = get_lifecycle_service()
        prescription_id = service.create(caller, patient="0xp1", drugs=[...])
        service.assign_pharmacy(caller, prescription_id, "0xph1")
        service.act_on(pharmacy_caller, prescription_id, "accept")
    """

    def __init__(
        self,
        gateway,
        content_store,
        index: Optional[PrescriptionIndexService] = None,
        audit: Optional[StatusAuditService] = None,
        divergence: Optional[DivergenceRegistry] = None,
    ):
        self.gateway = gateway
        self.content_store = content_store
        self.index = index or PrescriptionIndexService()
        self.audit = audit or StatusAuditService()
        self.divergence = divergence or DivergenceRegistry()
        self.logger = logging.getLogger("service.PrescriptionLifecycleService")

    # =========================================================================
    # Commands
    # =========================================================================

    def create(self, caller: CallerContext, patient: str, drugs, note: Optional[str] = None) -> str:
        """
        Create a prescription for a registered patient. Returns its id.

        Upload happens before the ledger call; a failed upload means no
        transaction is ever submitted.
        """
        caller.require_role(Role.PHYSICIAN, action="create")
        if not patient:
            raise ValueError("patient is required")
        drugs = validate_drugs(drugs)

        if not self.gateway.is_patient(patient):
            raise PatientNotRegistered(
                f"Account {patient} is not a registered patient",
                action="create",
                actor=caller.account,
            )

        prescription_id = uuid.uuid4().hex
        created_at = datetime.utcnow()
        content = {
            "prescriptionID": prescription_id,
            "physicianAddress": caller.account,
            "patientAddress": patient,
            "drugs": drugs,
            "date": created_at.isoformat(),
        }

        content_ref = self.content_store.put_json(content)
        self.gateway.create_prescription(prescription_id, patient, content_ref, sender=caller.account)
        self.logger.info(f"Prescription {prescription_id} created by {caller.account} for {patient}")

        record = LedgerPrescription(
            prescription_id=prescription_id,
            patient_address=patient,
            content_ref=content_ref,
            status=PrescriptionStatus.AWAITING_PHARMACY_ASSIGNMENT,
        )
        self._project(
            caller,
            "create",
            record,
            status=PrescriptionStatus.AWAITING_PHARMACY_ASSIGNMENT,
            assigned_to=None,
            audit_status=PrescriptionStatus.AWAITING_PHARMACY_ASSIGNMENT,
            note=note or CREATED_NOTE,
            content=content,
        )
        return prescription_id

    def assign_pharmacy(
        self,
        caller: CallerContext,
        prescription_id: str,
        pharmacy: str,
        note: Optional[str] = None,
    ) -> PrescriptionStatus:
        """Assign a registered pharmacy (creating physician only)."""
        action = LifecycleAction.ASSIGN
        if not pharmacy:
            raise ValueError("pharmacy is required")
        record, content = self._authorize_creator(caller, prescription_id, action)
        self._check_transition(caller, record, action)

        if not self.gateway.is_pharmacy(pharmacy):
            raise PharmacyNotRegistered(
                f"Account {pharmacy} is not a registered pharmacy",
                prescription_id=prescription_id,
                action=action.value,
                actor=caller.account,
            )

        self._submit(
            caller,
            record,
            action,
            lambda: self.gateway.select_pharmacy(prescription_id, pharmacy, sender=caller.account),
        )
        return self._after_transition(caller, record, action, assigned_to=pharmacy, note=note, content=content)

    def act_on(
        self,
        caller: CallerContext,
        prescription_id: str,
        action,
        note: Optional[str] = None,
    ) -> PrescriptionStatus:
        """
        Perform accept/reject/prepare/collect (assigned pharmacy) or cancel
        (creating physician). Authorization is checked before legality.
        """
        if not isinstance(action, LifecycleAction):
            action = LifecycleAction.parse(action)
        if action is LifecycleAction.ASSIGN:
            raise ValueError("Use assign_pharmacy to assign a pharmacy")

        content = None
        if action in PHARMACY_ACTIONS:
            record = self._authorize_assignee(caller, prescription_id, action)
        else:
            record, content = self._authorize_creator(caller, prescription_id, action)
        self._check_transition(caller, record, action)

        self._submit(
            caller,
            record,
            action,
            lambda: self.gateway.perform(action, prescription_id, sender=caller.account),
        )

        # Reject clears the assignment; every other action keeps it
        assigned_to = None if action is LifecycleAction.REJECT else record.assigned_pharmacy
        return self._after_transition(caller, record, action, assigned_to=assigned_to, note=note, content=content)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_details(self, caller: CallerContext, prescription_id: str) -> PrescriptionView:
        """
        Read a prescription from the ledger, never from the index.

        Content and the physician/patient/pharmacy profiles are fetched
        through ledger-supplied content references.
        """
        record = self.gateway.get_prescription(prescription_id, caller.account)
        content = self.content_store.get_json(record.content_ref)
        physician_address = content.get("physicianAddress")

        return PrescriptionView(
            prescription_id=prescription_id,
            status=record.status,
            patient_address=record.patient_address,
            physician_address=physician_address,
            assigned_pharmacy=record.assigned_pharmacy,
            content_ref=record.content_ref,
            drugs=content.get("drugs", []),
            date=content.get("date"),
            physician=self._profile(physician_address, Role.PHYSICIAN),
            patient=self._profile(record.patient_address, Role.PATIENT),
            pharmacy=self._profile(record.assigned_pharmacy, Role.PHARMACY),
        )

    def list(
        self,
        caller: CallerContext,
        filters: Optional[PrescriptionFilter] = None,
        reconcile: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        """
        List index rows visible to the caller's role, newest first.

        With reconciliation on, each row is checked against the ledger and
        rewritten when status or assignee differ. Refreshed rows that no longer
        satisfy the filter are dropped. Rows the caller cannot read on the
        ledger are returned as-is (advisory).
        """
        caller.require_role(*LISTING_ROLES, action="list")
        filters = filter_for_role(caller.role, caller.account, filters)
        if reconcile is None:
            reconcile = config.RECONCILE_ON_LIST

        results = []
        for row in self.index.list(filters):
            item = row.to_dict()
            item["reconciled"] = False
            if reconcile:
                try:
                    item = self._reconcile_row(caller, row, item)
                    if item["reconciled"] and not filters.matches(item["status"], item["assigned_to"]):
                        continue
                except NotFoundError:
                    pass
                except LedgerError as e:
                    self.logger.warning(f"Ledger unavailable during list reconciliation, returning index rows: {e}")
                    reconcile = False
            results.append(item)
        return results

    def timeline(self, caller: CallerContext, prescription_id: str) -> List[Dict[str, Any]]:
        """Audit entries for a prescription, newest first."""
        if caller.role is not Role.REGULATORY_AUTHORITY:
            # Visibility is the ledger's call
            self.gateway.get_prescription(prescription_id, caller.account)
        return [entry.to_dict() for entry in self.audit.timeline(prescription_id)]

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def reconcile(self, caller: CallerContext, prescription_id: str) -> Dict[str, Any]:
        """
        Re-derive the index row from the ledger and restore a missing
        timeline entry for the current status.
        """
        record = self.gateway.get_prescription(prescription_id, caller.account)
        status = record.status.effective
        try:
            existing = self.index.get(prescription_id)
        except SQLAlchemyError as e:
            self._index_failed(caller, "reconcile", prescription_id, e)
            existing = None
        assigned_to = ledger_assignee(record, existing.assigned_to if existing else None)

        index_ok = self._write_index(caller, "reconcile", record, status, assigned_to)

        audit_ok = True
        try:
            latest = self.audit.timeline(prescription_id)[:1]
            current = effective_status(latest[0].status) if latest else None
            if current != status:
                self.audit.append(prescription_id, restored_audit_status(current, status).label, RECONCILED_NOTE)
        except SQLAlchemyError as e:
            audit_ok = False
            self._index_failed(caller, "reconcile", prescription_id, e)

        if index_ok and audit_ok:
            self.divergence.clear(prescription_id)

        self.logger.info(f"Reconciled {prescription_id} -> {status.label} (by {caller.account})")
        return {
            "prescription_id": prescription_id,
            "status": status.label,
            "assigned_to": assigned_to,
            "index_updated": index_ok and audit_ok,
        }

    def reconcile_pending(self, caller: CallerContext) -> Dict[str, str]:
        """Reconcile every flagged prescription (administrator only)."""
        caller.require_role(Role.ADMINISTRATOR, action="reconcile")
        outcome = {}
        for prescription_id in self.divergence.pending():
            try:
                result = self.reconcile(caller, prescription_id)
                outcome[prescription_id] = "reconciled" if result["index_updated"] else "failed"
            except RxLedgerError as e:
                self.logger.error(f"Reconciliation failed for {prescription_id}: {e.message}")
                outcome[prescription_id] = "failed"
        return outcome

    # =========================================================================
    # Internals
    # =========================================================================

    def _authorize_creator(self, caller: CallerContext, prescription_id: str, action: LifecycleAction):
        caller.require_role(Role.PHYSICIAN, prescription_id=prescription_id, action=action.value)
        record = self.gateway.get_prescription(prescription_id, caller.account)
        content = self.content_store.get_json(record.content_ref)
        if not same_account(content.get("physicianAddress"), caller.account):
            raise AuthorizationError(
                f"Only the prescribing physician may {action.value} this prescription",
                prescription_id=prescription_id,
                action=action.value,
                actor=caller.account,
            )
        return record, content

    def _authorize_assignee(self, caller: CallerContext, prescription_id: str, action: LifecycleAction):
        caller.require_role(Role.PHARMACY, prescription_id=prescription_id, action=action.value)
        denied = AuthorizationError(
            f"Only the assigned pharmacy may {action.value} this prescription",
            prescription_id=prescription_id,
            action=action.value,
            actor=caller.account,
        )
        try:
            record = self.gateway.get_prescription(prescription_id, caller.account)
        except NotFoundError as e:
            # The ledger hides prescriptions from pharmacies they are not assigned to
            raise denied from e
        # Without an assignee no pharmacy action is legal; the transition check reports it
        if record.assigned_pharmacy and not same_account(record.assigned_pharmacy, caller.account):
            raise denied
        return record

    def _check_transition(self, caller: CallerContext, record: LedgerPrescription, action: LifecycleAction) -> None:
        if not is_legal(action, record.status):
            raise InvalidTransition(
                f"Cannot {action.value} a prescription that is '{record.status.label}'",
                current_status=record.status,
                prescription_id=record.prescription_id,
                action=action.value,
                actor=caller.account,
            )

    def _submit(self, caller: CallerContext, record: LedgerPrescription, action: LifecycleAction, send) -> None:
        """Send the transaction; classify reverts as conflicts when state moved."""
        try:
            send()
        except LedgerRevertError as e:
            e.prescription_id = record.prescription_id
            e.action = action.value
            try:
                current = self.gateway.get_prescription(record.prescription_id, caller.account)
            except NotFoundError:
                current = None
            if current is None or not _same_state(current, record):
                observed = current.status.label if current else "no longer visible"
                self.logger.warning(
                    f"Conflict on {action.value}: status moved from '{record.status.label}' to '{observed}' "
                    f"(prescription={record.prescription_id} actor={caller.account})"
                )
                raise ConflictError(
                    "The prescription was changed by another request; refresh and try again",
                    prescription_id=record.prescription_id,
                    action=action.value,
                    actor=caller.account,
                ) from e
            self.logger.error(f"Ledger rejected {action.value}: {e.message} ({e.context()})")
            raise
        except LedgerError as e:
            e.prescription_id = record.prescription_id
            e.action = action.value
            self.logger.error(f"Ledger failure on {action.value}: {e.message} ({e.context()})")
            raise

    def _after_transition(
        self,
        caller: CallerContext,
        record: LedgerPrescription,
        action: LifecycleAction,
        assigned_to: Optional[str],
        note: Optional[str],
        content: Optional[Dict[str, Any]] = None,
    ) -> PrescriptionStatus:
        new_status = target_status(action)
        self.logger.info(
            f"Prescription {record.prescription_id}: {action.value} "
            f"'{record.status.label}' -> '{new_status.label}' by {caller.account}"
        )
        self._project(
            caller,
            action.value,
            record,
            status=new_status,
            assigned_to=assigned_to,
            audit_status=AUDIT_STATUS[action],
            note=note or DEFAULT_NOTES[action],
            content=content,
        )
        return new_status

    def _project(
        self,
        caller: CallerContext,
        action: str,
        record: LedgerPrescription,
        status: PrescriptionStatus,
        assigned_to: Optional[str],
        audit_status: PrescriptionStatus,
        note: str,
        content: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Index rewrite and audit append. Never raises."""
        index_ok = self._write_index(caller, action, record, status, assigned_to, content)

        audit_ok = True
        try:
            self.audit.append(record.prescription_id, audit_status.label, note)
        except SQLAlchemyError as e:
            audit_ok = False
            self._index_failed(caller, action, record.prescription_id, e)

        if index_ok and audit_ok:
            self.divergence.clear(record.prescription_id)

    def _write_index(
        self,
        caller: CallerContext,
        action: str,
        record: LedgerPrescription,
        status: PrescriptionStatus,
        assigned_to: Optional[str],
        content: Optional[Dict[str, Any]] = None,
    ) -> bool:
        try:
            existing = self.index.get(record.prescription_id)
            if content is None and existing is None:
                content = self.content_store.get_json(record.content_ref)

            if content is not None:
                created_by = content.get("physicianAddress") or ""
                created_at = _parse_date(content.get("date"))
            else:
                created_by = existing.created_by
                created_at = existing.created_at
            if existing is not None and existing.created_at:
                created_at = existing.created_at

            self.index.upsert(PrescriptionRow(
                prescription_id=record.prescription_id,
                patient_address=record.patient_address,
                content_ref=record.content_ref,
                created_by=created_by,
                status=status,
                assigned_to=assigned_to,
                created_at=created_at,
            ))
            return True
        except (SQLAlchemyError, ContentStoreError) as e:
            self._index_failed(caller, action, record.prescription_id, e)
            return False

    def _index_failed(self, caller: CallerContext, action: str, prescription_id: str, error: Exception) -> None:
        if isinstance(error, SQLAlchemyError):
            self.index.rollback()
        failure = IndexWriteFailure(str(error), prescription_id=prescription_id, action=action, actor=caller.account)
        self.logger.warning(f"Index write failed after ledger success: {failure.context()}: {error}")
        self.divergence.flag(prescription_id)

    def _reconcile_row(self, caller: CallerContext, row, item: Dict[str, Any]) -> Dict[str, Any]:
        record = self.gateway.get_prescription(row.prescription_id, caller.account)
        status = record.status.effective
        indexed = effective_status(row.status)
        assigned_to = ledger_assignee(record, row.assigned_to)
        if indexed == status and same_account(row.assigned_to or "-", assigned_to or "-"):
            return item

        self.logger.info(
            f"Index row {row.prescription_id} stale ('{row.status}' vs ledger '{status.label}'); refreshing"
        )
        if self._write_index(caller, "reconcile", record, status, assigned_to):
            self.divergence.clear(row.prescription_id)

        item = dict(item)
        item["status"] = status.label
        item["assigned_to"] = assigned_to
        item["reconciled"] = True
        return item

    def _profile(self, account: Optional[str], role: Role) -> Optional[Dict[str, Any]]:
        if not account:
            return None
        content_ref = self.gateway.get_profile_ref(account, role)
        if not content_ref:
            return None
        profile = self.content_store.get_json(content_ref)
        profile["address"] = account
        return profile


# Singleton
_lifecycle_service: Optional[PrescriptionLifecycleService] = None


def get_lifecycle_service() -> PrescriptionLifecycleService:
    """Get the lifecycle service singleton wired to the live collaborators."""
    global _lifecycle_service
    if _lifecycle_service is None:
        from rxledger.services.content_store import get_content_store
        from rxledger.services.ledger_gateway import get_ledger_gateway
        from rxledger.services.prescription_index import get_divergence_registry, get_prescription_index
        from rxledger.services.status_audit import get_status_audit

        _lifecycle_service = PrescriptionLifecycleService(
            gateway=get_ledger_gateway(),
            content_store=get_content_store(),
            index=get_prescription_index(),
            audit=get_status_audit(),
            divergence=get_divergence_registry(),
        )
    return _lifecycle_service
