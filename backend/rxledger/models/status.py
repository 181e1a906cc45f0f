"""
Canonical prescription status and lifecycle action enumerations.

The ledger encodes status as an integer ordinal; the index stores a text
label. Both boundaries convert through this module only.
"""

from enum import Enum, IntEnum


class PrescriptionStatus(IntEnum):
    """Prescription status, ordinal-tagged as the ledger reports it.

    REASSIGNED is a pseudo-state: a rejection returns the prescription to
    AWAITING_PHARMACY_ASSIGNMENT, and "Reassigned" is only written to the
    audit timeline.
    """

    AWAITING_PHARMACY_ASSIGNMENT = 0
    AWAITING_CONFIRMATION = 1
    PREPARING = 2
    READY_FOR_COLLECTION = 3
    COLLECTED = 4
    CANCELLED = 5
    REASSIGNED = 6

    @classmethod
    def from_ledger(cls, value) -> "PrescriptionStatus":
        """Map a ledger ordinal (int, or numeric string) to a status."""
        try:
            ordinal = int(value)
        except (TypeError, ValueError):
            raise ValueError(f"Unknown ledger status: {value!r}")
        try:
            return cls(ordinal)
        except ValueError:
            raise ValueError(f"Unknown ledger status: {value!r}")

    def to_ledger(self) -> int:
        return int(self)

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]

    @classmethod
    def from_label(cls, label: str) -> "PrescriptionStatus":
        """Map an index/audit label back to a status."""
        try:
            return _LABEL_TO_STATUS[label]
        except KeyError:
            raise ValueError(f"Unknown status label: {label!r}")

    @property
    def effective(self) -> "PrescriptionStatus":
        """Status used for transition checks (REASSIGNED behaves as 0)."""
        if self is PrescriptionStatus.REASSIGNED:
            return PrescriptionStatus.AWAITING_PHARMACY_ASSIGNMENT
        return self

    @property
    def is_terminal(self) -> bool:
        return self in (PrescriptionStatus.COLLECTED, PrescriptionStatus.CANCELLED)

    @property
    def has_assignee(self) -> bool:
        """Whether the ledger holds an assigned pharmacy in this status."""
        return self in ASSIGNED_STATUSES


STATUS_LABELS = {
    PrescriptionStatus.AWAITING_PHARMACY_ASSIGNMENT: "Awaiting Pharmacy Assignment",
    PrescriptionStatus.AWAITING_CONFIRMATION: "Awaiting For Confirmation",
    PrescriptionStatus.PREPARING: "Preparing",
    PrescriptionStatus.READY_FOR_COLLECTION: "Ready For Collection",
    PrescriptionStatus.COLLECTED: "Collected",
    PrescriptionStatus.CANCELLED: "Cancelled",
    PrescriptionStatus.REASSIGNED: "Reassigned",
}

_LABEL_TO_STATUS = {label: status for status, label in STATUS_LABELS.items()}

ASSIGNED_STATUSES = frozenset({
    PrescriptionStatus.AWAITING_CONFIRMATION,
    PrescriptionStatus.PREPARING,
    PrescriptionStatus.READY_FOR_COLLECTION,
    PrescriptionStatus.COLLECTED,
})

TERMINAL_LABELS = (
    STATUS_LABELS[PrescriptionStatus.COLLECTED],
    STATUS_LABELS[PrescriptionStatus.CANCELLED],
)


class LifecycleAction(str, Enum):
    """State-changing actions on a prescription."""

    ASSIGN = "assign"
    ACCEPT = "accept"
    REJECT = "reject"
    PREPARE = "prepare"
    COLLECT = "collect"
    CANCEL = "cancel"

    @classmethod
    def parse(cls, value: str) -> "LifecycleAction":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            raise ValueError(f"Unknown action: {value!r}")


# Legal transitions: action -> (allowed source statuses, target status).
# Source statuses are compared against PrescriptionStatus.effective.
TRANSITIONS = {
    LifecycleAction.ASSIGN: (
        frozenset({PrescriptionStatus.AWAITING_PHARMACY_ASSIGNMENT}),
        PrescriptionStatus.AWAITING_CONFIRMATION,
    ),
    LifecycleAction.REJECT: (
        frozenset({PrescriptionStatus.AWAITING_CONFIRMATION}),
        PrescriptionStatus.AWAITING_PHARMACY_ASSIGNMENT,
    ),
    LifecycleAction.ACCEPT: (
        frozenset({PrescriptionStatus.AWAITING_CONFIRMATION}),
        PrescriptionStatus.PREPARING,
    ),
    LifecycleAction.PREPARE: (
        frozenset({PrescriptionStatus.PREPARING}),
        PrescriptionStatus.READY_FOR_COLLECTION,
    ),
    LifecycleAction.COLLECT: (
        frozenset({PrescriptionStatus.READY_FOR_COLLECTION}),
        PrescriptionStatus.COLLECTED,
    ),
    LifecycleAction.CANCEL: (
        frozenset({
            PrescriptionStatus.AWAITING_PHARMACY_ASSIGNMENT,
            PrescriptionStatus.AWAITING_CONFIRMATION,
        }),
        PrescriptionStatus.CANCELLED,
    ),
}

# Timeline label written for each action (reject is logged as "Reassigned").
AUDIT_STATUS = {
    LifecycleAction.ASSIGN: PrescriptionStatus.AWAITING_CONFIRMATION,
    LifecycleAction.REJECT: PrescriptionStatus.REASSIGNED,
    LifecycleAction.ACCEPT: PrescriptionStatus.PREPARING,
    LifecycleAction.PREPARE: PrescriptionStatus.READY_FOR_COLLECTION,
    LifecycleAction.COLLECT: PrescriptionStatus.COLLECTED,
    LifecycleAction.CANCEL: PrescriptionStatus.CANCELLED,
}


def is_legal(action: LifecycleAction, current: PrescriptionStatus) -> bool:
    sources, _ = TRANSITIONS[action]
    return current.effective in sources


def target_status(action: LifecycleAction) -> PrescriptionStatus:
    return TRANSITIONS[action][1]
