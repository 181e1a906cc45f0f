"""
Error taxonomy for prescription workflow operations.

Every error carries enough context (prescription id, attempted action, actor)
to correlate API failures with log lines.
"""

from typing import Any, Dict, Optional


class RxLedgerError(Exception):
    """Base class for workflow errors surfaced to callers."""

    code = "error"

    def __init__(
        self,
        message: str,
        prescription_id: Optional[str] = None,
        action: Optional[str] = None,
        actor: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.prescription_id = prescription_id
        self.action = action
        self.actor = actor

    def context(self) -> str:
        return f"prescription={self.prescription_id} action={self.action} actor={self.actor}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        data: Dict[str, Any] = {
            "ok": False,
            "error": self.message,
            "code": self.code,
        }
        if self.prescription_id:
            data["prescription_id"] = self.prescription_id
        if self.action:
            data["action"] = self.action
        return data


class AuthorizationError(RxLedgerError):
    """Actor lacks the role or relationship required for the request."""

    code = "not_authorized"


class InvalidTransition(RxLedgerError):
    """Requested action is illegal from the current ledger status."""

    code = "invalid_transition"

    def __init__(self, message: str, current_status=None, **kwargs):
        super().__init__(message, **kwargs)
        self.current_status = current_status

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.current_status is not None:
            data["current_status"] = self.current_status.label
        return data


class NotRegistered(RxLedgerError):
    """Referenced account holds no role on the ledger."""

    code = "not_registered"


class PatientNotRegistered(NotRegistered):
    pass


class PharmacyNotRegistered(NotRegistered):
    pass


class AlreadyRegistered(RxLedgerError):
    """Account already holds a role (roles are mutually exclusive)."""

    code = "already_registered"


class ContentStoreError(RxLedgerError):
    """Upload/download failure or timeout against the content store."""

    code = "content_store_error"


class LedgerError(RxLedgerError):
    """Transaction rejected, timed out, or the node was unreachable."""

    code = "ledger_error"


class LedgerRevertError(LedgerError):
    """Transaction or call reverted by the contract."""

    code = "ledger_revert"

    def __init__(self, message: str, reason: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.reason = reason


class NotFoundError(RxLedgerError):
    """Record does not exist, or the requester may not read it."""

    code = "not_found"


class ConflictError(RxLedgerError):
    """Ledger status changed concurrently under this caller."""

    code = "conflict"


class IndexWriteFailure(RxLedgerError):
    """Index or audit write failed after a successful ledger write.

    Logged only. Never raised out of a workflow operation.
    """

    code = "index_write_failure"
