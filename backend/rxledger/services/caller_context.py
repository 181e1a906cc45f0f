"""
Request-scoped caller context.

Carries the caller's account and the role the ledger currently reports for
it. Built once per request and passed explicitly to the workflow services.
"""

from dataclasses import dataclass

from rxledger.errors import AuthorizationError
from rxledger.models.entity import Role


@dataclass(frozen=True)
class CallerContext:
    account: str
    role: Role

    def require_role(self, *roles: Role, prescription_id=None, action=None) -> None:
        """Raise AuthorizationError unless the caller holds one of roles."""
        if self.role not in roles:
            allowed = ", ".join(role.value for role in roles)
            raise AuthorizationError(
                f"This operation requires one of: {allowed} (caller is {self.role.value})",
                prescription_id=prescription_id,
                action=action,
                actor=self.account,
            )


def resolve_caller(gateway, account: str) -> CallerContext:
    """Resolve the caller's role from the ledger."""
    if not account:
        raise AuthorizationError("Caller account is required")
    return CallerContext(account=account, role=gateway.resolve_role(account))
