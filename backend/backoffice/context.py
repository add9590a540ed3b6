# backend/backoffice/context.py
"""
Acting-identity context passed explicitly into every service call.

Authentication itself happens upstream; this module only consumes its
output: who is acting, with which role, scoped to which branch.
"""
from __future__ import annotations

from dataclasses import dataclass

from .errors import AuthorizationError

ROLE_OWNER = "owner"
ROLE_EMPLOYEE = "employee"


@dataclass(frozen=True)
class Identity:
    user_id: int | None
    role: str
    branch_id: int | None = None
    email: str | None = None

    @property
    def is_owner(self) -> bool:
        return self.role == ROLE_OWNER

    def can_access_branch(self, branch_id: int | None) -> bool:
        # Owner has access to all branches; branchless records are shared
        if self.is_owner or branch_id is None:
            return True
        return self.branch_id is not None and self.branch_id == branch_id

    @classmethod
    def from_user(cls, user) -> "Identity":
        return cls(user_id=user.id, role=user.role, branch_id=user.branch_id, email=user.email)


@dataclass(frozen=True)
class RequestContext:
    identity: Identity
    ip_address: str | None = None

    @property
    def user_id(self) -> int | None:
        return self.identity.user_id


def require_owner(ctx: RequestContext) -> None:
    if not ctx.identity.is_owner:
        raise AuthorizationError("Owner role required")


def require_branch_access(ctx: RequestContext, branch_id: int | None) -> None:
    if not ctx.identity.can_access_branch(branch_id):
        raise AuthorizationError(
            "Access denied to this branch",
            branch_id=branch_id,
        )
