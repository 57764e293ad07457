"""
Trust Radar — Caller principals and access rules

Risk data and raw signals are admin-only. A trust score is readable by
admins and by the subject it belongs to. Rankings are public.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from trust_radar.api.errors import PermissionDeniedError
from trust_radar.config import Role


class Principal(BaseModel):
    """The authenticated caller, as resolved by the gateway."""

    model_config = {"frozen": True}

    subject_id: str | None = Field(default=None, description="Caller's own subject id")
    roles: frozenset[Role] = Field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles

    @classmethod
    def anonymous(cls) -> Principal:
        return cls(roles=frozenset({Role.PUBLIC}))


def require_admin(principal: Principal) -> None:
    if not principal.is_admin:
        raise PermissionDeniedError("Admin role required")


def require_admin_or_self(principal: Principal, subject_id: str) -> None:
    if principal.is_admin:
        return
    if principal.subject_id is not None and principal.subject_id == subject_id:
        return
    raise PermissionDeniedError("Only admins or the subject may read this score")
