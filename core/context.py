"""
Request-scoped caller identity for statistics reads.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from core.models import UserRole


@dataclass(frozen=True)
class CallerIdentity:
    user_id: Optional[str] = None
    user_role: Optional[str] = None
    is_api_key_auth: bool = False

    @property
    def is_admin(self) -> bool:
        return (self.user_role or "").lower() == UserRole.admin.value

    @staticmethod
    def api_key() -> "CallerIdentity":
        return CallerIdentity(is_api_key_auth=True)

    @staticmethod
    def anonymous() -> "CallerIdentity":
        return CallerIdentity()


@dataclass(frozen=True)
class ClientAccess:
    has_access: bool
    is_creator: bool = False
    client_role: Optional[str] = None


__all__ = [
    "CallerIdentity",
    "ClientAccess",
]
