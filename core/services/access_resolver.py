"""
Client access resolution for statistics reads.

Decides which primary clients a caller may see. Never writes; the
authentication method is fixed at construction time.
"""

from __future__ import annotations

from typing import Optional

import core.config as config
from core.context import CallerIdentity, ClientAccess
from core.errors import AccessDeniedError
from core.primary import PrimaryDirectory

logger = config.logger


class AccessResolver:
    def __init__(self, primary: PrimaryDirectory, authentication_method: Optional[str] = None):
        self._primary = primary
        self._authentication_method = authentication_method

    @property
    def api_key_mode(self) -> bool:
        """True when every request must carry a verified API key."""
        return self._authentication_method == config.AUTH_METHOD_API_KEY

    def _sees_everything(self, identity: CallerIdentity) -> bool:
        return identity.is_api_key_auth or identity.is_admin

    def resolve_accessible_client_ids(self, identity: CallerIdentity) -> list[str]:
        """All client ids for privileged callers; creator ∪ membership for plain users."""
        if self._sees_everything(identity):
            return self._primary.list_client_ids()
        if not identity.user_id or not identity.user_role:
            return []

        created = self._primary.list_client_ids_created_by(identity.user_id)
        memberships = self._primary.list_memberships_for_user(identity.user_id)
        seen: dict[str, None] = {}
        for client_id in created:
            seen.setdefault(client_id, None)
        for membership in memberships:
            seen.setdefault(membership.client_id, None)
        return list(seen)

    def check_access(self, client_id: str, identity: CallerIdentity) -> ClientAccess:
        if identity.is_api_key_auth:
            return ClientAccess(has_access=True)
        if not identity.user_id or not identity.user_role:
            return ClientAccess(has_access=False)
        if identity.is_admin:
            return ClientAccess(has_access=True)

        client = self._primary.get_client(client_id)
        if client is None:
            return ClientAccess(has_access=False)

        is_creator = client.user_id is not None and client.user_id == identity.user_id
        membership = self._primary.get_membership(client_id, identity.user_id)
        if membership is not None:
            return ClientAccess(has_access=True, is_creator=is_creator, client_role=membership.role)
        if is_creator:
            return ClientAccess(has_access=True, is_creator=True)
        return ClientAccess(has_access=False)

    def ensure_access(self, client_id: str, identity: CallerIdentity) -> ClientAccess:
        access = self.check_access(client_id, identity)
        if not access.has_access:
            logger.info("statistics_access_denied", extra={"client_id": client_id, "user_id": identity.user_id})
            raise AccessDeniedError("You do not have access to this client", client_id=client_id)
        return access

    def resolve_scope(self, identity: CallerIdentity, client_id: Optional[str] = None) -> list[str]:
        """
        Accessible client ids, optionally narrowed to a single requested client.
        """
        accessible = self.resolve_accessible_client_ids(identity)
        if client_id is None:
            return accessible
        if client_id not in accessible:
            logger.info("statistics_access_denied", extra={"client_id": client_id, "user_id": identity.user_id})
            raise AccessDeniedError("You do not have access to this client", client_id=client_id)
        return [client_id]


__all__ = ["AccessResolver"]
