"""
Identity Adapter (Infrastructure Adapter)

Resolves the calling Actor from the Cognito identity AppSync attaches to
resolver events.
"""

from typing import Any, Dict, Optional

from ..domain.entities import Actor, ActorRole
from ..domain.exceptions import UnauthenticatedError
from ..domain.repositories import IIdentityProvider
from ..utils import Logger
from .user_role_repository import DynamoDBUserRoleRepository

logger = Logger()

# Cognito group names mapped to roles, highest privilege first
_GROUP_ROLES = (
    ('admin', ActorRole.ADMIN),
    ('admins', ActorRole.ADMIN),
    ('provider', ActorRole.PROVIDER),
    ('providers', ActorRole.PROVIDER),
    ('client', ActorRole.CLIENT),
    ('clients', ActorRole.CLIENT),
)


class AppSyncIdentityAdapter(IIdentityProvider):
    """
    Actor from event['identity']

    Role resolution order: `custom:role` claim, `cognito:groups`, then the
    user-role table. A user with no recorded role is a client. The SYSTEM
    role is never granted to external callers.
    """

    def __init__(self, event: Dict[str, Any], role_repo: Optional[DynamoDBUserRoleRepository] = None):
        self.event = event or {}
        self.role_repo = role_repo

    def current_actor(self) -> Actor:
        identity = self.event.get('identity') or {}
        claims = identity.get('claims') or {}

        user_id = claims.get('sub') or identity.get('sub')
        if not user_id:
            raise UnauthenticatedError("No authenticated identity in request")

        role = self._role_from_claims(claims)
        if role is None and self.role_repo is not None:
            user = self.role_repo.get(user_id)
            if user is not None:
                if not user.is_active():
                    raise UnauthenticatedError(f"User {user_id} is disabled")
                role = user.role

        role = role or ActorRole.CLIENT
        if role == ActorRole.SYSTEM:
            logger.warning("External caller claimed SYSTEM role", user_id=user_id)
            role = ActorRole.CLIENT

        return Actor(actor_id=user_id, role=role)

    @staticmethod
    def _role_from_claims(claims: Dict[str, Any]) -> Optional[ActorRole]:
        claimed = claims.get('custom:role')
        if claimed:
            try:
                return ActorRole(str(claimed).upper())
            except ValueError:
                logger.warning("Unknown role claim", role=claimed)

        groups = claims.get('cognito:groups') or []
        if isinstance(groups, str):
            groups = [g.strip() for g in groups.split(',')]
        normalized = {g.lower() for g in groups}
        for group, role in _GROUP_ROLES:
            if group in normalized:
                return role
        return None
