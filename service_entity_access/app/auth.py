"""
Principal resolution for the Entity Access API.

Authentication happens upstream in the gateway. Requests reach this service
either with ``request.state.user_info`` already set (in-process mounting) or
with the identity forwarded in the ``X-User-Id`` / ``X-User-Email`` headers.
"""

from fastapi import Depends, Request

from shared.errors import AuthenticationError, AuthorizationError
from shared.logging import get_logger, set_user_context
from .lookups.ports import PermissionChecker
from .policies.models import Principal

USER_ID_HEADER = "X-User-Id"
USER_EMAIL_HEADER = "X-User-Email"


class PrincipalResolver:
    """FastAPI dependency returning the authenticated principal."""

    def __init__(self):
        self.logger = get_logger("entity_access.auth")

    async def __call__(self, request: Request) -> Principal:
        user_info = getattr(request.state, "user_info", None) or {}

        user_id = user_info.get("user_id") or request.headers.get(USER_ID_HEADER)
        email = user_info.get("email") or request.headers.get(USER_EMAIL_HEADER)

        if not user_id or not user_id.strip():
            raise AuthenticationError("Authentication required")

        set_user_context(user_id)
        return Principal(id=user_id.strip(), email=email.strip() if email else None)


class AdminGuard:
    """FastAPI dependency admitting only holders of the admin permission."""

    def __init__(self, principal_resolver: PrincipalResolver, permissions: PermissionChecker, admin_permission: str):
        self.principal_resolver = principal_resolver
        self.permissions = permissions
        self.admin_permission = admin_permission
        self.logger = get_logger("entity_access.auth")

        # FastAPI resolves the principal first, so a missing identity is
        # reported as 401 rather than 403.
        async def dependency(principal: Principal = Depends(principal_resolver)) -> Principal:
            return await self.check(principal)

        self.dependency = dependency

    async def check(self, principal: Principal) -> Principal:
        if not await self.permissions.has_permission(principal.id, self.admin_permission):
            self.logger.warning("Admin access refused", user_id=principal.id)
            raise AuthorizationError("Admin permission required")
        return principal
