"""
mentorlink/rbac.py
Bearer authentication and role checks for the HTTP surface.

Tokens are verified by the external identity provider; the role comes
from security.roles.resolve_role, the same function the WebSocket
gateway uses.
"""
import logging
from typing import Callable, Optional

from fastapi import Depends, Request

from mentorlink.errors import ErrorCode, ForbiddenError, UnauthorizedError
from mentorlink.realtime.gateway import ConnectionGateway
from mentorlink.security.identity import AuthenticatedUser
from mentorlink.security.roles import UserRole, resolve_role
from mentorlink.services.identity_client import IdentityClient, IdentityError
from mentorlink.services.participant_service import ParticipantService
from mentorlink.services.profile_service import ProfileService

logger = logging.getLogger(__name__)


# ================= APP COMPONENTS =================

def get_participant_service(request: Request) -> ParticipantService:
    return request.app.state.participant_service


def get_profile_service(request: Request) -> ProfileService:
    return request.app.state.profile_service


def get_gateway(request: Request) -> ConnectionGateway:
    return request.app.state.gateway


def get_identity_client(request: Request) -> IdentityClient:
    return request.app.state.identity_client


# ================= AUTH DEPENDENCIES =================

async def get_current_user(request: Request) -> AuthenticatedUser:
    """
    Resolve the caller from the Authorization header.
    Returns 401 if the header is missing, empty or rejected by the provider.
    """
    header = request.headers.get("Authorization")
    if not header or not header.startswith("Bearer "):
        raise UnauthorizedError("Missing bearer token", code=ErrorCode.AUTH_REQUIRED)

    token = header.replace("Bearer", "", 1).strip()
    if not token:
        raise UnauthorizedError("Invalid bearer token", code=ErrorCode.AUTH_INVALID)

    identity_client = get_identity_client(request)
    try:
        user = await identity_client.get_user(token)
    except IdentityError:
        raise UnauthorizedError("Invalid or expired session", code=ErrorCode.AUTH_INVALID)

    role = await resolve_role(user, request.app.state.repository)
    return AuthenticatedUser(id=user.id, email=user.email, name=user.display_name, role=role)


def require_role(role: UserRole, message: Optional[str] = None) -> Callable:
    """
    Dependency factory: require a role claim.
    Usage: current_user = Depends(require_role(UserRole.mentor, "Only mentors can ..."))
    """
    async def dependency(current_user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
        if current_user.role != role.value:
            logger.warning(
                f"Access denied: user {current_user.id} with role {current_user.role} requires {role.value}"
            )
            raise ForbiddenError(
                message or f"This action requires the {role.value} role",
                code=ErrorCode.ROLE_REQUIRED,
                details={"current_role": current_user.role},
            )
        return current_user

    return dependency


def require_mentor(message: str) -> Callable:
    return require_role(UserRole.mentor, message)
