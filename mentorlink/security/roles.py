"""
Role resolution

One precedence order for every entry point (HTTP and WebSocket):
1. user_metadata.role claim (app_metadata.role when absent)
2. role column of the user's profile row
Only "mentor" and "student" count; an unrecognised claim falls through
to the profile row, and an unrecognised profile role resolves to None.
"""
import logging
from enum import Enum
from typing import Any, Optional

from mentorlink.errors import wrap_store_failure
from mentorlink.repositories.base import RepositoryError, SessionRepository

logger = logging.getLogger(__name__)


class UserRole(str, Enum):
    """Platform-wide role claims."""
    mentor = "mentor"
    student = "student"


def is_user_role(value: Any) -> bool:
    return value in (UserRole.mentor.value, UserRole.student.value)


async def resolve_role(user, repository: Optional[SessionRepository]) -> Optional[str]:
    """
    Resolve a user's role claim.

    Args:
        user: IdentityUser (or anything with id / user_metadata / app_metadata)
        repository: Store used for the profile fallback; None skips it
    Returns:
        "mentor", "student" or None
    Raises:
        ServiceError: The profile lookup failed
    """
    claim = (getattr(user, "user_metadata", None) or {}).get("role")
    if claim is None:
        claim = (getattr(user, "app_metadata", None) or {}).get("role")
    if is_user_role(claim):
        return claim

    if repository is None:
        return None

    try:
        role = await repository.get_profile_role(user.id)
    except RepositoryError as e:
        raise wrap_store_failure(e, "Unable to resolve profile role")
    return role if is_user_role(role) else None
