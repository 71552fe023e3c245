"""
Session Repository Interface

Abstract operations over persistent session, participant, message,
snapshot and profile state. The participant service depends only on
this contract.

Guarantees every implementation must provide:
- At most one participant row per (session_id, user_id); a duplicate
  insert raises RepositoryConflict, never a bare driver error
- update_session applies the ownership filter inside the store
- Every failure surfaces as RepositoryError (message + optional
  code / hint / details)
"""
import abc
from typing import Any, Dict, List, Optional


class RepositoryError(Exception):
    """Opaque store failure."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[str] = None,
    ):
        self.message = message
        self.code = code
        self.hint = hint
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "hint": self.hint,
            "details": self.details,
        }


class RepositoryConflict(RepositoryError):
    """Unique-constraint violation; callers may recover from it."""


class SessionRepository(abc.ABC):
    """Persistence contract for the participant service."""

    # --- participants -----------------------------------------------------

    @abc.abstractmethod
    async def get_participant(self, session_id: str, user_id: str):
        """Return the participant row for the pair, or None."""
        raise NotImplementedError

    @abc.abstractmethod
    async def insert_participants(self, rows: List[Dict[str, Any]]) -> None:
        """Insert all rows in one transaction (all or nothing)."""
        raise NotImplementedError

    async def insert_participant(self, row: Dict[str, Any]) -> None:
        await self.insert_participants([row])

    @abc.abstractmethod
    async def update_participant(
        self,
        session_id: str,
        user_id: str,
        patch: Dict[str, Any],
        only_active: bool = False,
    ):
        """
        Apply patch to the participant row and return it.

        Args:
            only_active: Match only rows whose kicked_at is NULL
        Returns:
            Updated participant, or None when no row matched
        """
        raise NotImplementedError

    # --- sessions ---------------------------------------------------------

    @abc.abstractmethod
    async def get_session_by_id(self, session_id: str):
        raise NotImplementedError

    @abc.abstractmethod
    async def get_session_by_invite_code(self, code: str):
        raise NotImplementedError

    @abc.abstractmethod
    async def list_sessions_for_user(self, user_id: str) -> list:
        """Sessions the user has a participant row in, scheduled_at ascending (nulls first)."""
        raise NotImplementedError

    @abc.abstractmethod
    async def insert_session(self, row: Dict[str, Any]):
        raise NotImplementedError

    @abc.abstractmethod
    async def update_session(self, session_id: str, owner_id: str, patch: Dict[str, Any]):
        """Apply patch only if owner_id created the session; None when nothing matched."""
        raise NotImplementedError

    @abc.abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """Remove the session and everything attached to it."""
        raise NotImplementedError

    # --- append-only activity ---------------------------------------------

    @abc.abstractmethod
    async def insert_message(self, row: Dict[str, Any]) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def insert_code_snapshot(self, row: Dict[str, Any]) -> None:
        raise NotImplementedError

    # --- profiles ---------------------------------------------------------

    @abc.abstractmethod
    async def get_profile(self, user_id: str):
        raise NotImplementedError

    @abc.abstractmethod
    async def upsert_profile(self, user_id: str, patch: Dict[str, Any]):
        raise NotImplementedError

    async def get_profile_role(self, user_id: str) -> Optional[str]:
        profile = await self.get_profile(user_id)
        return profile.role if profile else None
