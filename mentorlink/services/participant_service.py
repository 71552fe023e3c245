"""
Participant Service

Authorization core for mentorship sessions: membership, roles,
permission flags and kick / re-join semantics.

CRITICAL:
- Owner checks compare against the session's created_by column, never
  against role claims
- Validation failures are raised before the store is touched
- Every store failure becomes a ServiceError (500); the store
  diagnostic is logged, not returned
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from mentorlink.config.feature_flags import feature_flags
from mentorlink.errors import (
    BadRequestError,
    ErrorCode,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    wrap_store_failure,
)
from mentorlink.orm import MentorshipSession, ParticipantRole, SessionParticipant, SessionStatus
from mentorlink.orm.base import utcnow
from mentorlink.repositories.base import RepositoryConflict, RepositoryError, SessionRepository

logger = logging.getLogger(__name__)


SESSION_UPDATE_FIELDS = (
    "title",
    "summary",
    "scheduled_at",
    "duration_minutes",
    "status",
    "allow_collab",
    "allow_chat",
    "allow_video",
    "metadata",
)

PERMISSION_FIELDS = ("can_edit", "can_share_screen")

# Forward-only lifecycle; terminal states have no outgoing moves
STATUS_TRANSITIONS = {
    SessionStatus.scheduled.value: {
        SessionStatus.live.value,
        SessionStatus.completed.value,
        SessionStatus.cancelled.value,
    },
    SessionStatus.live.value: {
        SessionStatus.completed.value,
        SessionStatus.cancelled.value,
    },
    SessionStatus.completed.value: set(),
    SessionStatus.cancelled.value: set(),
}


def validate_status_transition(current: str, new: str) -> None:
    """
    Reject a status change that would move a session backwards.

    Same-status updates are allowed (no-op).

    Raises:
        InvalidStateError: If new is not reachable from current
    """
    if new not in STATUS_TRANSITIONS:
        raise BadRequestError(f"Unknown session status: {new}")
    if current == new:
        return
    if new not in STATUS_TRANSITIONS.get(current, set()):
        raise InvalidStateError(
            f"Invalid status transition: {current} → {new}",
            code=ErrorCode.STATE_TRANSITION_INVALID,
            details={"from": current, "to": new, "allowed": sorted(STATUS_TRANSITIONS.get(current, set()))},
        )


def _flag(data: Dict[str, Any], key: str) -> bool:
    """Session feature flags default to enabled."""
    value = data.get(key)
    return True if value is None else bool(value)


def _supplied(changes: Dict[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
    """Keep only the fields the caller actually supplied."""
    return {key: changes[key] for key in fields if key in changes}


class ParticipantService:
    """Session membership operations over a SessionRepository."""

    def __init__(self, repository: SessionRepository):
        self.repository = repository

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def ensure_participant(self, user_id: str, session_id: str) -> SessionParticipant:
        """
        Single admission gate for every room action.

        Returns:
            The participant row for (session_id, user_id)
        Raises:
            ForbiddenError: No row exists, or the row was kicked
        """
        try:
            participant = await self.repository.get_participant(session_id, user_id)
        except RepositoryError as e:
            raise wrap_store_failure(e, "Unable to verify session access")

        if participant is None:
            raise ForbiddenError("You are not a participant in this session", code=ErrorCode.NOT_PARTICIPANT)
        if participant.is_kicked:
            raise ForbiddenError("You have been removed from this session", code=ErrorCode.PARTICIPANT_REMOVED)
        return participant

    async def get_session_for_user(self, user_id: str, session_id: str) -> MentorshipSession:
        await self.ensure_participant(user_id, session_id)
        session = await self._load_session(session_id, "Unable to load session")
        if session is None:
            raise NotFoundError("Session not found", code=ErrorCode.SESSION_NOT_FOUND)
        return session

    async def list_sessions_for_user(self, user_id: str) -> List[MentorshipSession]:
        try:
            return await self.repository.list_sessions_for_user(user_id)
        except RepositoryError as e:
            raise wrap_store_failure(e, "Unable to load sessions")

    # ------------------------------------------------------------------
    # Membership changes
    # ------------------------------------------------------------------

    async def join_by_invite_code(self, user_id: str, code: str) -> MentorshipSession:
        """
        Self-service join. Idempotent for an existing, non-kicked member.

        Raises:
            NotFoundError: No session carries the code
            InvalidStateError: Session is completed or cancelled
            ForbiddenError: The user was kicked from the session
        """
        try:
            session = await self.repository.get_session_by_invite_code(code)
        except RepositoryError as e:
            raise wrap_store_failure(e, "Unable to look up session")

        if session is None:
            raise NotFoundError("No session found for that code", code=ErrorCode.SESSION_NOT_FOUND)
        if session.is_closed:
            raise InvalidStateError(
                "This session is no longer accepting participants",
                code=ErrorCode.SESSION_CLOSED,
            )

        try:
            existing = await self.repository.get_participant(session.id, user_id)
        except RepositoryError as e:
            raise wrap_store_failure(e, "Unable to verify membership")

        if existing is not None:
            if existing.is_kicked:
                raise ForbiddenError("You have been removed from this session", code=ErrorCode.PARTICIPANT_REMOVED)
            return session

        role = ParticipantRole.mentor.value if user_id == session.created_by else ParticipantRole.student.value
        try:
            await self.repository.insert_participant({
                "session_id": session.id,
                "user_id": user_id,
                "role": role,
            })
        except RepositoryConflict:
            # A concurrent join for the same pair won; its row decides the outcome
            await self.ensure_participant(user_id, session.id)
            return session
        except RepositoryError as e:
            raise wrap_store_failure(e, "Unable to join session")

        logger.info(f"User {user_id} joined session {session.id} as {role} via invite code")
        return session

    async def create_session(self, owner_id: str, data: Dict[str, Any]) -> MentorshipSession:
        """
        Create a session and its roster.

        The owner becomes a mentor participant with both permission flags;
        every requested student id (deduplicated, owner excluded) becomes a
        student. If the roster insert fails the session row is deleted
        again before the error is raised.
        """
        metadata = data.get("metadata")
        row = {
            "title": data["title"],
            "summary": data.get("summary"),
            "scheduled_at": data.get("scheduled_at"),
            "duration_minutes": data.get("duration_minutes"),
            "allow_collab": _flag(data, "allow_collab"),
            "allow_chat": _flag(data, "allow_chat"),
            "allow_video": _flag(data, "allow_video"),
            "metadata": metadata if metadata is not None else {},
            "created_by": owner_id,
        }

        try:
            session = await self.repository.insert_session(row)
        except RepositoryError as e:
            raise wrap_store_failure(e, "Unable to create session")

        student_ids = [
            user_id
            for user_id in dict.fromkeys(data.get("participant_ids") or [])
            if user_id and user_id != owner_id
        ]
        participant_rows = [
            {
                "session_id": session.id,
                "user_id": owner_id,
                "role": ParticipantRole.mentor.value,
                "can_edit": True,
                "can_share_screen": True,
            }
        ] + [
            {
                "session_id": session.id,
                "user_id": user_id,
                "role": ParticipantRole.student.value,
            }
            for user_id in student_ids
        ]

        try:
            await self.repository.insert_participants(participant_rows)
        except RepositoryError as e:
            await self._rollback_session(session.id)
            raise wrap_store_failure(e, "Unable to attach participants")

        logger.info(f"Session {session.id} created by {owner_id} with {len(student_ids)} student(s)")

        created = await self._load_session(session.id, "Unable to load session")
        return created if created is not None else session

    async def _rollback_session(self, session_id: str) -> None:
        """Compensating delete for a session whose roster could not be stored."""
        try:
            await self.repository.delete_session(session_id)
            logger.warning(f"Rolled back session {session_id} after participant insert failure")
        except RepositoryError as e:
            logger.error(f"Compensating delete failed for session {session_id}: {e.to_dict()}")

    async def kick(self, mentor_id: str, session_id: str, target_user_id: str) -> SessionParticipant:
        """
        Remove a participant. Clears both permission flags.

        Raises:
            ForbiddenError: Caller is not the session owner
            BadRequestError: Owner tried to remove themselves
            NotFoundError: Target has no row, or was already removed
        """
        session = await self._require_owned_session(
            mentor_id, session_id, "Only the session creator can remove participants"
        )

        if target_user_id == mentor_id:
            raise BadRequestError("You cannot remove yourself from your own session")

        try:
            participant = await self.repository.update_participant(
                session.id,
                target_user_id,
                {"kicked_at": utcnow(), "can_edit": False, "can_share_screen": False},
                only_active=True,
            )
        except RepositoryError as e:
            raise wrap_store_failure(e, "Unable to remove participant")

        if participant is None:
            raise NotFoundError("Participant not found or already removed", code=ErrorCode.PARTICIPANT_NOT_FOUND)

        logger.info(f"User {target_user_id} removed from session {session_id} by {mentor_id}")
        return participant

    async def update_permissions(
        self,
        mentor_id: str,
        session_id: str,
        target_user_id: str,
        changes: Dict[str, Any],
    ) -> SessionParticipant:
        """
        Partial update of can_edit / can_share_screen. Omitted fields are untouched.
        A kicked participant cannot be re-granted anything.
        """
        patch = {key: value for key, value in _supplied(changes, PERMISSION_FIELDS).items() if value is not None}
        if not patch:
            raise BadRequestError("No permission changes provided", code=ErrorCode.MISSING_FIELD)

        await self._require_owned_session(
            mentor_id, session_id, "Only the session creator can update participant permissions"
        )

        try:
            participant = await self.repository.update_participant(
                session_id, target_user_id, patch, only_active=True
            )
        except RepositoryError as e:
            raise wrap_store_failure(e, "Unable to update participant permissions")

        if participant is None:
            raise NotFoundError("Participant not found", code=ErrorCode.PARTICIPANT_NOT_FOUND)

        logger.info(f"Permissions for {target_user_id} in session {session_id} set to {patch} by {mentor_id}")
        return participant

    async def update_session_settings(
        self,
        mentor_id: str,
        session_id: str,
        updates: Dict[str, Any],
    ) -> MentorshipSession:
        """Partial update of session settings; only supplied fields are written."""
        patch = _supplied(updates, SESSION_UPDATE_FIELDS)
        if "metadata" in patch and patch["metadata"] is None:
            patch["metadata"] = {}
        if not patch:
            raise BadRequestError("No updates were provided", code=ErrorCode.MISSING_FIELD)

        session = await self._require_owned_session(
            mentor_id, session_id, "Only the session creator can update this session"
        )

        if "status" in patch and feature_flags.FEATURE_ENFORCE_STATUS_ORDER:
            validate_status_transition(session.status, patch["status"])

        try:
            updated = await self.repository.update_session(session_id, mentor_id, patch)
        except RepositoryError as e:
            raise wrap_store_failure(e, "Unable to update session")

        if updated is None:
            raise NotFoundError("Session not found or you do not have permission to update it")
        return updated

    # ------------------------------------------------------------------
    # Append-only activity
    # ------------------------------------------------------------------

    async def add_message(self, session_id: str, user_id: str, content: str) -> None:
        await self.authorize_action(user_id, session_id, "chat")
        try:
            await self.repository.insert_message({
                "session_id": session_id,
                "author_id": user_id,
                "content": content,
            })
        except RepositoryError as e:
            raise wrap_store_failure(e, "Unable to store message")

    async def add_code_snapshot(self, session_id: str, user_id: str, code: str, language: str) -> None:
        await self.authorize_action(user_id, session_id, "edit")
        try:
            await self.repository.insert_code_snapshot({
                "session_id": session_id,
                "author_id": user_id,
                "language": language,
                "code": code,
            })
        except RepositoryError as e:
            raise wrap_store_failure(e, "Unable to store code snapshot")

    async def authorize_action(self, user_id: str, session_id: str, action: str) -> SessionParticipant:
        """
        Admission check plus, when FEATURE_ENFORCE_COLLAB_PERMISSIONS is on,
        the session feature flags and the participant's edit flag.

        Args:
            action: "chat", "edit" or "run"
        """
        participant = await self.ensure_participant(user_id, session_id)
        if not feature_flags.FEATURE_ENFORCE_COLLAB_PERMISSIONS:
            return participant

        session = await self._load_session(session_id, "Unable to load session")
        if session is None:
            raise NotFoundError("Session not found", code=ErrorCode.SESSION_NOT_FOUND)

        if action == "chat" and not session.allow_chat:
            raise ForbiddenError("Chat is disabled for this session")
        if action in ("edit", "run") and not session.allow_collab:
            raise ForbiddenError("Collaboration is disabled for this session")
        if action == "edit" and not (participant.can_edit or session.created_by == user_id):
            raise ForbiddenError("You do not have permission to edit code in this session")
        return participant

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_session(self, session_id: str, failure_message: str) -> Optional[MentorshipSession]:
        try:
            return await self.repository.get_session_by_id(session_id)
        except RepositoryError as e:
            raise wrap_store_failure(e, failure_message)

    async def _require_owned_session(self, user_id: str, session_id: str, message: str) -> MentorshipSession:
        session = await self._load_session(session_id, "Unable to load session")
        if session is None:
            raise NotFoundError("Session not found", code=ErrorCode.SESSION_NOT_FOUND)
        if session.created_by != user_id:
            raise ForbiddenError(message, code=ErrorCode.OWNER_REQUIRED)
        return session
