"""
SQLAlchemy implementation of SessionRepository.

Each operation runs in its own short transaction on a fresh AsyncSession.
Conditional updates (kick, owner-filtered session patch) are single
UPDATE ... WHERE statements so concurrent callers cannot both win.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from mentorlink.orm import (
    MentorshipSession,
    SessionParticipant,
    SessionMessage,
    SessionCodeSnapshot,
    Profile,
)
from mentorlink.repositories.base import SessionRepository, RepositoryError, RepositoryConflict

logger = logging.getLogger(__name__)

# API field name -> ORM attribute name
_SESSION_FIELD_MAP = {"metadata": "metadata_json"}


def _session_values(patch: Dict[str, Any]) -> Dict[str, Any]:
    return {_SESSION_FIELD_MAP.get(key, key): value for key, value in patch.items()}


class SqlSessionRepository(SessionRepository):
    """Relational store adapter over an async_sessionmaker."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, operation: str):
        """Open a session, commit on success, translate driver errors."""
        async with self.session_factory() as db:
            try:
                yield db
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise RepositoryConflict(
                    f"{operation}: unique or foreign key constraint violated",
                    code="23505",
                    details=str(e.orig) if e.orig is not None else str(e),
                ) from e
            except SQLAlchemyError as e:
                await db.rollback()
                raise RepositoryError(
                    f"{operation} failed",
                    code=type(e).__name__,
                    details=str(e),
                ) from e

    # --- participants -----------------------------------------------------

    async def get_participant(self, session_id: str, user_id: str) -> Optional[SessionParticipant]:
        async with self._transaction("get_participant") as db:
            result = await db.execute(
                select(SessionParticipant).where(
                    SessionParticipant.session_id == session_id,
                    SessionParticipant.user_id == user_id,
                )
            )
            return result.scalar_one_or_none()

    async def insert_participants(self, rows: List[Dict[str, Any]]) -> None:
        async with self._transaction("insert_participants") as db:
            db.add_all([SessionParticipant(**row) for row in rows])

    async def update_participant(
        self,
        session_id: str,
        user_id: str,
        patch: Dict[str, Any],
        only_active: bool = False,
    ) -> Optional[SessionParticipant]:
        async with self._transaction("update_participant") as db:
            conditions = [
                SessionParticipant.session_id == session_id,
                SessionParticipant.user_id == user_id,
            ]
            if only_active:
                conditions.append(SessionParticipant.kicked_at.is_(None))

            result = await db.execute(
                update(SessionParticipant)
                .where(*conditions)
                .values(**patch)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return None

            row = await db.execute(
                select(SessionParticipant)
                .where(
                    SessionParticipant.session_id == session_id,
                    SessionParticipant.user_id == user_id,
                )
                .execution_options(populate_existing=True)
            )
            return row.scalar_one_or_none()

    # --- sessions ---------------------------------------------------------

    async def get_session_by_id(self, session_id: str) -> Optional[MentorshipSession]:
        async with self._transaction("get_session_by_id") as db:
            result = await db.execute(
                select(MentorshipSession).where(MentorshipSession.id == session_id)
            )
            return result.scalar_one_or_none()

    async def get_session_by_invite_code(self, code: str) -> Optional[MentorshipSession]:
        async with self._transaction("get_session_by_invite_code") as db:
            result = await db.execute(
                select(MentorshipSession).where(MentorshipSession.invite_code == code)
            )
            return result.scalar_one_or_none()

    async def list_sessions_for_user(self, user_id: str) -> List[MentorshipSession]:
        async with self._transaction("list_sessions_for_user") as db:
            memberships = select(SessionParticipant.session_id).where(
                SessionParticipant.user_id == user_id
            )
            result = await db.execute(
                select(MentorshipSession)
                .where(MentorshipSession.id.in_(memberships))
                .order_by(MentorshipSession.scheduled_at.asc().nullsfirst())
            )
            return list(result.scalars().all())

    async def insert_session(self, row: Dict[str, Any]) -> MentorshipSession:
        async with self._transaction("insert_session") as db:
            session = MentorshipSession(**_session_values(row))
            session.participants = []
            db.add(session)
            await db.flush()
            return session

    async def update_session(
        self,
        session_id: str,
        owner_id: str,
        patch: Dict[str, Any],
    ) -> Optional[MentorshipSession]:
        async with self._transaction("update_session") as db:
            result = await db.execute(
                update(MentorshipSession)
                .where(
                    MentorshipSession.id == session_id,
                    MentorshipSession.created_by == owner_id,
                )
                .values(**_session_values(patch))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return None

            row = await db.execute(
                select(MentorshipSession)
                .where(MentorshipSession.id == session_id)
                .execution_options(populate_existing=True)
            )
            return row.scalar_one_or_none()

    async def delete_session(self, session_id: str) -> None:
        async with self._transaction("delete_session") as db:
            # SQLite does not enforce ON DELETE CASCADE unless the pragma is on
            await db.execute(delete(SessionParticipant).where(SessionParticipant.session_id == session_id))
            await db.execute(delete(SessionMessage).where(SessionMessage.session_id == session_id))
            await db.execute(delete(SessionCodeSnapshot).where(SessionCodeSnapshot.session_id == session_id))
            await db.execute(delete(MentorshipSession).where(MentorshipSession.id == session_id))

    # --- append-only activity ---------------------------------------------

    async def insert_message(self, row: Dict[str, Any]) -> None:
        async with self._transaction("insert_message") as db:
            db.add(SessionMessage(**row))

    async def insert_code_snapshot(self, row: Dict[str, Any]) -> None:
        async with self._transaction("insert_code_snapshot") as db:
            db.add(SessionCodeSnapshot(**row))

    # --- profiles ---------------------------------------------------------

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        async with self._transaction("get_profile") as db:
            return await db.get(Profile, user_id)

    async def upsert_profile(self, user_id: str, patch: Dict[str, Any]) -> Profile:
        async with self._transaction("upsert_profile") as db:
            profile = await db.get(Profile, user_id)
            if profile is None:
                profile = Profile(id=user_id)
                db.add(profile)
            for key, value in patch.items():
                setattr(profile, key, value)
            await db.flush()
            await db.refresh(profile)
            return profile
