"""
Session Participant Model

At most one row per (session, user). A kicked row keeps its history:
kicked_at is set and both permission flags are cleared.
"""
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, UniqueConstraint

from mentorlink.orm.base import Base, utcnow, isoformat


class ParticipantRole(str, PyEnum):
    """Participant roles in a session."""
    mentor = "mentor"
    student = "student"


class SessionParticipant(Base):
    __tablename__ = "session_participants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(36),
        ForeignKey("mentorship_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(64), nullable=False, index=True)
    role = Column(String(20), nullable=False, default=ParticipantRole.student.value)
    can_edit = Column(Boolean, nullable=False, default=False)
    can_share_screen = Column(Boolean, nullable=False, default=False)
    joined_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    kicked_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_session_participant"),
    )

    @property
    def is_kicked(self) -> bool:
        return self.kicked_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "role": self.role,
            "can_edit": self.can_edit,
            "can_share_screen": self.can_share_screen,
            "joined_at": isoformat(self.joined_at),
            "kicked_at": isoformat(self.kicked_at),
        }
