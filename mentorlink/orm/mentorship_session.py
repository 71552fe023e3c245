"""
Mentorship Session Model

One row per scheduled or live mentoring session. The creator (created_by)
is the owner and the only user with administrative rights over the row.
"""
import secrets
import string
from enum import Enum as PyEnum

from sqlalchemy import Column, String, Integer, DateTime, Boolean, Text, JSON, CheckConstraint
from sqlalchemy.orm import relationship

from mentorlink.orm.base import Base, generate_id, utcnow, isoformat


INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits
INVITE_CODE_LENGTH = 8


class SessionStatus(str, PyEnum):
    """Lifecycle of a mentorship session."""
    scheduled = "scheduled"
    live = "live"
    completed = "completed"
    cancelled = "cancelled"


TERMINAL_STATUSES = {SessionStatus.completed.value, SessionStatus.cancelled.value}


def generate_invite_code() -> str:
    """Random invite code, e.g. 'K7Q2ZP9M'."""
    return ''.join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


class MentorshipSession(Base):
    """Session record; participants are loaded eagerly."""
    __tablename__ = "mentorship_sessions"

    id = Column(String(36), primary_key=True, default=generate_id)
    title = Column(String(200), nullable=False)
    summary = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=SessionStatus.scheduled.value, index=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    created_by = Column(String(64), nullable=False, index=True)
    invite_code = Column(String(32), nullable=False, unique=True, index=True, default=generate_invite_code)

    # Feature flags
    allow_collab = Column(Boolean, nullable=False, default=True)
    allow_chat = Column(Boolean, nullable=False, default=True)
    allow_video = Column(Boolean, nullable=False, default=True)

    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    participants = relationship(
        "SessionParticipant",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SessionParticipant.joined_at",
    )

    __table_args__ = (
        CheckConstraint(
            "duration_minutes IS NULL OR (duration_minutes > 0 AND duration_minutes <= 600)",
            name="ck_session_duration_range",
        ),
    )

    @property
    def is_closed(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self, include_participants: bool = True) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "summary": self.summary,
            "status": self.status,
            "scheduled_at": isoformat(self.scheduled_at),
            "duration_minutes": self.duration_minutes,
            "created_by": self.created_by,
            "invite_code": self.invite_code,
            "allow_collab": self.allow_collab,
            "allow_chat": self.allow_chat,
            "allow_video": self.allow_video,
            "metadata": self.metadata_json or {},
            "created_at": isoformat(self.created_at),
        }
        if include_participants:
            data["participants"] = [p.to_dict() for p in self.participants]
        return data
