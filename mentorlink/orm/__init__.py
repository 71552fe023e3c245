"""
mentorlink/orm/__init__.py
Importing this package registers every model on Base.metadata
"""
from mentorlink.orm.base import Base
from mentorlink.orm.mentorship_session import MentorshipSession, SessionStatus, TERMINAL_STATUSES, generate_invite_code
from mentorlink.orm.session_participant import SessionParticipant, ParticipantRole
from mentorlink.orm.session_activity import SessionMessage, SessionCodeSnapshot
from mentorlink.orm.profile import Profile

__all__ = [
    "Base",
    "MentorshipSession",
    "SessionStatus",
    "TERMINAL_STATUSES",
    "generate_invite_code",
    "SessionParticipant",
    "ParticipantRole",
    "SessionMessage",
    "SessionCodeSnapshot",
    "Profile",
]
