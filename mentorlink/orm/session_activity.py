"""
Append-only session activity: chat messages and code snapshots.
There is no update or delete path for either table.
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey

from mentorlink.orm.base import Base, utcnow, isoformat


class SessionMessage(Base):
    __tablename__ = "session_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(36),
        ForeignKey("mentorship_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    author_id = Column(String(64), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "author_id": self.author_id,
            "content": self.content,
            "created_at": isoformat(self.created_at),
        }


class SessionCodeSnapshot(Base):
    __tablename__ = "session_code_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(36),
        ForeignKey("mentorship_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    author_id = Column(String(64), nullable=False)
    language = Column(String(32), nullable=False, default="javascript")
    code = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "author_id": self.author_id,
            "language": self.language,
            "code": self.code,
            "created_at": isoformat(self.created_at),
        }
