"""
User profile. The role column is the last fallback when the identity
provider's metadata carries no role claim.
"""
from sqlalchemy import Column, String, Text, DateTime

from mentorlink.orm.base import Base, utcnow, isoformat


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True)
    name = Column(String(120), nullable=True)
    headline = Column(String(160), nullable=True)
    bio = Column(Text, nullable=True)
    avatar_url = Column(String(500), nullable=True)
    role = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "headline": self.headline,
            "bio": self.bio,
            "avatar_url": self.avatar_url,
            "role": self.role,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
