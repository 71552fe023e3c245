"""
Mentorship Session API Schemas (Pydantic)
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from mentorlink.orm.mentorship_session import SessionStatus


class SessionCreate(BaseModel):
    """Request schema for creating a session."""
    title: str = Field(..., min_length=3, max_length=200)
    summary: Optional[str] = Field(default=None, min_length=1, max_length=2000)
    scheduled_at: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(default=None, ge=1, le=600)
    allow_collab: Optional[bool] = None
    allow_chat: Optional[bool] = None
    allow_video: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None
    participant_ids: List[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v):
        v = v.strip()
        if len(v) < 3:
            raise ValueError("title must be at least 3 characters")
        return v

    @field_validator("participant_ids")
    @classmethod
    def drop_blank_ids(cls, v):
        return [user_id.strip() for user_id in v if user_id and user_id.strip()]


class SessionUpdate(BaseModel):
    """
    Partial session update. Only fields present in the request body are
    applied; dump with exclude_unset=True.
    """
    title: Optional[str] = Field(default=None, min_length=3, max_length=200)
    summary: Optional[str] = Field(default=None, min_length=1, max_length=2000)
    scheduled_at: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(default=None, ge=1, le=600)
    status: Optional[SessionStatus] = None
    allow_collab: Optional[bool] = None
    allow_chat: Optional[bool] = None
    allow_video: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_patch(self) -> Dict[str, Any]:
        patch = self.model_dump(exclude_unset=True)
        if patch.get("status") is not None:
            patch["status"] = SessionStatus(patch["status"]).value
        for key in ("title", "status", "allow_collab", "allow_chat", "allow_video"):
            if key in patch and patch[key] is None:
                del patch[key]
        return patch


class JoinRequest(BaseModel):
    """Request schema for joining a session by invite code."""
    code: str = Field(..., min_length=4, max_length=32)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v):
        return v.strip()


class KickRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class PermissionUpdate(BaseModel):
    """Partial permission patch for one participant."""
    user_id: str = Field(..., min_length=1)
    can_edit: Optional[bool] = None
    can_share_screen: Optional[bool] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"user_id"})


class MessageCreate(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)


class CodeSnapshotCreate(BaseModel):
    language: Optional[str] = Field(default=None, max_length=32)
    code: str = Field(..., min_length=1)

