"""
Profile API Schemas (Pydantic)
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class ProfileUpdate(BaseModel):
    """Partial profile update; role is not client-settable."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    headline: Optional[str] = Field(default=None, min_length=1, max_length=160)
    bio: Optional[str] = Field(default=None, max_length=2000)
    avatar_url: Optional[str] = Field(default=None, max_length=500)

    @field_validator("avatar_url")
    @classmethod
    def require_http_url(cls, v):
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("avatar_url must be an http(s) URL")
        return v

    def to_patch(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)
