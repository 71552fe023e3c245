from mentorlink.schemas.profile import ProfileUpdate
from mentorlink.schemas.session import (
    CodeSnapshotCreate,
    JoinRequest,
    KickRequest,
    MessageCreate,
    PermissionUpdate,
    SessionCreate,
    SessionUpdate,
)

__all__ = [
    "ProfileUpdate",
    "CodeSnapshotCreate",
    "JoinRequest",
    "KickRequest",
    "MessageCreate",
    "PermissionUpdate",
    "SessionCreate",
    "SessionUpdate",
]
