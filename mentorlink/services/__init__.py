from mentorlink.services.identity_client import IdentityClient, IdentityError, IdentityUser
from mentorlink.services.participant_service import ParticipantService, validate_status_transition
from mentorlink.services.profile_service import ProfileService

__all__ = [
    "IdentityClient",
    "IdentityError",
    "IdentityUser",
    "ParticipantService",
    "ProfileService",
    "validate_status_transition",
]
