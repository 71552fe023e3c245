"""
Profile API Routes
"""
from fastapi import APIRouter, Depends

from mentorlink.rbac import get_current_user, get_profile_service
from mentorlink.schemas.profile import ProfileUpdate
from mentorlink.security.identity import AuthenticatedUser
from mentorlink.services.profile_service import ProfileService

router = APIRouter(prefix="/api/profile", tags=["profile"])


@router.get("")
async def get_profile(
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: ProfileService = Depends(get_profile_service),
):
    profile = await service.get_profile(current_user.id)
    return {"data": profile.to_dict() if profile else None}


@router.put("")
async def update_profile(
    payload: ProfileUpdate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: ProfileService = Depends(get_profile_service),
):
    profile = await service.update_profile(current_user.id, payload.to_patch())
    return {"data": profile.to_dict()}
