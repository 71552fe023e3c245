"""
Mentorship Session API Routes

Synchronous administrative surface over the participant service.
Every route requires a bearer token; create / patch / kick / permission
changes also require the mentor role, and the service then checks that
the caller owns the session.
"""
import logging

from fastapi import APIRouter, Depends, Response, status

from mentorlink.realtime.gateway import DEFAULT_LANGUAGE, ConnectionGateway
from mentorlink.rbac import get_current_user, get_gateway, get_participant_service, require_mentor
from mentorlink.schemas.session import (
    CodeSnapshotCreate,
    JoinRequest,
    KickRequest,
    MessageCreate,
    PermissionUpdate,
    SessionCreate,
    SessionUpdate,
)
from mentorlink.security.identity import AuthenticatedUser
from mentorlink.services.participant_service import ParticipantService

router = APIRouter(prefix="/api/sessions", tags=["sessions"])
logger = logging.getLogger(__name__)


@router.get("")
async def list_sessions(
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: ParticipantService = Depends(get_participant_service),
):
    sessions = await service.list_sessions_for_user(current_user.id)
    return {"data": [session.to_dict() for session in sessions]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_session(
    payload: SessionCreate,
    current_user: AuthenticatedUser = Depends(require_mentor("Only mentors can create sessions")),
    service: ParticipantService = Depends(get_participant_service),
):
    session = await service.create_session(current_user.id, payload.model_dump())
    return {"data": session.to_dict()}


@router.post("/join")
async def join_session(
    payload: JoinRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: ParticipantService = Depends(get_participant_service),
):
    session = await service.join_by_invite_code(current_user.id, payload.code)
    return {"data": {"session_id": session.id}}


@router.get("/{session_id}")
async def get_session(
    session_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: ParticipantService = Depends(get_participant_service),
):
    session = await service.get_session_for_user(current_user.id, session_id)
    return {"data": session.to_dict()}


@router.patch("/{session_id}")
async def update_session(
    session_id: str,
    payload: SessionUpdate,
    current_user: AuthenticatedUser = Depends(require_mentor("Only mentors can update sessions")),
    service: ParticipantService = Depends(get_participant_service),
):
    session = await service.update_session_settings(current_user.id, session_id, payload.to_patch())
    return {"data": session.to_dict()}


@router.post("/{session_id}/kick", status_code=status.HTTP_204_NO_CONTENT)
async def kick_participant(
    session_id: str,
    payload: KickRequest,
    current_user: AuthenticatedUser = Depends(require_mentor("Only mentors can manage roster")),
    service: ParticipantService = Depends(get_participant_service),
    gateway: ConnectionGateway = Depends(get_gateway),
):
    await service.kick(current_user.id, session_id, payload.user_id)
    gateway.evict(session_id, payload.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{session_id}/permissions")
async def update_permissions(
    session_id: str,
    payload: PermissionUpdate,
    current_user: AuthenticatedUser = Depends(require_mentor("Only mentors can manage permissions")),
    service: ParticipantService = Depends(get_participant_service),
    gateway: ConnectionGateway = Depends(get_gateway),
):
    participant = await service.update_permissions(
        current_user.id, session_id, payload.user_id, payload.changes()
    )
    gateway.broadcast_permissions(session_id, participant, updated_by=current_user.id)
    return {"data": participant.to_dict()}


@router.post("/{session_id}/messages", status_code=status.HTTP_201_CREATED)
async def post_message(
    session_id: str,
    payload: MessageCreate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: ParticipantService = Depends(get_participant_service),
):
    await service.add_message(session_id, current_user.id, payload.message)
    return {"ok": True}


@router.post("/{session_id}/code", status_code=status.HTTP_201_CREATED)
async def post_code_snapshot(
    session_id: str,
    payload: CodeSnapshotCreate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    service: ParticipantService = Depends(get_participant_service),
):
    await service.add_code_snapshot(
        session_id, current_user.id, payload.code, payload.language or DEFAULT_LANGUAGE
    )
    return {"ok": True}
