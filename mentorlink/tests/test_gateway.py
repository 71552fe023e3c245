"""
Connection Gateway Test Suite

Drives the gateway with fake transports: authentication, per-event
validation, persistence-before-broadcast and the end-to-end scenarios
(chat between two participants, kick then re-join).
"""
import asyncio
import json

import pytest
from sqlalchemy import select

from mentorlink.errors import UnauthorizedError
from mentorlink.orm import SessionCodeSnapshot, SessionMessage
from mentorlink.realtime.gateway import extract_token
from mentorlink.repositories.base import RepositoryError

from conftest import MENTOR_ID, STUDENT_ID


# =============================================================================
# Test: Authentication
# =============================================================================

def test_extract_token_prefers_auth_field():
    assert extract_token("explicit", "Bearer header") == "explicit"
    assert extract_token(None, "Bearer header-token") == "header-token"
    assert extract_token(None, None) is None


@pytest.mark.asyncio
async def test_missing_token_rejected(gateway):
    with pytest.raises(UnauthorizedError) as exc:
        await gateway.authenticate(auth_token=None, authorization=None)
    assert exc.value.message == "Missing authentication token"


@pytest.mark.asyncio
async def test_unknown_token_rejected(gateway):
    with pytest.raises(UnauthorizedError) as exc:
        await gateway.authenticate(authorization="Bearer forged")
    assert exc.value.message == "Invalid or expired authentication token"


@pytest.mark.asyncio
async def test_identity_attached(gateway):
    identity = await gateway.authenticate(authorization="Bearer token-a")

    assert identity.id == MENTOR_ID
    assert identity.name == "Ada Mentor"
    assert identity.role == "mentor"
    assert identity.email == "mentor@example.com"


def test_connection_without_identity_is_refused(gateway):
    assert gateway.open_connection(object(), None) is None
    assert gateway.connections == {}


# =============================================================================
# Test: Join / Leave
# =============================================================================

@pytest.mark.asyncio
async def test_join_emits_joined_and_acks(connect, emit, session_with_student):
    student, frames = await connect("token-b")

    await emit(student, "session:join", {"sessionId": session_with_student.id}, ack=1)

    assert frames.events("session:joined") == [{"sessionId": session_with_student.id}]
    assert frames.acks() == {1: {"ok": True}}
    assert student.session_id == session_with_student.id


@pytest.mark.asyncio
async def test_join_requires_session_id(connect, emit):
    student, frames = await connect("token-b")

    await emit(student, "session:join", {}, ack="j")

    assert frames.acks() == {"j": {"ok": False, "message": "sessionId is required"}}
    assert frames.events("session:error") == [{"message": "sessionId is required"}]


@pytest.mark.asyncio
async def test_stranger_cannot_join(connect, emit, session_with_student):
    stranger, frames = await connect("token-c")

    await emit(stranger, "session:join", {"sessionId": session_with_student.id}, ack=1)

    assert frames.acks()[1] == {"ok": False, "message": "You are not a participant in this session"}
    assert frames.events("session:joined") == []
    assert stranger.session_id is None


@pytest.mark.asyncio
async def test_switching_rooms_requires_leave(connect, emit, service, session_with_student):
    other = await service.create_session(MENTOR_ID, {"title": "Second room"})
    mentor, frames = await connect("token-a")
    await emit(mentor, "session:join", {"sessionId": session_with_student.id})

    await emit(mentor, "session:join", {"sessionId": other.id}, ack=2)
    assert frames.acks()[2]["ok"] is False
    assert mentor.session_id == session_with_student.id

    await emit(mentor, "session:leave", {}, ack=3)
    assert frames.events("session:left") == [{"sessionId": session_with_student.id}]

    await emit(mentor, "session:join", {"sessionId": other.id}, ack=4)
    assert frames.acks()[4] == {"ok": True}
    assert mentor.session_id == other.id


# =============================================================================
# Test: Malformed Input
# =============================================================================

@pytest.mark.asyncio
async def test_malformed_frames_do_not_close_connection(gateway, connect):
    student, frames = await connect("token-b")

    await gateway.handle_frame(student, "{not json")
    await gateway.handle_frame(student, json.dumps({"event": "teleport", "ack": 9}))
    await gateway.handle_frame(student, json.dumps({"event": "chat:message", "data": "hi", "ack": 10}))
    await student.flush()

    errors = [e["message"] for e in frames.events("session:error")]
    assert errors[0] == "Malformed frame: expected JSON"
    assert errors[1] == "Unknown event: teleport"
    assert frames.acks()[9]["ok"] is False
    assert frames.acks()[10] == {"ok": False, "message": "Malformed frame: data must be an object"}
    assert student.closed is False


@pytest.mark.asyncio
async def test_handler_timeout(gateway, connect, emit, session_with_student, monkeypatch):
    student, frames = await connect("token-b")
    await emit(student, "session:join", {"sessionId": session_with_student.id})

    async def slow_add_message(*args, **kwargs):
        await asyncio.sleep(5)

    monkeypatch.setattr(gateway, "handler_timeout", 0.05)
    monkeypatch.setattr(gateway.service, "add_message", slow_add_message)

    await emit(student, "chat:message", {"text": "anyone?"}, ack=7)

    assert frames.acks()[7] == {"ok": False, "message": "Request timed out"}
    assert frames.events("chat:message") == []


# =============================================================================
# Test: Chat
# =============================================================================

@pytest.mark.asyncio
async def test_chat_reaches_whole_room_including_sender(connect, emit, session_with_student, session_factory):
    """A creates a session with [B]; both join; B says hi; A sees it from B."""
    mentor, mentor_frames = await connect("token-a")
    student, student_frames = await connect("token-b")
    await emit(mentor, "session:join", {"sessionId": session_with_student.id})
    await emit(student, "session:join", {"sessionId": session_with_student.id})

    await emit(student, "chat:message", {"text": "hi"}, ack=1)

    [received] = mentor_frames.events("chat:message")
    assert received["author"] == {"id": STUDENT_ID, "name": "Bo Student"}
    assert received["text"] == "hi"
    assert received["sessionId"] == session_with_student.id
    assert received["id"]
    assert received["time"]
    assert student_frames.events("chat:message") == [received]
    assert student_frames.acks()[1] == {"ok": True}

    async with session_factory() as db:
        stored = (await db.execute(select(SessionMessage))).scalars().all()
    assert [(m.author_id, m.content) for m in stored] == [(STUDENT_ID, "hi")]


@pytest.mark.asyncio
async def test_chat_keeps_client_id_and_time(connect, emit, session_with_student):
    student, frames = await connect("token-b")
    await emit(student, "session:join", {"sessionId": session_with_student.id})

    await emit(student, "chat:message", {"id": "m-1", "text": "yo", "time": "2024-01-01T00:00:00Z"})

    [message] = frames.events("chat:message")
    assert message["id"] == "m-1"
    assert message["time"] == "2024-01-01T00:00:00Z"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "join_first, data, expected",
    [
        (False, {"text": "hi"}, "Join a session before sending messages"),
        (True, {"text": ""}, "Message text is required"),
        (True, {}, "Message text is required"),
    ],
)
async def test_chat_validation(connect, emit, session_with_student, join_first, data, expected):
    student, frames = await connect("token-b")
    if join_first:
        await emit(student, "session:join", {"sessionId": session_with_student.id})

    await emit(student, "chat:message", data, ack=1)

    assert frames.acks()[1] == {"ok": False, "message": expected}
    assert frames.events("chat:message") == []


@pytest.mark.asyncio
async def test_store_failure_prevents_broadcast(gateway, connect, emit, session_with_student, monkeypatch):
    mentor, mentor_frames = await connect("token-a")
    student, student_frames = await connect("token-b")
    await emit(mentor, "session:join", {"sessionId": session_with_student.id})
    await emit(student, "session:join", {"sessionId": session_with_student.id})

    async def broken_insert(row):
        raise RepositoryError("disk I/O error")

    monkeypatch.setattr(gateway.service.repository, "insert_message", broken_insert)

    await emit(student, "chat:message", {"text": "lost?"}, ack=1)

    assert student_frames.acks()[1] == {"ok": False, "message": "Unable to store message"}
    assert mentor_frames.events("chat:message") == []
    assert student_frames.events("chat:message") == []


# =============================================================================
# Test: Code Update / Run
# =============================================================================

@pytest.mark.asyncio
async def test_code_update_persists_then_broadcasts(connect, emit, session_with_student, session_factory):
    mentor, mentor_frames = await connect("token-a")
    student, student_frames = await connect("token-b")
    await emit(mentor, "session:join", {"sessionId": session_with_student.id})
    await emit(student, "session:join", {"sessionId": session_with_student.id})

    await emit(student, "code:update", {"code": "const x = 1"}, ack=1)

    [update] = mentor_frames.events("code:update")
    assert update["code"] == "const x = 1"
    assert update["language"] == "javascript"
    assert update["authorId"] == STUDENT_ID
    assert update["sessionId"] == session_with_student.id
    assert student_frames.events("code:update") == [update]

    async with session_factory() as db:
        snapshots = (await db.execute(select(SessionCodeSnapshot))).scalars().all()
    assert [(s.language, s.code) for s in snapshots] == [("javascript", "const x = 1")]


@pytest.mark.asyncio
async def test_code_run_broadcasts_result(connect, emit, session_with_student):
    mentor, mentor_frames = await connect("token-a")
    student, student_frames = await connect("token-b")
    await emit(mentor, "session:join", {"sessionId": session_with_student.id})
    await emit(student, "session:join", {"sessionId": session_with_student.id})

    await emit(mentor, "code:run", {"code": "print(6 * 7)", "language": "Python"}, ack=1)

    [result] = student_frames.events("code:run-result")
    assert result["output"] == "42"
    assert result["error"] is None
    assert result["language"] == "python"
    assert result["authorId"] == MENTOR_ID
    assert result["author"]["id"] == MENTOR_ID
    assert result["id"].startswith("run-")
    assert isinstance(result["executionTime"], int)
    assert mentor_frames.acks()[1] == {"ok": True}


@pytest.mark.asyncio
async def test_code_run_failure_is_data(connect, emit, session_with_student):
    mentor, frames = await connect("token-a")
    await emit(mentor, "session:join", {"sessionId": session_with_student.id})

    await emit(mentor, "code:run", {"code": "puts 1", "language": "ruby"}, ack=1)

    [result] = frames.events("code:run-result")
    assert result["output"] == ""
    assert "ruby" in result["error"]
    assert frames.acks()[1] == {"ok": True}


@pytest.mark.asyncio
async def test_code_run_requires_room(connect, emit):
    student, frames = await connect("token-b")

    await emit(student, "code:run", {"code": "print(1)"}, ack=1)

    assert frames.acks()[1] == {"ok": False, "message": "Join a session before running code"}


# =============================================================================
# Test: Signaling Relay
# =============================================================================

@pytest.mark.asyncio
async def test_signaling_excludes_sender(connect, emit, session_with_student):
    mentor, mentor_frames = await connect("token-a")
    student, student_frames = await connect("token-b")
    await emit(mentor, "session:join", {"sessionId": session_with_student.id})
    await emit(student, "session:join", {"sessionId": session_with_student.id})

    await emit(mentor, "webrtc:offer", {"sdp": "v=0"})
    await emit(mentor, "media:state", {"audio": False})

    assert student_frames.events("webrtc:offer") == [{"sdp": "v=0"}]
    assert student_frames.events("media:state") == [{"audio": False}]
    assert mentor_frames.events("webrtc:offer") == []


@pytest.mark.asyncio
async def test_signaling_outside_room_is_ignored(connect, emit):
    student, frames = await connect("token-b")

    await emit(student, "webrtc:ice-candidate", {"candidate": "c"})

    assert frames.frames == []


# =============================================================================
# Test: Permissions and Kick
# =============================================================================

@pytest.mark.asyncio
async def test_permission_update_broadcast(connect, emit, session_with_student):
    mentor, _ = await connect("token-a")
    student, student_frames = await connect("token-b")
    await emit(mentor, "session:join", {"sessionId": session_with_student.id})
    await emit(student, "session:join", {"sessionId": session_with_student.id})

    await emit(mentor, "permissions:update", {"userId": STUDENT_ID, "canEdit": True}, ack=1)

    assert student_frames.events("permissions:update") == [{
        "sessionId": session_with_student.id,
        "user_id": STUDENT_ID,
        "role": "student",
        "can_edit": True,
        "can_share_screen": False,
        "updated_by": MENTOR_ID,
    }]


@pytest.mark.asyncio
async def test_student_cannot_update_permissions(connect, emit, session_with_student):
    student, frames = await connect("token-b")
    await emit(student, "session:join", {"sessionId": session_with_student.id})

    await emit(student, "permissions:update", {"userId": STUDENT_ID, "canEdit": True}, ack=1)

    assert frames.acks()[1]["ok"] is False
    assert frames.events("permissions:update") == []


@pytest.mark.asyncio
async def test_kicked_user_cannot_rejoin(gateway, connect, emit, service, session_with_student):
    """A kicks B; B's next session:join fails and no session:joined is sent."""
    student, frames = await connect("token-b")
    await emit(student, "session:join", {"sessionId": session_with_student.id})

    await service.kick(MENTOR_ID, session_with_student.id, STUDENT_ID)
    gateway.evict(session_with_student.id, STUDENT_ID)
    await student.flush()
    assert frames.events("session:kicked") == [{"sessionId": session_with_student.id}]
    assert student.session_id is None

    frames.frames.clear()
    await emit(student, "session:join", {"sessionId": session_with_student.id}, ack=2)

    assert frames.acks()[2] == {"ok": False, "message": "You have been removed from this session"}
    assert frames.events("session:error") == [{"message": "You have been removed from this session"}]
    assert frames.events("session:joined") == []


@pytest.mark.asyncio
async def test_kicked_user_still_in_room_cannot_chat(connect, emit, service, session_with_student):
    """Membership is re-checked per event, even for a connection already in the room."""
    student, frames = await connect("token-b")
    await emit(student, "session:join", {"sessionId": session_with_student.id})
    await service.kick(MENTOR_ID, session_with_student.id, STUDENT_ID)

    await emit(student, "chat:message", {"text": "still here"}, ack=1)

    assert frames.acks()[1]["ok"] is False
    assert frames.events("chat:message") == []


@pytest.mark.asyncio
async def test_kick_during_join_keeps_user_out(gateway, connect, emit, service, session_with_student, monkeypatch):
    """The kick lands after the join's membership check but before the room admits the connection."""
    session_id = session_with_student.id
    mentor, _ = await connect("token-a")
    student, student_frames = await connect("token-b")
    await emit(mentor, "session:join", {"sessionId": session_id})

    checked = asyncio.Event()
    resume = asyncio.Event()
    ensure_participant = service.ensure_participant

    async def paused_ensure_participant(user_id, sid):
        participant = await ensure_participant(user_id, sid)
        if user_id == STUDENT_ID and not resume.is_set():
            checked.set()
            await resume.wait()
        return participant

    monkeypatch.setattr(service, "ensure_participant", paused_ensure_participant)

    join = asyncio.create_task(gateway.handle_frame(
        student, json.dumps({"event": "session:join", "data": {"sessionId": session_id}, "ack": 1})
    ))
    await checked.wait()
    await service.kick(MENTOR_ID, session_id, STUDENT_ID)
    gateway.evict(session_id, STUDENT_ID)
    resume.set()
    await join

    await emit(mentor, "chat:message", {"text": "mentors only now"})

    assert student.session_id is None
    assert gateway.router.members(session_id) == [mentor]
    assert student_frames.acks()[1] == {"ok": False, "message": "You have been removed from this session"}
    assert student_frames.events("session:joined") == []
    assert student_frames.events("chat:message") == []


@pytest.mark.asyncio
@pytest.mark.parametrize("value", ["false", 0, 1, "yes"])
async def test_permission_flags_must_be_booleans(connect, emit, service, session_with_student, value):
    mentor, frames = await connect("token-a")
    await emit(mentor, "session:join", {"sessionId": session_with_student.id})

    await emit(mentor, "permissions:update", {"userId": STUDENT_ID, "canEdit": value}, ack=1)

    assert frames.acks()[1] == {"ok": False, "message": "canEdit must be true or false"}
    assert frames.events("permissions:update") == []
    participant = await service.ensure_participant(STUDENT_ID, session_with_student.id)
    assert participant.can_edit is False


# =============================================================================
# Test: Disconnect
# =============================================================================

@pytest.mark.asyncio
async def test_disconnect_removes_connection_from_room(gateway, connect, emit, session_with_student):
    student, _ = await connect("token-b")
    await emit(student, "session:join", {"sessionId": session_with_student.id})
    assert gateway.router.connection_count(session_with_student.id) == 1

    await gateway.close_connection(student)

    assert gateway.router.connection_count(session_with_student.id) == 0
    assert student.id not in gateway.connections


@pytest.mark.asyncio
async def test_disconnect_cancels_in_flight_handlers(gateway, connect, emit, session_with_student, monkeypatch):
    student, _ = await connect("token-b")
    await emit(student, "session:join", {"sessionId": session_with_student.id})
    started = asyncio.Event()

    async def hanging_add_message(*args, **kwargs):
        started.set()
        await asyncio.sleep(30)

    monkeypatch.setattr(gateway.service, "add_message", hanging_add_message)
    task = gateway.submit(student, json.dumps({"event": "chat:message", "data": {"text": "x"}}))
    await started.wait()

    await gateway.close_connection(student)

    assert task.cancelled()
